"""
auth/tokens.py -- Signed, expiring bearer tokens.

Security design decisions:
  JWT: python-jose with HS256. Tokens carry sub (user id), email, role, iat
       and exp. Verification needs only the signing key -- no store lookup --
       so a role or verification change after issuance is not visible until
       the token expires and the user logs in again.

  TokenConfig: built once at startup from Settings and handed to
       TokenService by reference. Rotating SECRET_KEY invalidates every
       outstanding token; there is no grace period for the old key.

  Failure kinds: verify() distinguishes malformed tokens (cannot be parsed,
       required claims missing), bad signatures and expiry. The authentication
       guard logs the kind and reports a uniform 401 to the caller.

Layer rule: no imports from api/. Import from core/ is allowed.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone

import json

from jose import jwt
from jose.exceptions import ExpiredSignatureError, JWTClaimsError, JWTError
from jose.utils import base64url_decode, base64url_encode

from auth.errors import AuthError, ErrorKind
from auth.models import Claims, Role
from core.config import Settings

_ALGORITHM = "HS256"
_REQUIRED_CLAIMS = ("sub", "email", "role", "exp")


@dataclass(frozen=True)
class TokenConfig:
    """Immutable signing configuration, constructed once per process."""

    secret_key: str
    algorithm: str = _ALGORITHM
    expire_seconds: int = 7 * 24 * 60 * 60

    @classmethod
    def from_settings(cls, settings: Settings) -> TokenConfig:
        return cls(secret_key=settings.secret_key, expire_seconds=settings.token_expire_seconds)


class TokenService:
    """Issue and verify bearer tokens.

    Usage:
        tokens = TokenService(TokenConfig.from_settings(get_settings()))
        token = tokens.issue(Claims.for_user(user))
        claims = tokens.verify(token)   # raises AuthError on failure
    """

    def __init__(self, config: TokenConfig) -> None:
        self._config = config

    @property
    def expire_seconds(self) -> int:
        return self._config.expire_seconds

    def issue(self, claims: Claims, now: datetime | None = None) -> str:
        """Encode claims into a signed JWT that expires expire_seconds after now."""
        issued_at = now or datetime.now(timezone.utc)
        payload = {
            "sub": claims.subject,
            "email": claims.email,
            "role": claims.role.value,
            "iat": issued_at,
            "exp": issued_at + timedelta(seconds=self._config.expire_seconds),
        }
        return jwt.encode(payload, self._config.secret_key, algorithm=self._config.algorithm)

    def verify(self, token: str) -> Claims:
        """Verify signature and expiry; return the embedded claims unmodified.

        Raises AuthError(malformed | invalid_signature | expired).
        """
        if not token or not isinstance(token, str):
            raise AuthError(ErrorKind.malformed, "Token is empty.")
        token = token.strip()

        _check_structure(token)

        # ExpiredSignatureError subclasses JWTClaimsError, which subclasses JWTError.
        try:
            payload = jwt.decode(token, self._config.secret_key, algorithms=[self._config.algorithm])
        except ExpiredSignatureError as exc:
            raise AuthError(ErrorKind.expired, "Token has expired.") from exc
        except JWTClaimsError as exc:
            raise AuthError(ErrorKind.malformed, "Token claims are invalid.") from exc
        except JWTError as exc:
            raise AuthError(ErrorKind.invalid_signature, "Token signature is invalid.") from exc

        return _claims_from_payload(payload)


def _claims_from_payload(payload: dict) -> Claims:
    if any(name not in payload for name in _REQUIRED_CLAIMS):
        raise AuthError(ErrorKind.malformed, "Token is missing required claims.")
    subject, email, role = payload["sub"], payload["email"], payload["role"]
    if not isinstance(subject, str) or not isinstance(email, str) or not isinstance(role, str):
        raise AuthError(ErrorKind.malformed, "Token claims have the wrong type.")
    try:
        return Claims(subject=subject, email=email, role=Role(role))
    except ValueError as exc:
        raise AuthError(ErrorKind.malformed, "Token carries an unknown role.") from exc


def _check_structure(token: str) -> None:
    """Classify structural damage before any signature check.

    Header and payload must decode to JSON objects, else malformed. The
    signature segment must be canonical base64url, else invalid_signature.
    The base64 decoder drops non-alphabet bytes and ignores the unused low
    bits of the final character, so either edit can leave the MAC bytes
    unchanged.
    """
    segments = token.split(".")
    if len(segments) != 3:
        raise AuthError(ErrorKind.malformed, "Token could not be parsed.")
    header, payload, signature = (s.encode("utf-8") for s in segments)

    for segment in (header, payload):
        try:
            decoded = json.loads(base64url_decode(segment))
        except (ValueError, TypeError) as exc:
            raise AuthError(ErrorKind.malformed, "Token could not be parsed.") from exc
        if not isinstance(decoded, dict):
            raise AuthError(ErrorKind.malformed, "Token could not be parsed.")

    try:
        canonical = base64url_encode(base64url_decode(signature)) == signature
    except (ValueError, TypeError):
        canonical = False
    if not canonical:
        raise AuthError(ErrorKind.invalid_signature, "Token signature is invalid.")
