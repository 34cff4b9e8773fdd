"""
auth/guards.py -- The two-stage request guard pipeline.

  authenticate()  bearer token -> Identity, or AuthError(unauthorized)
  authorize()     Identity + allowed roles -> Identity, or AuthError(forbidden)
  run_guards()    composes the two for one named operation

Both stages are plain functions with no framework imports; auth/dependencies.py
adapts them to FastAPI. Required roles live in ACCESS_POLICY, keyed by
operation id, rather than on the handlers themselves.

Staleness: authenticate() trusts the signed claims and does not re-read the
user. A role change or verification made after a token was issued is not
seen until that token expires.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping

from auth.errors import AuthError, ErrorKind
from auth.models import Identity, RequestContext, Role
from auth.tokens import TokenService

logger = logging.getLogger("stallmarket.auth")

# Empty set = any authenticated caller.
ANY_ROLE: frozenset[Role] = frozenset()

ACCESS_POLICY: Mapping[str, frozenset[Role]] = {
    "users.me": ANY_ROLE,
    "users.change_password": ANY_ROLE,
    "users.list": frozenset({Role.MAIN_ADMIN}),
    "users.get": frozenset({Role.MAIN_ADMIN}),
    "users.change_role": frozenset({Role.MAIN_ADMIN}),
}


def authenticate(token: str | None, tokens: TokenService) -> Identity:
    """Resolve the caller from a bearer token.

    Every failure looks the same to the caller. The specific kind (expired,
    invalid_signature, malformed) goes to the debug log only.
    """
    if not token:
        raise AuthError(ErrorKind.unauthorized, "Authentication required.")
    try:
        claims = tokens.verify(token)
    except AuthError as e:
        logger.debug("Token rejected: %s", e.kind.value)
        raise AuthError(ErrorKind.unauthorized, "Authentication required.") from e
    return Identity.from_claims(claims)


def authorize(identity: Identity | None, allowed_roles: frozenset[Role]) -> Identity:
    """Admit the identity if its role is allowed.

    A missing identity means authenticate() did not run first; that is refused
    as forbidden instead of crashing.
    """
    if identity is None:
        logger.error("Authorization reached without an authenticated identity")
        raise AuthError(ErrorKind.forbidden, "Access denied.")
    if allowed_roles and identity.role not in allowed_roles:
        logger.info("Role %s refused (allowed: %s)", identity.role.value, sorted(r.value for r in allowed_roles))
        raise AuthError(ErrorKind.forbidden, "You do not have permission to perform this action.")
    return identity


def allowed_roles_for(operation: str, policy: Mapping[str, frozenset[Role]] = ACCESS_POLICY) -> frozenset[Role]:
    """Look up an operation's allowed roles. Unregistered operations are a programming error."""
    try:
        return policy[operation]
    except KeyError:
        raise KeyError(f"No access policy registered for operation {operation!r}") from None


def run_guards(
    token: str | None,
    operation: str,
    tokens: TokenService,
    policy: Mapping[str, frozenset[Role]] = ACCESS_POLICY,
) -> RequestContext:
    """Authenticate, then authorize, for one operation. Returns the request context."""
    allowed = allowed_roles_for(operation, policy)
    identity = authenticate(token, tokens)
    return RequestContext(identity=authorize(identity, allowed), operation=operation)
