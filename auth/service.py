"""
auth/service.py -- AuthService: the account lifecycle state machine.

States per user:
  Unregistered -> PendingVerification (register)
  PendingVerification -> PendingVerification (resend_verification, new code)
  PendingVerification -> Verified (verify_email, code matches)
  any registered state -> + PendingPasswordReset (forgot_password sets the code)
  PendingPasswordReset -> back to the primary state (reset_password clears it)

pending_code is shared by both flows: whichever operation ran last owns the
one live code. Comparison is exact string equality -- no trimming, no
int() round-trip -- and a missing stored code never matches anything.

Email sends are best effort. A DeliveryError is logged and swallowed so the
primary operation still reports success; the user can ask for a resend.

Every bcrypt call is synchronous. Route handlers that call into this service
are plain `def` functions so Starlette runs them in its threadpool.

Layer rule: no imports from api/.
"""

from __future__ import annotations

import hmac
import logging
from typing import Any

from auth.errors import AuthError, DeliveryError, ErrorKind
from auth.models import VERIFICATION_EXEMPT_ROLES, AuthResult, Claims, Role, User
from auth.notifications import NotificationKind, Notifier
from auth.otp import generate_otp
from auth.passwords import DUMMY_HASH, hash_password, verify_password
from auth.store import UserStore
from auth.tokens import TokenService

logger = logging.getLogger("stallmarket.auth")


def codes_match(stored: str | None, supplied: str) -> bool:
    """Exact, constant-time comparison of a stored OTP against a supplied one.

    A None stored code never matches, including an empty supplied string.
    """
    if stored is None:
        return False
    return hmac.compare_digest(stored.encode("utf-8"), supplied.encode("utf-8"))


class AuthService:
    """Registration, verification, login and password reset over a UserStore.

    Usage:
        service = AuthService(store, tokens, notifier)
        result = service.register("a@x.com", "pw123456", "A")
        service.verify_email("a@x.com", "123456")
    """

    def __init__(self, store: UserStore, tokens: TokenService, notifier: Notifier) -> None:
        self._store = store
        self._tokens = tokens
        self._notifier = notifier

    # ------------------------------------------------------------------
    # Registration and verification
    # ------------------------------------------------------------------

    def register(self, email: str, password: str, name: str) -> AuthResult:
        """Create an unverified CUSTOMER and issue a token straight away.

        The token gives limited access while verification is pending;
        customer-only flows downstream are gated on is_verified.
        """
        if self._store.find_by_email(email) is not None:
            raise AuthError(ErrorKind.conflict, "User already exists.")

        code = generate_otp()
        # The store's UNIQUE(email) catches a concurrent registration that
        # slipped past the check above and raises conflict as well.
        user = self._store.create(
            User(
                email=email,
                name=name,
                hashed_password=hash_password(password),
                role=Role.CUSTOMER,
                is_verified=False,
                pending_code=code,
            )
        )
        logger.info("Registered user %s (%s)", user.id, email)
        self._notify(NotificationKind.welcome, user, code)

        return AuthResult(
            message="Registration successful! Please check your email for the verification code.",
            token=self._issue(user),
            user=user,
        )

    def verify_email(self, email: str, code: str) -> AuthResult:
        user = self._require_user(email)
        if user.is_verified:
            raise AuthError(ErrorKind.bad_request, "Email is already verified.")
        if not codes_match(user.pending_code, code):
            raise AuthError(ErrorKind.bad_request, "Invalid OTP code.")

        updated = self._store.update(user.id, is_verified=True, pending_code=None)
        logger.info("Verified email for user %s", updated.id)
        return AuthResult(
            message="Email verified successfully! You can now log in.",
            token=self._issue(updated),
            user=updated,
        )

    def resend_verification(self, email: str) -> AuthResult:
        """Replace the pending code with a fresh one and email it.

        Two concurrent resends can interleave so the delivered email does not
        carry the code that ends up stored. The stored value is still the
        one verify_email() checks; the user simply requests another resend.
        """
        user = self._require_user(email)
        if user.is_verified:
            raise AuthError(ErrorKind.bad_request, "Email is already verified.")

        code = generate_otp()
        self._store.update(user.id, pending_code=code)
        self._notify(NotificationKind.verification, user, code)
        return AuthResult(message="Verification code sent to your email.")

    # ------------------------------------------------------------------
    # Login
    # ------------------------------------------------------------------

    def login(self, email: str, password: str) -> AuthResult:
        """Check credentials and issue a token. Does not change any state.

        Unknown emails still pay for one bcrypt check against DUMMY_HASH so
        response time does not reveal which addresses are registered.
        """
        user = self._store.find_by_email(email)
        if user is None:
            verify_password(password, DUMMY_HASH)
            logger.info("Login failed for %s: unknown email", email)
            raise AuthError(ErrorKind.unauthorized, "Invalid credentials.")
        if not user.is_verified and user.role not in VERIFICATION_EXEMPT_ROLES:
            logger.info("Login refused for user %s: email not verified", user.id)
            raise AuthError(ErrorKind.unauthorized, "Please verify your email before logging in.")
        if not verify_password(password, user.hashed_password):
            logger.info("Login failed for user %s: bad password", user.id)
            raise AuthError(ErrorKind.unauthorized, "Invalid credentials.")

        logger.info("Login succeeded for user %s (%s)", user.id, user.role.value)
        return AuthResult(message="Login successful.", token=self._issue(user), user=user)

    # ------------------------------------------------------------------
    # Password reset
    # ------------------------------------------------------------------

    def forgot_password(self, email: str) -> AuthResult:
        """Store a reset code and email it. Works for verified and unverified users alike."""
        user = self._require_user(email)
        code = generate_otp()
        self._store.update(user.id, pending_code=code)
        self._notify(NotificationKind.password_reset, user, code)
        return AuthResult(message="Password reset code sent to your email.")

    def reset_password(self, email: str, code: str, new_password: str) -> AuthResult:
        user = self._require_user(email)
        if not codes_match(user.pending_code, code):
            raise AuthError(ErrorKind.bad_request, "Invalid OTP code.")
        self._store.update(user.id, hashed_password=hash_password(new_password), pending_code=None)
        logger.info("Password reset for user %s", user.id)
        return AuthResult(message="Password reset successfully.")

    # ------------------------------------------------------------------
    # Administrative operations
    # ------------------------------------------------------------------

    def mark_verified(self, email: str) -> AuthResult:
        """Verify an account without a code. Development and CLI use only."""
        user = self._require_user(email)
        if user.is_verified:
            return AuthResult(message="User is already verified.", user=user)
        updated = self._store.update(user.id, is_verified=True, pending_code=None)
        logger.warning("Email for user %s verified manually", updated.id)
        return AuthResult(message="Email manually verified successfully.", user=updated)

    def set_password(self, email: str, new_password: str) -> AuthResult:
        """Overwrite a password without a code. Development and CLI use only."""
        user = self._require_user(email)
        updated = self._store.update(user.id, hashed_password=hash_password(new_password))
        logger.warning("Password for user %s set manually", updated.id)
        return AuthResult(message="Password reset successfully.", user=updated)

    def change_password(self, user_id: str, current_password: str, new_password: str) -> AuthResult:
        user = self._store.find_by_id(user_id)
        if user is None:
            raise AuthError(ErrorKind.not_found, "User not found.")
        if not verify_password(current_password, user.hashed_password):
            raise AuthError(ErrorKind.bad_request, "Current password is incorrect.")
        updated = self._store.update(user.id, hashed_password=hash_password(new_password))
        logger.info("Password changed for user %s", updated.id)
        return AuthResult(message="Password changed successfully.", user=updated)

    def change_role(self, user_id: str, role: Role) -> AuthResult:
        """Assign a new role. Tokens already issued keep the old role until they expire."""
        if self._store.find_by_id(user_id) is None:
            raise AuthError(ErrorKind.not_found, "User not found.")
        updated = self._store.update(user_id, role=role)
        logger.warning("Role of user %s changed to %s", updated.id, updated.role.value)
        return AuthResult(message="Role updated.", user=updated)

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _require_user(self, email: str) -> User:
        user = self._store.find_by_email(email)
        if user is None:
            raise AuthError(ErrorKind.not_found, "User not found.")
        return user

    def _issue(self, user: User) -> str:
        return self._tokens.issue(Claims.for_user(user))

    def _notify(self, kind: NotificationKind, user: User, code: str) -> None:
        data: dict[str, Any] = {"name": user.name, "email": user.email, "code": code}
        try:
            self._notifier.send(kind, user.email, data)
        except DeliveryError as e:
            logger.warning("Failed to send %s email to %s: %s", kind.value, user.email, e)
