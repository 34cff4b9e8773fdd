"""
auth/errors.py -- Typed error taxonomy for the auth subsystem.

Every business failure raised by the orchestrator, the token service, and the
guards is an AuthError carrying an ErrorKind. api/main.py turns it into the
standard error envelope; nothing below the route layer builds HTTP responses.

Token kinds (invalid_signature, expired, malformed) exist for logging. The
authentication guard collapses all three into unauthorized before a caller
sees them.
"""

from __future__ import annotations

from enum import Enum


class ErrorKind(str, Enum):
    not_found = "not_found"
    conflict = "conflict"
    bad_request = "bad_request"
    unauthorized = "unauthorized"
    forbidden = "forbidden"
    invalid_signature = "invalid_signature"
    expired = "expired"
    malformed = "malformed"


_STATUS_CODES: dict[ErrorKind, int] = {
    ErrorKind.not_found: 404,
    ErrorKind.conflict: 409,
    ErrorKind.bad_request: 400,
    ErrorKind.unauthorized: 401,
    ErrorKind.forbidden: 403,
    ErrorKind.invalid_signature: 401,
    ErrorKind.expired: 401,
    ErrorKind.malformed: 401,
}


class AuthError(Exception):
    """A business failure with a stable machine-readable kind and a human message."""

    def __init__(self, kind: ErrorKind, message: str) -> None:
        super().__init__(message)
        self.kind = kind
        self.message = message

    @property
    def status_code(self) -> int:
        return _STATUS_CODES[self.kind]

    def __repr__(self) -> str:
        return f"AuthError({self.kind.value!r}, {self.message!r})"


class DeliveryError(Exception):
    """Raised by a Notifier when an email could not be handed to the provider."""
