"""
auth/models.py -- Domain dataclasses for authentication entities.

Pattern: Data class (pure data container, zero logic). Stores and services do
the work; these types only own domain shape.

Layer rule: no imports from api/ or core/.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum


class Role(str, Enum):
    """Closed set of marketplace roles. Values are the strings stored and signed."""

    MAIN_ADMIN = "MAIN_ADMIN"
    STALL_ADMIN = "STALL_ADMIN"
    CUSTOMER = "CUSTOMER"
    COURIER = "COURIER"
    FARMER = "FARMER"
    RETAILER = "RETAILER"


# Roles that may log in before verifying their email address.
VERIFICATION_EXEMPT_ROLES: frozenset[Role] = frozenset({Role.MAIN_ADMIN, Role.STALL_ADMIN})


@dataclass
class User:
    """A marketplace account as held by the credential store.

    pending_code holds the one active OTP, shared by the email-verification and
    password-reset flows. Issuing a new code overwrites the old one.
    hashed_password is never serialized into any response.
    """

    email: str
    name: str
    hashed_password: str
    role: Role = Role.CUSTOMER
    id: str | None = None
    is_verified: bool = False
    pending_code: str | None = None
    created_at: str | None = None

    def __repr__(self) -> str:
        # hashed_password and pending_code are credentials; keep them out of reprs and logs.
        return f"User(id={self.id!r}, email={self.email!r}, role={self.role.value!r}, is_verified={self.is_verified!r})"


@dataclass(frozen=True)
class Claims:
    """Identity claims embedded in a signed token. Never persisted."""

    subject: str
    email: str
    role: Role

    @classmethod
    def for_user(cls, user: User) -> Claims:
        return cls(subject=str(user.id), email=user.email, role=user.role)


@dataclass(frozen=True)
class Identity:
    """The caller resolved by the authentication guard, as seen by route handlers."""

    subject: str
    email: str
    role: Role

    @classmethod
    def from_claims(cls, claims: Claims) -> Identity:
        return cls(subject=claims.subject, email=claims.email, role=claims.role)


@dataclass(frozen=True)
class RequestContext:
    """Explicit per-request context threaded from the guard pipeline into handlers."""

    identity: Identity
    operation: str


@dataclass
class AuthResult:
    """Success payload of an orchestrator operation: message plus optional token and user."""

    message: str
    token: str | None = None
    user: User | None = None
