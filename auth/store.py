"""
auth/store.py -- SQLAlchemy Core persistence layer for user credentials.

Pattern: Repository + Data Mapper. UserStore is the repository; _row_to_user
is the mapper. Services and routes never touch SQL directly.

Security:
  All queries use bound parameters. No f-strings in SQL.

  UNIQUE(email) is enforced by the schema. A duplicate insert surfaces as
  AuthError(conflict) so two concurrent registrations for the same address
  cannot both succeed, even if both passed the orchestrator's pre-check.

Concurrency:
  Each method is one statement in its own connection. Read-modify-write
  sequences (find user, then overwrite pending_code) are not locked here; the
  last writer wins, which is consistent with what a later verify checks.

DB path: auth/stallmarket_auth.db unless DATABASE_URL says otherwise.

Layer rule: no imports from api/.
"""

from __future__ import annotations

import uuid
from datetime import datetime, timezone

from sqlalchemy import Column, Integer, MetaData, String, Table, Text, create_engine, event, func, select, text
from sqlalchemy.engine import Engine
from sqlalchemy.exc import IntegrityError

from auth.errors import AuthError, ErrorKind
from auth.models import Role, User

# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

_metadata = MetaData()

_users = Table(
    "users",
    _metadata,
    Column("id", String(32), primary_key=True),
    Column("email", String(255), nullable=False, unique=True),
    Column("name", String(255), nullable=False),
    Column("hashed_password", Text, nullable=False),
    Column("role", String(30), nullable=False, server_default=Role.CUSTOMER.value),
    Column("is_verified", Integer, nullable=False, server_default="0"),
    Column("pending_code", String(12)),  # NULL when no OTP is outstanding
    Column("created_at", String(32), nullable=False),
)

# Columns update() accepts. Anything else is a programming error.
_UPDATABLE_FIELDS = frozenset({"email", "name", "hashed_password", "role", "is_verified", "pending_code"})


# ---------------------------------------------------------------------------
# WAL mode
# ---------------------------------------------------------------------------


def _set_wal_mode(dbapi_conn, connection_record) -> None:
    """Enable WAL journal mode so readers do not block during writes.

    Set per-connection because SQLite PRAGMAs are not inherited by new
    connections from the pool.
    """
    dbapi_conn.execute("PRAGMA journal_mode=WAL")


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


# ---------------------------------------------------------------------------
# Repository
# ---------------------------------------------------------------------------


class UserStore:
    """Repository for User records.

    Usage:
        store = UserStore("sqlite:///:memory:")
        user = store.create(User(email="a@x.com", name="A", hashed_password=hash_password("pw123456")))
        store.update(user.id, is_verified=True, pending_code=None)
        store.close()
    """

    def __init__(self, db_url: str) -> None:
        connect_args: dict = {}
        if db_url.startswith("sqlite"):
            connect_args["check_same_thread"] = False
        self.engine: Engine = create_engine(db_url, connect_args=connect_args)
        if db_url.startswith("sqlite"):
            event.listen(self.engine, "connect", _set_wal_mode)
        _metadata.create_all(self.engine)

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def find_by_email(self, email: str) -> User | None:
        """Look up a user by exact email (case-sensitive as stored). Returns None if not found."""
        with self.engine.connect() as conn:
            row = conn.execute(_users.select().where(_users.c.email == email)).fetchone()
        return _row_to_user(row) if row is not None else None

    def find_by_id(self, user_id: str) -> User | None:
        """Look up a user by primary key. Returns None if not found."""
        with self.engine.connect() as conn:
            row = conn.execute(_users.select().where(_users.c.id == user_id)).fetchone()
        return _row_to_user(row) if row is not None else None

    def list_users(self, offset: int = 0, limit: int = 10) -> list[User]:
        """Return one page of users, oldest first."""
        with self.engine.connect() as conn:
            rows = conn.execute(
                _users.select().order_by(_users.c.created_at, _users.c.id).offset(offset).limit(limit)
            ).fetchall()
        return [_row_to_user(r) for r in rows]

    def count_users(self) -> int:
        with self.engine.connect() as conn:
            result = conn.execute(select(func.count()).select_from(_users)).scalar()
        return result or 0

    def ping(self) -> bool:
        """Return True if the database answers a trivial query. Used by the health check."""
        with self.engine.connect() as conn:
            conn.execute(text("SELECT 1"))
        return True

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------

    def create(self, user: User) -> User:
        """Insert a new user and return it with id and created_at filled in.

        Raises AuthError(conflict) if the email is already registered.
        """
        user_id = uuid.uuid4().hex
        created_at = _now_iso()
        try:
            with self.engine.connect() as conn:
                conn.execute(
                    _users.insert().values(
                        id=user_id,
                        email=user.email,
                        name=user.name,
                        hashed_password=user.hashed_password,
                        role=user.role.value,
                        is_verified=1 if user.is_verified else 0,
                        pending_code=user.pending_code,
                        created_at=created_at,
                    )
                )
                conn.commit()
        except IntegrityError as exc:
            raise AuthError(ErrorKind.conflict, "A user with that email already exists.") from exc
        user.id = user_id
        user.created_at = created_at
        return user

    def update(self, user_id: str, **fields) -> User:
        """Update mutable fields on an existing user and return the fresh record.

        Accepted fields: email, name, hashed_password, role, is_verified,
        pending_code. Unknown fields raise ValueError rather than being
        silently ignored.

        Raises AuthError(not_found) if user_id does not exist and
        AuthError(conflict) if an email change collides with another account.
        """
        unknown = set(fields) - _UPDATABLE_FIELDS
        if unknown:
            raise ValueError(f"Unknown user fields: {sorted(unknown)!r}")
        if "role" in fields:
            fields["role"] = Role(fields["role"]).value
        if "is_verified" in fields:
            fields["is_verified"] = 1 if fields["is_verified"] else 0
        if fields:
            try:
                with self.engine.connect() as conn:
                    result = conn.execute(_users.update().where(_users.c.id == user_id).values(**fields))
                    conn.commit()
            except IntegrityError as exc:
                raise AuthError(ErrorKind.conflict, "A user with that email already exists.") from exc
            if result.rowcount == 0:
                raise AuthError(ErrorKind.not_found, "User not found.")
        updated = self.find_by_id(user_id)
        if updated is None:
            raise AuthError(ErrorKind.not_found, "User not found.")
        return updated

    def close(self) -> None:
        self.engine.dispose()


# ---------------------------------------------------------------------------
# Row mapper (Data Mapper pattern)
# ---------------------------------------------------------------------------


def _row_to_user(row) -> User:
    return User(
        id=row.id,
        email=row.email,
        name=row.name,
        hashed_password=row.hashed_password,
        role=Role(row.role),
        is_verified=bool(row.is_verified),
        pending_code=row.pending_code,
        created_at=row.created_at,
    )
