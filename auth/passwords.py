"""
auth/passwords.py -- bcrypt password hashing.

Using bcrypt directly rather than passlib[bcrypt]: passlib's wrap-bug
detection feeds bcrypt a password longer than 72 bytes, which current bcrypt
releases reject. Inputs are truncated to 72 bytes here so long passphrases
hash instead of raising.

Work factor is fixed at 10 rounds. Raising it later only affects new hashes;
existing digests carry their own cost and keep verifying.
"""

from __future__ import annotations

import bcrypt

BCRYPT_ROUNDS = 10
_BCRYPT_MAX_BYTES = 72


def _pwd_bytes(password: str) -> bytes:
    return password.encode("utf-8")[:_BCRYPT_MAX_BYTES]


def hash_password(plain: str) -> str:
    """Return a salted bcrypt digest of the plaintext password."""
    return bcrypt.hashpw(_pwd_bytes(plain), bcrypt.gensalt(rounds=BCRYPT_ROUNDS)).decode("utf-8")


def verify_password(plain: str, hashed: str) -> bool:
    """Return True if the plaintext matches the digest.

    bcrypt.checkpw compares in constant time. A mismatch returns False; so does
    a digest bcrypt cannot parse.
    """
    try:
        return bcrypt.checkpw(_pwd_bytes(plain), hashed.encode("utf-8"))
    except (ValueError, TypeError):
        return False


# Timing equalization dummy hash. Computed once at import so the first login
# is not measurably slower than later ones. Login runs verify_password()
# against it when the email is unknown, so response time does not reveal
# which emails are registered.
DUMMY_HASH: str = hash_password("stallmarket_timing_dummy")
