"""auth/otp.py -- One-time passcodes for email verification and password reset."""

from __future__ import annotations

import secrets

OTP_LENGTH = 6
_OTP_MIN = 10 ** (OTP_LENGTH - 1)
_OTP_SPAN = 9 * _OTP_MIN


def generate_otp() -> str:
    """Return a 6-digit code drawn uniformly from [100000, 999999].

    The code is a credential, so it comes from the secrets CSPRNG rather than
    the random module.
    """
    return str(_OTP_MIN + secrets.randbelow(_OTP_SPAN))
