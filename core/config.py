"""
core/config.py -- Centralized application configuration via pydantic-settings.

All environment variable reads for Stallmarket happen here. No module should
call os.getenv() or os.environ.get() directly -- import get_settings() instead.

Design patterns used:
  Singleton via lru_cache: get_settings() instantiates Settings once at first
      call and returns the cached instance on every subsequent call.

  @model_validator(mode="after"): cross-field validation after all fields are
      resolved. Dev mode (DEBUG=true) generates a SECRET_KEY with a warning,
      production mode refuses to start without one.

Security notes:
  SECRET_KEY shorter than 32 chars is rejected outright. JWT signing relies on
  key entropy -- a short key weakens every issued token.

  Rotating SECRET_KEY invalidates every outstanding token. There is no grace
  period for the previous key.

Layer rule: core/ is the kernel. This module may not import from api/ or auth/.
"""

import logging
import secrets
from functools import lru_cache
from pathlib import Path

from pydantic import field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger("stallmarket.config")

_DEFAULT_DB_URL = f"sqlite:///{Path(__file__).resolve().parent.parent / 'auth' / 'stallmarket_auth.db'}"

# Seven days. Tokens are not refreshed; a client logs in again after expiry.
_SEVEN_DAYS = 7 * 24 * 60 * 60


class Settings(BaseSettings):
    """Stallmarket settings, read from the environment and an optional .env file.

    Every field has a default so Settings() can be built in tests
    without a .env file. Field names map to upper-case
    environment variables (secret_key -> SECRET_KEY).
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # ------------------------------------------------------------------
    # Core
    # ------------------------------------------------------------------

    debug: bool = False
    # Empty string is the sentinel for "not configured". The model_validator
    # below either generates a dev key or raises, so callers never see "".
    secret_key: str = ""
    database_url: str = _DEFAULT_DB_URL

    # ------------------------------------------------------------------
    # Auth
    # ------------------------------------------------------------------

    token_expire_seconds: int = _SEVEN_DAYS
    # Registers POST /auth/dev/* helpers. Never enable in production.
    dev_endpoints_enabled: bool = False

    # ------------------------------------------------------------------
    # HTTP
    # ------------------------------------------------------------------

    allowed_hosts: list[str] = ["*"]
    cors_origins: list[str] = ["http://localhost:3000"]

    # ------------------------------------------------------------------
    # Rate limiting
    # ------------------------------------------------------------------

    login_rate_limit: str = "10/minute"
    otp_rate_limit: str = "5/minute"

    # ------------------------------------------------------------------
    # Mail
    # ------------------------------------------------------------------

    # "log" writes outbound mail to the log only; "mailgun" delivers it.
    mail_provider: str = "log"
    mailgun_api_key: str = ""
    mailgun_domain: str = ""
    mailgun_base_url: str = "https://api.mailgun.net"
    mail_from_email: str = "noreply@stallmarket.local"
    mail_from_name: str = "Stallmarket"
    frontend_url: str = "http://localhost:3000"

    # ------------------------------------------------------------------
    # Validators
    # ------------------------------------------------------------------

    @field_validator("secret_key", "mailgun_api_key", "mailgun_domain", "mailgun_base_url", mode="before")
    @classmethod
    def strip_secrets(cls, v: str) -> str:
        return (v or "").strip()

    @field_validator("mail_provider")
    @classmethod
    def validate_mail_provider(cls, v: str) -> str:
        v = v.strip().lower()
        if v not in ("log", "mailgun"):
            raise ValueError("MAIL_PROVIDER must be 'log' or 'mailgun'.")
        return v

    @model_validator(mode="after")
    def validate_secret_key(self) -> "Settings":
        """Enforce the SECRET_KEY policy.

        Dev mode (DEBUG=true): auto-generate a random key with a warning.
            Tokens will not survive restart -- acceptable for local dev.

        Production mode: refuse to start if SECRET_KEY is missing.

        Both modes: reject keys shorter than 32 characters.
        """
        if not self.secret_key:
            if self.debug:
                self.secret_key = secrets.token_hex(32)
                logger.warning("WARNING: Using auto-generated SECRET_KEY. Tokens will not persist across restarts.")
            else:
                raise ValueError("SECRET_KEY is required unless DEBUG=true. Set it in the environment or .env.")
        if len(self.secret_key) < 32:
            raise ValueError("SECRET_KEY must be at least 32 characters.")
        if self.mail_provider == "mailgun" and not (self.mailgun_api_key and self.mailgun_domain):
            raise ValueError("MAIL_PROVIDER=mailgun requires MAILGUN_API_KEY and MAILGUN_DOMAIN.")
        return self


@lru_cache
def get_settings() -> Settings:
    """Process-wide Settings, built on first call.

    Tests that need other values construct Settings(...) directly instead of
    going through this cache.
    """
    return Settings()
