"""
core/config.py -- Notekeeper auth settings, read from the environment.

Every environment variable the service understands is a field on Settings;
pydantic-settings maps SECRET_KEY to secret_key, SMTP_HOST to smtp_host and so
on, and also reads a local .env file when one is present. Nothing else in the
project touches os.environ.

get_settings() is cached, so the environment is parsed once per process. Tests
that need different values build Settings(_env_file=None) directly or clear
the cache.

Only api/main.py calls get_settings(). The auth/ components receive what they
need as constructor arguments.

SECRET_KEY signs session tokens and keys the OTP digest:
  [M6] fewer than 32 characters is refused.
  [M7] without DEBUG=true a missing key stops startup; with DEBUG=true a random
       key is generated, so tokens die with the process.

SMTP_HOST:
  [M8] without DEBUG=true an empty SMTP_HOST stops startup. The console
       mailer writes live codes to the log and reports every send as a
       success, so it is only allowed in development.

Layer rule: core/ imports nothing from api/ or auth/.
"""

import logging
import secrets
from functools import lru_cache
from pathlib import Path

from pydantic import model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger("notekeeper.config")

_DEFAULT_DB_URL = f"sqlite:///{Path(__file__).resolve().parent.parent / 'notekeeper_auth.db'}"


class Settings(BaseSettings):
    """Runtime configuration. Every field has a development default."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # ------------------------------------------------------------------
    # Core
    # ------------------------------------------------------------------

    debug: bool = False
    # "" means unset; check_secret_key() replaces or rejects it.
    secret_key: str = ""
    database_url: str = _DEFAULT_DB_URL

    # ------------------------------------------------------------------
    # Sessions and one-time passcodes
    # ------------------------------------------------------------------

    token_expire_seconds: int = 7 * 24 * 60 * 60
    otp_expire_seconds: int = 10 * 60

    # ------------------------------------------------------------------
    # Google federated sign-in (empty client id = provider disabled)
    # ------------------------------------------------------------------

    google_client_id: str = ""
    google_client_secret: str = ""
    google_jwks_url: str = "https://www.googleapis.com/oauth2/v3/certs"
    google_jwks_cache_seconds: int = 3600
    federation_timeout_seconds: float = 10.0

    # Front-end origin. The OAuth callback redirects here with the token.
    client_url: str = "http://localhost:3000"
    cors_origins: list[str] = ["http://localhost:3000", "http://localhost:5173"]
    # Host header allow-list for TrustedHostMiddleware. Narrow this in production.
    allowed_hosts: list[str] = ["*"]

    # ------------------------------------------------------------------
    # Outbound email (empty smtp_host = log codes to the console; DEBUG only)
    # ------------------------------------------------------------------

    smtp_host: str = ""
    smtp_port: int = 587
    smtp_username: str = ""
    smtp_password: str = ""
    smtp_use_tls: bool = True
    email_from: str = "no-reply@notekeeper.local"
    email_timeout_seconds: float = 10.0

    # ------------------------------------------------------------------
    # Validators
    # ------------------------------------------------------------------

    @model_validator(mode="after")
    def check_secret_key(self) -> "Settings":
        """[M6] [M7] Generate a throwaway key in debug mode, otherwise insist on a real one."""
        if not self.secret_key:
            if self.debug:
                self.secret_key = secrets.token_hex(32)
                logger.warning("SECRET_KEY not set; generated a random one. Issued tokens will not survive a restart.")
            else:
                raise ValueError("SECRET_KEY is required unless DEBUG=true (set it in the environment or .env)")
        if len(self.secret_key) < 32:
            raise ValueError(f"SECRET_KEY must be at least 32 characters, got {len(self.secret_key)}")
        return self

    @model_validator(mode="after")
    def check_mail_relay(self) -> "Settings":
        """[M8] Codes must leave the process by email unless DEBUG=true."""
        if not self.smtp_host and not self.debug:
            raise ValueError("SMTP_HOST is required unless DEBUG=true (OTP codes would only reach the log)")
        return self

    @property
    def google_enabled(self) -> bool:
        return bool(self.google_client_id)


@lru_cache
def get_settings() -> Settings:
    """Return the process-wide Settings, parsing the environment on first use."""
    return Settings()
