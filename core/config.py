"""
core/config.py -- Centralized application configuration via pydantic-settings.

All environment variable reads for keyward happen here. No module should
call os.getenv() or os.environ.get() directly -- import get_settings() instead.

Design patterns used:
  Singleton via lru_cache: get_settings() instantiates Settings once at first
      call and returns the cached instance on every subsequent call.

  BaseSettings (pydantic-settings): Reads values from environment variables
      and an optional .env file automatically. Field names map to env var names
      (e.g. secret_key -> SECRET_KEY, password_min_length -> PASSWORD_MIN_LENGTH).

  @model_validator(mode="after"): Runs cross-field validation after all fields
      are resolved from environment. SECRET_KEY handling and the password
      length bounds are both checked here so a bad deployment fails at startup,
      not on the first sign-up.

Security notes:
  [M6] SECRET_KEY shorter than 32 chars is rejected outright. JWT signing and
       the OTP HMAC both rely on key entropy -- a short key weakens both.

  [M7] In production mode (DEBUG not set or false), a missing SECRET_KEY is a
       hard startup failure.

Layer rule: core/ is the kernel. This module may import from auth.policy (a
pure value module) but never from api/.
"""

import logging
import secrets
from functools import lru_cache
from typing import Literal

from pydantic import model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from auth.policy import PasswordPolicyConfig

logger = logging.getLogger("keyward.config")


def _split_csv(raw: str) -> tuple[str, ...]:
    """Split a comma-separated env value, dropping blanks.

    An empty excluded sequence would match every candidate, so "" entries
    (e.g. from PASSWORD_BLACKLIST="") must never reach the policy.
    """
    return tuple(item.strip() for item in raw.split(",") if item.strip())


class Settings(BaseSettings):
    """Application settings loaded from environment variables and .env file.

    All fields have defaults so Settings() can be instantiated in test
    environments without a real .env file. The model_validator enforces
    production-safety rules at startup.
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
    database_url: str = "sqlite:///keyward.db"

    # ------------------------------------------------------------------
    # Tokens, sessions, OTP
    # ------------------------------------------------------------------

    token_expire_seconds: int = 60 * 60 * 24
    otp_ttl_seconds: int = 60 * 10
    bcrypt_rounds: int = 12

    # ------------------------------------------------------------------
    # Account policy
    # ------------------------------------------------------------------

    default_user_status: Literal["ACTIVE", "INACTIVE"] = "ACTIVE"
    # False keeps the distinct "unknown email" rejection on forgot-password.
    conceal_unknown_email: bool = False

    # ------------------------------------------------------------------
    # Rate limiting (slowapi syntax)
    # ------------------------------------------------------------------

    sign_in_rate_limit: str = "10/minute"
    forgot_password_rate_limit: str = "5/minute"

    # ------------------------------------------------------------------
    # Password policy
    # ------------------------------------------------------------------

    password_min_length: int = 8
    password_max_length: int = 20
    password_require_uppercase: bool = True
    password_require_lowercase: bool = True
    password_require_digit: bool = True
    password_require_special_char: bool = True
    password_allowed_special_chars: str = "!@#$%^&*"
    password_exclude_sequences: str = "1234,abcd"
    password_blacklist: str = "password,12345678"
    password_no_repeated_chars: bool = True

    # ------------------------------------------------------------------
    # Validators
    # ------------------------------------------------------------------

    @model_validator(mode="after")
    def validate_secret_key(self) -> "Settings":
        """Enforce the SECRET_KEY policy [M7].

        Dev mode (DEBUG=true): auto-generate a random key with a warning.
            Issued tokens will not survive restart -- acceptable for local dev.

        Production mode: refuse to start if SECRET_KEY is missing.

        Both modes: reject keys shorter than 32 characters [M6].
        """
        if not self.secret_key:
            if self.debug:
                self.secret_key = secrets.token_hex(32)
                logger.warning("WARNING: Using auto-generated SECRET_KEY. Tokens will not persist across restarts.")
            else:
                raise ValueError(
                    "SECRET_KEY is required in production mode. "
                    "Set SECRET_KEY in your environment or .env file. "
                    "To run in development mode, set DEBUG=true."
                )
        if len(self.secret_key) < 32:
            raise ValueError("SECRET_KEY must be at least 32 characters.")
        return self

    @model_validator(mode="after")
    def validate_password_policy(self) -> "Settings":
        """Build the policy once so configuration errors surface at load time."""
        self.password_policy()
        return self

    def password_policy(self) -> PasswordPolicyConfig:
        """Return the immutable password policy described by the PASSWORD_* fields.

        Raises PolicyConfigError (a ValueError) for inconsistent bounds, which
        pydantic reports as a settings validation error during startup.
        """
        return PasswordPolicyConfig(
            min_length=self.password_min_length,
            max_length=self.password_max_length,
            require_uppercase=self.password_require_uppercase,
            require_lowercase=self.password_require_lowercase,
            require_digit=self.password_require_digit,
            require_special_char=self.password_require_special_char,
            allowed_special_chars=self.password_allowed_special_chars,
            excluded_sequences=_split_csv(self.password_exclude_sequences),
            blacklist=_split_csv(self.password_blacklist),
            no_repeated_chars=self.password_no_repeated_chars,
        )


@lru_cache
def get_settings() -> Settings:
    """Return the application Settings singleton.

    In tests: call get_settings.cache_clear() between test cases if you need
    to inject different environment variables.
    """
    return Settings()

