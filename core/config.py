"""
core/config.py -- Centralized application configuration via pydantic-settings.

All environment variable reads for Gatehouse happen here. No module should
call os.getenv() or os.environ.get() directly -- import get_settings() instead.

Design patterns used:
  Singleton via lru_cache: get_settings() instantiates Settings once at first
      call and returns the cached instance on every subsequent call.

  Frozen settings: the Settings object is immutable after validation. Each
      component (PasswordHasher, TokenService, IdentityDirectory, ...) receives
      the instance at construction; nothing reads configuration lazily or
      mutates it at runtime.

  @model_validator(mode="after"): cross-field validation after all fields
      are resolved. Dev mode generates missing secrets with a warning,
      production mode refuses to start without them.

Security notes:
  [M6] JWT_SECRET shorter than 32 chars is rejected outright. HS256 signing
       relies on key entropy -- a short key weakens every issued token.

  [M7] In production mode (DEBUG not set or false), a missing JWT_SECRET or
       HASH_SALT is a hard startup failure. A random salt in production would
       make every stored password unverifiable after a restart.

Layer rule: core/ is the kernel. This module may not import from api/ or auth/.
"""

import logging
import secrets
from functools import lru_cache

from pydantic import Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger("gatehouse.config")


class Settings(BaseSettings):
    """Application settings loaded from environment variables and .env file.

    All fields have defaults so Settings() can be instantiated in test
    environments without a real .env file. Field names map to upper-cased
    env vars: `jwt_secret` reads JWT_SECRET, `max_fetch_limit` reads
    MAX_FETCH_LIMIT.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        frozen=True,
    )

    # ------------------------------------------------------------------
    # Core
    # ------------------------------------------------------------------

    debug: bool = False
    log_level: str = "INFO"

    # ------------------------------------------------------------------
    # Storage
    # ------------------------------------------------------------------

    database_url: str = "sqlite:///gatehouse.db"
    # Seconds to wait for a connection / lock before the call fails as Transient.
    db_timeout_seconds: float = Field(default=5.0, gt=0)
    permission_table: str = "permissions"
    role_table: str = "roles"
    user_table: str = "users"
    audit_table: str = "audits"

    # ------------------------------------------------------------------
    # Credentials
    # ------------------------------------------------------------------

    # Empty string is the sentinel for "not configured". The validator below
    # either generates a dev value or raises, so callers never see "".
    hash_salt: str = ""
    jwt_secret: str = ""
    jwt_expiration: int = Field(default=3600, gt=0)

    # ------------------------------------------------------------------
    # Bootstrap
    # ------------------------------------------------------------------

    generate_default_user: bool = True
    default_user_username: str = "admin"
    default_user_email: str = "admin@gatehouse.local"
    default_user_password: str = ""
    default_user_enabled: bool = True
    # Role granted to every self-registered user when it exists.
    default_role_name: str = "DEFAULT"

    # ------------------------------------------------------------------
    # Audit
    # ------------------------------------------------------------------

    # Off by default: every mutating call pays an extra insert when enabled.
    audit_enabled: bool = False
    # 0 disables expiry.
    audit_ttl_seconds: int = Field(default=0, ge=0)
    audit_purge_interval_seconds: int = Field(default=3600, gt=0)

    # ------------------------------------------------------------------
    # Query
    # ------------------------------------------------------------------

    max_fetch_limit: int = Field(default=100, ge=0)

    # ------------------------------------------------------------------
    # Transport
    # ------------------------------------------------------------------

    server_host: str = "127.0.0.1"
    server_port: int = Field(default=8080, gt=0, lt=65536)
    login_rate_limit: str = "10/minute"
    allowed_hosts: list[str] = ["localhost", "127.0.0.1", "*.localhost", "testserver"]
    cors_origins: list[str] = ["http://localhost", "http://localhost:3000", "http://127.0.0.1"]

    # ------------------------------------------------------------------
    # Validators
    # ------------------------------------------------------------------

    @model_validator(mode="before")
    @classmethod
    def fill_dev_secrets(cls, data):
        """Generate missing secrets in dev mode [M7].

        Runs before field validation because the model is frozen -- the
        generated values have to be part of the input, not assigned afterwards.
        """
        if not isinstance(data, dict):
            return data
        debug = str(data.get("debug", data.get("DEBUG", "false"))).lower() in ("1", "true", "yes", "on")
        if not debug:
            return data
        for key in ("jwt_secret", "hash_salt"):
            if not data.get(key) and not data.get(key.upper()):
                data[key] = secrets.token_hex(32)
                logger.warning(
                    "WARNING: Using auto-generated %s. Tokens and passwords will not survive a restart.",
                    key.upper(),
                )
        return data

    @model_validator(mode="after")
    def validate_secrets(self) -> "Settings":
        """Enforce the secret policy [M6][M7].

        Production mode (DEBUG=false or not set): refuse to start if JWT_SECRET
            or HASH_SALT is missing.

        Both modes: reject JWT secrets shorter than 32 characters.
        """
        if not self.jwt_secret or not self.hash_salt:
            raise ValueError(
                "JWT_SECRET and HASH_SALT are required in production mode. "
                "Set them in your environment or .env file. "
                "To run in development mode, set DEBUG=true."
            )
        if len(self.jwt_secret) < 32:
            raise ValueError("JWT_SECRET must be at least 32 characters.")
        return self


@lru_cache
def get_settings() -> Settings:
    """Return the application Settings singleton.

    Uses lru_cache so Settings() is instantiated exactly once -- at first call.
    The lifespan in api/main.py calls this once and hands the instance to every
    component it builds.

    In tests: call get_settings.cache_clear() between test cases if you need
    to inject different environment variables.
    """
    return Settings()
