"""
core/config.py -- Gateway configuration, loaded once from the environment.

Every environment variable the gateway reads is declared on Settings below.
Other modules call get_settings(); none of them touch os.environ.

How it is loaded:
  get_settings() is wrapped in lru_cache, so the first call builds Settings
      and every later call returns that same object.

  pydantic-settings maps each field to an upper-case variable (tool_urls ->
      TOOL_URLS) and also reads a .env file when present. Dict and list
      fields (TOOL_URLS, GITHUB_ALLOWED_ORGS, ALLOWED_HOSTS) are JSON.

  The after-validator settles SECRET_KEY: generated in dev mode, required
      otherwise.

Security notes:
  [M6] SECRET_KEY shorter than 32 chars is rejected outright. The local session
       credential is HS256 -- its strength is the key's entropy.

  [M7] Without DEBUG=true a missing SECRET_KEY stops startup. A random key
       would silently invalidate every session on restart.

Layer rule: core/ is the kernel. This module may not import from api/, auth/,
portal/, or cache/.
"""

import logging
import secrets
from functools import lru_cache

from pydantic import model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger("gateway.config")


class Settings(BaseSettings):
    """Gateway settings loaded from environment variables and .env file.

    All fields have defaults so Settings() can be instantiated in test
    environments without a real .env file.
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
    allowed_hosts: list[str] = ["*"]

    # ------------------------------------------------------------------
    # Sessions
    # ------------------------------------------------------------------

    secure_cookies: bool = True
    session_cookie_name: str = "session"
    session_ttl_seconds: int = 60 * 60 * 24

    # Password login. An empty password disables the route (always 401).
    admin_password: str = ""
    admin_subject: str = "Sunyata"

    # ------------------------------------------------------------------
    # GitHub OAuth (code exchange happens server-side)
    # ------------------------------------------------------------------

    github_client_id: str = ""
    github_client_secret: str = ""
    github_allowed_orgs: list[str] = ["metacogna-lab", "pratejratech", "PratejraTech"]

    # ------------------------------------------------------------------
    # Federated credentials (enterprise IdP, RS256 + JWKS)
    # Empty issuer means the federated verifier is disabled.
    # ------------------------------------------------------------------

    federated_issuer: str = ""
    federated_audience: str = ""
    federated_jwks_url: str = ""
    federated_role_claim: str = "role"
    jwks_ttl_seconds: int = 60 * 60

    # ------------------------------------------------------------------
    # SSO launches
    # ------------------------------------------------------------------

    # Provider name -> external tool URL, e.g. {"notion": "https://notion.so/acme"}
    tool_urls: dict[str, str] = {}
    sso_state_ttl_seconds: int = 600

    # ------------------------------------------------------------------
    # Integrations
    # ------------------------------------------------------------------

    linear_api_key: str = ""
    notion_token: str = ""
    integration_cache_ttl_seconds: int = 5 * 60
    http_timeout_seconds: float = 10.0

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------

    # Empty means the module-local SQLite default (see portal/documents.py).
    database_url: str = ""
    cache_db_path: str = ""
    seed_demo_data: bool = True

    # ------------------------------------------------------------------
    # Policy
    # ------------------------------------------------------------------

    goals_visible_to_clients: bool = True
    login_rate_limit: str = "10/minute"
    webhook_secret: str = ""

    # ------------------------------------------------------------------
    # Validators
    # ------------------------------------------------------------------

    @model_validator(mode="after")
    def validate_secret_key(self) -> "Settings":
        """Enforce SECRET_KEY policy [M7].

        Dev mode (DEBUG=true): auto-generate a random key with a warning.
            Sessions will not survive restart -- acceptable for local dev.

        Production mode (DEBUG=false or not set): refuse to start if
            SECRET_KEY is missing.

        Both modes: reject keys shorter than 32 characters [M6].
        """
        if not self.secret_key:
            if self.debug:
                self.secret_key = secrets.token_hex(32)
                logger.warning("WARNING: Using auto-generated SECRET_KEY. Sessions will not persist across restarts.")
            else:
                raise ValueError(
                    "SECRET_KEY is required in production mode. "
                    "Set SECRET_KEY in your environment or .env file. "
                    "To run in development mode, set DEBUG=true."
                )
        if len(self.secret_key) < 32:
            raise ValueError("SECRET_KEY must be at least 32 characters.")
        return self

    @property
    def federated_enabled(self) -> bool:
        return bool(self.federated_issuer and self.federated_audience and self.federated_jwks_url)

    @property
    def github_enabled(self) -> bool:
        return bool(self.github_client_id and self.github_client_secret)


@lru_cache
def get_settings() -> Settings:
    """Return the application Settings singleton.

    In tests: call get_settings.cache_clear() between test cases if you need
    to inject different environment variables.
    """
    return Settings()
