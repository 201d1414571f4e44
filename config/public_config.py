from __future__ import annotations

from pathlib import Path

from pydantic import AliasChoices, Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class PublicConfig(BaseSettings):
    """
    Non-sensitive config with safe defaults.

    Loaded from (in order):
      - process env
      - optional `.env` file
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # --- runtime environment ---
    app_env: str = Field(default="development", validation_alias=AliasChoices("ENV", "APP_ENV"))
    host: str = Field(default="0.0.0.0", alias="HOST")
    port: int = Field(default=8000, alias="PORT")

    # --- logging ---
    log_level: str = Field(default="INFO", alias="LOG_LEVEL")
    # Unset => stdout only.
    log_dir: Path | None = Field(default=None, alias="LOG_DIR")
    log_max_bytes: int = Field(default=10 * 1024 * 1024, alias="LOG_MAX_BYTES")
    log_backup_count: int = Field(default=5, alias="LOG_BACKUP_COUNT")

    # --- cookies ---
    # None => Secure only in production.
    cookie_secure: bool | None = Field(default=None, alias="COOKIE_SECURE")
    cookie_samesite: str = Field(default="lax", alias="COOKIE_SAMESITE")
    access_token_ttl_sec: int = Field(default=15 * 60, alias="ACCESS_TOKEN_TTL_SEC")
    refresh_token_ttl_sec: int = Field(default=7 * 24 * 3600, alias="REFRESH_TOKEN_TTL_SEC")
    session_cookie_ttl_sec: int = Field(default=7 * 24 * 3600, alias="SESSION_COOKIE_TTL_SEC")
    # Store the raw token when encryption fails. Off by default.
    allow_plaintext_token_fallback: bool = Field(
        default=False, alias="ALLOW_PLAINTEXT_TOKEN_FALLBACK"
    )

    # --- identity provider (GoTrue-compatible auth REST API) ---
    identity_url: str = Field(default="http://127.0.0.1:9999", alias="IDENTITY_URL")
    identity_timeout_sec: float = Field(default=10.0, alias="IDENTITY_TIMEOUT_SEC")

    # API path prefixes that require the access cookie (comma-separated).
    protected_api_prefixes: str = Field(
        default="/api/bookmarks,/api/history,/api/profile", alias="PROTECTED_API_PREFIXES"
    )

    def is_production(self) -> bool:
        return str(self.app_env or "").strip().lower() in {"prod", "production"}

    def protected_prefix_list(self) -> list[str]:
        raw = str(self.protected_api_prefixes or "").strip()
        if not raw:
            return []
        return [p.strip() for p in raw.split(",") if p.strip()]
