from __future__ import annotations

from pydantic import Field, SecretStr
from pydantic_settings import BaseSettings, SettingsConfigDict


class SecretConfig(BaseSettings):
    """
    Sensitive config.

    This module is safe to commit: it contains *no* secrets, only loading logic.
    Real secret values should come from:
      - environment variables (preferred in production)
      - optional local `.env.secrets` file (developer convenience)
    """

    model_config = SettingsConfigDict(
        env_file=".env.secrets",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Shared secret the cookie encryption key is derived from (>= 32 chars).
    cookie_encryption_key: SecretStr | None = Field(default=None, alias="COOKIE_ENCRYPTION_KEY")

    # Public "anon" key of the identity provider, sent as the `apikey` header.
    identity_api_key: SecretStr | None = Field(default=None, alias="IDENTITY_API_KEY")
