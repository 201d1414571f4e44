from __future__ import annotations

import os
import secrets
from dataclasses import dataclass
from functools import lru_cache
from typing import Any

from pydantic import SecretStr

from .public_config import PublicConfig
from .secret_config import SecretConfig

MIN_COOKIE_KEY_LEN = 32

# Used only outside production when COOKIE_ENCRYPTION_KEY is unset; one per process.
_EPHEMERAL_COOKIE_KEY = secrets.token_urlsafe(48)


class ConfigError(RuntimeError):
    pass


@dataclass(frozen=True, slots=True)
class Settings:
    """
    Merged settings view (dot-access).

    Precedence:
      - secrets override public when names overlap
    """

    public: PublicConfig
    secret: SecretConfig

    def __getattr__(self, name: str) -> Any:
        if hasattr(self.secret, name):
            return getattr(self.secret, name)
        return getattr(self.public, name)

    def is_production(self) -> bool:
        return self.public.is_production()

    def secure_cookies(self) -> bool:
        if self.public.cookie_secure is None:
            return self.is_production()
        return bool(self.public.cookie_secure)

    def cookie_secret(self) -> str:
        """
        Shared secret for the cookie cipher.
        Falls back to the per-process ephemeral key (only reachable when validation allowed it).
        """
        val = _secret_value(self.secret.cookie_encryption_key)
        return val or _EPHEMERAL_COOKIE_KEY

    def has_cookie_secret(self) -> bool:
        return bool(_secret_value(self.secret.cookie_encryption_key))


def _secret_value(secret: SecretStr | None) -> str:
    try:
        return secret.get_secret_value() if secret else ""
    except Exception:
        return ""


def _is_strict() -> bool:
    return bool(int(os.environ.get("STRICT_SECRETS", "0") or "0"))


def _validate_secrets(s: Settings) -> None:
    """
    Hard-fail in production (or with STRICT_SECRETS=1); warn otherwise.
    """
    import logging

    prod = s.is_production()
    strict = _is_strict()

    weak: list[str] = []
    key = _secret_value(s.secret.cookie_encryption_key)
    if not key or len(key) < MIN_COOKIE_KEY_LEN:
        weak.append("COOKIE_ENCRYPTION_KEY")

    if prod:
        if not s.secure_cookies():
            weak.append("COOKIE_SECURE")
        samesite = str(s.public.cookie_samesite or "lax").strip().lower()
        if samesite not in {"lax", "strict"}:
            weak.append("COOKIE_SAMESITE")
        if not _secret_value(s.secret.identity_api_key):
            weak.append("IDENTITY_API_KEY")

    if weak:
        if prod or strict:
            raise ConfigError(
                "Unsafe security configuration detected: "
                + ", ".join(sorted(set(weak)))
                + ". Set them via environment variables or `.env.secrets`."
            )
        logging.getLogger("arkomik").warning(
            "weak_secrets_detected",
            extra={
                "weak": sorted(set(weak)),
                "strict_secrets": False,
                "production": prod,
                "ephemeral_cookie_key": not s.has_cookie_secret(),
            },
        )


def get_safe_config_report() -> dict[str, Any]:
    """
    Deterministic, non-sensitive config report.

    - Public values are included (paths are stringified)
    - Secret values are NEVER included; only SET/UNSET markers
    """
    s = get_settings()

    pub = s.public.model_dump()
    pub_s: dict[str, Any] = {}
    for k, v in pub.items():
        pub_s[k] = str(v) if hasattr(v, "__fspath__") else v

    sec: dict[str, str] = {}
    for k in sorted(type(s.secret).model_fields.keys()):
        v = getattr(s.secret, k, None)
        if v is None:
            sec[k] = "UNSET"
        elif isinstance(v, SecretStr):
            sec[k] = "SET" if v.get_secret_value() else "UNSET"
        else:
            sec[k] = "SET" if str(v).strip() else "UNSET"

    return {
        "strict_secrets": _is_strict(),
        "production": s.is_production(),
        "secure_cookies": s.secure_cookies(),
        "public": pub_s,
        "secrets": sec,
    }


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    public = PublicConfig()
    secret = SecretConfig()
    s = Settings(public=public, secret=secret)
    _validate_secrets(s)
    return s


class _SettingsProxy:
    """
    Lazy proxy so tests can set env vars before first access.
    """

    def __getattr__(self, name: str) -> Any:
        return getattr(get_settings(), name)

    def reload(self) -> None:
        get_settings.cache_clear()

    def snapshot(self) -> Settings:
        return get_settings()


# Single access point
SETTINGS = _SettingsProxy()
