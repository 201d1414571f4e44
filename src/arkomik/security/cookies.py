"""
Cookie session boundary.

Three slots:
  - arkomik-access-token   HttpOnly, encrypted, short TTL
  - arkomik-refresh-token  HttpOnly, encrypted, long TTL
  - arkomik-session        script-readable JSON (user id/email/username), never a token

Readers pass raw (pre-encryption) values through so sessions created before
cookie encryption keep working until they expire.
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, replace
from typing import Literal, Protocol
from urllib.parse import quote, unquote

from pydantic import BaseModel, ConfigDict, Field, ValidationError
from starlette.requests import Request
from starlette.responses import Response

from arkomik.config import get_settings
from arkomik.security.token_cipher import decrypt_strict, decrypt_token, encrypt_token, is_encrypted
from arkomik.utils.log import logger

ACCESS_COOKIE = "arkomik-access-token"
REFRESH_COOKIE = "arkomik-refresh-token"
SESSION_COOKIE = "arkomik-session"

AUTH_COOKIE_NAMES = (ACCESS_COOKIE, REFRESH_COOKIE, SESSION_COOKIE)

# Script-readable cookies from before the HttpOnly migration.
LEGACY_COOKIE_NAMES = (
    "arkomik-aut",
    "arkomik-auth",
    "sb-access-token",
    "sb-refresh-token",
)

SameSite = Literal["lax", "strict", "none"]


@dataclass(frozen=True, slots=True)
class CookieOptions:
    httponly: bool = True
    secure: bool = False
    samesite: SameSite = "lax"
    path: str = "/"
    max_age: int | None = None


class SessionInfo(BaseModel):
    """Non-secret user info for client-side display."""

    model_config = ConfigDict(populate_by_name=True)

    user_id: str = Field(alias="userId")
    email: str
    username: str | None = None


def _base_options() -> CookieOptions:
    s = get_settings()
    samesite = str(s.cookie_samesite or "lax").strip().lower()
    if samesite not in {"lax", "strict", "none"}:
        samesite = "lax"
    return CookieOptions(httponly=True, secure=s.secure_cookies(), samesite=samesite, path="/")  # type: ignore[arg-type]


def access_cookie_options() -> CookieOptions:
    return replace(_base_options(), max_age=int(get_settings().access_token_ttl_sec))


def refresh_cookie_options() -> CookieOptions:
    return replace(_base_options(), max_age=int(get_settings().refresh_token_ttl_sec))


def session_cookie_options() -> CookieOptions:
    return replace(
        _base_options(), httponly=False, max_age=int(get_settings().session_cookie_ttl_sec)
    )


class CookieStore(Protocol):
    def get(self, name: str) -> str | None: ...

    def set(self, name: str, value: str, options: CookieOptions) -> None: ...

    def delete(self, name: str, options: CookieOptions | None = None) -> None: ...


class CookieJar:
    """
    Request-scoped cookie storage.

    Reads see this request's own writes first, then the incoming cookies.
    Writes are queued and flushed onto a response with `apply()`.
    """

    def __init__(self, cookies: Mapping[str, str] | None = None) -> None:
        self._incoming: dict[str, str] = dict(cookies or {})
        # name -> (value or None for delete, options)
        self._pending: dict[str, tuple[str | None, CookieOptions]] = {}

    @classmethod
    def from_request(cls, request: Request) -> CookieJar:
        return cls(request.cookies)

    def get(self, name: str) -> str | None:
        if name in self._pending:
            return self._pending[name][0]
        return self._incoming.get(name) or None

    def set(self, name: str, value: str, options: CookieOptions) -> None:
        self._pending[name] = (str(value), options)

    def delete(self, name: str, options: CookieOptions | None = None) -> None:
        self._pending[name] = (None, options or _base_options())

    def pending(self) -> dict[str, str | None]:
        return {k: v for k, (v, _) in self._pending.items()}

    def apply(self, response: Response) -> Response:
        for name, (value, opts) in self._pending.items():
            if value is None:
                response.delete_cookie(
                    name,
                    path=opts.path,
                    secure=opts.secure,
                    httponly=opts.httponly,
                    samesite=opts.samesite,
                )
            else:
                response.set_cookie(
                    name,
                    value,
                    max_age=opts.max_age,
                    path=opts.path,
                    secure=opts.secure,
                    httponly=opts.httponly,
                    samesite=opts.samesite,
                )
        return response


def set_auth_cookies(store: CookieStore, access_token: str, refresh_token: str) -> None:
    """
    Encrypt and store the token pair. Both are encrypted before either is written,
    so an encryption failure leaves the store untouched.
    """
    enc_access = encrypt_token(access_token)
    enc_refresh = encrypt_token(refresh_token)
    store.set(ACCESS_COOKIE, enc_access, access_cookie_options())
    store.set(REFRESH_COOKIE, enc_refresh, refresh_cookie_options())
    logger.info("auth.cookies_set", encrypted=is_encrypted(enc_access) and is_encrypted(enc_refresh))


def _read_token(store: CookieStore, name: str, *, strict: bool = False) -> str | None:
    raw = store.get(name)
    if not raw:
        return None
    if is_encrypted(raw):
        if strict:
            return decrypt_strict(raw, secret=get_settings().cookie_secret())
        return decrypt_token(raw)
    # Legacy raw token written before cookie encryption.
    return raw


def get_access_token(store: CookieStore, *, strict: bool = False) -> str | None:
    """
    Plaintext access token, or None when absent.

    With `strict=True` an envelope that does not decrypt raises TokenCipherError
    instead of being handed back unchanged.
    """
    return _read_token(store, ACCESS_COOKIE, strict=strict)


def get_refresh_token(store: CookieStore) -> str | None:
    return _read_token(store, REFRESH_COOKIE)


def clear_auth_cookies(store: CookieStore) -> None:
    store.delete(ACCESS_COOKIE, access_cookie_options())
    store.delete(REFRESH_COOKIE, refresh_cookie_options())
    store.delete(SESSION_COOKIE, session_cookie_options())


def clear_legacy_cookies(store: CookieStore) -> list[str]:
    opts = replace(_base_options(), httponly=False)
    for name in LEGACY_COOKIE_NAMES:
        store.delete(name, opts)
    return list(LEGACY_COOKIE_NAMES)


def set_session_cookie(store: CookieStore, info: SessionInfo) -> None:
    raw = info.model_dump_json(by_alias=True, exclude_none=True)
    store.set(SESSION_COOKIE, quote(raw, safe=""), session_cookie_options())


def get_session_cookie(store: CookieStore) -> SessionInfo | None:
    raw = store.get(SESSION_COOKIE)
    if not raw:
        return None
    try:
        return SessionInfo.model_validate_json(unquote(raw))
    except ValidationError:
        return None
