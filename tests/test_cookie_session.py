from __future__ import annotations

import json
from urllib.parse import unquote

import pytest
from starlette.responses import Response

from arkomik.config import get_settings
from arkomik.security import token_cipher
from arkomik.security.cookies import (
    ACCESS_COOKIE,
    LEGACY_COOKIE_NAMES,
    REFRESH_COOKIE,
    SESSION_COOKIE,
    CookieJar,
    SessionInfo,
    clear_auth_cookies,
    clear_legacy_cookies,
    get_access_token,
    get_refresh_token,
    get_session_cookie,
    set_auth_cookies,
    set_session_cookie,
)
from arkomik.security.token_cipher import (
    TokenCipherError,
    TokenEncryptionError,
    encrypt_token,
    is_encrypted,
)


def _set_cookie_headers(jar: CookieJar) -> dict[str, str]:
    resp = jar.apply(Response())
    out: dict[str, str] = {}
    for h in resp.headers.getlist("set-cookie"):
        name = h.split("=", 1)[0]
        out[name] = h.lower()
    return out


def test_token_lifecycle() -> None:
    jar = CookieJar()
    set_auth_cookies(jar, "acc123", "ref456")

    assert is_encrypted(jar.get(ACCESS_COOKIE))
    assert is_encrypted(jar.get(REFRESH_COOKIE))
    assert jar.get(ACCESS_COOKIE) != "acc123"
    assert get_access_token(jar) == "acc123"
    assert get_refresh_token(jar) == "ref456"

    clear_auth_cookies(jar)
    assert get_access_token(jar) is None
    assert get_refresh_token(jar) is None


def test_cookie_attributes_per_slot() -> None:
    jar = CookieJar()
    set_auth_cookies(jar, "acc123", "ref456")
    set_session_cookie(jar, SessionInfo(user_id="u1", email="a@b.c", username="abc"))
    h = _set_cookie_headers(jar)

    assert "max-age=900" in h[ACCESS_COOKIE]
    assert "max-age=604800" in h[REFRESH_COOKIE]
    assert "max-age=604800" in h[SESSION_COOKIE]
    for name in (ACCESS_COOKIE, REFRESH_COOKIE):
        assert "httponly" in h[name]
        assert "samesite=lax" in h[name]
        assert "path=/" in h[name]
        assert "secure" not in h[name]
    assert "httponly" not in h[SESSION_COOKIE]


def test_secure_flag_follows_config(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("COOKIE_SECURE", "1")
    get_settings.cache_clear()
    jar = CookieJar()
    set_auth_cookies(jar, "acc123", "ref456")
    h = _set_cookie_headers(jar)
    assert "secure" in h[ACCESS_COOKIE]
    assert "secure" in h[REFRESH_COOKIE]


def test_clear_is_idempotent_and_emits_deletes() -> None:
    jar = CookieJar()
    clear_auth_cookies(jar)
    clear_auth_cookies(jar)
    assert get_access_token(jar) is None
    h = _set_cookie_headers(jar)
    assert set(h) == {ACCESS_COOKIE, REFRESH_COOKIE, SESSION_COOKIE}
    for v in h.values():
        assert "max-age=0" in v


def test_incoming_encrypted_cookies_are_read() -> None:
    jar = CookieJar({ACCESS_COOKIE: encrypt_token("acc123"), REFRESH_COOKIE: encrypt_token("ref456")})
    assert get_access_token(jar) == "acc123"
    assert get_refresh_token(jar) == "ref456"


def test_legacy_raw_cookie_passthrough() -> None:
    jar = CookieJar({ACCESS_COOKIE: "eyJhbGciOiJIUzI1NiJ9.e30.sig"})
    assert get_access_token(jar) == "eyJhbGciOiJIUzI1NiJ9.e30.sig"


def test_empty_cookie_is_absent() -> None:
    jar = CookieJar({ACCESS_COOKIE: ""})
    assert get_access_token(jar) is None


def test_tampered_cookie_returns_envelope_unchanged() -> None:
    env = encrypt_token("acc123")
    bad = env[:-1] + ("1" if env[-1] == "0" else "0")
    jar = CookieJar({ACCESS_COOKIE: bad})
    # Undecryptable envelopes come back as-is; the identity provider rejects them.
    assert get_access_token(jar) == bad


def test_session_cookie_is_plain_json() -> None:
    jar = CookieJar()
    set_session_cookie(jar, SessionInfo(user_id="u1", email="reader@example.com", username="reader"))

    raw = jar.get(SESSION_COOKIE)
    assert raw is not None
    assert not is_encrypted(raw)
    assert json.loads(unquote(raw)) == {
        "userId": "u1",
        "email": "reader@example.com",
        "username": "reader",
    }
    info = get_session_cookie(jar)
    assert info is not None
    assert info.user_id == "u1"


def test_session_cookie_garbage_is_ignored() -> None:
    assert get_session_cookie(CookieJar({SESSION_COOKIE: "not-json"})) is None
    assert get_session_cookie(CookieJar()) is None


def test_no_partial_write_when_encryption_fails(monkeypatch: pytest.MonkeyPatch) -> None:
    calls = {"n": 0}
    real = token_cipher.seal

    def flaky_seal(plaintext: str, *, secret: str) -> token_cipher.SealResult:
        calls["n"] += 1
        if calls["n"] == 2:
            return token_cipher.SealResult(ok=False, reason="boom")
        return real(plaintext, secret=secret)

    monkeypatch.setattr(token_cipher, "seal", flaky_seal)
    jar = CookieJar()
    with pytest.raises(TokenEncryptionError):
        set_auth_cookies(jar, "acc123", "ref456")
    assert jar.pending() == {}


def test_legacy_cleanup_leaves_live_cookies() -> None:
    jar = CookieJar()
    removed = clear_legacy_cookies(jar)
    assert removed == list(LEGACY_COOKIE_NAMES)
    assert SESSION_COOKIE not in removed
    assert set(jar.pending()) == set(LEGACY_COOKIE_NAMES)
    assert all(v is None for v in jar.pending().values())


def test_strict_access_read_reports_undecryptable_envelope() -> None:
    env = encrypt_token("acc123")
    bad = env[:-1] + ("1" if env[-1] == "0" else "0")
    jar = CookieJar({ACCESS_COOKIE: bad})
    with pytest.raises(TokenCipherError):
        get_access_token(jar, strict=True)

    assert get_access_token(CookieJar({ACCESS_COOKIE: env}), strict=True) == "acc123"
    # Raw legacy values are still passed through.
    assert get_access_token(CookieJar({ACCESS_COOKIE: "raw-legacy"}), strict=True) == "raw-legacy"
