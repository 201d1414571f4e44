from __future__ import annotations

import pytest
from fastapi.testclient import TestClient

from arkomik.api.middleware import SECURITY_HEADERS
from arkomik.config import get_settings
from arkomik.security.cookies import ACCESS_COOKIE
from arkomik.security.token_cipher import encrypt_token


def test_security_headers_on_every_response(client: TestClient) -> None:
    for r in (client.get("/api/auth/me"), client.get("/nope")):
        for k, v in SECURITY_HEADERS.items():
            assert r.headers.get(k) == v
    assert client.get("/nope").headers.get("x-pathname") == "/nope"


@pytest.mark.parametrize("path", ["/api/bookmarks", "/api/history/42", "/api/profile"])
def test_protected_prefix_requires_access_cookie(client: TestClient, path: str) -> None:
    r = client.get(path)
    assert r.status_code == 401
    assert r.json() == {"error": "Unauthorized"}
    assert r.headers.get("X-Frame-Options") == "SAMEORIGIN"


def test_protected_prefix_passes_with_cookie(client: TestClient) -> None:
    client.cookies.set(ACCESS_COOKIE, encrypt_token("acc-1"))
    # Presence check only; no handler is mounted here.
    assert client.get("/api/bookmarks").status_code == 404


def test_unprotected_paths_pass(client: TestClient) -> None:
    assert client.get("/api/other").status_code == 404


def test_protected_prefixes_configurable(
    client: TestClient, monkeypatch: pytest.MonkeyPatch
) -> None:
    monkeypatch.setenv("PROTECTED_API_PREFIXES", "/api/library")
    get_settings.cache_clear()
    assert client.get("/api/library/1").status_code == 401
    assert client.get("/api/bookmarks").status_code == 404


def test_request_id_echoed_or_generated(client: TestClient) -> None:
    r = client.get("/nope", headers={"x-request-id": "rid-123"})
    assert r.headers.get("x-request-id") == "rid-123"
    generated = client.get("/nope").headers.get("x-request-id")
    assert generated and len(generated) == 32


def test_error_bodies_use_error_key(client: TestClient) -> None:
    r = client.get("/nope")
    assert r.status_code == 404
    assert r.json() == {"error": "Not Found"}
    assert client.get("/api/bookmarks").json() == {"error": "Unauthorized"}
