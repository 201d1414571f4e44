from __future__ import annotations

from collections.abc import Iterator

import httpx
import pytest
from fastapi.testclient import TestClient

from arkomik.config import get_settings
from arkomik.identity.client import IdentityClient
from arkomik.server import create_app
from tests._helpers.identity import FakeIdentityProvider

TEST_COOKIE_KEY = "test-cookie-encryption-key-0123456789abcdef"


@pytest.fixture(autouse=True)
def _test_env(monkeypatch: pytest.MonkeyPatch) -> None:
    for name in (
        "ENV",
        "APP_ENV",
        "STRICT_SECRETS",
        "LOG_DIR",
        "ALLOW_PLAINTEXT_TOKEN_FALLBACK",
        "PROTECTED_API_PREFIXES",
        "COOKIE_SAMESITE",
    ):
        monkeypatch.delenv(name, raising=False)
    monkeypatch.setenv("COOKIE_ENCRYPTION_KEY", TEST_COOKIE_KEY)
    monkeypatch.setenv("IDENTITY_API_KEY", "anon-test-key")
    monkeypatch.setenv("IDENTITY_URL", "http://idp.test")
    monkeypatch.setenv("COOKIE_SECURE", "0")
    get_settings.cache_clear()


@pytest.fixture
def idp() -> FakeIdentityProvider:
    p = FakeIdentityProvider()
    p.add_user("reader@example.com", "hunter22", username="reader")
    return p


@pytest.fixture
def client(idp: FakeIdentityProvider) -> Iterator[TestClient]:
    identity = IdentityClient(
        "http://idp.test", api_key="anon-test-key", transport=httpx.MockTransport(idp.handler)
    )
    app = create_app(identity=identity)
    with TestClient(app) as c:
        yield c
