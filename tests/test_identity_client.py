from __future__ import annotations

import asyncio
import json
from typing import Any

import httpx
import pytest

from arkomik.identity import client as client_mod
from arkomik.identity.client import IdentityClient, IdentityError
from arkomik.utils.log import REDACTED
from tests._helpers.identity import FakeIdentityProvider


class _RecordingLogger:
    def __init__(self) -> None:
        self.events: list[tuple[str, dict[str, Any]]] = []

    def info(self, event: str, **kw: Any) -> None:
        self.events.append((event, kw))

    warning = info


def _client(idp: FakeIdentityProvider) -> IdentityClient:
    return IdentityClient(
        "http://idp.test", api_key="anon-test-key", transport=httpx.MockTransport(idp.handler)
    )


def test_rejection_logs_redacted_request_headers(
    idp: FakeIdentityProvider, monkeypatch: pytest.MonkeyPatch
) -> None:
    rec = _RecordingLogger()
    monkeypatch.setattr(client_mod, "logger", rec)

    async def run() -> IdentityError:
        c = _client(idp)
        try:
            with pytest.raises(IdentityError) as ei:
                await c.get_user("acc-not-issued")
            return ei.value
        finally:
            await c.aclose()

    err = asyncio.run(run())
    assert err.status_code == 401
    assert err.message == "invalid JWT"

    (event, kw), = [e for e in rec.events if e[0] == "identity.rejected"]
    assert kw["status"] == 401
    headers = kw["request_headers"]
    assert headers["authorization"] == REDACTED
    assert headers["apikey"] == REDACTED
    text = json.dumps(kw)
    assert "acc-not-issued" not in text
    assert "anon-test-key" not in text


def test_transport_error_maps_to_503(idp: FakeIdentityProvider) -> None:
    idp.down = True

    async def run() -> IdentityError:
        c = _client(idp)
        try:
            with pytest.raises(IdentityError) as ei:
                await c.sign_in_with_password("reader@example.com", "hunter22")
            return ei.value
        finally:
            await c.aclose()

    assert asyncio.run(run()).status_code == 503


def test_signup_without_session_is_an_error(idp: FakeIdentityProvider) -> None:
    idp.confirm_email = True

    async def run() -> IdentityError:
        c = _client(idp)
        try:
            with pytest.raises(IdentityError) as ei:
                await c.sign_up("pending@example.com", "pw123456", username="pending")
            return ei.value
        finally:
            await c.aclose()

    assert asyncio.run(run()).status_code == 502
