from __future__ import annotations

from typing import Any

import httpx
from pydantic import BaseModel, Field, ValidationError

from arkomik.config import get_settings
from arkomik.utils.log import logger, safe_log_data


class IdentityError(RuntimeError):
    def __init__(self, status_code: int, message: str) -> None:
        super().__init__(message)
        self.status_code = int(status_code)
        self.message = str(message)


class IdentityUser(BaseModel):
    id: str
    email: str | None = None
    user_metadata: dict[str, Any] = Field(default_factory=dict)
    created_at: str | None = None

    @property
    def username(self) -> str | None:
        v = self.user_metadata.get("username")
        return str(v) if v else None

    @property
    def avatar_url(self) -> str | None:
        v = self.user_metadata.get("avatar_url")
        return str(v) if v else None


class TokenSession(BaseModel):
    access_token: str
    refresh_token: str
    token_type: str = "bearer"
    expires_in: int | None = None
    expires_at: int | None = None
    user: IdentityUser | None = None


def _error_message(resp: httpx.Response) -> str:
    try:
        data = resp.json()
    except ValueError:
        return resp.reason_phrase or f"HTTP {resp.status_code}"
    if isinstance(data, dict):
        for k in ("error_description", "msg", "message", "error"):
            if data.get(k):
                return str(data[k])
    return resp.reason_phrase or f"HTTP {resp.status_code}"


class IdentityClient:
    """
    Async client for a GoTrue-compatible auth REST API.

    Only ever handed plaintext tokens; cookie encryption happens before/after.
    """

    def __init__(
        self,
        base_url: str,
        *,
        api_key: str | None = None,
        timeout: float = 10.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        headers = {"accept": "application/json"}
        if api_key:
            headers["apikey"] = api_key
        self._client = httpx.AsyncClient(
            base_url=str(base_url).rstrip("/"),
            headers=headers,
            timeout=timeout,
            transport=transport,
        )

    @classmethod
    def from_settings(cls, *, transport: httpx.AsyncBaseTransport | None = None) -> IdentityClient:
        s = get_settings()
        api_key = s.identity_api_key.get_secret_value() if s.identity_api_key else None
        return cls(
            s.identity_url,
            api_key=api_key,
            timeout=float(s.identity_timeout_sec),
            transport=transport,
        )

    async def aclose(self) -> None:
        await self._client.aclose()

    async def _request(
        self,
        method: str,
        path: str,
        *,
        bearer: str | None = None,
        params: dict[str, str] | None = None,
        json: dict[str, Any] | None = None,
    ) -> httpx.Response:
        headers = {"authorization": f"Bearer {bearer}"} if bearer else None
        try:
            resp = await self._client.request(method, path, params=params, json=json, headers=headers)
        except httpx.RequestError as ex:
            logger.warning("identity.request_failed", path=path, error=type(ex).__name__)
            raise IdentityError(503, "Identity provider unavailable") from ex
        if resp.status_code >= 400:
            msg = _error_message(resp)
            logger.info(
                "identity.rejected",
                path=path,
                status=resp.status_code,
                request_headers=safe_log_data(dict(resp.request.headers)),
            )
            raise IdentityError(resp.status_code, msg)
        return resp

    @staticmethod
    def _session(resp: httpx.Response) -> TokenSession:
        try:
            return TokenSession.model_validate(resp.json())
        except (ValueError, ValidationError) as ex:
            raise IdentityError(502, "Identity provider returned no session") from ex

    async def sign_in_with_password(self, email: str, password: str) -> TokenSession:
        resp = await self._request(
            "POST",
            "/token",
            params={"grant_type": "password"},
            json={"email": email, "password": password},
        )
        return self._session(resp)

    async def sign_up(self, email: str, password: str, *, username: str) -> TokenSession:
        resp = await self._request(
            "POST",
            "/signup",
            json={"email": email, "password": password, "data": {"username": username}},
        )
        # Email-confirmation setups return the bare user with no tokens.
        return self._session(resp)

    async def refresh_session(self, refresh_token: str) -> TokenSession:
        resp = await self._request(
            "POST",
            "/token",
            params={"grant_type": "refresh_token"},
            json={"refresh_token": refresh_token},
        )
        return self._session(resp)

    async def get_user(self, access_token: str) -> IdentityUser:
        resp = await self._request("GET", "/user", bearer=access_token)
        try:
            return IdentityUser.model_validate(resp.json())
        except (ValueError, ValidationError) as ex:
            raise IdentityError(502, "Identity provider returned no user") from ex

    async def sign_out(self, access_token: str) -> None:
        await self._request("POST", "/logout", bearer=access_token)
