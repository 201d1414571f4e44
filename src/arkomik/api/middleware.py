from __future__ import annotations

import uuid
from collections.abc import Callable
from typing import Any

from fastapi import Request, Response
from fastapi.responses import JSONResponse

from arkomik.config import get_settings
from arkomik.security.cookies import ACCESS_COOKIE
from arkomik.utils.log import set_request_id, set_user_id

SECURITY_HEADERS = {
    "X-Frame-Options": "SAMEORIGIN",
    "X-Content-Type-Options": "nosniff",
    "X-XSS-Protection": "1; mode=block",
    "Referrer-Policy": "strict-origin-when-cross-origin",
}


def _new_request_id() -> str:
    return uuid.uuid4().hex


async def request_context_middleware(
    request: Request, call_next: Callable[[Request], Any]
) -> Response:
    """
    Request-scoped context:
    - Inject X-Request-ID if absent
    - Put request_id/user_id into contextvars so all logs get correlation fields
    """
    rid = request.headers.get("x-request-id") or _new_request_id()
    set_request_id(rid)
    set_user_id(None)
    request.state.request_id = rid
    try:
        resp = await call_next(request)
        resp.headers.setdefault("x-request-id", rid)
        return resp
    finally:
        set_request_id(None)
        set_user_id(None)


def _is_protected(path: str) -> bool:
    return any(path.startswith(p) for p in get_settings().protected_prefix_list())


async def security_middleware(request: Request, call_next: Callable[[Request], Any]) -> Response:
    """
    Cheap pre-check for protected API prefixes (cookie presence only; handlers still
    resolve the token) plus baseline security headers on every response.
    """
    path = request.url.path
    if _is_protected(path) and not request.cookies.get(ACCESS_COOKIE):
        resp: Response = JSONResponse({"error": "Unauthorized"}, status_code=401)
    else:
        resp = await call_next(request)
    resp.headers["x-pathname"] = path
    for k, v in SECURITY_HEADERS.items():
        resp.headers[k] = v
    return resp
