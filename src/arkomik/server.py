from __future__ import annotations

from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from arkomik.api.deps import SessionInvalidError
from arkomik.api.middleware import request_context_middleware, security_middleware
from arkomik.api.routes_auth import router as auth_router
from arkomik.config import get_settings
from arkomik.identity.client import IdentityClient
from arkomik.security.cookies import CookieJar, clear_auth_cookies
from arkomik.utils.log import logger


async def http_error_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    # Clients read `error` from every failure body.
    return JSONResponse(
        {"error": exc.detail},
        status_code=exc.status_code,
        headers=getattr(exc, "headers", None),
    )


async def session_invalid_handler(request: Request, exc: SessionInvalidError) -> JSONResponse:
    jar = CookieJar.from_request(request)
    clear_auth_cookies(jar)
    resp = JSONResponse({"error": exc.message}, status_code=401)
    jar.apply(resp)
    return resp


def create_app(*, identity: IdentityClient | None = None) -> FastAPI:
    """
    Build the app. Pass `identity` to inject a preconfigured client (tests);
    otherwise one is built from settings at startup and closed at shutdown.
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        # Fail fast on unsafe secrets (raises ConfigError in production/strict mode).
        s = get_settings()
        owned = identity is None
        app.state.identity = identity or IdentityClient.from_settings()
        logger.info(
            "server.startup",
            production=s.is_production(),
            secure_cookies=s.secure_cookies(),
            identity_url=str(s.identity_url),
        )
        try:
            yield
        finally:
            if owned:
                await app.state.identity.aclose()
            logger.info("server.shutdown")

    app = FastAPI(title="arkomik auth", lifespan=lifespan)
    app.add_exception_handler(StarletteHTTPException, http_error_handler)
    app.add_exception_handler(SessionInvalidError, session_invalid_handler)
    # Registered last runs first: request context wraps the security layer.
    app.middleware("http")(security_middleware)
    app.middleware("http")(request_context_middleware)
    app.include_router(auth_router)
    return app


app = create_app()
