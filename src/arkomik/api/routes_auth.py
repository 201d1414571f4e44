from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Depends, HTTPException, Request, Response
from fastapi.responses import JSONResponse

from arkomik.api.deps import current_user, get_cookie_jar, get_identity
from arkomik.identity.client import IdentityClient, IdentityError, IdentityUser, TokenSession
from arkomik.security.cookies import (
    CookieJar,
    SessionInfo,
    clear_auth_cookies,
    clear_legacy_cookies,
    get_access_token,
    get_refresh_token,
    set_auth_cookies,
    set_session_cookie,
)
from arkomik.security.token_cipher import TokenEncryptionError
from arkomik.utils.log import logger, set_user_id

router = APIRouter(prefix="/api/auth", tags=["auth"])


async def _read_json(request: Request) -> dict[str, Any]:
    try:
        raw = await request.json()
    except ValueError:
        raise HTTPException(status_code=400, detail="Invalid JSON") from None
    if not isinstance(raw, dict):
        raise HTTPException(status_code=400, detail="Invalid JSON")
    return raw


def _user_payload(user: IdentityUser, *, username: str | None = None) -> dict[str, Any]:
    return {
        "id": user.id,
        "email": user.email,
        "username": username or user.username,
        "avatar_url": user.avatar_url,
    }


def _start_session(jar: CookieJar, sess: TokenSession, *, username: str | None = None) -> None:
    """
    Write the encrypted token pair and the display-only session cookie.
    Raises HTTPException(503) if the tokens cannot be encrypted; nothing is written then.
    """
    try:
        set_auth_cookies(jar, sess.access_token, sess.refresh_token)
    except TokenEncryptionError:
        raise HTTPException(status_code=503, detail="Session unavailable") from None
    if sess.user is not None:
        set_session_cookie(
            jar,
            SessionInfo(
                user_id=sess.user.id,
                email=sess.user.email or "",
                username=username or sess.user.username,
            ),
        )


@router.post("/login")
async def login(
    request: Request,
    jar: CookieJar = Depends(get_cookie_jar),
    identity: IdentityClient = Depends(get_identity),
) -> Response:
    body = await _read_json(request)
    email = str(body.get("email") or "").strip()
    password = str(body.get("password") or "")
    if not email or not password:
        raise HTTPException(status_code=400, detail="Email and password are required")

    try:
        sess = await identity.sign_in_with_password(email, password)
    except IdentityError as ex:
        logger.info("auth.login_failed", status=ex.status_code)
        if ex.status_code >= 500:
            raise HTTPException(status_code=503, detail="Identity provider unavailable") from None
        raise HTTPException(status_code=401, detail="Invalid email or password") from None
    if sess.user is None:
        raise HTTPException(status_code=500, detail="Failed to create session")

    _start_session(jar, sess)
    set_user_id(sess.user.id)
    logger.info("auth.login_ok")
    return jar.apply(JSONResponse({"success": True, "user": _user_payload(sess.user)}))


@router.post("/register")
async def register(
    request: Request,
    jar: CookieJar = Depends(get_cookie_jar),
    identity: IdentityClient = Depends(get_identity),
) -> Response:
    body = await _read_json(request)
    email = str(body.get("email") or "").strip()
    password = str(body.get("password") or "")
    username = str(body.get("username") or "").strip()
    if not email or not password or not username:
        raise HTTPException(status_code=400, detail="Email, password, and username are required")

    try:
        sess = await identity.sign_up(email, password, username=username)
    except IdentityError as ex:
        logger.info("auth.register_failed", status=ex.status_code)
        if ex.status_code == 503:
            raise HTTPException(status_code=503, detail="Identity provider unavailable") from None
        if ex.status_code >= 500:
            # Includes sign-ups that return a user but no session (email confirmation).
            raise HTTPException(status_code=500, detail="Failed to create user") from None
        raise HTTPException(status_code=400, detail=ex.message) from None
    if sess.user is None:
        raise HTTPException(status_code=500, detail="Failed to create user")

    _start_session(jar, sess, username=username)
    set_user_id(sess.user.id)
    logger.info("auth.register_ok")
    return jar.apply(
        JSONResponse({"success": True, "user": _user_payload(sess.user, username=username)})
    )


@router.post("/refresh")
async def refresh(
    jar: CookieJar = Depends(get_cookie_jar),
    identity: IdentityClient = Depends(get_identity),
) -> Response:
    rt = get_refresh_token(jar)
    if not rt:
        raise HTTPException(status_code=401, detail="No refresh token found")

    try:
        sess = await identity.refresh_session(rt)
        set_auth_cookies(jar, sess.access_token, sess.refresh_token)
    except IdentityError as ex:
        logger.info("auth.refresh_failed", status=ex.status_code)
        clear_auth_cookies(jar)
        return jar.apply(JSONResponse({"error": "Failed to refresh token"}, status_code=401))
    except TokenEncryptionError:
        clear_auth_cookies(jar)
        return jar.apply(JSONResponse({"error": "Session unavailable"}, status_code=503))

    logger.info("auth.refresh_ok")
    return jar.apply(JSONResponse({"success": True, "expiresAt": sess.expires_at}))


@router.post("/logout")
async def logout(
    jar: CookieJar = Depends(get_cookie_jar),
    identity: IdentityClient = Depends(get_identity),
) -> Response:
    token = get_access_token(jar)
    if token:
        try:
            await identity.sign_out(token)
        except IdentityError as ex:
            # Cookies are cleared regardless.
            logger.info("auth.logout_provider_failed", status=ex.status_code)
    clear_auth_cookies(jar)
    logger.info("auth.logout")
    return jar.apply(JSONResponse({"success": True, "message": "Logged out successfully"}))


@router.get("/me")
async def me(user: IdentityUser = Depends(current_user)) -> dict[str, Any]:
    payload = _user_payload(user)
    payload["created_at"] = user.created_at
    return {"user": payload}


@router.post("/cleanup")
async def cleanup(jar: CookieJar = Depends(get_cookie_jar)) -> Response:
    removed = clear_legacy_cookies(jar)
    logger.info("auth.legacy_cookies_cleared", count=len(removed))
    return jar.apply(JSONResponse({"success": True, "message": "Old auth cookies removed"}))
