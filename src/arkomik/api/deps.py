from __future__ import annotations

from fastapi import Depends, HTTPException, Request

from arkomik.identity.client import IdentityClient, IdentityError, IdentityUser
from arkomik.security.cookies import CookieJar, get_access_token
from arkomik.security.token_cipher import TokenCipherError
from arkomik.utils.log import logger, set_user_id


class SessionInvalidError(RuntimeError):
    """
    The stored session can no longer be used (e.g. the access envelope does not decrypt).
    Rendered as a 401 that also clears the auth cookies.
    """

    def __init__(self, message: str = "Invalid token") -> None:
        super().__init__(message)
        self.message = message


def get_identity(request: Request) -> IdentityClient:
    client = getattr(request.app.state, "identity", None)
    if client is None:
        raise HTTPException(status_code=500, detail="Identity client not initialized")
    return client


def get_cookie_jar(request: Request) -> CookieJar:
    return CookieJar.from_request(request)


async def current_user(
    jar: CookieJar = Depends(get_cookie_jar),
    identity: IdentityClient = Depends(get_identity),
) -> IdentityUser:
    try:
        token = get_access_token(jar, strict=True)
    except TokenCipherError as ex:
        logger.warning("auth.session_undecryptable", reason=type(ex).__name__)
        raise SessionInvalidError() from None
    if not token:
        raise HTTPException(status_code=401, detail="Not authenticated")
    try:
        user = await identity.get_user(token)
    except IdentityError:
        raise HTTPException(status_code=401, detail="Invalid token") from None
    set_user_id(user.id)
    return user
