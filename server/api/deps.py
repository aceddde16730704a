import logging
import time

import httpx
import jwt
from fastapi import Depends, Request, HTTPException, status

from auth.oidc import OidcClient, OidcError
from backend.storage.base import Storage

logger = logging.getLogger(__name__)

SESSION_USER_KEY = "user"


def get_storage(request: Request) -> Storage:
    return request.app.state.storage


def get_oidc(request: Request) -> OidcClient:
    return request.app.state.oidc


def _unauthorized() -> HTTPException:
    return HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Unauthorized")


async def get_current_user_id(
    request: Request,
    oidc: OidcClient = Depends(get_oidc),
) -> str:
    """
    Return the authenticated user's id from the session cookie.

    An expired ID token is renewed with the stored refresh token; any failure
    along the way is a 401.
    """
    session_user = request.session.get(SESSION_USER_KEY)
    if not session_user or not session_user.get("expires_at"):
        raise _unauthorized()

    if time.time() <= session_user["expires_at"]:
        return session_user["id"]

    refresh_token = session_user.get("refresh_token")
    if not refresh_token:
        raise _unauthorized()

    try:
        tokens = await oidc.refresh(refresh_token)
        if tokens.id_token:
            expires_at = (await oidc.claims(tokens.id_token))["exp"]
        else:
            expires_at = int(time.time()) + (tokens.expires_in or 0)
    except (httpx.HTTPError, jwt.PyJWTError, OidcError, KeyError) as e:
        logger.warning(
            "Session refresh failed.",
            extra={"user_id": session_user.get("id"), "error_type": type(e).__name__},
        )
        request.session.pop(SESSION_USER_KEY, None)
        raise _unauthorized()

    request.session[SESSION_USER_KEY] = {
        **session_user,
        "expires_at": expires_at,
        "refresh_token": tokens.refresh_token or refresh_token,
    }
    return session_user["id"]
