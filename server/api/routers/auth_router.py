import logging
from typing import Optional

import httpx
import jwt
from fastapi import APIRouter, Depends, HTTPException, Request, status
from fastapi.responses import RedirectResponse

from api.deps import SESSION_USER_KEY, get_current_user_id, get_oidc, get_storage
from api.schemes import User, UserUpsert
from auth.csrf import generate_state, validate_state
from auth.oidc import OidcClient, OidcError
from backend.storage.base import Storage
from backend.storage.exceptions import StorageError

logger = logging.getLogger(__name__)

REFERRAL_SESSION_KEY = "referral_code"

router = APIRouter()


def _callback_url(request: Request) -> str:
    return str(request.url_for("callback"))


@router.get("/login")
async def login(
    request: Request,
    ref: Optional[str] = None,
    oidc: OidcClient = Depends(get_oidc),
):
    if ref:
        request.session[REFERRAL_SESSION_KEY] = ref
    state = generate_state(request)
    url = await oidc.authorization_url(redirect_uri=_callback_url(request), state=state)
    return RedirectResponse(url=url, status_code=status.HTTP_302_FOUND)


@router.get("/callback", name="callback")
async def callback(
    request: Request,
    code: Optional[str] = None,
    state: Optional[str] = None,
    oidc: OidcClient = Depends(get_oidc),
    storage: Storage = Depends(get_storage),
):
    validate_state(request, state)
    if not code:
        return RedirectResponse(url="/api/login", status_code=status.HTTP_302_FOUND)

    try:
        tokens = await oidc.exchange_code(code, redirect_uri=_callback_url(request))
        claims = await oidc.claims(tokens.id_token)
    except (httpx.HTTPError, jwt.PyJWTError, OidcError) as e:
        logger.warning("Login failed at the identity provider.", extra={"error_type": type(e).__name__})
        return RedirectResponse(url="/api/login", status_code=status.HTTP_302_FOUND)

    subject = claims["sub"]
    referred_by = None
    referral_code = request.session.pop(REFERRAL_SESSION_KEY, None)
    if referral_code:
        referrer = await storage.get_user_by_referral_code(referral_code)
        if referrer is not None and referrer.id != subject:
            referred_by = referrer.id

    try:
        await storage.upsert_user(UserUpsert(
            id=subject,
            email=claims.get("email"),
            first_name=claims.get("first_name"),
            last_name=claims.get("last_name"),
            profile_image_url=claims.get("profile_image_url"),
            referred_by=referred_by,
        ))
    except StorageError:
        logger.exception("Error upserting user.", extra={"user_id": subject})
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail="Authentication failed")

    request.session[SESSION_USER_KEY] = {
        "id": subject,
        "expires_at": claims.get("exp"),
        "refresh_token": tokens.refresh_token,
    }
    logger.info("User logged in.", extra={"user_id": subject})
    return RedirectResponse(url="/", status_code=status.HTTP_302_FOUND)


@router.get("/logout")
async def logout(request: Request, oidc: OidcClient = Depends(get_oidc)):
    request.session.clear()
    try:
        url = await oidc.end_session_url(post_logout_redirect_uri=str(request.base_url))
    except (httpx.HTTPError, OidcError):
        logger.warning("Provider logout URL unavailable.", exc_info=True)
        url = None
    return RedirectResponse(url=url or "/", status_code=status.HTTP_302_FOUND)


@router.get("/auth/user", response_model=User)
async def current_user(
    user_id: str = Depends(get_current_user_id),
    storage: Storage = Depends(get_storage),
):
    user = await storage.get_user(user_id)
    if user is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="User not found")
    return user
