"""Auth0 login flow and the request identity dependencies.

Identity comes only from the signed session cookie written by the OAuth
callback. Client-supplied user ids are never trusted. The authorization
code flow runs through Authlib, which keeps the `state` and `nonce` in the
session and verifies the ID token against the tenant's published keys.
"""

import logging
import time
from functools import lru_cache
from typing import Optional
from urllib.parse import urlencode

import httpx
from authlib.integrations.base_client import MismatchingStateError, OAuthError
from authlib.integrations.starlette_client import OAuth
from authlib.jose.errors import JoseError
from fastapi import APIRouter, Depends, HTTPException, Request
from fastapi.responses import RedirectResponse
from pydantic import BaseModel

from canvaschat.config import settings

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/auth", tags=["auth"])

SESSION_USER_KEY = "user"
SESSION_EXPIRES_KEY = "expires_at"
DEFAULT_SESSION_SECONDS = 86400


class CurrentUser(BaseModel):
    sub: str
    name: Optional[str] = None
    email: Optional[str] = None
    picture: Optional[str] = None


def get_optional_user(request: Request) -> CurrentUser | None:
    data = request.session.get(SESSION_USER_KEY)
    if not data or not data.get("sub"):
        return None
    expires_at = request.session.get(SESSION_EXPIRES_KEY)
    if expires_at and time.time() > expires_at:
        return None
    return CurrentUser(
        sub=data["sub"],
        name=data.get("name"),
        email=data.get("email"),
        picture=data.get("picture"),
    )


def get_current_user(user: CurrentUser | None = Depends(get_optional_user)) -> CurrentUser:
    if user is None:
        raise HTTPException(
            status_code=401,
            detail="You must be logged in to access this resource",
        )
    return user


@lru_cache(maxsize=4)
def _oauth_registry(domain: str, client_id: str, client_secret: str) -> OAuth:
    oauth = OAuth()
    oauth.register(
        name="auth0",
        server_metadata_url=f"https://{domain}/.well-known/openid-configuration",
        client_id=client_id,
        client_secret=client_secret,
        client_kwargs={"scope": "openid profile email"},
    )
    return oauth


def get_auth0_client():
    """Authlib client for the configured tenant; 500 when Auth0 is not configured."""
    if not (settings.auth0_domain and settings.auth0_client_id and settings.app_base_url):
        raise HTTPException(status_code=500, detail="Missing Auth0 configuration")
    oauth = _oauth_registry(
        settings.auth0_domain, settings.auth0_client_id, settings.auth0_client_secret,
    )
    return oauth.auth0


def _callback_url() -> str:
    return f"{settings.app_base_url.rstrip('/')}/api/auth/callback"


@router.get("/login")
async def login(request: Request):
    auth0 = get_auth0_client()
    return await auth0.authorize_redirect(request, _callback_url())


@router.get("/callback")
async def callback(request: Request, code: str | None = None):
    auth0 = get_auth0_client()
    if not code:
        raise HTTPException(status_code=400, detail="Missing authorization code")

    try:
        token = await auth0.authorize_access_token(request)
    except MismatchingStateError:
        logger.warning("Rejected login callback with missing or unknown state")
        raise HTTPException(status_code=400, detail="Invalid login state")
    except JoseError as e:
        logger.warning("Rejected login callback with an invalid ID token: %s", e)
        raise HTTPException(status_code=401, detail="Invalid ID token")
    except OAuthError as e:
        logger.error("Token exchange failed: %s", e)
        raise HTTPException(status_code=500, detail="Token exchange failed")
    except (httpx.HTTPError, KeyError, ValueError):
        logger.exception("Callback processing error")
        raise HTTPException(status_code=500, detail="Callback processing failed")

    profile = token.get("userinfo")
    if not profile or not profile.get("sub"):
        logger.error("Token response carried no verified user info")
        raise HTTPException(status_code=500, detail="User info fetch failed")

    request.session[SESSION_USER_KEY] = {
        "sub": profile["sub"],
        "name": profile.get("name"),
        "email": profile.get("email"),
        "picture": profile.get("picture"),
    }
    try:
        lifetime = int(token.get("expires_in", DEFAULT_SESSION_SECONDS))
    except (TypeError, ValueError):
        lifetime = DEFAULT_SESSION_SECONDS
    request.session[SESSION_EXPIRES_KEY] = time.time() + lifetime
    return RedirectResponse(settings.app_base_url)


@router.get("/logout")
def logout(request: Request):
    get_auth0_client()
    request.session.clear()
    query = urlencode({"client_id": settings.auth0_client_id, "returnTo": settings.app_base_url})
    return RedirectResponse(f"https://{settings.auth0_domain}/v2/logout?{query}")
