"""Session resolution against the hosted identity provider."""

from typing import Awaitable, Callable, Optional
from fastapi import APIRouter, HTTPException, Request, Response
from pydantic import BaseModel
import httpx

from .config import (
    IDENTITY_ENDPOINT,
    IDENTITY_PROJECT_ID,
    AUTH_TIMEOUT,
    logger,
)

router = APIRouter(prefix="/auth", tags=["auth"])

SESSION_COOKIE = "session"

# Session duration: 30 days
SESSION_DURATION = 30 * 24 * 60 * 60


class SessionRequest(BaseModel):
    secret: str


def get_session_token(request: Request) -> Optional[str]:
    """Extract session token from cookie or Authorization header."""
    # Try cookie first
    token = request.cookies.get(SESSION_COOKIE)
    if token:
        return token
    # Fall back to Authorization header
    auth_header = request.headers.get("Authorization")
    if auth_header and auth_header.startswith("Bearer "):
        return auth_header[7:]
    return None


async def lookup_user_id(token: str, from_cookie: bool) -> Optional[str]:
    """Ask the identity provider who owns a session secret (cookie) or JWT (header)."""
    headers = {"X-Appwrite-Project": IDENTITY_PROJECT_ID}
    if from_cookie:
        headers["X-Appwrite-Session"] = token
    else:
        headers["X-Appwrite-JWT"] = token

    try:
        async with httpx.AsyncClient(timeout=AUTH_TIMEOUT) as client:
            response = await client.get(f"{IDENTITY_ENDPOINT}/account", headers=headers)
    except httpx.HTTPError as e:
        logger.warning(f"Identity provider unreachable: {e}")
        return None

    if response.status_code != 200:
        logger.warning(f"Session rejected by identity provider: {response.status_code}")
        return None

    return response.json().get("$id")


async def get_current_user(request: Request) -> Optional[str]:
    """Resolve the request's user id. None means guest."""
    token = get_session_token(request)
    if not token:
        return None
    return await lookup_user_id(token, from_cookie=SESSION_COOKIE in request.cookies)


UserResolver = Callable[[], Awaitable[Optional[str]]]


def get_user_resolver(request: Request) -> UserResolver:
    """Defer the identity lookup so a route can validate its input first."""
    async def resolve() -> Optional[str]:
        return await get_current_user(request)
    return resolve


@router.get("/status")
async def auth_status(request: Request):
    """Check authentication status."""
    user_id = await get_current_user(request)
    return {
        "authenticated": user_id is not None,
        "userId": user_id,
    }


@router.post("/session")
async def set_session(body: SessionRequest):
    """Store the identity provider's session secret in our cookie."""
    if not body.secret:
        raise HTTPException(status_code=400, detail="Session secret is required")

    response = Response(content='{"success": true}', media_type="application/json")
    response.set_cookie(
        SESSION_COOKIE,
        body.secret,
        httponly=True,
        secure=True,
        samesite="strict",
        max_age=SESSION_DURATION,
    )
    return response


@router.post("/logout")
async def logout():
    """Log out the current user."""
    response = Response(content='{"status": "logged out"}', media_type="application/json")
    response.delete_cookie(SESSION_COOKIE)
    return response
