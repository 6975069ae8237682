"""Session tokens: signing, verification, and the request guard."""

import logging
from datetime import datetime, timedelta, timezone

import jwt
from fastapi import HTTPException, Request

import database as db
from config import settings
from models import Session

logger = logging.getLogger(__name__)

SESSION_COOKIE = "session_token"
SESSION_MAX_AGE = 60 * 60 * 24 * 7
AUDIENCE = "authenticated"
ALGORITHM = "HS256"

DEV_SESSION_SECRET = "lucyn-dev-session-secret-do-not-use-in-production"


class SessionConfigError(Exception):
    """Raised when sessions cannot be signed or checked with the current settings."""


def _secret() -> str:
    if settings.SESSION_SECRET:
        return settings.SESSION_SECRET
    if settings.is_production:
        raise SessionConfigError("SESSION_SECRET is required in production")
    logger.warning("SESSION_SECRET not set - using dev fallback secret (NOT SECURE)")
    return DEV_SESSION_SECRET


def create_session_token(user: dict) -> str:
    """Sign a session token for a user row."""
    now = datetime.now(timezone.utc)
    claims = {
        "sub": str(user["id"]),
        "email": user["email"],
        "org": user.get("organization_id"),
        "aud": AUDIENCE,
        "iat": now,
        "exp": now + timedelta(seconds=SESSION_MAX_AGE),
    }
    return jwt.encode(claims, _secret(), algorithm=ALGORITHM)


def verify_session_token(token: str) -> dict | None:
    """Return the token's claims, or None if it is invalid or expired."""
    if not token:
        return None
    try:
        return jwt.decode(token, _secret(), algorithms=[ALGORITHM], audience=AUDIENCE)
    except jwt.InvalidTokenError:
        return None


def _token_from_request(request: Request) -> str:
    auth_header = request.headers.get("authorization", "")
    if auth_header.startswith("Bearer "):
        return auth_header[7:]
    return request.cookies.get(SESSION_COOKIE, "")


async def get_session(request: Request) -> Session | None:
    """Resolve the caller's session, or None when there is no valid one."""
    claims = verify_session_token(_token_from_request(request))
    if not claims or not str(claims.get("sub", "")).isdigit():
        return None

    user = await db.get_user(int(claims["sub"]))
    if not user:
        return None
    return Session(user_id=user["id"], email=user["email"], organization_id=user["organization_id"])


async def require_session(request: Request) -> Session:
    """Dependency for routes that need a signed-in user."""
    session = await get_session(request)
    if session is None:
        raise HTTPException(status_code=401, detail="Unauthorized")
    return session
