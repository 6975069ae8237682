"""Single-use email verification tokens and signed unsubscribe tokens."""

import base64
import binascii
import hashlib
import hmac
import json
import logging
import secrets
import time

from config import settings
from models import VerificationPayload
from ratelimit import get_redis

logger = logging.getLogger(__name__)

VERIFICATION_TOKEN_TTL = 60 * 60 * 24
VERIFICATION_RATE_WINDOW = 60 * 60
VERIFICATION_RATE_MAX = 3

TOKEN_PREFIX = "email_verify:token:"
EMAIL_PREFIX = "email_verify:email:"
RATE_PREFIX = "email_verify:rate:"

UNSUBSCRIBE_TOKEN_EXPIRY_HOURS = 72
DEV_UNSUBSCRIBE_SECRET = "lucyn-dev-unsubscribe-secret-do-not-use-in-production"


class VerificationRateLimited(Exception):
    """Too many verification emails requested for one address."""


class InvalidTokenError(ValueError):
    """An unsubscribe token failed validation."""


class TokenConfigError(Exception):
    """No secret is configured for signing unsubscribe tokens."""


# --------------- Email verification ---------------

async def create_verification_token(payload: VerificationPayload) -> str:
    """Issue a verification token, invalidating any earlier one for the same email."""
    email = payload.email.strip().lower()
    r = get_redis()

    rate_key = f"{RATE_PREFIX}{email}"
    count = await r.incr(rate_key)
    if count == 1:
        await r.expire(rate_key, VERIFICATION_RATE_WINDOW)
    if count > VERIFICATION_RATE_MAX:
        raise VerificationRateLimited("Too many verification emails. Please try again later.")

    token = secrets.token_urlsafe(32)
    record = {**payload.model_dump(), "email": email, "createdAt": int(time.time() * 1000)}
    await r.set(f"{TOKEN_PREFIX}{token}", json.dumps(record), ex=VERIFICATION_TOKEN_TTL)

    email_key = f"{EMAIL_PREFIX}{email}"
    previous = await r.get(email_key)
    if previous:
        await r.delete(f"{TOKEN_PREFIX}{previous}")
    await r.set(email_key, token, ex=VERIFICATION_TOKEN_TTL)

    return token


async def verify_email_token(token: str) -> VerificationPayload | None:
    """Consume a verification token. Returns None if it is unknown or expired."""
    if not token:
        return None
    r = get_redis()
    token_key = f"{TOKEN_PREFIX}{token}"
    raw = await r.get(token_key)
    if not raw:
        return None

    try:
        record = json.loads(raw)
        payload = VerificationPayload(
            email=record["email"],
            name=record.get("name", ""),
            organization_name=record.get("organization_name", ""),
        )
    except (json.JSONDecodeError, KeyError, TypeError) as e:
        logger.error(f"Failed to parse verification token payload: {e}")
        await r.delete(token_key)
        return None

    await r.delete(token_key)
    await r.delete(f"{EMAIL_PREFIX}{payload.email}")
    return payload


# --------------- Unsubscribe ---------------

def _unsubscribe_secret() -> bytes:
    if settings.UNSUBSCRIBE_TOKEN_SECRET:
        return settings.UNSUBSCRIBE_TOKEN_SECRET.encode("utf-8")
    if settings.SESSION_SECRET:
        logger.warning("UNSUBSCRIBE_TOKEN_SECRET not set, falling back to SESSION_SECRET")
        return settings.SESSION_SECRET.encode("utf-8")
    if settings.is_production:
        raise TokenConfigError("UNSUBSCRIBE_TOKEN_SECRET is required in production")
    logger.warning("UNSUBSCRIBE_TOKEN_SECRET not set - using dev fallback secret (NOT SECURE)")
    return DEV_UNSUBSCRIBE_SECRET.encode("utf-8")


def _sign(payload: str) -> str:
    return hmac.new(_unsubscribe_secret(), payload.encode("utf-8"), hashlib.sha256).hexdigest()


def generate_unsubscribe_token(email: str) -> str:
    """base64url(email|expiry_ms|signature)."""
    normalized = email.lower().strip()
    expiry = int(time.time() * 1000) + UNSUBSCRIBE_TOKEN_EXPIRY_HOURS * 60 * 60 * 1000
    payload = f"{normalized}|{expiry}"
    token = f"{payload}|{_sign(payload)}"
    return base64.urlsafe_b64encode(token.encode("utf-8")).decode("ascii").rstrip("=")


def verify_unsubscribe_token(token: str) -> str:
    """Return the email a token was issued for, or raise InvalidTokenError."""
    if not token or not isinstance(token, str):
        raise InvalidTokenError("Token is required")

    try:
        padded = token + "=" * (-len(token) % 4)
        decoded = base64.urlsafe_b64decode(padded.encode("ascii")).decode("utf-8")
    except (binascii.Error, UnicodeError, ValueError) as e:
        raise InvalidTokenError("Invalid token format") from e

    parts = decoded.split("|")
    if len(parts) != 3:
        raise InvalidTokenError("Invalid token structure")
    email, expiry_str, provided = parts

    try:
        expiry = int(expiry_str)
    except ValueError:
        raise InvalidTokenError("Token has expired")
    if time.time() * 1000 > expiry:
        raise InvalidTokenError("Token has expired")

    expected = _sign(f"{email}|{expiry_str}")
    if not hmac.compare_digest(provided.encode("utf-8"), expected.encode("utf-8")):
        raise InvalidTokenError("Invalid token signature")

    return email
