"""Fixed-window rate limiting over Redis."""

import logging
import math
import time

import redis.asyncio as redis
from fastapi import HTTPException, Request
from redis.exceptions import RedisError

from config import settings
from models import RateLimitResult

logger = logging.getLogger(__name__)

_redis: redis.Redis | None = None


def get_redis() -> redis.Redis:
    """Shared Redis client, created on first use from REDIS_URL."""
    global _redis
    if _redis is None:
        _redis = redis.Redis.from_url(settings.REDIS_URL, decode_responses=True)
    return _redis


def set_redis(client: redis.Redis | None) -> None:
    """Swap the shared client (tests use fakeredis)."""
    global _redis
    _redis = client


async def close_redis() -> None:
    global _redis
    if _redis is not None:
        await _redis.aclose()
        _redis = None


def _clock() -> float:
    return time.time()


async def rate_limit(key: str, limit: int, window_seconds: int) -> RateLimitResult:
    """Count a hit against `key` and report whether it is within `limit` for the current window."""
    now = _clock()
    window = math.floor(now / window_seconds)
    window_key = f"ratelimit:{key}:{window}"

    r = get_redis()
    count = await r.incr(window_key)
    if count == 1:
        await r.expire(window_key, window_seconds)

    reset_after = max(1, math.ceil((window + 1) * window_seconds - now))
    return RateLimitResult(
        success=count <= limit,
        remaining=max(0, limit - count),
        reset_after=reset_after,
    )


def _client_key(request: Request) -> str:
    forwarded = request.headers.get("x-forwarded-for", "")
    if forwarded:
        return forwarded.split(",")[0].strip()
    return request.client.host if request.client else "unknown"


async def _enforce(request: Request, scope: str, limit: int) -> None:
    try:
        result = await rate_limit(f"{scope}:{_client_key(request)}", limit, 60)
    except RedisError as e:
        # Redis outage: let the request through rather than take the API down.
        logger.warning(f"Rate limiter unavailable, allowing request: {e}")
        return

    if not result.success:
        raise HTTPException(
            status_code=429,
            detail="Too many requests",
            headers={
                "Retry-After": str(result.reset_after),
                "X-RateLimit-Remaining": "0",
            },
        )


async def api_rate_limit(request: Request) -> None:
    """Dependency applied to dashboard API routes."""
    await _enforce(request, "api", settings.API_REQUESTS_PER_MINUTE)


async def webhook_rate_limit(request: Request) -> None:
    """Dependency applied to inbound webhooks."""
    await _enforce(request, "webhook", settings.WEBHOOK_REQUESTS_PER_MINUTE)
