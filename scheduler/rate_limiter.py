"""
Rate limiting for public booking endpoints
Counts requests in memory per fixed window and mirrors the counters to Redis
so several API workers share the same budget.
"""

import logging
import os
import time
from threading import Lock
from typing import Optional

import redis
from fastapi import HTTPException, Request, status

from .config import RATE_LIMIT_ENABLED

logger = logging.getLogger(__name__)

redis_client: Optional[redis.Redis] = None

# {key: {"count": int, "reset_time": int, "last_redis_sync": int}}
memory_windows: dict[str, dict] = {}
window_lock = Lock()

REDIS_SYNC_INTERVAL = 10  # seconds between counter writes to Redis


def _mask_url(url: str) -> str:
    if "@" not in url:
        return "****"
    scheme, host = url.split("@", 1)
    return f"{scheme.split(':')[0]}:****@{host}"


def get_redis_client() -> redis.Redis:
    """
    Get or create the shared Redis client
    Uses REDIS_URL when set, otherwise REDIS_HOST/REDIS_PORT/...
    """
    global redis_client

    if redis_client is None:
        redis_url = os.getenv("REDIS_URL")
        options = {
            "decode_responses": True,
            "socket_connect_timeout": 5,
            "socket_timeout": 10,
            "retry_on_timeout": True,
            "health_check_interval": 30,
        }
        try:
            if redis_url:
                logger.info(f"📡 Connecting to Redis: {_mask_url(redis_url)}")
                client = redis.from_url(redis_url, **options)
            else:
                host = os.getenv("REDIS_HOST", "localhost")
                port = int(os.getenv("REDIS_PORT", "6379"))
                logger.info(f"📡 Connecting to Redis at {host}:{port}")
                client = redis.Redis(
                    host=host,
                    port=port,
                    password=os.getenv("REDIS_PASSWORD"),
                    db=int(os.getenv("REDIS_DB", "0")),
                    ssl=os.getenv("REDIS_SSL", "false").lower() == "true",
                    **options,
                )
            client.ping()
        except Exception as e:
            logger.error(f"❌ Failed to connect to Redis: {e}")
            raise
        redis_client = client
        logger.info("✅ Redis connected")

    return redis_client


def check_rate_limit(
    key: str, limit: int, window_seconds: int, client: redis.Redis
) -> tuple[bool, int, int]:
    """Count one request against the window for key

    Returns:
        Tuple of (is_allowed, current_count, ttl_seconds)
    """
    now = int(time.time())

    with window_lock:
        window = memory_windows.get(key)
        if window is None:
            window = {"count": 0, "reset_time": now + window_seconds, "last_redis_sync": now}
            try:
                shared_count = client.get(key)
                shared_ttl = client.ttl(key)
                if shared_count and shared_ttl > 0:
                    window["count"] = int(shared_count)
                    window["reset_time"] = now + shared_ttl
            except Exception as e:
                logger.warning(f"⚠️ Could not read {key} from Redis, counting locally: {e}")
            memory_windows[key] = window

        if now >= window["reset_time"]:
            window.update(count=0, reset_time=now + window_seconds, last_redis_sync=0)

        is_allowed = window["count"] < limit
        if is_allowed:
            window["count"] += 1

        if now - window["last_redis_sync"] >= REDIS_SYNC_INTERVAL:
            try:
                client.set(key, window["count"], ex=window_seconds)
                window["last_redis_sync"] = now
            except Exception as e:
                logger.warning(f"⚠️ Failed to sync {key} to Redis: {e}")

        return is_allowed, window["count"], max(0, window["reset_time"] - now)


def client_ip(request: Request) -> str:
    forwarded = request.headers.get("X-Forwarded-For")
    if forwarded:
        return forwarded.split(",")[0].strip()
    return request.client.host if request.client else "unknown"


async def rate_limit_dependency(
    request: Request,
    limit: int,
    window_seconds: int,
    key_prefix: str = "rate_limit",
    use_ip: bool = True,
):
    """Raise 429 when the caller is over budget, 503 when limiting is unavailable"""
    if not RATE_LIMIT_ENABLED:
        return

    try:
        client = get_redis_client()
    except Exception as e:
        logger.warning("🔒 Denying request, rate limiting unavailable (fail-closed mode)")
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Rate limiting service temporarily unavailable",
        ) from e

    key = f"{key_prefix}:{client_ip(request) if use_ip else 'global'}"
    is_allowed, count, ttl = check_rate_limit(key, limit, window_seconds, client)

    if not is_allowed:
        logger.warning(f"🚫 Rate limit exceeded for {key} ({count}/{limit})")
        raise HTTPException(
            status_code=429,
            detail={
                "message": f"Rate limit exceeded. Maximum {limit} requests per {window_seconds} seconds.",
                "retry_after": ttl,
                "limit": limit,
                "window_seconds": window_seconds,
            },
            headers={"Retry-After": str(ttl)},
        )

    request.state.rate_limit_remaining = limit - count


def create_rate_limiter(
    limit: int, window_seconds: int, key_prefix: str = "rate_limit", use_ip: bool = True
):
    """
    Build a rate limiter dependency

    Example:
        booking_limit = create_rate_limiter(limit=10, window_seconds=60, key_prefix="booking")

        @router.post("/book")
        async def book(data: BookingRequest, _: None = Depends(booking_limit)):
            ...
    """

    async def rate_limiter(request: Request):
        return await rate_limit_dependency(request, limit, window_seconds, key_prefix, use_ip)

    return rate_limiter
