"""
Redis JSON cache for bookability look-ups
Every write to contracts, supervision or provider flags clears bookability:*
"""
import json
import logging
from functools import wraps
from typing import Any, Callable, Optional

from .config import BOOKABILITY_CACHE_TTL, CACHE_ENABLED
from .rate_limiter import get_redis_client

logger = logging.getLogger(__name__)

BOOKABILITY_PREFIX = "bookability"


class Cache:
    """Redis cache wrapper with JSON serialization, degrading to a miss on errors"""

    def __init__(self, enabled: bool = CACHE_ENABLED):
        self.enabled = enabled
        self.redis_client = None

    def _get_client(self):
        if not self.enabled:
            return None
        if self.redis_client is None:
            try:
                self.redis_client = get_redis_client()
            except Exception as e:
                logger.warning(f"⚠️ Redis cache unavailable: {e}")
                return None
        return self.redis_client

    def get(self, key: str) -> Optional[Any]:
        client = self._get_client()
        if not client:
            return None
        try:
            value = client.get(key)
        except Exception as e:
            logger.error(f"❌ Cache get error for {key}: {e}")
            return None
        if value is None:
            logger.debug(f"Cache MISS: {key}")
            return None
        logger.debug(f"Cache HIT: {key}")
        return json.loads(value)

    def set(self, key: str, value: Any, ttl: int = BOOKABILITY_CACHE_TTL) -> bool:
        client = self._get_client()
        if not client:
            return False
        try:
            client.setex(key, ttl, json.dumps(value, default=str))
            return True
        except Exception as e:
            logger.error(f"❌ Cache set error for {key}: {e}")
            return False

    def delete_pattern(self, pattern: str) -> int:
        """Delete all keys matching pattern (e.g. 'bookability:*')"""
        client = self._get_client()
        if not client:
            return 0
        try:
            keys = list(client.scan_iter(match=pattern))
            if not keys:
                return 0
            deleted = client.delete(*keys)
            logger.info(f"🧹 Cleared {deleted} cache keys matching {pattern}")
            return deleted
        except Exception as e:
            logger.error(f"❌ Cache delete pattern error for {pattern}: {e}")
            return 0


cache = Cache()


def cached(key_builder: Callable[..., str], ttl: int = BOOKABILITY_CACHE_TTL):
    """
    Cache a method's JSON-serializable result

    Example:
        @cached(key_builder=lambda self, payer_id, as_of: f"bookability:payer:{payer_id}:{as_of}")
        def providers_for_payer(self, payer_id, as_of): ...
    """

    def decorator(func):
        @wraps(func)
        def wrapper(*args, **kwargs):
            cache_key = key_builder(*args, **kwargs)
            hit = cache.get(cache_key)
            if hit is not None:
                return hit
            result = func(*args, **kwargs)
            if result is not None:
                cache.set(cache_key, result, ttl)
            return result

        return wrapper

    return decorator


def invalidate_bookability_cache() -> int:
    return cache.delete_pattern(f"{BOOKABILITY_PREFIX}:*")
