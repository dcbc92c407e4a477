from __future__ import annotations

import logging
import os
from functools import lru_cache

from redis import Redis
from redis.exceptions import RedisError, WatchError

REDIS_URL = os.getenv("REDIS_URL", "redis://redis:6379/0")
# Upper bound on how long a cached summary can be served if an invalidation is lost.
SUMMARY_CACHE_TTL_SEC = int(os.getenv("SUMMARY_CACHE_TTL_SEC", "30"))
SUMMARY_CACHE_KEY = "serialstock:summary"
SUMMARY_GENERATION_KEY = "serialstock:summary:generation"

logger = logging.getLogger(__name__)


@lru_cache(maxsize=1)
def get_redis() -> Redis:
    return Redis.from_url(REDIS_URL, decode_responses=True)


def check_redis_ready() -> bool:
    try:
        return bool(get_redis().ping())
    except Exception:
        return False


def summary_generation() -> str | None:
    return get_redis().get(SUMMARY_GENERATION_KEY)


def store_summary(payload: str, generation: str | None) -> bool:
    """Cache ``payload`` only if no invalidation happened since ``generation`` was read."""
    with get_redis().pipeline() as pipe:
        try:
            pipe.watch(SUMMARY_GENERATION_KEY)
            if pipe.get(SUMMARY_GENERATION_KEY) != generation:
                return False
            pipe.multi()
            pipe.setex(SUMMARY_CACHE_KEY, SUMMARY_CACHE_TTL_SEC, payload)
            pipe.execute()
        except WatchError:
            return False
    return True


def invalidate_summary_cache() -> None:
    try:
        pipe = get_redis().pipeline()
        pipe.incr(SUMMARY_GENERATION_KEY)
        pipe.delete(SUMMARY_CACHE_KEY)
        pipe.execute()
    except RedisError:
        # The cached summary expires on its own after SUMMARY_CACHE_TTL_SEC.
        logger.warning("could not invalidate %s", SUMMARY_CACHE_KEY, exc_info=True)
