"""
Yellowbook Redis Cache

Best-effort JSON cache used by the assistant search (``ai_search:*``) and the
web front end's page data (``page_cache:*``).

Rules:
    - The cache is optional: ``get_cache_client()`` returns ``None`` when
      CACHE_URL is unset and every helper accepts ``None``.
    - Redis errors are logged and treated as a miss; they never fail a request.
    - Keys for free-text inputs are ``{prefix}:{md5_of_text}``.
"""

import hashlib
import json
from typing import Any, Optional

import structlog
from redis import Redis

from yellowbook.config import get_settings

logger = structlog.get_logger(__name__)

SEARCH_CACHE_PREFIX = "ai_search"
PAGE_CACHE_PREFIX = "page_cache"


def make_cache_key(prefix: str, text: str) -> str:
    """Build a deterministic cache key from free text."""
    md5_hash = hashlib.md5(text.encode("utf-8")).hexdigest()
    return f"{prefix}:{md5_hash}"


def get_cache_client() -> Optional[Redis]:
    """
    Create a Redis client from CACHE_URL, or ``None`` when caching is disabled.

    The client connects lazily; an unreachable server surfaces as logged
    misses rather than a startup failure.
    """
    url = get_settings().CACHE_URL
    if not url:
        logger.info("cache_disabled")
        return None
    return Redis.from_url(url, socket_timeout=2, socket_connect_timeout=2)


def get_cached_json(key: str, redis_client: Optional[Redis]) -> Optional[Any]:
    """
    Look up a cached JSON value.

    Returns:
        The deserialized value on hit, or ``None`` on miss, error, or when
        caching is disabled.
    """
    if redis_client is None:
        return None
    try:
        raw = redis_client.get(key)
    except Exception:
        logger.warning("redis_get_error", key=key, exc_info=True)
        return None

    if raw is None:
        logger.debug("cache_miss", key=key)
        return None

    try:
        value = json.loads(raw)
    except ValueError:
        logger.warning("cache_corrupt_entry", key=key)
        return None

    logger.debug("cache_hit", key=key)
    return value


def set_cached_json(
    key: str,
    value: Any,
    redis_client: Optional[Redis],
    ttl_seconds: Optional[int] = None,
) -> bool:
    """
    Store a JSON-serializable value. ``ttl_seconds=None`` keeps it until
    explicitly invalidated.

    Returns:
        ``True`` if the value was cached, ``False`` if skipped or on error.
    """
    if redis_client is None:
        return False
    try:
        redis_client.set(key, json.dumps(value), ex=ttl_seconds)
        logger.debug("cache_set", key=key, ttl=ttl_seconds)
        return True
    except Exception:
        logger.warning("redis_set_error", key=key, exc_info=True)
        return False


def delete_cached(key: str, redis_client: Optional[Redis]) -> int:
    """Delete one key. Returns the number of keys removed."""
    if redis_client is None:
        return 0
    try:
        return redis_client.delete(key)
    except Exception:
        logger.warning("redis_delete_error", key=key, exc_info=True)
        return 0


def invalidate_prefix(prefix: str, redis_client: Optional[Redis]) -> int:
    """
    Delete every ``{prefix}:*`` key.

    Returns:
        The number of keys deleted.
    """
    if redis_client is None:
        return 0
    pattern = f"{prefix}:*"
    try:
        keys = list(redis_client.scan_iter(match=pattern))
        if not keys:
            logger.info("cache_invalidate", prefix=prefix, deleted=0)
            return 0
        count = redis_client.delete(*keys)
        logger.info("cache_invalidate", prefix=prefix, deleted=count)
        return count
    except Exception:
        logger.warning("redis_invalidate_error", prefix=prefix, exc_info=True)
        return 0
