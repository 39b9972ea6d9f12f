# common/cache.py
import json
import logging
import os
from datetime import date
from typing import Any, Optional

import redis

logger = logging.getLogger(__name__)

DASHBOARD_NAMESPACE = "dashboard"

_redis_client: Optional[redis.Redis] = None


def get_redis_client() -> Optional[redis.Redis]:
    """
    Return a Redis client if REDIS_URL is configured, otherwise None.
    Fails open (no caching) if Redis is not reachable.
    """
    global _redis_client

    if _redis_client is not None:
        return _redis_client

    redis_url = os.getenv("REDIS_URL")
    if not redis_url:
        return None

    try:
        client = redis.from_url(redis_url, decode_responses=True)
        client.ping()
    except redis.RedisError as exc:
        logger.warning("Redis unavailable at %s, caching disabled: %s", redis_url, exc)
        return None

    _redis_client = client
    return _redis_client


def get_cached_json(key: str) -> Optional[Any]:
    client = get_redis_client()
    if client is None:
        return None

    try:
        raw = client.get(key)
    except redis.RedisError as exc:
        logger.warning("Cache read of %s failed: %s", key, exc)
        return None
    if raw is None:
        return None
    return json.loads(raw)


def set_cached_json(key: str, value: Any, ttl_seconds: int = 60) -> None:
    client = get_redis_client()
    if client is None:
        return

    try:
        client.setex(key, ttl_seconds, json.dumps(value, default=str))
    except redis.RedisError as exc:
        logger.warning("Cache write of %s failed: %s", key, exc)


def delete_prefix(prefix: str) -> None:
    """Delete all keys starting with prefix."""
    client = get_redis_client()
    if client is None:
        return

    try:
        keys = list(client.scan_iter(match=prefix + "*"))
        if keys:
            client.delete(*keys)
    except redis.RedisError as exc:
        logger.warning("Cache invalidation of %s* failed: %s", prefix, exc)


def dashboard_key(hotel_id: int, day: date) -> str:
    return f"{DASHBOARD_NAMESPACE}:{hotel_id}:{day.isoformat()}"


def invalidate_dashboard(hotel_id: Optional[int] = None) -> None:
    """
    Drop cached dashboard stats for one hotel, every day included.
    Without a hotel id every hotel's dashboard is dropped.
    """
    if hotel_id is None:
        delete_prefix(f"{DASHBOARD_NAMESPACE}:")
    else:
        delete_prefix(f"{DASHBOARD_NAMESPACE}:{hotel_id}:")
