# services/cache/cache_backend.py
"""
Two-level JSON cache for market data: a per-process TTL map in front of an
optional Redis. Redis is used only when REDIS_URL points at a real server;
any Redis error degrades to the in-process layer.
"""
from __future__ import annotations

import json
import logging
import os
import time
from typing import Any, Dict, List, Optional, Tuple, Union

import redis

from config.settings import get_settings

logger = logging.getLogger(__name__)

JsonValue = Union[Dict[str, Any], List[Any], str, int, float, bool, None]

DEFAULT_TTL_SEC = int(os.getenv("CACHE_DEFAULT_TTL_SEC", "60"))
# upper bound for the in-process copy, so workers converge on Redis
LOCAL_MAX_TTL_SEC = int(os.getenv("CACHE_LOCAL_TTL_SEC", "60"))
REDIS_PREFIX = os.getenv("REDIS_PREFIX", "portfolio:")


class _LocalTTLCache:
    def __init__(self) -> None:
        self._items: Dict[str, Tuple[float, JsonValue]] = {}

    def get(self, key: str) -> Optional[JsonValue]:
        entry = self._items.get(key)
        if entry is None:
            return None
        expires_at, value = entry
        if expires_at < time.time():
            del self._items[key]
            return None
        return value

    def put(self, key: str, value: JsonValue, ttl: float) -> None:
        self._items[key] = (time.time() + min(ttl, LOCAL_MAX_TTL_SEC), value)

    def clear(self) -> None:
        self._items.clear()


_local = _LocalTTLCache()
_redis: Optional[redis.Redis] = None
_redis_resolved = False


def get_redis_client() -> Optional[redis.Redis]:
    """Redis client built on first use; None when no server is configured."""
    global _redis, _redis_resolved
    if not _redis_resolved:
        _redis_resolved = True
        url = get_settings().redis_url
        if url and not url.startswith("memory://"):
            try:
                _redis = redis.from_url(url, decode_responses=True, socket_timeout=2, socket_connect_timeout=2)
            except (redis.RedisError, ValueError) as e:
                logger.warning("redis disabled: %s", e)
    return _redis


def _key(key: str) -> str:
    return (key or "").strip().upper()


def cache_get(key: str) -> Optional[JsonValue]:
    k = _key(key)
    if not k:
        return None
    value = _local.get(k)
    if value is not None:
        return value

    r = get_redis_client()
    if r is None:
        return None
    try:
        raw = r.get(REDIS_PREFIX + k)
    except redis.RedisError as e:
        logger.warning("cache_get failed key=%s: %s", k, e)
        return None
    if raw is None:
        return None
    try:
        value = json.loads(raw)
    except ValueError:
        logger.warning("cache_get dropped undecodable value key=%s", k)
        return None
    _local.put(k, value, LOCAL_MAX_TTL_SEC)
    return value


def cache_set(key: str, payload: JsonValue, ttl_seconds: int = DEFAULT_TTL_SEC) -> None:
    k = _key(key)
    if not k:
        return
    ttl = ttl_seconds if ttl_seconds and ttl_seconds > 0 else DEFAULT_TTL_SEC
    _local.put(k, payload, ttl)

    r = get_redis_client()
    if r is None:
        return
    try:
        r.setex(REDIS_PREFIX + k, int(ttl), json.dumps(payload, separators=(",", ":")))
    except redis.RedisError as e:
        logger.warning("cache_set failed key=%s: %s", k, e)


def cache_clear_local() -> None:
    _local.clear()
