from __future__ import annotations

import json
import logging
import time
from threading import Lock
from typing import Any

import redis

from app.core.metrics import metrics

logger = logging.getLogger(__name__)


class MemoryCache:
    def __init__(self) -> None:
        self._store: dict[str, tuple[float | None, Any]] = {}
        self._lock = Lock()

    def get(self, key: str) -> Any | None:
        now = time.time()
        with self._lock:
            entry = self._store.get(key)
            if entry is None:
                return None
            expires_at, value = entry
            if expires_at is not None and expires_at <= now:
                self._store.pop(key, None)
                return None
            return value

    def set(self, key: str, value: Any, ttl: int | None = None) -> None:
        expires_at = None
        if ttl is not None:
            expires_at = time.time() + ttl
        with self._lock:
            self._store[key] = (expires_at, value)

    def delete(self, key: str) -> None:
        with self._lock:
            self._store.pop(key, None)

    def incr(self, key: str, ttl: int | None = None) -> int:
        now = time.time()
        with self._lock:
            entry = self._store.get(key)
            if entry is None or (entry[0] is not None and entry[0] <= now):
                value = 1
            else:
                _, current = entry
                value = int(current) + 1
            expires_at = None
            if ttl is not None:
                expires_at = now + ttl
            self._store[key] = (expires_at, str(value))
            return value


class CacheClient:
    """Keyed store with per-key expiry.

    Backed by Redis when a URL is configured, otherwise by an in-process
    memory cache. Redis failures fall through to the local cache, so callers
    see "absent" instead of an error.
    """

    def __init__(self, redis_url: str | None) -> None:
        self._redis = None
        self._local = MemoryCache()
        self._redis_enabled = False
        if redis_url:
            try:
                self._redis = redis.Redis.from_url(redis_url, decode_responses=True)
                self._redis_enabled = True
            except Exception as exc:
                logger.warning("cache redis init failed: %s", exc)
                self._redis = None
                self._redis_enabled = False

    @property
    def backend(self) -> str:
        return "redis" if self._redis_enabled else "memory"

    def get(self, key: str) -> str | None:
        if self._redis_enabled and self._redis is not None:
            try:
                return self._redis.get(key)
            except Exception as exc:
                logger.warning("cache redis get failed: %s", exc)
                metrics.inc("intake_cache_errors_total", {"op": "get"})
        value = self._local.get(key)
        return None if value is None else str(value)

    def set(self, key: str, value: str, ttl: int | None = None) -> None:
        if self._redis_enabled and self._redis is not None:
            try:
                if ttl is not None:
                    self._redis.setex(key, ttl, value)
                else:
                    self._redis.set(key, value)
                return
            except Exception as exc:
                logger.warning("cache redis set failed: %s", exc)
                metrics.inc("intake_cache_errors_total", {"op": "set"})
        self._local.set(key, value, ttl)

    def delete(self, key: str) -> None:
        if self._redis_enabled and self._redis is not None:
            try:
                self._redis.delete(key)
                return
            except Exception as exc:
                logger.warning("cache redis delete failed: %s", exc)
                metrics.inc("intake_cache_errors_total", {"op": "delete"})
        self._local.delete(key)

    def get_json(self, key: str) -> Any | None:
        raw = self.get(key)
        if raw is None:
            return None
        try:
            return json.loads(raw)
        except (TypeError, ValueError):
            logger.warning("cache value for %s is not valid json", key)
            return None

    def set_json(self, key: str, value: Any, ttl: int | None = None) -> None:
        self.set(key, json.dumps(value, ensure_ascii=False), ttl)

    def incr(self, key: str, ttl: int | None = None) -> int:
        if self._redis_enabled and self._redis is not None:
            try:
                value = self._redis.incr(key)
                if ttl is not None:
                    self._redis.expire(key, ttl)
                return int(value)
            except Exception as exc:
                logger.warning("cache redis incr failed: %s", exc)
                metrics.inc("intake_cache_errors_total", {"op": "incr"})
        return self._local.incr(key, ttl)


_cache: CacheClient | None = None


def get_cache() -> CacheClient:
    global _cache
    if _cache is not None:
        return _cache
    from app.core.settings import SETTINGS

    _cache = CacheClient(SETTINGS.redis_url)
    return _cache
