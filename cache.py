"""
Key/value cache in front of read-heavy catalog queries.

One provider is chosen at startup (``CACHE_BACKEND``). Callers always go
through ``get_cache()``; with caching disabled or Redis unreachable they get a
NullCache whose reads miss and whose writes do nothing.
"""
import base64
import copy
import json
import logging
import threading
import time
from typing import Any, Dict, Optional, Tuple

import redis

import config

logger = logging.getLogger(__name__)

# TTLs in seconds
PRODUCT_TTL = 600
PRODUCTS_TTL = 300
CATEGORY_TTL = 600
CATEGORIES_TTL = 900


def product_key(product_id: str) -> str:
    return f"product:{product_id}"


def products_key(filters: Dict[str, Any]) -> str:
    filter_string = json.dumps(filters, sort_keys=True, default=str)
    return f"products:{base64.b64encode(filter_string.encode()).decode()}"


def category_key(category_id: str) -> str:
    return f"category:{category_id}"


def categories_key() -> str:
    return "categories:all"


class CacheProvider:
    name = "base"

    def get(self, key: str) -> Optional[Any]:
        raise NotImplementedError

    def set(self, key: str, value: Any, ttl: Optional[int] = None) -> bool:
        raise NotImplementedError

    def delete(self, key: str) -> bool:
        raise NotImplementedError

    def delete_prefix(self, prefix: str) -> bool:
        raise NotImplementedError

    def clear(self) -> bool:
        raise NotImplementedError


class NullCache(CacheProvider):
    name = "none"

    def get(self, key):
        return None

    def set(self, key, value, ttl=None):
        return True

    def delete(self, key):
        return True

    def delete_prefix(self, prefix):
        return True

    def clear(self):
        return True


class MemoryCache(CacheProvider):
    name = "memory"

    def __init__(self, clock=time.monotonic):
        self._clock = clock
        self._data: Dict[str, Tuple[Optional[float], Any]] = {}
        self._lock = threading.Lock()

    def get(self, key):
        with self._lock:
            entry = self._data.get(key)
            if entry is None:
                return None
            expires_at, value = entry
            if expires_at is not None and self._clock() >= expires_at:
                del self._data[key]
                return None
            return copy.deepcopy(value)

    def set(self, key, value, ttl=None):
        expires_at = self._clock() + ttl if ttl else None
        with self._lock:
            self._data[key] = (expires_at, copy.deepcopy(value))
        return True

    def delete(self, key):
        with self._lock:
            self._data.pop(key, None)
        return True

    def delete_prefix(self, prefix):
        with self._lock:
            for key in [k for k in self._data if k.startswith(prefix)]:
                del self._data[key]
        return True

    def clear(self):
        with self._lock:
            self._data.clear()
        return True


class RedisCache(CacheProvider):
    name = "redis"

    def __init__(self, client: "redis.Redis"):
        self.client = client

    @classmethod
    def from_url(cls, url: str) -> "RedisCache":
        return cls(redis.Redis.from_url(url, socket_connect_timeout=2, socket_timeout=2))

    def ping(self) -> bool:
        try:
            return bool(self.client.ping())
        except redis.RedisError as e:
            logger.warning("Redis ping failed: %s", e)
            return False

    def get(self, key):
        try:
            value = self.client.get(key)
            return json.loads(value) if value else None
        except (redis.RedisError, ValueError) as e:
            logger.error("Error getting key %s: %s", key, e)
            return None

    def set(self, key, value, ttl=None):
        try:
            serialized = json.dumps(value, default=str)
            if ttl:
                self.client.setex(key, ttl, serialized)
            else:
                self.client.set(key, serialized)
            return True
        except redis.RedisError as e:
            logger.error("Error setting key %s: %s", key, e)
            return False

    def delete(self, key):
        try:
            self.client.delete(key)
            return True
        except redis.RedisError as e:
            logger.error("Error deleting key %s: %s", key, e)
            return False

    def delete_prefix(self, prefix):
        try:
            keys = list(self.client.scan_iter(match=f"{prefix}*"))
            if keys:
                self.client.delete(*keys)
            return True
        except redis.RedisError as e:
            logger.error("Error deleting prefix %s: %s", prefix, e)
            return False

    def clear(self):
        try:
            self.client.flushdb()
            return True
        except redis.RedisError as e:
            logger.error("Error flushing cache: %s", e)
            return False


def build_cache(backend: Optional[str] = None) -> CacheProvider:
    backend = (backend or config.CACHE_BACKEND).lower()
    if backend == "redis":
        provider = RedisCache.from_url(config.REDIS_URL)
        if provider.ping():
            return provider
        logger.warning("Redis unavailable at %s, caching disabled", config.REDIS_URL)
        return NullCache()
    if backend == "memory":
        return MemoryCache()
    return NullCache()


_provider: Optional[CacheProvider] = None


def configure_cache(provider: Optional[CacheProvider] = None) -> CacheProvider:
    global _provider
    _provider = provider or build_cache()
    logger.info("Cache backend: %s", _provider.name)
    return _provider


def get_cache() -> CacheProvider:
    if _provider is None:
        return configure_cache()
    return _provider
