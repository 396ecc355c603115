"""
Redis cache for recomputable lookups (shipping quotes per CEP and cart volumes).

Every failure is a cache miss: the caller recomputes, a Redis outage never
turns into a request error.
"""

import json
import logging
from decimal import Decimal
from typing import Any, Callable, Optional

import redis
from redis.exceptions import RedisError
from flask import Flask

logger = logging.getLogger(__name__)

_DECIMAL_TAG = '__decimal__'


def _encode(value: Any) -> str:
    def default(obj):
        if isinstance(obj, Decimal):
            return {_DECIMAL_TAG: str(obj)}
        raise TypeError(f"{type(obj).__name__} is not cacheable")
    return json.dumps(value, default=default)


def _decode(raw: str) -> Any:
    def hook(obj):
        if _DECIMAL_TAG in obj:
            return Decimal(obj[_DECIMAL_TAG])
        return obj
    return json.loads(raw, object_hook=hook)


class CacheService:
    """
    Keys are {prefix}:{module}:{key}; values are JSON with Decimals kept exact.
    """

    def __init__(self, client: Optional[redis.Redis] = None, prefix: str = 'loja', default_ttl: int = 60):
        self.client = client
        self.prefix = prefix
        self.default_ttl = default_ttl

    @classmethod
    def from_config(cls, config) -> 'CacheService':
        prefix = config.get('CACHE_KEY_PREFIX', 'loja')
        ttl = config.get('CACHE_DEFAULT_TTL', 60)
        if not config.get('CACHE_ENABLED', True):
            logger.info("[CACHE] Disabled via CACHE_ENABLED")
            return cls(None, prefix, ttl)

        redis_url = config.get('REDIS_URL', 'redis://redis:6379/0')
        try:
            client = redis.from_url(
                redis_url,
                decode_responses=True,
                socket_connect_timeout=3,
                socket_timeout=3,
                retry_on_timeout=True,
                health_check_interval=30,
            )
            client.ping()
        except RedisError as e:
            logger.warning(f"[CACHE] Redis unreachable at {redis_url} ({e}); running without cache")
            return cls(None, prefix, ttl)

        logger.info(f"[CACHE] Redis connected: {redis_url}")
        return cls(client, prefix, ttl)

    @property
    def enabled(self) -> bool:
        return self.client is not None

    def key(self, module: str, key: str) -> str:
        return f"{self.prefix}:{module}:{key}"

    def get(self, module: str, key: str) -> Optional[Any]:
        if not self.enabled:
            return None
        try:
            raw = self.client.get(self.key(module, key))
            return _decode(raw) if raw is not None else None
        except (RedisError, ValueError) as e:
            logger.warning(f"[CACHE] get {module}:{key} failed: {e}")
            return None

    def set(self, module: str, key: str, value: Any, ttl: Optional[int] = None) -> bool:
        if not self.enabled:
            return False
        try:
            self.client.setex(self.key(module, key), ttl or self.default_ttl, _encode(value))
            return True
        except (RedisError, TypeError) as e:
            logger.warning(f"[CACHE] set {module}:{key} failed: {e}")
            return False

    def delete(self, module: str, key: str) -> bool:
        """Drop one key (a miss is not an error)."""
        if not self.enabled:
            return False
        try:
            self.client.delete(self.key(module, key))
            return True
        except RedisError as e:
            logger.warning(f"[CACHE] delete {module}:{key} failed: {e}")
            return False

    def invalidate_module(self, module: str) -> int:
        """Delete every key under a module; returns how many went."""
        if not self.enabled:
            return 0
        deleted = 0
        try:
            for cache_key in self.client.scan_iter(match=self.key(module, '*'), count=100):
                self.client.delete(cache_key)
                deleted += 1
        except RedisError as e:
            logger.warning(f"[CACHE] invalidate {module} failed: {e}")
        if deleted:
            logger.info(f"[CACHE] Invalidated {module} ({deleted} keys)")
        return deleted

    def memoize(self, module: str, key: str, loader_fn: Callable[[], Any], ttl: Optional[int] = None) -> Any:
        """
        Cache-aside: the cached value, or loader_fn() stored for next time.

        Loader exceptions propagate and nothing is stored.
        """
        cached = self.get(module, key)
        if cached is not None:
            return cached
        value = loader_fn()
        self.set(module, key, value, ttl)
        return value


_cache_service: Optional[CacheService] = None


def init_cache(app: Flask) -> CacheService:
    """Build the process-wide cache from app config."""
    global _cache_service
    _cache_service = CacheService.from_config(app.config)
    app.extensions['cache'] = _cache_service
    return _cache_service


def get_cache() -> Optional[CacheService]:
    """Cache instance (None before init_cache)."""
    return _cache_service
