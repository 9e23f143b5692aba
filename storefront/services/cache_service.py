"""
Redis cache for catalog listings.

Cached values are the JSON page dicts the catalog endpoints return, stored
under {prefix}:{module}:{key}. A disabled or unreachable Redis turns every
call into a miss, never into an error.
"""

import json
import logging
from typing import Any, Callable, Optional

import redis
from redis.exceptions import RedisError
from flask import Flask

logger = logging.getLogger(__name__)


class CacheService:
    """Module-scoped cache-aside helper over a Redis client."""
    
    def __init__(self, app: Flask):
        self.client: Optional[redis.Redis] = None
        self._prefix = app.config.get('CACHE_KEY_PREFIX', 'storefront')
        self._default_ttl = app.config.get('CACHE_DEFAULT_TTL', 60)
        
        if not app.config.get('CACHE_ENABLED', True):
            logger.info("[CACHE] Cache is DISABLED via config")
            return
        
        redis_url = app.config.get('REDIS_URL', 'redis://redis:6379/0')
        try:
            client = redis.from_url(
                redis_url,
                decode_responses=True,
                socket_connect_timeout=3,
                socket_timeout=3,
            )
            client.ping()
            self.client = client
            logger.info(f"[CACHE] Redis connected: {redis_url}")
        except RedisError as e:
            logger.warning(f"[CACHE] Redis connection failed: {e}. Cache DISABLED.")
    
    def is_available(self) -> bool:
        """Ping Redis; used by the health check."""
        if self.client is None:
            return False
        try:
            return bool(self.client.ping())
        except RedisError:
            return False
    
    def _key(self, module: str, key: str) -> str:
        return f"{self._prefix}:{module}:{key}"
    
    def get(self, module: str, key: str) -> Optional[Any]:
        if self.client is None:
            return None
        try:
            value = self.client.get(self._key(module, key))
            return json.loads(value) if value is not None else None
        except (RedisError, ValueError) as e:
            logger.warning(f"[CACHE] Get error: {e}")
            return None
    
    def set(self, module: str, key: str, value: Any, ttl: Optional[int] = None) -> bool:
        if self.client is None:
            return False
        try:
            self.client.setex(self._key(module, key), ttl or self._default_ttl, json.dumps(value))
            return True
        except (RedisError, TypeError) as e:
            logger.warning(f"[CACHE] Set error: {e}")
            return False
    
    def invalidate_module(self, module: str) -> int:
        """Delete every key of a module."""
        if self.client is None:
            return 0
        pattern = self._key(module, '*')
        try:
            keys = list(self.client.scan_iter(match=pattern, count=100))
            if keys:
                self.client.delete(*keys)
                logger.info(f"[CACHE] INVALIDATE: {pattern} ({len(keys)} keys)")
            return len(keys)
        except RedisError as e:
            logger.warning(f"[CACHE] Invalidate error: {e}")
            return 0
    
    def memoize(self, module: str, key: str, loader_fn: Callable[[], Any], ttl: Optional[int] = None) -> Any:
        """Return the cached value, or load it and cache it."""
        cached = self.get(module, key)
        if cached is not None:
            logger.debug(f"[CACHE] HIT: {module}:{key}")
            return cached
        value = loader_fn()
        self.set(module, key, value, ttl)
        return value


_cache_service: Optional[CacheService] = None


def init_cache(app: Flask) -> None:
    global _cache_service
    _cache_service = CacheService(app)
    app.extensions['cache'] = _cache_service


def get_cache() -> CacheService:
    if _cache_service is None:
        raise RuntimeError("Cache not initialized.")
    return _cache_service


def invalidate_catalog_cache() -> None:
    """Drop cached product listings after stock or price changes."""
    if _cache_service is not None:
        _cache_service.invalidate_module('products')
