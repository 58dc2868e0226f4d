# backend/consultdesk/services/cache_service.py
"""
Cache Service.

Redis-backed JSON cache used for consultant dashboards, session lists and
public slot listings. Falls back to an in-process dictionary when Redis is
not configured or unreachable, so a cache outage never fails a booking.

Key conventions (all invalidated by pattern):
    sessions:{consultant_id}:*
    clients:{consultant_id}:*
    dashboard_*:{consultant_id}:*
    availability:{consultant_id}:*
    slots:{slug}:*
"""

from datetime import datetime, timedelta
import fnmatch
import json
import logging
from typing import Any, Dict, Optional

import redis
from redis import Redis
from redis.exceptions import RedisError

from ..core.config import settings
from .base import BaseService

logger = logging.getLogger(__name__)


class CacheService:
    """Centralized caching with Redis and an in-memory fallback."""

    def __init__(self, redis_client: Optional[Redis] = None, *, connect: bool = True):
        self.logger = logging.getLogger(__name__)
        self._memory_cache: Dict[str, Any] = {}
        self._memory_expiry: Dict[str, datetime] = {}
        self.redis: Optional[Redis] = redis_client
        if self.redis is None and connect:
            self._setup_redis_connection()
        self._stats: Dict[str, int] = {"hits": 0, "misses": 0, "sets": 0, "deletes": 0, "errors": 0}

    def _setup_redis_connection(self) -> None:
        """Setup Redis connection with fallback to in-memory cache."""
        if not settings.redis_url:
            logger.info("REDIS_URL not set; using in-memory cache")
            return
        try:
            client = redis.from_url(
                settings.redis_url,
                decode_responses=True,
                socket_connect_timeout=5,
                retry_on_timeout=True,
                health_check_interval=30,
            )
            client.ping()
            self.redis = client
            logger.info("Connected to Redis cache")
        except (RedisError, ConnectionError) as e:
            logger.warning(f"Redis not available: {e}. Using in-memory fallback.")
            self.redis = None

    @property
    def is_redis_backed(self) -> bool:
        return self.redis is not None

    @BaseService.measure_operation("cache_get")
    def get(self, key: str) -> Optional[Any]:
        try:
            if self.redis is not None:
                raw = self.redis.get(key)
                if raw is not None:
                    self._stats["hits"] += 1
                    return json.loads(raw)
            elif key in self._memory_cache:
                expires_at = self._memory_expiry.get(key)
                if expires_at is None or datetime.now() < expires_at:
                    self._stats["hits"] += 1
                    return self._memory_cache[key]
                self._memory_cache.pop(key, None)
                self._memory_expiry.pop(key, None)

            self._stats["misses"] += 1
            return None
        except (RedisError, ValueError) as e:
            logger.error(f"Cache get error for key {key}: {e}")
            self._stats["errors"] += 1
            return None

    @BaseService.measure_operation("cache_set")
    def set(self, key: str, value: Any, ttl: Optional[int] = None) -> bool:
        ttl = ttl or settings.cache_ttl_seconds
        try:
            if self.redis is not None:
                self.redis.setex(key, ttl, json.dumps(value, default=str))
            else:
                self._memory_cache[key] = value
                self._memory_expiry[key] = datetime.now() + timedelta(seconds=ttl)
            self._stats["sets"] += 1
            return True
        except (RedisError, TypeError) as e:
            logger.error(f"Cache set error for key {key}: {e}")
            self._stats["errors"] += 1
            return False

    @BaseService.measure_operation("cache_delete")
    def delete(self, key: str) -> bool:
        try:
            if self.redis is not None:
                removed = bool(self.redis.delete(key))
            else:
                removed = key in self._memory_cache
                self._memory_cache.pop(key, None)
                self._memory_expiry.pop(key, None)
            if removed:
                self._stats["deletes"] += 1
            return removed
        except RedisError as e:
            logger.error(f"Cache delete error for key {key}: {e}")
            self._stats["errors"] += 1
            return False

    @BaseService.measure_operation("cache_delete_pattern")
    def delete_pattern(self, pattern: str) -> int:
        """Delete all keys matching a glob pattern (SCAN on Redis)."""
        count = 0
        try:
            if self.redis is not None:
                for key in self.redis.scan_iter(match=pattern):
                    if self.redis.delete(key):
                        count += 1
            else:
                for key in [k for k in self._memory_cache if fnmatch.fnmatch(k, pattern)]:
                    self._memory_cache.pop(key, None)
                    self._memory_expiry.pop(key, None)
                    count += 1
            self._stats["deletes"] += count
            logger.debug(f"Deleted {count} keys matching pattern: {pattern}")
            return count
        except RedisError as e:
            logger.error(f"Cache delete pattern error: {e}")
            self._stats["errors"] += 1
            return 0

    def get_stats(self) -> Dict[str, Any]:
        total = self._stats["hits"] + self._stats["misses"]
        return {
            **self._stats,
            "hit_rate": (self._stats["hits"] / total) if total else 0.0,
            "backend": "redis" if self.redis is not None else "memory",
        }
