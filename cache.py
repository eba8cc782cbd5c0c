"""
Caching utilities for query intelligence.

- ClassificationCache: memoizes fallback (LLM) classifications per normalized
  query. Redis-backed when REDIS_URL is set, otherwise disk-backed via
  diskcache, so results are shared across Gunicorn workers.
- ExpiringValue: a single-slot value with a TTL and a refresh function, for
  expensive derived values (suggested prompts, stats snapshots). Passed to
  its users explicitly instead of living in a module global.
"""
import hashlib
import json
import logging
import os
import time
from threading import Lock

import diskcache
import redis as redis_lib

from config import Config

logger = logging.getLogger(__name__)

CACHE_DIR = os.path.join(Config.DATA_DIR, 'cache')

_redis_client = None


def _get_redis():
    """Return a connected Redis client, or None if Redis is not configured/unreachable."""
    global _redis_client
    if _redis_client is None and Config.REDIS_URL:
        try:
            client = redis_lib.Redis.from_url(Config.REDIS_URL, decode_responses=True)
            client.ping()
            _redis_client = client
            logger.info("Redis cache backend connected")
        except redis_lib.RedisError:
            logger.info("Redis unavailable, falling back to diskcache")
            _redis_client = None
    return _redis_client


class ClassificationCache:
    """
    Cache for fallback classifier results, keyed by normalized query.
    Only successful classifications are stored; failures must be retried.
    """

    _PREFIX = 'cls:'

    def __init__(self, cache_dir=None, ttl_seconds=None, use_redis=True):
        cache_path = cache_dir or os.path.join(CACHE_DIR, 'classifications')
        os.makedirs(cache_path, exist_ok=True)
        self._cache = diskcache.Cache(cache_path, size_limit=16 * 1024 * 1024)
        self._ttl = ttl_seconds if ttl_seconds is not None else Config.CLASSIFICATION_CACHE_TTL
        self._use_redis = use_redis
        self._lock = Lock()
        self._hits = 0
        self._misses = 0

    def _hash_key(self, normalized_query):
        return hashlib.sha256(normalized_query.encode('utf-8')).hexdigest()[:16]

    def _redis(self):
        return _get_redis() if self._use_redis else None

    def get(self, normalized_query):
        """Return the cached {intent, confidence} dict, or None."""
        key = self._hash_key(normalized_query)
        value = None
        r = self._redis()
        if r:
            try:
                raw = r.get(f'{self._PREFIX}{key}')
                value = json.loads(raw) if raw else None
            except redis_lib.RedisError:
                logger.debug("Redis get failed for classification, falling back to diskcache")
                value = self._cache.get(key, default=None)
        else:
            value = self._cache.get(key, default=None)

        with self._lock:
            if value is not None:
                self._hits += 1
            else:
                self._misses += 1
        return value

    def set(self, normalized_query, classification):
        key = self._hash_key(normalized_query)
        r = self._redis()
        if r:
            try:
                r.setex(f'{self._PREFIX}{key}', self._ttl, json.dumps(classification))
                return
            except redis_lib.RedisError:
                logger.debug("Redis set failed for classification, falling back to diskcache")
        self._cache.set(key, classification, expire=self._ttl)

    def stats(self):
        with self._lock:
            total = self._hits + self._misses
            hit_rate = (self._hits / total * 100) if total > 0 else 0
            return {
                'size': len(self._cache),
                'hits': self._hits,
                'misses': self._misses,
                'hit_rate': f"{hit_rate:.1f}%",
                'backend': 'redis' if self._redis() else 'diskcache',
            }

    def clear(self):
        self._cache.clear()
        with self._lock:
            self._hits = 0
            self._misses = 0

    def close(self):
        self._cache.close()


class ExpiringValue:
    """
    Single-slot cache: holds {value, expires_at} and a refresh function.

    On expiry exactly one caller runs the refresh. Concurrent callers get the
    last-known-good value while it runs, or block until it finishes when no
    value has been computed yet. A failed refresh keeps the stale value.
    """

    def __init__(self, refresh, ttl_seconds, clock=time.monotonic, name=None):
        self._refresh = refresh
        self._ttl = ttl_seconds
        self._clock = clock
        self._name = name or getattr(refresh, '__name__', 'value')
        self._refresh_lock = Lock()
        self._value = None
        self._has_value = False
        self._expires_at = 0.0

    def _fresh(self):
        return self._has_value and self._clock() < self._expires_at

    @property
    def expires_at(self):
        return self._expires_at if self._has_value else None

    def get(self):
        if self._fresh():
            return self._value

        # Only wait for the lock when there is nothing to serve
        acquired = self._refresh_lock.acquire(blocking=not self._has_value)
        if not acquired:
            return self._value

        try:
            if self._fresh():
                return self._value
            try:
                value = self._refresh()
            except Exception as e:
                if not self._has_value:
                    raise
                logger.warning(f"Refresh of '{self._name}' failed, serving stale value: {e}")
                return self._value
            self._value = value
            self._has_value = True
            self._expires_at = self._clock() + self._ttl
            logger.debug(f"Refreshed '{self._name}' (ttl={self._ttl}s)")
            return value
        finally:
            self._refresh_lock.release()

    def invalidate(self):
        """Force the next get() to refresh (the stale value is still served to concurrent callers)."""
        self._expires_at = 0.0
