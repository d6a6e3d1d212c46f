"""
Key-value store for rate limiting and idempotency keys

One store instance is created at startup and kept on app.state, so several
API processes share state through Redis. The in-memory backend is for
single-process development and tests; it evicts entries by TTL.
"""

import logging
import time
from threading import Lock
from typing import Optional

import redis
from fastapi import Request

from .config import KV_BACKEND, REDIS_DB, REDIS_HOST, REDIS_PASSWORD, REDIS_PORT, REDIS_SSL, REDIS_URL

logger = logging.getLogger(__name__)


def get_redis_client() -> redis.Redis:
    """
    Create a Redis client from REDIS_URL, or from REDIS_HOST/REDIS_PORT/... when unset
    Supports both standard Redis and managed Redis (e.g. Upstash)
    """
    redis_url = REDIS_URL
    if redis_url:
        # Mask password in URL for logging
        masked_url = f"{redis_url.split(':')[0]}:****@{redis_url.split('@')[1]}" if "@" in redis_url else "****"
        logger.info(f"📡 Using Redis URL connection: {masked_url}")
        client = redis.from_url(
            redis_url,
            decode_responses=True,
            socket_connect_timeout=15,
            socket_timeout=30,
            retry_on_timeout=True,
            health_check_interval=30,
            max_connections=20,
        )
    else:
        logger.info(f"📡 Using Redis at {REDIS_HOST}:{REDIS_PORT} ({'with' if REDIS_SSL else 'without'} SSL)")
        client = redis.Redis(
            host=REDIS_HOST,
            port=REDIS_PORT,
            password=REDIS_PASSWORD,
            db=REDIS_DB,
            ssl=REDIS_SSL,
            decode_responses=True,
            socket_connect_timeout=15,
            socket_timeout=30,
            retry_on_timeout=True,
            health_check_interval=30,
            max_connections=20,
        )

    try:
        client.ping()
        logger.info("✅ Redis connected successfully")
    except Exception as e:
        logger.error(f"❌ Failed to connect to Redis: {str(e)}")
        raise
    return client


class KeyValueStore:
    """String values with a TTL in seconds"""

    def get(self, key: str) -> Optional[str]:
        raise NotImplementedError

    def set(self, key: str, value: str, ttl: int) -> None:
        raise NotImplementedError

    def set_if_absent(self, key: str, value: str, ttl: int) -> bool:
        """Store value only if key is unset. Returns True when stored."""
        raise NotImplementedError

    def delete(self, key: str) -> None:
        raise NotImplementedError

    def hit(self, key: str, window_seconds: int) -> tuple[int, int]:
        """Count one hit in a fixed window. Returns (count including this hit, seconds left)."""
        raise NotImplementedError


class MemoryKeyValueStore(KeyValueStore):
    """Process-local store. Expired entries are dropped on access and by periodic sweeps."""

    CLEANUP_INTERVAL = 60

    def __init__(self, clock=time.monotonic):
        self._clock = clock
        self._data: dict[str, tuple[str, float]] = {}
        self._lock = Lock()
        self._last_cleanup = clock()

    def _live(self, key: str, now: float) -> Optional[tuple[str, float]]:
        entry = self._data.get(key)
        if entry and now >= entry[1]:
            del self._data[key]
            return None
        return entry

    def _cleanup(self, now: float) -> None:
        if now - self._last_cleanup < self.CLEANUP_INTERVAL:
            return
        expired = [k for k, (_, expires_at) in self._data.items() if now >= expires_at]
        for k in expired:
            del self._data[k]
        if expired:
            logger.debug(f"🧹 Cleaned up {len(expired)} expired key(s)")
        self._last_cleanup = now

    def get(self, key: str) -> Optional[str]:
        with self._lock:
            entry = self._live(key, self._clock())
            return entry[0] if entry else None

    def set(self, key: str, value: str, ttl: int) -> None:
        with self._lock:
            now = self._clock()
            self._cleanup(now)
            self._data[key] = (value, now + ttl)

    def set_if_absent(self, key: str, value: str, ttl: int) -> bool:
        with self._lock:
            now = self._clock()
            self._cleanup(now)
            if self._live(key, now):
                return False
            self._data[key] = (value, now + ttl)
            return True

    def delete(self, key: str) -> None:
        with self._lock:
            self._data.pop(key, None)

    def hit(self, key: str, window_seconds: int) -> tuple[int, int]:
        with self._lock:
            now = self._clock()
            self._cleanup(now)
            entry = self._live(key, now)
            if entry is None:
                count, expires_at = 1, now + window_seconds
            else:
                count, expires_at = int(entry[0]) + 1, entry[1]
            self._data[key] = (str(count), expires_at)
            return count, max(0, int(expires_at - now))


class RedisKeyValueStore(KeyValueStore):
    def __init__(self, client: redis.Redis):
        self.client = client

    def get(self, key: str) -> Optional[str]:
        return self.client.get(key)

    def set(self, key: str, value: str, ttl: int) -> None:
        self.client.set(key, value, ex=ttl)

    def set_if_absent(self, key: str, value: str, ttl: int) -> bool:
        return bool(self.client.set(key, value, ex=ttl, nx=True))

    def delete(self, key: str) -> None:
        self.client.delete(key)

    def hit(self, key: str, window_seconds: int) -> tuple[int, int]:
        # INCR + EXPIRE NX keeps the window fixed from its first hit
        pipe = self.client.pipeline()
        pipe.incr(key)
        pipe.expire(key, window_seconds, nx=True)
        pipe.ttl(key)
        count, _, ttl = pipe.execute()
        return int(count), max(0, int(ttl))


def create_kv_store(backend: Optional[str] = None) -> KeyValueStore:
    backend = (backend or KV_BACKEND).lower()
    if backend == "memory":
        logger.info("🗄️ Using in-memory key-value store")
        return MemoryKeyValueStore()
    return RedisKeyValueStore(get_redis_client())


def get_kv_store(request: Request) -> KeyValueStore:
    """Dependency: the store created at startup"""
    return request.app.state.kv_store
