import threading
from abc import ABC, abstractmethod
from datetime import datetime, timedelta

import redis

from roombook.core.config import settings


class SyncThrottle(ABC):
    """Grants at most one claim per key within a TTL."""

    @abstractmethod
    def claim(self, key: str, ttl: timedelta, now: datetime) -> bool:
        raise NotImplementedError

    @abstractmethod
    def reset(self) -> None:
        raise NotImplementedError


class InMemorySyncThrottle(SyncThrottle):
    def __init__(self) -> None:
        self._claimed_at: dict[str, datetime] = {}
        self._lock = threading.Lock()

    def claim(self, key: str, ttl: timedelta, now: datetime) -> bool:
        with self._lock:
            previous = self._claimed_at.get(key)
            if previous is not None and now - previous < ttl:
                return False
            self._claimed_at[key] = now
            return True

    def reset(self) -> None:
        with self._lock:
            self._claimed_at.clear()


class RedisSyncThrottle(SyncThrottle):
    def __init__(self, redis_url: str, prefix: str = "sync") -> None:
        self._client = redis.Redis.from_url(
            redis_url,
            socket_connect_timeout=0.2,
            socket_timeout=0.2,
            decode_responses=True,
        )
        self._prefix = prefix

    def claim(self, key: str, ttl: timedelta, now: datetime) -> bool:
        ttl_ms = max(1, int(ttl.total_seconds() * 1000))
        return bool(self._client.set(f"{self._prefix}:{key}", now.isoformat(), nx=True, px=ttl_ms))

    def reset(self) -> None:
        keys = self._client.keys(f"{self._prefix}:*")
        if keys:
            self._client.delete(*keys)


class FallbackSyncThrottle(SyncThrottle):
    def __init__(self, primary: SyncThrottle, fallback: SyncThrottle) -> None:
        self._primary = primary
        self._fallback = fallback

    def claim(self, key: str, ttl: timedelta, now: datetime) -> bool:
        try:
            return self._primary.claim(key=key, ttl=ttl, now=now)
        except redis.RedisError:
            return self._fallback.claim(key=key, ttl=ttl, now=now)

    def reset(self) -> None:
        try:
            self._primary.reset()
        except redis.RedisError:
            pass
        self._fallback.reset()


def _build_sync_throttle() -> SyncThrottle:
    backend = settings.sync_throttle_backend.strip().lower()
    memory = InMemorySyncThrottle()
    if backend == "redis":
        redis_throttle = RedisSyncThrottle(redis_url=settings.sync_throttle_redis_url)
        return FallbackSyncThrottle(primary=redis_throttle, fallback=memory)
    return memory


sync_throttle: SyncThrottle = _build_sync_throttle()
