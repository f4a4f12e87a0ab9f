"""Fast cache tier.

Key/value store with a fixed per-entry TTL, consulted before the durable
store. A miss (absent or expired) is `None`, never an error; only I/O
failures raise `CacheUnavailable`.

Backends:
- RedisCache: GET / SETEX against a pooled redis-py client
- MemoryCache: in-process dict, expiry checked at read time
"""

from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Optional, Protocol

import redis

from .errors import CacheUnavailable

logger = logging.getLogger(__name__)

CACHE_TTL_SECONDS = 24 * 3600


def make_cache_key(indicator_type: str, value: str) -> str:
    return f"scan:{indicator_type}:{value}"


def parse_ttl(ttl: str) -> int:
    """Parse TTL strings like: 3600, 10m, 24h, 7d."""
    s = ttl.strip().lower()
    if s.isdigit():
        return int(s)

    units = {"s": 1, "m": 60, "h": 3600, "d": 86400}
    unit = s[-1:]
    if unit not in units:
        raise ValueError(f"Invalid TTL unit: {ttl}")
    num = int(s[:-1])
    return num * units[unit]


class FastCache(Protocol):
    def get(self, indicator_type: str, value: str) -> Optional[str]: ...

    def set(self, indicator_type: str, value: str, payload: str) -> None: ...


class RedisCache:
    def __init__(self, client: "redis.Redis", *, ttl_seconds: int = CACHE_TTL_SECONDS):
        self.client = client
        self.ttl_seconds = ttl_seconds

    @classmethod
    def from_url(cls, url: str, *, ttl_seconds: int = CACHE_TTL_SECONDS, timeout: float = 5) -> "RedisCache":
        client = redis.Redis.from_url(
            url,
            decode_responses=True,
            socket_timeout=timeout,
            socket_connect_timeout=timeout,
        )
        return cls(client, ttl_seconds=ttl_seconds)

    def get(self, indicator_type: str, value: str) -> Optional[str]:
        key = make_cache_key(indicator_type, value)
        try:
            cached = self.client.get(key)
        except redis.RedisError as e:
            raise CacheUnavailable(f"redis GET failed: {e}", {"key": key}) from e

        if cached is None:
            logger.debug("cache miss: %s", key)
            return None
        if isinstance(cached, bytes):
            cached = cached.decode("utf-8")
        logger.debug("cache hit: %s", key)
        return cached

    def set(self, indicator_type: str, value: str, payload: str) -> None:
        key = make_cache_key(indicator_type, value)
        try:
            self.client.setex(key, self.ttl_seconds, payload)
        except redis.RedisError as e:
            raise CacheUnavailable(f"redis SETEX failed: {e}", {"key": key}) from e
        logger.debug("cached %s for %ds", key, self.ttl_seconds)


@dataclass
class MemoryCache:
    ttl_seconds: int = CACHE_TTL_SECONDS
    clock: Callable[[], float] = time.monotonic
    _entries: dict[str, tuple[float, str]] = field(default_factory=dict, repr=False)
    _lock: Any = field(default_factory=threading.Lock, repr=False)

    def get(self, indicator_type: str, value: str) -> Optional[str]:
        key = make_cache_key(indicator_type, value)
        now = self.clock()
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return None
            expires_at, payload = entry
            if now >= expires_at:
                del self._entries[key]
                return None
        return payload

    def set(self, indicator_type: str, value: str, payload: str) -> None:
        key = make_cache_key(indicator_type, value)
        with self._lock:
            self._entries[key] = (self.clock() + self.ttl_seconds, payload)

    def __len__(self) -> int:
        return len(self._entries)
