"""
Time-to-live cache for configuration, feature flags and pricing lookups.

Supports an in-memory map for tests/local runs and a Redis-backed
implementation shared between instances in production.
"""

from __future__ import annotations

import json
import logging
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Optional, Protocol, Tuple

import redis
from redis import exceptions as redis_exceptions

logger = logging.getLogger(__name__)


class TtlCache(Protocol):
    """Minimal cache interface; values must be JSON-serializable."""

    def get(self, key: str) -> Optional[Any]:
        ...

    def set(self, key: str, value: Any, ttl_seconds: int | None = None) -> None:
        ...

    def delete(self, key: str) -> None:
        ...


@dataclass
class InMemoryTtlCache:
    """Dict of key -> (expires_at, value). No locking; one invocation per instance."""

    default_ttl_seconds: int = 300
    clock: Callable[[], float] = time.monotonic
    entries: Dict[str, Tuple[float, Any]] = field(default_factory=dict)

    def get(self, key: str) -> Optional[Any]:
        entry = self.entries.get(key)
        if entry is None:
            return None
        expires_at, value = entry
        if self.clock() >= expires_at:
            del self.entries[key]
            return None
        return value

    def set(self, key: str, value: Any, ttl_seconds: int | None = None) -> None:
        ttl = self.default_ttl_seconds if ttl_seconds is None else ttl_seconds
        self.entries[key] = (self.clock() + ttl, value)

    def delete(self, key: str) -> None:
        self.entries.pop(key, None)

    def clear(self) -> None:
        self.entries.clear()


@dataclass
class RedisTtlCache:
    """Redis-backed cache storing JSON values with SETEX."""

    url: str
    key_prefix: str = "disciplefy:cache:"
    default_ttl_seconds: int = 300

    def __post_init__(self):
        self.client = redis.Redis.from_url(self.url)

    def _key(self, key: str) -> str:
        return f"{self.key_prefix}{key}"

    def get(self, key: str) -> Optional[Any]:
        try:
            raw = self.client.get(self._key(key))
        except redis_exceptions.ConnectionError:
            # Managed Redis drops idle connections. Treat as a miss and reconnect.
            self.client = redis.Redis.from_url(self.url)
            return None
        if raw is None:
            return None
        return json.loads(raw)

    def set(self, key: str, value: Any, ttl_seconds: int | None = None) -> None:
        ttl = self.default_ttl_seconds if ttl_seconds is None else ttl_seconds
        try:
            self.client.setex(self._key(key), ttl, json.dumps(value))
        except redis_exceptions.ConnectionError:
            logger.warning("Redis unavailable, skipping cache write for %s", key)
            self.client = redis.Redis.from_url(self.url)

    def delete(self, key: str) -> None:
        try:
            self.client.delete(self._key(key))
        except redis_exceptions.ConnectionError:
            self.client = redis.Redis.from_url(self.url)


def get_or_load(
    cache: TtlCache,
    key: str,
    loader: Callable[[], Any],
    ttl_seconds: int | None = None,
) -> Any:
    """Returns the cached value for key, loading and storing it on a miss."""
    value = cache.get(key)
    if value is not None:
        return value
    value = loader()
    cache.set(key, value, ttl_seconds)
    return value
