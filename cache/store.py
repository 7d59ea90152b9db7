"""
cache/store.py -- Session cache: user id -> serialized public user snapshot.

The cache is a disposable projection of the user directory. It exists only to
save a directory round-trip on every authenticated request; it is never the
source of truth and must tolerate being empty at any moment.

Two implementations share the SessionCache protocol:
  RedisSessionCache  -- production. Bounded socket timeouts; every RedisError
                        (including timeouts) is logged and degrades to a miss
                        or a no-op, so an outage costs latency, not requests.
  MemorySessionCache -- in-process dict used when REDIS_URL is empty
                        (local development, single-worker deployments).

TTL policy: every write carries a TTL. When the caller passes none, the
cache's default applies -- the refresh-token lifetime, wired in api/main.py.
Entries therefore never outlive the longest session that could read them.

Usage:
    cache = RedisSessionCache.from_url("redis://localhost:6379/0", default_ttl=604800)
    cache.set(user.id, user.public())
    snapshot = cache.get(user.id)      # dict or None
    cache.delete(user.id)
"""

from __future__ import annotations

import json
import logging
import threading
import time
from typing import Optional, Protocol

from redis import Redis
from redis.exceptions import RedisError

logger = logging.getLogger("coursegate.cache")


class SessionCache(Protocol):
    def get(self, user_id: str) -> Optional[dict]: ...

    def set(self, user_id: str, record: dict, ttl: Optional[int] = None) -> None: ...

    def delete(self, user_id: str) -> None: ...


class RedisSessionCache:
    def __init__(self, client: Redis, default_ttl: int) -> None:
        self._client = client
        self.default_ttl = default_ttl

    @classmethod
    def from_url(cls, url: str, default_ttl: int, timeout_seconds: float = 2.0) -> RedisSessionCache:
        client = Redis.from_url(
            url,
            decode_responses=True,
            socket_timeout=timeout_seconds,
            socket_connect_timeout=timeout_seconds,
        )
        return cls(client, default_ttl)

    def get(self, user_id: str) -> Optional[dict]:
        """Return the cached snapshot, or None on a miss or any Redis failure."""
        try:
            raw = self._client.get(user_id)
        except RedisError as e:
            logger.warning("Session cache GET failed, falling back to directory: %s", e)
            return None
        if raw is None:
            return None
        try:
            return json.loads(raw)
        except ValueError:
            logger.warning("Discarding unreadable session cache entry for %s", user_id)
            self.delete(user_id)
            return None

    def set(self, user_id: str, record: dict, ttl: Optional[int] = None) -> None:
        try:
            self._client.setex(user_id, ttl or self.default_ttl, json.dumps(record))
        except RedisError as e:
            logger.warning("Session cache SETEX failed: %s", e)

    def delete(self, user_id: str) -> None:
        try:
            self._client.delete(user_id)
        except RedisError as e:
            logger.warning("Session cache DELETE failed: %s", e)

    def ping(self) -> bool:
        try:
            return bool(self._client.ping())
        except RedisError:
            return False

    def close(self) -> None:
        self._client.close()


class MemorySessionCache:
    """Process-local SessionCache with the same TTL semantics as Redis.

    Values are stored as JSON text so callers get a fresh dict on every get(),
    exactly as they would from Redis.
    """

    def __init__(self, default_ttl: int) -> None:
        self.default_ttl = default_ttl
        self._entries: dict[str, tuple[str, float]] = {}
        self._lock = threading.Lock()

    def get(self, user_id: str) -> Optional[dict]:
        with self._lock:
            entry = self._entries.get(user_id)
            if entry is None:
                return None
            data, expires_at = entry
            if time.monotonic() >= expires_at:
                del self._entries[user_id]
                return None
        return json.loads(data)

    def set(self, user_id: str, record: dict, ttl: Optional[int] = None) -> None:
        expires_at = time.monotonic() + (ttl or self.default_ttl)
        with self._lock:
            self._entries[user_id] = (json.dumps(record), expires_at)

    def delete(self, user_id: str) -> None:
        with self._lock:
            self._entries.pop(user_id, None)

    def ping(self) -> bool:
        return True

    def close(self) -> None:
        with self._lock:
            self._entries.clear()
