"""
Key-value state backing the rate limiter, lockout guard and suspicious-IP set.

Two interchangeable implementations:
- InMemoryKeyValueStore: process-local dict with lazy expiry. State is NOT
  shared between worker processes.
- RedisKeyValueStore: shared state across workers via Redis. Values are
  stored as JSON with a TTL.

Both expose the same get/set/expire surface plus a per-key ``lock()`` used
for atomic test-and-increment. TTLs only bound storage; the callers keep
their own timestamps inside each record and decide expiry from those.

Configuration (environment variables):
- REDIS_URL: when set, ``build_kv_store()`` returns a Redis-backed store.
"""

import json
import logging
import math
import os
import threading
from contextlib import contextmanager
from datetime import datetime, timedelta
from typing import Any, Dict, Iterator, Optional, Protocol, Tuple

import redis

from portal_guard.platform.clock import Clock, utc_now

logger = logging.getLogger(__name__)


class KeyValueStoreError(Exception):
    """Raised when the backing store cannot be reached or returns garbage."""

    def __init__(self, message: str, cause: Optional[Exception] = None):
        self.message = message
        self.cause = cause
        super().__init__(message)


class KeyValueStore(Protocol):
    """Storage contract shared by all security counters."""

    def get(self, key: str) -> Optional[Dict[str, Any]]:
        ...

    def set(self, key: str, value: Dict[str, Any], ttl_seconds: float) -> None:
        ...

    def delete(self, key: str) -> None:
        ...

    def expire(self, key: str, ttl_seconds: float) -> bool:
        ...

    def lock(self, key: str):
        ...

    def sweep(self) -> int:
        ...


class InMemoryKeyValueStore:
    """
    Process-local store.

    A single re-entrant lock serialises every read-modify-write, which makes
    test-and-increment atomic for threads inside one process.
    """

    def __init__(self, clock: Optional[Clock] = None):
        self._clock = clock or utc_now
        self._data: Dict[str, Tuple[datetime, Dict[str, Any]]] = {}
        self._mutex = threading.RLock()

    def _is_expired(self, expires_at: datetime) -> bool:
        return self._clock() > expires_at

    def get(self, key: str) -> Optional[Dict[str, Any]]:
        with self._mutex:
            entry = self._data.get(key)
            if entry is None:
                return None
            expires_at, value = entry
            if self._is_expired(expires_at):
                del self._data[key]
                return None
            return dict(value)

    def set(self, key: str, value: Dict[str, Any], ttl_seconds: float) -> None:
        with self._mutex:
            expires_at = self._clock() + timedelta(seconds=ttl_seconds)
            self._data[key] = (expires_at, dict(value))

    def delete(self, key: str) -> None:
        with self._mutex:
            self._data.pop(key, None)

    def expire(self, key: str, ttl_seconds: float) -> bool:
        with self._mutex:
            entry = self._data.get(key)
            if entry is None:
                return False
            self._data[key] = (self._clock() + timedelta(seconds=ttl_seconds), entry[1])
            return True

    @contextmanager
    def lock(self, key: str) -> Iterator[None]:
        with self._mutex:
            yield

    def sweep(self) -> int:
        """Drop every expired entry. Returns the number removed."""
        with self._mutex:
            expired = [k for k, (expires_at, _) in self._data.items() if self._is_expired(expires_at)]
            for key in expired:
                del self._data[key]
            return len(expired)

    def __len__(self) -> int:
        return len(self._data)


class RedisKeyValueStore:
    """
    Redis-backed store.

    Redis evicts keys on TTL so ``sweep()`` has nothing to do. The per-key
    lock is a Redis lock so that separate processes serialise on the same key.
    """

    def __init__(
        self,
        redis_url: str,
        namespace: str = "portal_guard",
        lock_timeout_seconds: float = 5.0,
        lock_blocking_timeout_seconds: float = 2.0,
    ):
        self.redis_url = redis_url
        self.namespace = namespace
        self.lock_timeout_seconds = lock_timeout_seconds
        self.lock_blocking_timeout_seconds = lock_blocking_timeout_seconds
        self._redis: Optional[redis.Redis] = None

    def _get_redis(self) -> redis.Redis:
        """Create the connection lazily so the module imports without Redis."""
        if self._redis is None:
            self._redis = redis.from_url(
                self.redis_url,
                decode_responses=True,
                socket_connect_timeout=2,
                socket_timeout=2,
            )
        return self._redis

    def _key(self, key: str) -> str:
        return f"{self.namespace}:{key}"

    @staticmethod
    def _ttl(ttl_seconds: float) -> int:
        return max(1, int(math.ceil(ttl_seconds)))

    def get(self, key: str) -> Optional[Dict[str, Any]]:
        try:
            raw = self._get_redis().get(self._key(key))
        except redis.RedisError as exc:
            raise KeyValueStoreError(f"Redis get failed for {key}", cause=exc) from exc
        if not raw:
            return None
        try:
            return json.loads(raw)
        except ValueError as exc:
            raise KeyValueStoreError(f"Corrupt value stored under {key}", cause=exc) from exc

    def set(self, key: str, value: Dict[str, Any], ttl_seconds: float) -> None:
        try:
            self._get_redis().set(self._key(key), json.dumps(value), ex=self._ttl(ttl_seconds))
        except redis.RedisError as exc:
            raise KeyValueStoreError(f"Redis set failed for {key}", cause=exc) from exc

    def delete(self, key: str) -> None:
        try:
            self._get_redis().delete(self._key(key))
        except redis.RedisError as exc:
            raise KeyValueStoreError(f"Redis delete failed for {key}", cause=exc) from exc

    def expire(self, key: str, ttl_seconds: float) -> bool:
        try:
            return bool(self._get_redis().expire(self._key(key), self._ttl(ttl_seconds)))
        except redis.RedisError as exc:
            raise KeyValueStoreError(f"Redis expire failed for {key}", cause=exc) from exc

    @contextmanager
    def lock(self, key: str) -> Iterator[None]:
        try:
            redis_lock = self._get_redis().lock(
                self._key(f"lock:{key}"),
                timeout=self.lock_timeout_seconds,
                blocking_timeout=self.lock_blocking_timeout_seconds,
            )
            acquired = redis_lock.acquire()
        except redis.RedisError as exc:
            raise KeyValueStoreError(f"Redis lock failed for {key}", cause=exc) from exc
        if not acquired:
            raise KeyValueStoreError(f"Timed out waiting for lock on {key}")
        try:
            yield
        finally:
            try:
                redis_lock.release()
            except redis.RedisError:
                # Lock expired on its own; the TTL already freed it.
                logger.warning("Failed to release Redis lock", extra={"key": key})

    def sweep(self) -> int:
        return 0


_default_store: Optional[KeyValueStore] = None


def build_kv_store(redis_url: Optional[str] = None) -> KeyValueStore:
    """Redis when a URL is configured, otherwise an in-process store."""
    url = redis_url if redis_url is not None else os.getenv("REDIS_URL")
    if url:
        return RedisKeyValueStore(url)
    return InMemoryKeyValueStore()


def get_kv_store() -> KeyValueStore:
    """Return the module-level store singleton."""
    global _default_store
    if _default_store is None:
        _default_store = build_kv_store()
    return _default_store


def set_kv_store(store: Optional[KeyValueStore]) -> None:
    """Replace the singleton (tests and app start-up)."""
    global _default_store
    _default_store = store
