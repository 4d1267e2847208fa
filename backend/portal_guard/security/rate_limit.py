"""
Fixed-window rate limiting keyed by an arbitrary identifier.

Each key maps to ``{count, reset_at}``:
1. No record, or ``now > reset_at``  -> new window, count = 1, allow
2. ``count >= max_attempts``          -> deny, count unchanged
3. Otherwise                          -> count += 1, allow

Test-and-increment runs under the store's per-key lock. Expired records are
replaced lazily on the next check and removed in bulk by ``sweep()``.

Named policies (see portal_guard.config.settings):
- login:          5 / 15 min   key ``login-{identifier}``
- api:            30 / 1 min   key ``api-{identifier}``
- user creation:  10 / 1 h     key ``create-user-{identifier}``
- sensitive:      3 / 30 min   key ``sensitive-{identifier}``

Store failures deny the request (fail closed) and log a warning.
"""

import logging
import math
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Optional

from portal_guard.config.settings import RateLimitPolicy, Settings, get_settings
from portal_guard.platform.clock import Clock, utc_now
from portal_guard.security.kv_store import KeyValueStore, KeyValueStoreError, get_kv_store

logger = logging.getLogger(__name__)

RATE_LIMIT_NAMESPACE = "ratelimit"


@dataclass
class RateLimitResult:
    """
    Result of a rate limit check.

    Attributes:
        allowed:     Whether the attempt is allowed.
        remaining:   Attempts left in the current window.
        limit:       Maximum attempts per window.
        reset_at:    When the current window ends.
        retry_after: Seconds until the client should retry (0 if allowed).
    """

    allowed: bool
    remaining: int
    limit: int
    reset_at: datetime
    retry_after: int


class RateLimiter:
    """Fixed-window limiter over a :class:`KeyValueStore`."""

    def __init__(
        self,
        store: Optional[KeyValueStore] = None,
        clock: Optional[Clock] = None,
        settings: Optional[Settings] = None,
    ):
        self._store = store if store is not None else get_kv_store()
        self._clock = clock or utc_now
        self.settings = settings or get_settings()

    @staticmethod
    def _storage_key(key: str) -> str:
        return f"{RATE_LIMIT_NAMESPACE}:{key}"

    def check(self, key: str, max_attempts: int, window_seconds: int) -> RateLimitResult:
        """Consume one attempt for ``key`` if the window allows it."""
        now = self._clock()
        now_ts = now.timestamp()

        if max_attempts <= 0:
            return RateLimitResult(
                allowed=False,
                remaining=0,
                limit=max_attempts,
                reset_at=now + timedelta(seconds=window_seconds),
                retry_after=window_seconds,
            )

        storage_key = self._storage_key(key)
        try:
            with self._store.lock(storage_key):
                record = self._store.get(storage_key)

                if record is None or now_ts > float(record["reset_at"]):
                    reset_ts = now_ts + window_seconds
                    self._store.set(storage_key, {"count": 1, "reset_at": reset_ts}, window_seconds)
                    return RateLimitResult(
                        allowed=True,
                        remaining=max_attempts - 1,
                        limit=max_attempts,
                        reset_at=_from_ts(reset_ts),
                        retry_after=0,
                    )

                count = int(record["count"])
                reset_ts = float(record["reset_at"])

                if count >= max_attempts:
                    return RateLimitResult(
                        allowed=False,
                        remaining=0,
                        limit=max_attempts,
                        reset_at=_from_ts(reset_ts),
                        retry_after=max(1, int(math.ceil(reset_ts - now_ts))),
                    )

                count += 1
                self._store.set(
                    storage_key,
                    {"count": count, "reset_at": reset_ts},
                    max(1.0, reset_ts - now_ts),
                )
                return RateLimitResult(
                    allowed=True,
                    remaining=max(0, max_attempts - count),
                    limit=max_attempts,
                    reset_at=_from_ts(reset_ts),
                    retry_after=0,
                )
        except (KeyValueStoreError, KeyError, TypeError, ValueError) as exc:
            logger.warning(
                "Rate limit state unavailable - denying request (fail-closed)",
                extra={
                    "key": key,
                    "error": str(exc),
                    "error_type": type(exc).__name__,
                },
            )
            return RateLimitResult(
                allowed=False,
                remaining=0,
                limit=max_attempts,
                reset_at=now + timedelta(seconds=window_seconds),
                retry_after=window_seconds,
            )

    def allow(self, key: str, max_attempts: int, window_seconds: int) -> bool:
        return self.check(key, max_attempts, window_seconds).allowed

    def check_policy(self, policy: RateLimitPolicy, identifier: str) -> RateLimitResult:
        result = self.check(policy.key_for(identifier), policy.max_attempts, policy.window_seconds)
        if not result.allowed:
            logger.warning(
                "Rate limit triggered",
                extra={
                    "action": "rate_limit.triggered",
                    "policy": policy.name,
                    "limit": result.limit,
                    "window_seconds": policy.window_seconds,
                    "retry_after": result.retry_after,
                },
            )
        return result

    def check_login(self, identifier: str) -> bool:
        return self.check_policy(self.settings.login_policy, identifier).allowed

    def check_api(self, identifier: str) -> bool:
        return self.check_policy(self.settings.api_policy, identifier).allowed

    def check_user_creation(self, identifier: str) -> bool:
        return self.check_policy(self.settings.user_creation_policy, identifier).allowed

    def check_sensitive_action(self, identifier: str) -> bool:
        return self.check_policy(self.settings.sensitive_policy, identifier).allowed

    def reset_time(self, key: str) -> int:
        """Seconds until ``key``'s window resets, 0 when no window is open."""
        record = self._store.get(self._storage_key(key))
        if record is None:
            return 0
        remaining = float(record["reset_at"]) - self._clock().timestamp()
        if remaining <= 0:
            return 0
        return int(math.ceil(remaining))

    def clear(self, key: str) -> None:
        self._store.delete(self._storage_key(key))

    def sweep(self) -> int:
        return self._store.sweep()


def _from_ts(ts: float) -> datetime:
    return datetime.fromtimestamp(ts, tz=timezone.utc)


_rate_limiter_instance: Optional[RateLimiter] = None


def get_rate_limiter() -> RateLimiter:
    """Return the module-level :class:`RateLimiter` singleton."""
    global _rate_limiter_instance
    if _rate_limiter_instance is None:
        _rate_limiter_instance = RateLimiter()
    return _rate_limiter_instance


def reset_rate_limiter() -> None:
    global _rate_limiter_instance
    _rate_limiter_instance = None
