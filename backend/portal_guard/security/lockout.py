"""
Escalating login lockout.

Tracks CONSECUTIVE failures per normalized email, independently of the
login rate-limit window. When the failure count reaches the threshold
(default 10) a lockout (default 30 minutes) is applied on the key
``login-{email}-{client_ip}``. Any successful login clears the failure
counter and the login rate-limit key.

At the top of the login flow lockout state is checked first; only when no
lockout is active is the login rate-limit window consumed.
"""

import logging
import math
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Optional, Tuple

from portal_guard.config.settings import Settings, get_settings
from portal_guard.platform.clock import Clock, utc_now
from portal_guard.security.kv_store import KeyValueStore, KeyValueStoreError, get_kv_store
from portal_guard.security.rate_limit import RateLimiter, get_rate_limiter

logger = logging.getLogger(__name__)

LOCKOUT_NAMESPACE = "lockout"
FAILURE_NAMESPACE = "login-failures"
UNKNOWN_CLIENT_IP = "unknown"


def normalize_email(email: str) -> str:
    return str(email or "").strip().lower()


def login_identifier(email: str, client_ip: Optional[str] = None) -> str:
    """Identifier used for both the login window and the lockout key."""
    return f"{normalize_email(email)}-{client_ip or UNKNOWN_CLIENT_IP}"


def split_login_identifier(identifier: str) -> Tuple[str, str]:
    """Inverse of :func:`login_identifier`; client IPs never contain a hyphen."""
    email, sep, client_ip = identifier.rpartition("-")
    if not sep or not email:
        return normalize_email(identifier), UNKNOWN_CLIENT_IP
    return normalize_email(email), client_ip or UNKNOWN_CLIENT_IP


@dataclass(frozen=True)
class LoginCheck:
    """Outcome of the pre-authentication check."""

    allowed: bool
    remaining_attempts: int
    lockout_remaining: Optional[int] = None  # seconds
    retry_after: int = 0

    @property
    def locked_out(self) -> bool:
        return self.lockout_remaining is not None and self.lockout_remaining > 0


@dataclass(frozen=True)
class LockoutState:
    locked: bool
    remaining_seconds: Optional[int] = None
    locked_until: Optional[datetime] = None


@dataclass(frozen=True)
class FailureRecord:
    """Result of recording a failed login."""

    consecutive_failures: int
    attempts_before_lockout: int
    lockout_applied: bool
    should_warn: bool


class LockoutGuard:
    """Consecutive-failure counter with escalating lockout."""

    def __init__(
        self,
        rate_limiter: Optional[RateLimiter] = None,
        store: Optional[KeyValueStore] = None,
        clock: Optional[Clock] = None,
        settings: Optional[Settings] = None,
    ):
        self.settings = settings or get_settings()
        self._store = store if store is not None else get_kv_store()
        self._clock = clock or utc_now
        self.rate_limiter = rate_limiter or RateLimiter(
            store=self._store, clock=self._clock, settings=self.settings
        )

    @property
    def threshold(self) -> int:
        return self.settings.lockout.threshold

    def _login_key(self, identifier: str) -> str:
        return self.settings.login_policy.key_for(identifier)

    @staticmethod
    def _lockout_storage_key(key: str) -> str:
        return f"{LOCKOUT_NAMESPACE}:{key}"

    @staticmethod
    def _failure_storage_key(email: str) -> str:
        return f"{FAILURE_NAMESPACE}:{normalize_email(email)}"

    # -- Lockout state ----------------------------------------------------

    def is_locked_out(self, key: str) -> LockoutState:
        """Check lockout for a full key such as ``login-{email}-{ip}``."""
        storage_key = self._lockout_storage_key(key)
        record = self._store.get(storage_key)
        if not record:
            return LockoutState(locked=False)

        now_ts = self._clock().timestamp()
        locked_until_ts = float(record["locked_until"])
        if now_ts < locked_until_ts:
            return LockoutState(
                locked=True,
                remaining_seconds=int(math.ceil(locked_until_ts - now_ts)),
                locked_until=datetime.fromtimestamp(locked_until_ts, tz=timezone.utc),
            )

        self._store.delete(storage_key)
        return LockoutState(locked=False)

    def apply_lockout(self, key: str, duration_seconds: Optional[int] = None) -> datetime:
        """Lock ``key`` for ``duration_seconds`` (default from settings)."""
        duration = duration_seconds if duration_seconds is not None else self.settings.lockout.duration_seconds
        locked_until = self._clock() + timedelta(seconds=duration)
        self._store.set(
            self._lockout_storage_key(key),
            {"locked_until": locked_until.timestamp()},
            duration,
        )
        logger.warning(
            "Login lockout applied",
            extra={
                "action": "auth.account_lockout",
                "lockout_key": key,
                "duration_seconds": duration,
                "locked_until": locked_until.isoformat(),
            },
        )
        return locked_until

    def clear_lockout(self, key: str, email: Optional[str] = None) -> None:
        """
        Administrative unlock; also resets the login window for ``key``.

        With ``email`` the consecutive-failure count is reset too.
        """
        self._store.delete(self._lockout_storage_key(key))
        self.rate_limiter.clear(key)
        if email:
            self._store.delete(self._failure_storage_key(email))

    def unlock_login(self, identifier: str) -> str:
        """Clear lockout, login window and failure count for ``{email}-{ip}``."""
        email, client_ip = split_login_identifier(identifier)
        key = self._login_key(login_identifier(email, client_ip))
        self.clear_lockout(key, email=email)
        return key

    # -- Login flow -------------------------------------------------------

    def check_login_with_lockout(self, identifier: str) -> LoginCheck:
        """Lockout first, then the login rate-limit window."""
        key = self._login_key(identifier)
        try:
            lockout = self.is_locked_out(key)
        except (KeyValueStoreError, KeyError, TypeError, ValueError) as exc:
            logger.warning(
                "Lockout state unavailable - denying login (fail-closed)",
                extra={"error": str(exc), "error_type": type(exc).__name__},
            )
            return LoginCheck(allowed=False, remaining_attempts=0, retry_after=60)

        if lockout.locked:
            return LoginCheck(
                allowed=False,
                remaining_attempts=0,
                lockout_remaining=lockout.remaining_seconds,
                retry_after=lockout.remaining_seconds or 0,
            )

        result = self.rate_limiter.check_policy(self.settings.login_policy, identifier)
        return LoginCheck(
            allowed=result.allowed,
            remaining_attempts=result.remaining,
            retry_after=result.retry_after,
        )

    def consecutive_failures(self, email: str) -> int:
        record = self._store.get(self._failure_storage_key(email))
        if not record:
            return 0
        return int(record.get("count", 0))

    def should_warn(self, consecutive_failures: int) -> bool:
        return consecutive_failures >= self.threshold - self.settings.lockout.warning_margin

    def record_failure(self, email: str, client_ip: Optional[str] = None) -> FailureRecord:
        """
        Count a failed attempt for ``email``.

        Reaching the threshold applies a lockout to ``login-{email}-{ip}``.
        Failures past the threshold keep the account locked out each time the
        previous lockout has lapsed, until a success resets the counter.
        """
        storage_key = self._failure_storage_key(email)
        with self._store.lock(storage_key):
            record = self._store.get(storage_key) or {}
            count = int(record.get("count", 0)) + 1
            self._store.set(
                storage_key,
                {"count": count, "last_failure_at": self._clock().timestamp()},
                self.settings.lockout.failure_ttl_seconds,
            )

        lockout_applied = False
        if count >= self.threshold:
            key = self._login_key(login_identifier(email, client_ip))
            if not self.is_locked_out(key).locked:
                self.apply_lockout(key)
                lockout_applied = True

        return FailureRecord(
            consecutive_failures=count,
            attempts_before_lockout=max(0, self.threshold - count),
            lockout_applied=lockout_applied,
            should_warn=self.should_warn(count),
        )

    def record_success(self, email: str, client_ip: Optional[str] = None) -> None:
        """Reset consecutive failures and the login window for this email."""
        self._store.delete(self._failure_storage_key(email))
        self.rate_limiter.clear(self._login_key(login_identifier(email, client_ip)))


_lockout_guard_instance: Optional[LockoutGuard] = None


def get_lockout_guard() -> LockoutGuard:
    """Return the module-level :class:`LockoutGuard` singleton."""
    global _lockout_guard_instance
    if _lockout_guard_instance is None:
        _lockout_guard_instance = LockoutGuard(rate_limiter=get_rate_limiter())
    return _lockout_guard_instance


def reset_lockout_guard() -> None:
    global _lockout_guard_instance
    _lockout_guard_instance = None
