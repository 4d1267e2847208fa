"""
Abuse protection for the member portal.

This package provides:
- KeyValueStore: in-memory or Redis state shared by the guards below
- RateLimiter: fixed-window counters (login, api, user creation, sensitive)
- LockoutGuard: consecutive-failure lockout for logins
- LoginGuard: full brute-force protected login flow
- SecurityGuard: suspicious-IP registry and suspicious-input scan
"""

from portal_guard.security.kv_store import (
    InMemoryKeyValueStore,
    KeyValueStore,
    KeyValueStoreError,
    RedisKeyValueStore,
    build_kv_store,
    get_kv_store,
    set_kv_store,
)
from portal_guard.security.rate_limit import RateLimiter, RateLimitResult, get_rate_limiter
from portal_guard.security.lockout import (
    FailureRecord,
    LockoutGuard,
    LockoutState,
    LoginCheck,
    get_lockout_guard,
    login_identifier,
    normalize_email,
    split_login_identifier,
)
from portal_guard.security.login import LoginFailureReason, LoginGuard, LoginOutcome
from portal_guard.security.suspicious import (
    DEFAULT_RULES,
    DetectionRule,
    SecurityCheckOptions,
    SecurityCheckResult,
    SecurityGuard,
    Severity,
    ThreatCategory,
    find_match,
    get_security_guard,
    scan,
    security_check,
)

__all__ = [
    # Store
    "InMemoryKeyValueStore",
    "KeyValueStore",
    "KeyValueStoreError",
    "RedisKeyValueStore",
    "build_kv_store",
    "get_kv_store",
    "set_kv_store",
    # Rate limiting
    "RateLimiter",
    "RateLimitResult",
    "get_rate_limiter",
    # Lockout
    "FailureRecord",
    "LockoutGuard",
    "LockoutState",
    "LoginCheck",
    "get_lockout_guard",
    "login_identifier",
    "normalize_email",
    "split_login_identifier",
    # Login
    "LoginFailureReason",
    "LoginGuard",
    "LoginOutcome",
    # Suspicious input
    "DEFAULT_RULES",
    "DetectionRule",
    "SecurityCheckOptions",
    "SecurityCheckResult",
    "SecurityGuard",
    "Severity",
    "ThreatCategory",
    "find_match",
    "get_security_guard",
    "scan",
    "security_check",
]
