"""
Runtime configuration for the entitlement and abuse-protection engine.

All values come from environment variables and are read when the settings
object is built, so tests can patch ``os.environ`` and call
``load_settings()`` again.

Rate-limit policies (fixed window):
- login:          5 attempts / 15 minutes
- api:            30 requests / 1 minute
- user_creation:  10 creations / 1 hour
- sensitive:      3 attempts / 30 minutes

Lockout:
- 10 consecutive failures -> 30 minute lockout
- warning shown once within 3 failures of the threshold
"""

import os
from dataclasses import dataclass, field
from typing import Optional


def _get_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    return int(raw)


def _get_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.lower() in ("true", "1", "yes")


@dataclass(frozen=True)
class RateLimitPolicy:
    """A named fixed-window limit."""

    name: str
    prefix: str
    max_attempts: int
    window_seconds: int

    def key_for(self, identifier: str) -> str:
        return f"{self.prefix}-{identifier}"


def _policy(name: str, prefix: str, env: str, max_attempts: int, window_seconds: int) -> RateLimitPolicy:
    return RateLimitPolicy(
        name=name,
        prefix=prefix,
        max_attempts=_get_int(f"RATE_LIMIT_{env}_MAX", max_attempts),
        window_seconds=_get_int(f"RATE_LIMIT_{env}_WINDOW_SECONDS", window_seconds),
    )


@dataclass(frozen=True)
class LockoutSettings:
    threshold: int = 10
    duration_seconds: int = 30 * 60
    warning_margin: int = 3
    failure_ttl_seconds: int = 24 * 60 * 60


@dataclass(frozen=True)
class Settings:
    """Resolved configuration snapshot."""

    database_url: Optional[str]
    redis_url: Optional[str]
    store_timeout_ms: int
    drip_timezone: str
    enforce_module_permissions: bool
    rate_limit_enabled: bool
    login_policy: RateLimitPolicy
    api_policy: RateLimitPolicy
    user_creation_policy: RateLimitPolicy
    sensitive_policy: RateLimitPolicy
    lockout: LockoutSettings = field(default_factory=LockoutSettings)
    suspicious_ip_ttl_seconds: int = 60 * 60
    auth_provider_url: Optional[str] = None
    auth_provider_api_key: Optional[str] = None
    auth_provider_timeout_seconds: float = 10.0
    sweep_interval_seconds: int = 60


def load_settings() -> Settings:
    """Build a :class:`Settings` from the current environment."""
    database_url = os.getenv("DATABASE_URL")
    if database_url and database_url.startswith("postgres://"):
        database_url = database_url.replace("postgres://", "postgresql://", 1)

    return Settings(
        database_url=database_url,
        redis_url=os.getenv("REDIS_URL") or None,
        store_timeout_ms=_get_int("PORTAL_STORE_TIMEOUT_MS", 5000),
        drip_timezone=os.getenv("PORTAL_DRIP_TIMEZONE", "UTC"),
        enforce_module_permissions=_get_bool("PORTAL_ENFORCE_MODULE_PERMISSIONS", False),
        rate_limit_enabled=_get_bool("RATE_LIMIT_ENABLED", True),
        login_policy=_policy("login", "login", "LOGIN", 5, 15 * 60),
        api_policy=_policy("api", "api", "API", 30, 60),
        user_creation_policy=_policy("user_creation", "create-user", "USER_CREATION", 10, 60 * 60),
        sensitive_policy=_policy("sensitive", "sensitive", "SENSITIVE", 3, 30 * 60),
        lockout=LockoutSettings(
            threshold=_get_int("LOCKOUT_THRESHOLD", 10),
            duration_seconds=_get_int("LOCKOUT_DURATION_SECONDS", 30 * 60),
            warning_margin=_get_int("LOCKOUT_WARNING_MARGIN", 3),
            failure_ttl_seconds=_get_int("LOCKOUT_FAILURE_TTL_SECONDS", 24 * 60 * 60),
        ),
        suspicious_ip_ttl_seconds=_get_int("SUSPICIOUS_IP_TTL_SECONDS", 60 * 60),
        auth_provider_url=os.getenv("AUTH_PROVIDER_URL") or None,
        auth_provider_api_key=os.getenv("AUTH_PROVIDER_API_KEY") or None,
        auth_provider_timeout_seconds=float(os.getenv("AUTH_PROVIDER_TIMEOUT_SECONDS", "10")),
        sweep_interval_seconds=_get_int("SECURITY_SWEEP_INTERVAL_SECONDS", 60),
    )


_settings: Optional[Settings] = None


def get_settings() -> Settings:
    """Return the process-wide settings, loading them on first use."""
    global _settings
    if _settings is None:
        _settings = load_settings()
    return _settings


def reset_settings() -> None:
    global _settings
    _settings = None
