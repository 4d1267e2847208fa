"""Configuration module for the portal guard services."""

from portal_guard.config.settings import (
    LockoutSettings,
    RateLimitPolicy,
    Settings,
    get_settings,
    load_settings,
    reset_settings,
)

__all__ = [
    "LockoutSettings",
    "RateLimitPolicy",
    "Settings",
    "get_settings",
    "load_settings",
    "reset_settings",
]
