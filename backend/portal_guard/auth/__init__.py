"""External authentication provider boundary."""

from portal_guard.auth.provider import (
    AuthenticatedUser,
    AuthProvider,
    AuthProviderError,
    AuthProviderUnavailableError,
    HttpAuthProvider,
    InvalidCredentialsError,
)

__all__ = [
    "AuthenticatedUser",
    "AuthProvider",
    "AuthProviderError",
    "AuthProviderUnavailableError",
    "HttpAuthProvider",
    "InvalidCredentialsError",
]
