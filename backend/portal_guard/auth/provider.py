"""
External authentication provider client.

Credential verification is delegated to a hosted auth service exposing a
password grant endpoint (``POST {base}/auth/v1/token?grant_type=password``).
This module only wraps that call; the login protection around it lives in
``portal_guard.security.login``.

SECURITY:
- The API key is read from AUTH_PROVIDER_API_KEY and never logged
- Passwords are never logged
- Every request carries a timeout; timeouts surface as
  AuthProviderUnavailableError
"""

import logging
from dataclasses import dataclass, field
from typing import Optional, Protocol

import httpx

from portal_guard.config.settings import Settings, get_settings

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class AuthenticatedUser:
    user_id: str
    email: str
    role: Optional[str] = None
    metadata: dict = field(default_factory=dict)

    @property
    def is_admin(self) -> bool:
        return self.role == "admin"


class AuthProviderError(Exception):
    """Base exception for auth provider failures."""
    pass


class InvalidCredentialsError(AuthProviderError):
    """Password rejected, or no account exists for the email."""

    def __init__(self, message: str = "Invalid credentials", unknown_email: bool = False):
        self.unknown_email = unknown_email
        super().__init__(message)


class AuthProviderUnavailableError(AuthProviderError):
    """Provider unreachable, timed out, or returned an unexpected response."""
    pass


class AuthProvider(Protocol):
    def sign_in(self, email: str, password: str) -> AuthenticatedUser:
        ...


class HttpAuthProvider:
    """Password-grant client over httpx."""

    def __init__(
        self,
        base_url: str,
        api_key: str,
        timeout_seconds: float = 10.0,
        client: Optional[httpx.Client] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.api_key = api_key
        self._http_client = client or httpx.Client(timeout=timeout_seconds)

    @classmethod
    def from_settings(cls, settings: Optional[Settings] = None) -> "HttpAuthProvider":
        settings = settings or get_settings()
        if not settings.auth_provider_url or not settings.auth_provider_api_key:
            raise AuthProviderUnavailableError("Auth provider is not configured")
        return cls(
            base_url=settings.auth_provider_url,
            api_key=settings.auth_provider_api_key,
            timeout_seconds=settings.auth_provider_timeout_seconds,
        )

    def sign_in(self, email: str, password: str) -> AuthenticatedUser:
        try:
            response = self._http_client.post(
                f"{self.base_url}/auth/v1/token",
                params={"grant_type": "password"},
                headers={"apikey": self.api_key},
                json={"email": email, "password": password},
            )
        except httpx.TimeoutException as exc:
            logger.error("Auth provider timed out", extra={"error_type": type(exc).__name__})
            raise AuthProviderUnavailableError("Auth provider timed out") from exc
        except httpx.HTTPError as exc:
            logger.error(
                "Auth provider request failed",
                extra={"error": str(exc), "error_type": type(exc).__name__},
            )
            raise AuthProviderUnavailableError("Auth provider request failed") from exc

        if response.status_code in (400, 401, 422):
            body = _safe_json(response)
            error_code = str(body.get("error_code") or body.get("error") or "")
            raise InvalidCredentialsError(unknown_email=error_code == "user_not_found")

        if response.status_code >= 300:
            logger.error(
                "Auth provider returned unexpected status",
                extra={"status_code": response.status_code},
            )
            raise AuthProviderUnavailableError(f"Auth provider returned {response.status_code}")

        body = _safe_json(response)
        user = body.get("user") or {}
        user_id = user.get("id")
        if not user_id:
            raise AuthProviderUnavailableError("Auth provider response missing user id")

        user_metadata = user.get("user_metadata") or {}
        return AuthenticatedUser(
            user_id=str(user_id),
            email=str(user.get("email") or email),
            role=user_metadata.get("role"),
            metadata=dict(user_metadata),
        )

    def close(self) -> None:
        self._http_client.close()


def _safe_json(response: httpx.Response) -> dict:
    try:
        data = response.json()
    except ValueError:
        return {}
    return data if isinstance(data, dict) else {}
