"""
Login route.

Handles:
- POST /api/auth/login: credential sign-in behind lockout and rate limits

Unknown email and wrong password return the same message. Lockouts and
rate limits return 429 with Retry-After.
"""

import logging

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field

from portal_guard.api.dependencies.request_context import ClientInfo, get_client_info
from portal_guard.auth.provider import AuthProviderUnavailableError, HttpAuthProvider
from portal_guard.platform.errors import (
    AuthenticationError,
    RateLimitError,
    ServiceUnavailableError,
    ValidationError,
)
from portal_guard.security.lockout import get_lockout_guard
from portal_guard.security.login import LoginFailureReason, LoginGuard, LoginOutcome

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/auth", tags=["auth"])


class LoginRequest(BaseModel):
    email: str = Field(default="", description="Account email")
    password: str = Field(default="", description="Account password")


class LoginResponse(BaseModel):
    success: bool
    user_id: str
    role: str
    redirect: str


def get_login_guard() -> LoginGuard:
    try:
        provider = HttpAuthProvider.from_settings()
    except AuthProviderUnavailableError as exc:
        logger.error("Auth provider not configured", extra={"error": str(exc)})
        raise ServiceUnavailableError("Sign-in is not available") from exc
    return LoginGuard(provider, lockout_guard=get_lockout_guard())


def _raise_for_outcome(outcome: LoginOutcome) -> None:
    if outcome.reason is LoginFailureReason.INVALID_INPUT:
        raise ValidationError(outcome.error)
    if outcome.reason is LoginFailureReason.PROVIDER_UNAVAILABLE:
        raise ServiceUnavailableError(outcome.error)
    if outcome.reason is LoginFailureReason.LOCKED_OUT or outcome.lockout_remaining:
        raise RateLimitError(outcome.error, retry_after=outcome.retry_after, code="ACCOUNT_LOCKED")
    if outcome.reason is LoginFailureReason.RATE_LIMITED:
        raise RateLimitError(outcome.error, retry_after=outcome.retry_after)
    raise AuthenticationError(outcome.error)


@router.post("/login", response_model=LoginResponse)
def login(
    body: LoginRequest,
    client: ClientInfo = Depends(get_client_info),
    guard: LoginGuard = Depends(get_login_guard),
) -> LoginResponse:
    outcome = guard.login(body.email, body.password, client.ip, client.user_agent)
    if not outcome.success:
        _raise_for_outcome(outcome)

    user = outcome.user
    return LoginResponse(
        success=True,
        user_id=user.user_id,
        role=user.role or "member",
        redirect=outcome.redirect_path,
    )