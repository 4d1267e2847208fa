"""
Request-scoped dependencies: caller identity, client info, security screen.

User identity arrives from the upstream auth proxy in headers:
- X-User-Id:   authenticated user id
- X-User-Role: "admin" or "member"
"""

import logging
from dataclasses import dataclass
from typing import Any, Optional

from fastapi import Depends, Header, Request

from portal_guard.platform.audit import extract_client_info
from portal_guard.platform.errors import (
    AuthenticationError,
    PermissionDeniedError,
    RateLimitError,
    ValidationError,
)
from portal_guard.security.suspicious import (
    SecurityCheckOptions,
    SecurityCheckResult,
    SecurityGuard,
    get_security_guard,
)

logger = logging.getLogger(__name__)

ADMIN_ROLE = "admin"


@dataclass(frozen=True)
class ClientInfo:
    ip: str
    user_agent: Optional[str] = None


@dataclass(frozen=True)
class CurrentUser:
    user_id: str
    role: str = "member"

    @property
    def is_admin(self) -> bool:
        return self.role == ADMIN_ROLE


def get_client_info(request: Request) -> ClientInfo:
    ip, user_agent = extract_client_info(request)
    return ClientInfo(ip=ip, user_agent=user_agent)


def get_current_user(
    x_user_id: Optional[str] = Header(default=None),
    x_user_role: Optional[str] = Header(default=None),
) -> CurrentUser:
    if not x_user_id or not x_user_id.strip():
        raise AuthenticationError("Missing user context")
    return CurrentUser(user_id=x_user_id.strip(), role=(x_user_role or "member").strip().lower())


def require_admin(user: CurrentUser = Depends(get_current_user)) -> CurrentUser:
    if not user.is_admin:
        logger.warning("Admin route denied", extra={"user_id": user.user_id, "role": user.role})
        raise PermissionDeniedError("Administrator access required")
    return user


def enforce_security_check(
    guard: SecurityGuard,
    client: ClientInfo,
    *,
    action: str,
    input: Any = None,
    rate_limit: bool = True,
) -> SecurityCheckResult:
    """Run the security screen and raise the matching API error on rejection."""
    result = guard.check(
        SecurityCheckOptions(rate_limit=rate_limit, check_suspicious=True, input=input, action=action),
        client.ip,
        client.user_agent,
    )
    if result.passed:
        return result

    if result.reason == "rate_limited":
        retry_after = guard.rate_limiter.reset_time(guard.settings.api_policy.key_for(client.ip))
        raise RateLimitError(result.error, retry_after=retry_after or None)
    if result.reason and result.reason.startswith("rule:"):
        raise ValidationError(result.error)
    raise PermissionDeniedError(result.error, code="REQUEST_BLOCKED")


def get_guard() -> SecurityGuard:
    return get_security_guard()
