"""
Brute-force protected login flow.

Order of operations:
1. Lockout on ``login-{email}-{ip}`` (takes precedence, reports minutes left)
2. Login rate-limit window (5 / 15 min)
3. Credential check by the external AuthProvider
4. Failure: count consecutive failure, maybe apply lockout
   Success: clear consecutive failures and the login window

SECURITY: wrong password and unknown email return the SAME message. The
real cause is kept in ``LoginFailureReason`` and only reaches the logs.
"""

import logging
import math
from dataclasses import dataclass
from enum import Enum
from typing import Optional

from portal_guard.auth.provider import (
    AuthenticatedUser,
    AuthProvider,
    AuthProviderUnavailableError,
    InvalidCredentialsError,
)
from portal_guard.platform.audit import (
    AuditOutcome,
    SecurityEvent,
    SecurityEventType,
    log_security_event,
    mask_email,
)
from portal_guard.security.kv_store import KeyValueStoreError
from portal_guard.security.lockout import LockoutGuard, login_identifier, normalize_email

logger = logging.getLogger(__name__)

INVALID_CREDENTIALS_MESSAGE = "Invalid credentials."
MISSING_FIELDS_MESSAGE = "Email and password are required."
UNAVAILABLE_MESSAGE = "Unable to sign in right now. Please try again later."


class LoginFailureReason(str, Enum):
    """Internal cause of a failed login. Never returned to clients."""
    INVALID_INPUT = "invalid_input"
    LOCKED_OUT = "locked_out"
    RATE_LIMITED = "rate_limited"
    INVALID_PASSWORD = "invalid_password"
    UNKNOWN_EMAIL = "unknown_email"
    PROVIDER_UNAVAILABLE = "provider_unavailable"


@dataclass(frozen=True)
class LoginOutcome:
    success: bool
    user: Optional[AuthenticatedUser] = None
    error: Optional[str] = None
    reason: Optional[LoginFailureReason] = None
    retry_after: int = 0
    lockout_remaining: Optional[int] = None  # seconds

    @property
    def redirect_path(self) -> Optional[str]:
        if not self.success or self.user is None:
            return None
        return "/dashboard" if self.user.is_admin else "/members"


def _minutes(seconds: int) -> int:
    return max(1, int(math.ceil(seconds / 60)))


def locked_out_message(remaining_seconds: int) -> str:
    return f"Account temporarily locked. Try again in {_minutes(remaining_seconds)} minutes."


def too_many_attempts_message(window_seconds: int) -> str:
    return f"Too many attempts. Please wait {_minutes(window_seconds)} minutes."


def lockout_warning(attempts_left: int) -> str:
    noun = "attempt" if attempts_left == 1 else "attempts"
    return f" Warning: {attempts_left} {noun} left before your account is temporarily locked."


class LoginGuard:
    """Runs a login attempt through lockout, rate limit and the provider."""

    def __init__(self, provider: AuthProvider, lockout_guard: Optional[LockoutGuard] = None):
        self.provider = provider
        self.lockout_guard = lockout_guard or LockoutGuard()

    def login(
        self,
        email: str,
        password: str,
        client_ip: str,
        user_agent: Optional[str] = None,
    ) -> LoginOutcome:
        normalized = normalize_email(email)
        if not normalized or not password:
            return LoginOutcome(
                success=False,
                error=MISSING_FIELDS_MESSAGE,
                reason=LoginFailureReason.INVALID_INPUT,
            )

        check = self.lockout_guard.check_login_with_lockout(login_identifier(normalized, client_ip))
        if not check.allowed:
            if check.locked_out:
                reason = LoginFailureReason.LOCKED_OUT
                message = locked_out_message(check.lockout_remaining)
            else:
                reason = LoginFailureReason.RATE_LIMITED
                message = too_many_attempts_message(self.lockout_guard.settings.login_policy.window_seconds)
            self._log_failure(normalized, client_ip, user_agent, reason)
            return LoginOutcome(
                success=False,
                error=message,
                reason=reason,
                retry_after=check.retry_after,
                lockout_remaining=check.lockout_remaining,
            )

        try:
            user = self.provider.sign_in(normalized, password)
        except InvalidCredentialsError as exc:
            reason = LoginFailureReason.UNKNOWN_EMAIL if exc.unknown_email else LoginFailureReason.INVALID_PASSWORD
            return self._handle_bad_credentials(normalized, client_ip, user_agent, reason)
        except AuthProviderUnavailableError as exc:
            logger.error(
                "Auth provider unavailable during login",
                extra={"client_ip": client_ip, "error": str(exc)},
            )
            self._log_failure(normalized, client_ip, user_agent, LoginFailureReason.PROVIDER_UNAVAILABLE)
            return LoginOutcome(
                success=False,
                error=UNAVAILABLE_MESSAGE,
                reason=LoginFailureReason.PROVIDER_UNAVAILABLE,
            )

        try:
            self.lockout_guard.record_success(normalized, client_ip)
        except KeyValueStoreError as exc:
            logger.warning(
                "Could not reset failed login count",
                extra={"email": mask_email(normalized), "client_ip": client_ip, "error": str(exc)},
            )

        log_security_event(SecurityEvent(
            event_type=SecurityEventType.LOGIN_SUCCESS,
            client_ip=client_ip,
            user_agent=user_agent,
            user_id=user.user_id,
        ))
        return LoginOutcome(success=True, user=user)

    def _handle_bad_credentials(
        self,
        email: str,
        client_ip: str,
        user_agent: Optional[str],
        reason: LoginFailureReason,
    ) -> LoginOutcome:
        try:
            failure = self.lockout_guard.record_failure(email, client_ip)
        except KeyValueStoreError as exc:
            logger.error(
                "Could not record failed login",
                extra={"email": mask_email(email), "client_ip": client_ip, "error": str(exc)},
            )
            self._log_failure(email, client_ip, user_agent, reason)
            return LoginOutcome(success=False, error=INVALID_CREDENTIALS_MESSAGE, reason=reason)

        self._log_failure(
            email,
            client_ip,
            user_agent,
            reason,
            consecutive_failures=failure.consecutive_failures,
        )

        if failure.lockout_applied:
            duration = self.lockout_guard.settings.lockout.duration_seconds
            log_security_event(SecurityEvent(
                event_type=SecurityEventType.ACCOUNT_LOCKOUT,
                outcome=AuditOutcome.DENIED,
                client_ip=client_ip,
                user_agent=user_agent,
                metadata={"email": email, "duration_seconds": duration},
            ))
            return LoginOutcome(
                success=False,
                error=locked_out_message(duration),
                reason=reason,
                retry_after=duration,
                lockout_remaining=duration,
            )

        message = INVALID_CREDENTIALS_MESSAGE
        if failure.should_warn and failure.attempts_before_lockout > 0:
            message += lockout_warning(failure.attempts_before_lockout)
        return LoginOutcome(success=False, error=message, reason=reason)

    @staticmethod
    def _log_failure(
        email: str,
        client_ip: str,
        user_agent: Optional[str],
        reason: LoginFailureReason,
        consecutive_failures: Optional[int] = None,
    ) -> None:
        metadata = {"email": email, "reason": reason.value}
        if consecutive_failures is not None:
            metadata["consecutive_failures"] = consecutive_failures
        log_security_event(SecurityEvent(
            event_type=SecurityEventType.LOGIN_FAILURE,
            outcome=AuditOutcome.FAILURE,
            client_ip=client_ip,
            user_agent=user_agent,
            metadata=metadata,
        ))
        logger.info(
            "Login rejected",
            extra={"email": mask_email(email), "reason": reason.value, "client_ip": client_ip},
        )
