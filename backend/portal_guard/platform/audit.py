"""
Security event logging for the portal guard.

REQUIREMENTS:
- Every denial, lockout, rate-limit rejection and suspicious-input detection
  emits a structured security event
- Events include: action, outcome, client IP, user agent, user_id, metadata
- PII fields are redacted before the event reaches the log handler
- Passwords and tokens never appear in events

Events are written through the standard ``logging`` module with the event
fields passed in ``extra`` so that a JSON formatter can ship them as-is.
"""

import ipaddress
import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, FrozenSet, Mapping, Optional, Tuple

logger = logging.getLogger(__name__)
security_logger = logging.getLogger("portal_guard.security_events")


class SecurityEventType(str, Enum):
    """
    Enumeration of all security events.

    Add new events here as features are developed.
    """
    LOGIN_ATTEMPT = "auth.login_attempt"
    LOGIN_SUCCESS = "auth.login_success"
    LOGIN_FAILURE = "auth.login_failure"
    ACCOUNT_LOCKOUT = "auth.account_lockout"
    LOCKOUT_CLEARED = "auth.lockout_cleared"

    RATE_LIMIT = "security.rate_limit"
    SUSPICIOUS_ACTIVITY = "security.suspicious_activity"
    SUSPICIOUS_IP_BLOCKED = "security.suspicious_ip_blocked"
    SUSPICIOUS_IP_CLEARED = "security.suspicious_ip_cleared"
    INVALID_INPUT = "security.invalid_input"

    ACCESS_DENIED = "entitlement.access_denied"
    ACCESS_ERROR = "entitlement.access_error"

    COMMENT_TREE_DELETED = "moderation.comment_tree_deleted"
    COMMENT_TREE_DELETE_FAILED = "moderation.comment_tree_delete_failed"


class AuditOutcome(str, Enum):
    """Outcome of the audited action."""
    SUCCESS = "success"
    FAILURE = "failure"
    DENIED = "denied"


class PIIRedactor:
    """
    Redacts PII fields from event metadata before logging.

    Redacted fields are replaced with "[REDACTED]" to maintain
    structure while removing sensitive data.
    """

    REDACTED_FIELDS: FrozenSet[str] = frozenset({
        "email",
        "password",
        "token",
        "access_token",
        "refresh_token",
        "api_key",
        "secret",
        "credential",
        "credentials",
    })

    REDACTION_MARKER = "[REDACTED]"

    @classmethod
    def redact(cls, data: Mapping[str, Any]) -> dict:
        """Recursively redact PII from a mapping."""
        result = {}
        for key, value in data.items():
            lower_key = str(key).lower()
            if lower_key in cls.REDACTED_FIELDS:
                result[key] = cls._redact_value(lower_key, value)
            elif isinstance(value, Mapping):
                result[key] = cls.redact(value)
            else:
                result[key] = value
        return result

    @classmethod
    def _redact_value(cls, key: str, value: Any) -> str:
        # Partial redaction for email (show domain)
        if key == "email" and isinstance(value, str) and "@" in value:
            return mask_email(value)
        return cls.REDACTION_MARKER


def mask_email(email: str) -> str:
    """``jane@example.com`` -> ``***@example.com``."""
    if not email or "@" not in email:
        return PIIRedactor.REDACTION_MARKER
    return f"***@{email.rsplit('@', 1)[1]}"


@dataclass
class SecurityEvent:
    """Security event data structure, redacted on serialisation."""

    event_type: SecurityEventType
    outcome: AuditOutcome = AuditOutcome.SUCCESS
    client_ip: Optional[str] = None
    user_agent: Optional[str] = None
    user_id: Optional[str] = None
    action: Optional[str] = None
    metadata: dict = field(default_factory=dict)
    correlation_id: Optional[str] = field(default_factory=lambda: str(uuid.uuid4()))
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def to_dict(self) -> dict:
        return {
            "security_event": self.event_type.value,
            "outcome": self.outcome.value,
            "client_ip": self.client_ip,
            "user_agent": self.user_agent,
            "user_id": self.user_id,
            "request_action": self.action,
            "event_metadata": PIIRedactor.redact(self.metadata),
            "correlation_id": self.correlation_id,
            "timestamp": self.timestamp.isoformat(),
        }


_WARNING_OUTCOMES = (AuditOutcome.FAILURE, AuditOutcome.DENIED)


def log_security_event(event: SecurityEvent) -> None:
    """Emit ``event``; denials and failures log at WARNING, the rest at INFO."""
    try:
        payload = event.to_dict()
    except Exception as exc:
        logger.error(
            "Failed to serialise security event",
            extra={"security_event": event.event_type.value, "error": str(exc)},
        )
        return

    level = logging.WARNING if event.outcome in _WARNING_OUTCOMES else logging.INFO
    security_logger.log(level, f"Security event: {event.event_type.value}", extra=payload)


# ---------------------------------------------------------------------------
# Client info
# ---------------------------------------------------------------------------

# Most to least trusted. x-forwarded-for may carry "client, proxy1, proxy2".
CLIENT_IP_HEADERS: Tuple[str, ...] = (
    "cf-connecting-ip",
    "x-real-ip",
    "x-forwarded-for",
    "x-client-ip",
)

UNKNOWN_CLIENT = "unknown"


def _valid_ip(candidate: str) -> bool:
    if not candidate or len(candidate) > 45:
        return False
    try:
        ipaddress.ip_address(candidate)
    except ValueError:
        return False
    return True


def resolve_client_ip(headers: Mapping[str, str], peer: Optional[str] = None) -> str:
    """
    Pick the client IP from proxy headers, then the socket peer.

    Header lookups are case-insensitive when ``headers`` is a Starlette
    ``Headers`` object; plain dicts must use lower-case keys.
    """
    for header in CLIENT_IP_HEADERS:
        value = headers.get(header)
        if not value:
            continue
        ip = value.split(",")[0].strip()
        if _valid_ip(ip):
            return ip

    if peer and _valid_ip(peer):
        return peer
    return UNKNOWN_CLIENT


def extract_client_info(request) -> Tuple[str, Optional[str]]:
    """Client IP and user agent from a Starlette/FastAPI request."""
    peer = request.client.host if request.client else None
    return resolve_client_ip(request.headers, peer), request.headers.get("user-agent")
