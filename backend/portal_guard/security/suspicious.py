"""
Suspicious-input detection for mutating requests.

The scanner walks strings, sequences, mappings (keys and values) and
pydantic models, testing every string leaf against ``DEFAULT_RULES``. The
first match short-circuits.

``SecurityGuard.check`` runs, in order:
1. Pre-emptive block of IPs already marked suspicious
2. API rate limit (30 / minute per IP)
3. Content scan; a hit marks the IP suspicious for one hour

SECURITY: the client only ever sees a generic message. Which rule matched
is logged together with a truncated preview of the payload.
"""

import json
import logging
import re
from dataclasses import dataclass
from datetime import timedelta
from enum import Enum
from typing import Any, Iterable, Mapping, Optional, Pattern, Sequence, Tuple

from pydantic import BaseModel

from portal_guard.config.settings import Settings, get_settings
from portal_guard.platform.audit import (
    UNKNOWN_CLIENT,
    AuditOutcome,
    SecurityEvent,
    SecurityEventType,
    log_security_event,
)
from portal_guard.platform.clock import Clock, utc_now
from portal_guard.security.kv_store import KeyValueStore, KeyValueStoreError, get_kv_store
from portal_guard.security.rate_limit import RateLimiter

logger = logging.getLogger(__name__)

SUSPICIOUS_NAMESPACE = "suspicious"
PREVIEW_LENGTH = 200

BLOCKED_MESSAGE = "Access temporarily blocked."
RATE_LIMITED_MESSAGE = "Too many requests. Try again in a few minutes."
INVALID_CONTENT_MESSAGE = "Invalid content detected."


class ThreatCategory(str, Enum):
    XSS = "xss"
    SQL_INJECTION = "sql_injection"
    TEMPLATE_INJECTION = "template_injection"
    PROTOTYPE_POLLUTION = "prototype_pollution"
    CODE_EXECUTION = "code_execution"


class Severity(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


@dataclass(frozen=True)
class DetectionRule:
    """A single pattern with the category and severity it reports."""

    name: str
    pattern: Pattern[str]
    category: ThreatCategory
    severity: Severity

    def matches(self, text: str) -> bool:
        return self.pattern.search(text) is not None


def _rule(name: str, pattern: str, category: ThreatCategory, severity: Severity, flags: int = 0) -> DetectionRule:
    return DetectionRule(name=name, pattern=re.compile(pattern, flags), category=category, severity=severity)


_EVENT_HANDLERS = (
    r"abort|blur|change|click|dblclick|error|focus|focusin|focusout|input|invalid|"
    r"key\w+|load|mouse\w+|pointer\w+|reset|resize|scroll|select|submit|toggle|"
    r"unload|beforeunload|animation\w+|transition\w+|begin|end|wheel|drag\w*|drop|"
    r"copy|cut|paste|contextmenu|message|hashchange|pageshow|popstate"
)

DEFAULT_RULES: Tuple[DetectionRule, ...] = (
    # XSS
    _rule("script_tag", r"<script\b", ThreatCategory.XSS, Severity.HIGH, re.IGNORECASE),
    _rule("iframe_tag", r"<iframe\b", ThreatCategory.XSS, Severity.HIGH, re.IGNORECASE),
    _rule("object_tag", r"<object\b", ThreatCategory.XSS, Severity.MEDIUM, re.IGNORECASE),
    _rule("embed_tag", r"<embed\b", ThreatCategory.XSS, Severity.MEDIUM, re.IGNORECASE),
    _rule("svg_onload", r"<svg\b.*onload", ThreatCategory.XSS, Severity.HIGH, re.IGNORECASE | re.DOTALL),
    _rule("event_handler", rf"\bon(?:{_EVENT_HANDLERS})\s*=", ThreatCategory.XSS, Severity.HIGH, re.IGNORECASE),
    _rule("javascript_scheme", r"javascript\s*:", ThreatCategory.XSS, Severity.HIGH, re.IGNORECASE),
    _rule("vbscript_scheme", r"vbscript\s*:", ThreatCategory.XSS, Severity.HIGH, re.IGNORECASE),
    # SQL injection
    _rule("union_select", r"\bunion\s+(?:all\s+)?select\b", ThreatCategory.SQL_INJECTION, Severity.HIGH, re.IGNORECASE),
    _rule("select_star", r"\bselect\s+\*\s+from\b", ThreatCategory.SQL_INJECTION, Severity.HIGH, re.IGNORECASE),
    _rule("drop_table", r"\bdrop\s+table\b", ThreatCategory.SQL_INJECTION, Severity.HIGH, re.IGNORECASE),
    _rule("delete_from", r"\bdelete\s+from\b", ThreatCategory.SQL_INJECTION, Severity.HIGH, re.IGNORECASE),
    _rule("insert_into", r"\binsert\s+into\b", ThreatCategory.SQL_INJECTION, Severity.MEDIUM, re.IGNORECASE),
    _rule("tautology", r"'\s*or\s+'?\d+'?\s*=\s*'?\d+", ThreatCategory.SQL_INJECTION, Severity.HIGH, re.IGNORECASE),
    _rule("sql_line_comment", r"--[ \t]*$", ThreatCategory.SQL_INJECTION, Severity.LOW, re.MULTILINE),
    _rule("sql_block_comment", r"/\*.*\*/", ThreatCategory.SQL_INJECTION, Severity.LOW, re.DOTALL),
    # Template injection
    _rule("template_expression", r"\$\{[^}]+\}", ThreatCategory.TEMPLATE_INJECTION, Severity.MEDIUM),
    # Prototype pollution
    _rule("proto_key", r"__proto__", ThreatCategory.PROTOTYPE_POLLUTION, Severity.HIGH),
    _rule("constructor_index", r"constructor\s*\[", ThreatCategory.PROTOTYPE_POLLUTION, Severity.HIGH),
    # Code execution
    _rule("eval_call", r"\beval\s*\(", ThreatCategory.CODE_EXECUTION, Severity.HIGH),
    _rule("function_constructor", r"\bFunction\s*\(", ThreatCategory.CODE_EXECUTION, Severity.HIGH),
    _rule("python_import", r"__import__\s*\(", ThreatCategory.CODE_EXECUTION, Severity.HIGH),
)


def _iter_strings(value: Any) -> Iterable[str]:
    """Yield every string leaf (and mapping key) without recursion."""
    stack = [value]
    seen = set()
    while stack:
        item = stack.pop()
        if isinstance(item, str):
            yield item
            continue
        if isinstance(item, BaseModel):
            stack.append(item.model_dump())
            continue
        if isinstance(item, (Mapping, list, tuple, set, frozenset)):
            if id(item) in seen:
                continue
            seen.add(id(item))
            if isinstance(item, Mapping):
                for key, nested in item.items():
                    stack.append(key)
                    stack.append(nested)
            else:
                stack.extend(item)


def find_match(value: Any, rules: Sequence[DetectionRule] = DEFAULT_RULES) -> Optional[DetectionRule]:
    """First rule matching any string leaf of ``value``, or ``None``."""
    for text in _iter_strings(value):
        for rule in rules:
            if rule.matches(text):
                return rule
    return None


def scan(value: Any, rules: Sequence[DetectionRule] = DEFAULT_RULES) -> bool:
    """True when ``value`` contains a suspicious pattern anywhere."""
    return find_match(value, rules) is not None


def payload_preview(value: Any, length: int = PREVIEW_LENGTH) -> str:
    try:
        text = json.dumps(value, default=str)
    except (TypeError, ValueError):
        text = repr(value)
    return text[:length]


@dataclass
class SecurityCheckOptions:
    rate_limit: bool = True
    check_suspicious: bool = True
    input: Any = None
    action: Optional[str] = None


@dataclass(frozen=True)
class SecurityCheckResult:
    passed: bool
    client_ip: str
    error: Optional[str] = None
    reason: Optional[str] = None  # internal only, never sent to clients


class SecurityGuard:
    """Suspicious-IP registry, API rate limit and content scan."""

    def __init__(
        self,
        rate_limiter: Optional[RateLimiter] = None,
        store: Optional[KeyValueStore] = None,
        clock: Optional[Clock] = None,
        settings: Optional[Settings] = None,
        rules: Sequence[DetectionRule] = DEFAULT_RULES,
    ):
        self.settings = settings or get_settings()
        self._store = store if store is not None else get_kv_store()
        self._clock = clock or utc_now
        self.rate_limiter = rate_limiter or RateLimiter(
            store=self._store, clock=self._clock, settings=self.settings
        )
        self.rules = tuple(rules)

    @staticmethod
    def _suspicious_key(ip: str) -> str:
        return f"{SUSPICIOUS_NAMESPACE}:{ip}"

    # -- Suspicious IP registry -------------------------------------------

    def mark_suspicious(self, ip: str) -> None:
        """Flag ``ip`` for ``suspicious_ip_ttl_seconds`` (one hour by default)."""
        ttl = self.settings.suspicious_ip_ttl_seconds
        now = self._clock()
        self._store.set(
            self._suspicious_key(ip),
            {
                "marked_at": now.timestamp(),
                "expires_at": (now + timedelta(seconds=ttl)).timestamp(),
            },
            ttl,
        )

    def is_suspicious(self, ip: str) -> bool:
        record = self._store.get(self._suspicious_key(ip))
        if not record:
            return False
        return self._clock().timestamp() < float(record["expires_at"])

    def clear_suspicious(self, ip: str) -> None:
        self._store.delete(self._suspicious_key(ip))

    # -- Request check ----------------------------------------------------

    def check(
        self,
        options: SecurityCheckOptions,
        client_ip: str,
        user_agent: Optional[str] = None,
    ) -> SecurityCheckResult:
        """Run the three-stage check for one request."""
        try:
            if self.is_suspicious(client_ip):
                log_security_event(SecurityEvent(
                    event_type=SecurityEventType.SUSPICIOUS_IP_BLOCKED,
                    outcome=AuditOutcome.DENIED,
                    client_ip=client_ip,
                    user_agent=user_agent,
                    action=options.action,
                ))
                return SecurityCheckResult(False, client_ip, BLOCKED_MESSAGE, "suspicious_ip")
        except (KeyValueStoreError, KeyError, TypeError, ValueError) as exc:
            logger.warning(
                "Suspicious IP registry unavailable - rejecting request (fail-closed)",
                extra={"client_ip": client_ip, "action": options.action, "error": str(exc)},
            )
            return SecurityCheckResult(False, client_ip, BLOCKED_MESSAGE, "store_unavailable")

        if options.rate_limit and self.settings.rate_limit_enabled:
            if not self.rate_limiter.check_api(client_ip):
                log_security_event(SecurityEvent(
                    event_type=SecurityEventType.RATE_LIMIT,
                    outcome=AuditOutcome.DENIED,
                    client_ip=client_ip,
                    user_agent=user_agent,
                    action=options.action,
                ))
                return SecurityCheckResult(False, client_ip, RATE_LIMITED_MESSAGE, "rate_limited")

        if options.check_suspicious and options.input:
            rule = find_match(options.input, self.rules)
            if rule is not None:
                log_security_event(SecurityEvent(
                    event_type=SecurityEventType.SUSPICIOUS_ACTIVITY,
                    outcome=AuditOutcome.DENIED,
                    client_ip=client_ip,
                    user_agent=user_agent,
                    action=options.action,
                    metadata={
                        "rule": rule.name,
                        "category": rule.category.value,
                        "severity": rule.severity.value,
                        "input_preview": payload_preview(options.input),
                    },
                ))
                # Marking "unknown" would block every client without a resolvable IP.
                if client_ip != UNKNOWN_CLIENT:
                    try:
                        self.mark_suspicious(client_ip)
                    except KeyValueStoreError as exc:
                        logger.warning(
                            "Failed to mark IP suspicious",
                            extra={"client_ip": client_ip, "error": str(exc)},
                        )
                return SecurityCheckResult(False, client_ip, INVALID_CONTENT_MESSAGE, f"rule:{rule.name}")

        return SecurityCheckResult(True, client_ip)


_security_guard_instance: Optional[SecurityGuard] = None


def get_security_guard() -> SecurityGuard:
    """Return the module-level :class:`SecurityGuard` singleton."""
    global _security_guard_instance
    if _security_guard_instance is None:
        _security_guard_instance = SecurityGuard()
    return _security_guard_instance


def reset_security_guard() -> None:
    global _security_guard_instance
    _security_guard_instance = None


def security_check(
    client_ip: str,
    *,
    rate_limit: bool = True,
    check_suspicious: bool = True,
    input: Any = None,
    action: Optional[str] = None,
    user_agent: Optional[str] = None,
) -> SecurityCheckResult:
    """Convenience wrapper around the default :class:`SecurityGuard`."""
    options = SecurityCheckOptions(
        rate_limit=rate_limit,
        check_suspicious=check_suspicious,
        input=input,
        action=action,
    )
    return get_security_guard().check(options, client_ip, user_agent)
