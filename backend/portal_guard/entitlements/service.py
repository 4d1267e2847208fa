from __future__ import annotations

import logging
from datetime import datetime, timezone, tzinfo
from typing import Optional

from sqlalchemy.orm import Session

from portal_guard.config.settings import Settings, get_settings
from portal_guard.platform.audit import AuditOutcome, SecurityEvent, SecurityEventType, log_security_event
from portal_guard.platform.clock import Clock, utc_now

from .drip import get_timezone, is_released, to_day
from .errors import EnrollmentConflictError, EntitlementError
from .models import AccessDecision, AccessStatus, ContentDripConfig
from .store import EntitlementStore, SqlAlchemyEntitlementStore

logger = logging.getLogger(__name__)

UNEXPECTED_ERROR_CODE = "ENTITLEMENT_EVAL_FAILED"


class EntitlementResolver:
    """
    Decides whether a user may open a lesson right now.

    Evaluation order (first applicable outcome wins):
    1. lesson lookup fails                       -> ERROR
    2. lesson is a free preview                  -> GRANTED
    3. no enrollment, or enrollment inactive     -> DENIED_NO_ENROLLMENT
    4. enrollment expired                        -> DENIED_PAYWALL
    5. (optional) module not granted             -> DENIED_NO_ENROLLMENT
    6. drip disabled                             -> GRANTED
    7. drip unlock day strictly after today      -> DENIED_DRIP
    8. otherwise                                 -> GRANTED

    Any failure is reported as ERROR, never as GRANTED. No side effects
    other than logging.
    """

    def __init__(
        self,
        store: EntitlementStore,
        *,
        clock: Optional[Clock] = None,
        settings: Optional[Settings] = None,
        drip_timezone: Optional[tzinfo] = None,
        enforce_module_permissions: Optional[bool] = None,
    ) -> None:
        self.store = store
        self._clock = clock or utc_now
        settings = settings or get_settings()
        self._tz = drip_timezone or get_timezone(settings.drip_timezone)
        self.enforce_module_permissions = (
            settings.enforce_module_permissions
            if enforce_module_permissions is None
            else enforce_module_permissions
        )

    def resolve(self, lesson_id: str, user_id: str, now: Optional[datetime] = None) -> AccessStatus:
        return self.evaluate(lesson_id, user_id, now=now).status

    def evaluate(self, lesson_id: str, user_id: str, now: Optional[datetime] = None) -> AccessDecision:
        evaluated_at = now or self._clock()
        if evaluated_at.tzinfo is None:
            evaluated_at = evaluated_at.replace(tzinfo=timezone.utc)

        try:
            decision = self._evaluate(lesson_id, user_id, evaluated_at)
        except EnrollmentConflictError as exc:
            logger.error(
                "Enrollment uniqueness violated",
                extra={
                    "lesson_id": lesson_id,
                    "user_id": user_id,
                    "portal_id": exc.portal_id,
                    "enrollment_count": exc.count,
                },
            )
            decision = self._error(lesson_id, user_id, "enrollment_conflict", exc.error_code, exc.portal_id)
        except EntitlementError as exc:
            decision = self._error(lesson_id, user_id, exc.message, exc.error_code)
        except Exception as exc:  # fail closed: unexpected failures never grant
            logger.exception(
                "Unexpected error evaluating lesson access",
                extra={"lesson_id": lesson_id, "user_id": user_id, "error_type": type(exc).__name__},
            )
            decision = self._error(lesson_id, user_id, "unexpected_error", UNEXPECTED_ERROR_CODE)

        self._log_decision(decision)
        return decision

    def _evaluate(self, lesson_id: str, user_id: str, now: datetime) -> AccessDecision:
        lesson = self.store.get_lesson(lesson_id)
        if lesson is None:
            return self._error(lesson_id, user_id, "lesson_not_found", "LESSON_NOT_FOUND")

        drip = ContentDripConfig.from_blob(lesson.config)

        def decide(status: AccessStatus, reason: str, **kwargs) -> AccessDecision:
            return AccessDecision(
                status=status,
                lesson_id=lesson_id,
                user_id=user_id,
                reason=reason,
                portal_id=lesson.portal_id,
                module_id=lesson.module_id,
                **kwargs,
            )

        if drip.is_free_preview:
            return decide(AccessStatus.GRANTED, "free_preview")

        enrollments = self.store.get_enrollments(user_id, lesson.portal_id)
        if len(enrollments) > 1:
            raise EnrollmentConflictError(user_id, lesson.portal_id, len(enrollments))
        enrollment = enrollments[0] if enrollments else None

        if enrollment is None:
            return decide(AccessStatus.DENIED_NO_ENROLLMENT, "not_enrolled")
        if not enrollment.is_active:
            return decide(AccessStatus.DENIED_NO_ENROLLMENT, "enrollment_inactive")

        if enrollment.expires_at is not None and now > enrollment.expires_at:
            return decide(AccessStatus.DENIED_PAYWALL, "enrollment_expired")

        if self.enforce_module_permissions and not enrollment.permissions.allows_module(lesson.module_id):
            return decide(AccessStatus.DENIED_NO_ENROLLMENT, "module_not_granted")

        if not drip.drip_enabled:
            return decide(AccessStatus.GRANTED, "enrolled")

        verdict = is_released(drip, enrollment.enrolled_at, to_day(now, self._tz), self._tz)
        if not verdict.released:
            return decide(AccessStatus.DENIED_DRIP, f"drip_{drip.drip_type.value}", unlock_date=verdict.unlock_date)

        return decide(AccessStatus.GRANTED, "drip_released", unlock_date=verdict.unlock_date)

    @staticmethod
    def _error(
        lesson_id: str,
        user_id: str,
        reason: str,
        error_code: str,
        portal_id: Optional[str] = None,
    ) -> AccessDecision:
        return AccessDecision(
            status=AccessStatus.ERROR,
            lesson_id=lesson_id,
            user_id=user_id,
            reason=reason,
            portal_id=portal_id,
            error_code=error_code,
        )

    @staticmethod
    def _log_decision(decision: AccessDecision) -> None:
        if decision.status is AccessStatus.GRANTED:
            return

        is_error = decision.status is AccessStatus.ERROR
        log_security_event(SecurityEvent(
            event_type=SecurityEventType.ACCESS_ERROR if is_error else SecurityEventType.ACCESS_DENIED,
            outcome=AuditOutcome.FAILURE if is_error else AuditOutcome.DENIED,
            user_id=decision.user_id,
            metadata={
                "lesson_id": decision.lesson_id,
                "portal_id": decision.portal_id,
                "module_id": decision.module_id,
                "status": decision.status.value,
                "reason": decision.reason,
                "error_code": decision.error_code,
                "unlock_date": decision.unlock_date.isoformat() if decision.unlock_date else None,
            },
        ))


def resolve_lesson_access(
    lesson_id: str,
    user_id: str,
    session: Optional[Session] = None,
) -> AccessStatus:
    """Service-boundary helper used by lesson pages."""
    if session is not None:
        return EntitlementResolver(SqlAlchemyEntitlementStore(session)).resolve(lesson_id, user_id)

    from portal_guard.database.session import get_db_session_sync

    try:
        for db in get_db_session_sync():
            return EntitlementResolver(SqlAlchemyEntitlementStore(db)).resolve(lesson_id, user_id)
    except Exception as exc:  # no session at all: still fail closed
        logger.error(
            "Entitlement store unavailable",
            extra={"lesson_id": lesson_id, "user_id": user_id, "error": str(exc)},
        )
    return AccessStatus.ERROR
