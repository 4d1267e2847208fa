"""
FastAPI dependency that enforces lesson entitlements.

Status mapping:
- GRANTED                                  -> request proceeds
- DENIED_NO_ENROLLMENT / DENIED_DRIP       -> 403
- DENIED_PAYWALL                           -> 402
- ERROR                                    -> 503 (never a grant)
"""

from fastapi import Depends, Path
from sqlalchemy.orm import Session

from portal_guard.api.dependencies.request_context import CurrentUser, get_current_user
from portal_guard.database.session import get_db_session
from portal_guard.entitlements.models import AccessDecision, AccessStatus
from portal_guard.entitlements.service import EntitlementResolver
from portal_guard.entitlements.store import SqlAlchemyEntitlementStore
from portal_guard.platform.errors import (
    PaymentRequiredError,
    PermissionDeniedError,
    ServiceUnavailableError,
)


def get_entitlement_resolver(db: Session = Depends(get_db_session)) -> EntitlementResolver:
    return EntitlementResolver(SqlAlchemyEntitlementStore(db))


def raise_for_decision(decision: AccessDecision) -> AccessDecision:
    if decision.status is AccessStatus.GRANTED:
        return decision

    if decision.status is AccessStatus.DENIED_PAYWALL:
        raise PaymentRequiredError(
            "Your access to this course has expired",
            details={"status": decision.status.value},
        )
    if decision.status is AccessStatus.DENIED_DRIP:
        details = {"status": decision.status.value}
        if decision.unlock_date:
            details["unlock_date"] = decision.unlock_date.isoformat()
        raise PermissionDeniedError("This lesson is not available yet", details=details, code="LESSON_LOCKED")
    if decision.status is AccessStatus.DENIED_NO_ENROLLMENT:
        raise PermissionDeniedError(
            "You are not enrolled in this course",
            details={"status": decision.status.value},
            code="NOT_ENROLLED",
        )
    raise ServiceUnavailableError(
        "Unable to verify access right now",
        details={"status": AccessStatus.ERROR.value},
    )


def require_lesson_access(
    lesson_id: str = Path(...),
    user: CurrentUser = Depends(get_current_user),
    resolver: EntitlementResolver = Depends(get_entitlement_resolver),
) -> AccessDecision:
    return raise_for_decision(resolver.evaluate(lesson_id, user.user_id))
