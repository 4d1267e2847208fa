"""
Lesson entitlement resolution for the member portal.

This module provides:
- EntitlementResolver: decides GRANTED / DENIED_* / ERROR for a lesson
- PermissionModel: per-enrollment module grant (all modules or an allow-list)
- ContentDripConfig + drip helpers: day-granular scheduled release
- SqlAlchemyEntitlementStore: lesson and enrollment lookups

Every failure resolves to AccessStatus.ERROR; nothing fails open.
"""

from portal_guard.entitlements.errors import (
    DripConfigError,
    EnrollmentConflictError,
    EntitlementError,
    EntitlementStoreError,
    PermissionModelError,
)
from portal_guard.entitlements.models import (
    AccessDecision,
    AccessStatus,
    ContentDripConfig,
    DripType,
    EnrollmentRecord,
    LessonContext,
    PermissionModel,
)
from portal_guard.entitlements.drip import DripVerdict, get_timezone, is_released, to_day, today, unlock_date
from portal_guard.entitlements.store import EntitlementStore, SqlAlchemyEntitlementStore
from portal_guard.entitlements.service import EntitlementResolver, resolve_lesson_access

__all__ = [
    # Errors
    "DripConfigError",
    "EnrollmentConflictError",
    "EntitlementError",
    "EntitlementStoreError",
    "PermissionModelError",
    # Models
    "AccessDecision",
    "AccessStatus",
    "ContentDripConfig",
    "DripType",
    "EnrollmentRecord",
    "LessonContext",
    "PermissionModel",
    # Drip
    "DripVerdict",
    "get_timezone",
    "is_released",
    "to_day",
    "today",
    "unlock_date",
    # Store / service
    "EntitlementStore",
    "SqlAlchemyEntitlementStore",
    "EntitlementResolver",
    "resolve_lesson_access",
]
