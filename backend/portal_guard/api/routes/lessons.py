"""
Lesson access route.

GET /api/lessons/{lesson_id}/access answers "may this user open the
lesson now?". Denials come back as 402/403 error bodies, store failures
as 503.
"""

from fastapi import APIRouter, Depends

from portal_guard.api.dependencies.lesson_access import require_lesson_access
from portal_guard.entitlements.models import AccessDecision

router = APIRouter(prefix="/api/lessons", tags=["lessons"])


@router.get("/{lesson_id}/access")
def get_lesson_access(decision: AccessDecision = Depends(require_lesson_access)) -> dict:
    return decision.to_dict()
