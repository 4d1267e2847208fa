from fastapi import APIRouter, Depends

from portal_guard.database.session import get_db_session
from portal_guard.platform.db_readiness import (
    REQUIRED_PORTAL_TABLES,
    check_required_tables,
)

router = APIRouter()

@router.get("/health")
def health():
    return {"status": "ok"}


@router.get("/api/health/readiness")
def readiness(db=Depends(get_db_session)):
    """Readiness check that validates the portal tables exist."""
    result = check_required_tables(db, REQUIRED_PORTAL_TABLES)
    return {
        "status": "ready" if result.ready else "not_ready",
        "checks": {
            "database": "ok",
            "portal_tables": {
                "required": result.checked_tables,
                "missing": result.missing_tables,
            },
        },
    }
