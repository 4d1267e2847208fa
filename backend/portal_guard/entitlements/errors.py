"""
Entitlement error hierarchy.

Provides:
- EntitlementError: base for all entitlement failures
- EntitlementStoreError: the backing store failed or timed out
- DripConfigError: a lesson's release configuration could not be parsed
- PermissionModelError: an enrollment's permission grant could not be parsed
- EnrollmentConflictError: more than one enrollment row for (user, portal)

Every one of these maps to AccessStatus.ERROR in the resolver. Policy
denials are NOT errors; they are ordinary AccessStatus values.
"""

from typing import Optional


class EntitlementError(Exception):
    """Base exception for entitlement-related failures."""

    error_code = "ENTITLEMENT_ERROR"

    def __init__(self, message: str):
        self.message = message
        super().__init__(message)

    def to_dict(self) -> dict:
        return {"error": self.error_code, "message": self.message}


class EntitlementStoreError(EntitlementError):
    """Raised when a lesson or enrollment lookup fails."""

    error_code = "ENTITLEMENT_STORE_ERROR"

    def __init__(self, detail: str, cause: Optional[Exception] = None, timed_out: bool = False):
        self.detail = detail
        self.cause = cause
        self.timed_out = timed_out
        if timed_out:
            self.error_code = "ENTITLEMENT_STORE_TIMEOUT"
        super().__init__(detail)


class DripConfigError(EntitlementError):
    """Raised when a lesson's drip configuration blob is malformed."""

    error_code = "DRIP_CONFIG_INVALID"

    def __init__(self, message: str, field: Optional[str] = None):
        self.field = field
        super().__init__(message)

    def to_dict(self) -> dict:
        d = super().to_dict()
        if self.field is not None:
            d["field"] = self.field
        return d


class PermissionModelError(EntitlementError):
    """Raised when an enrollment's permissions JSON is malformed."""

    error_code = "PERMISSIONS_INVALID"


class EnrollmentConflictError(EntitlementError):
    """Raised when (user_id, portal_id) resolves to more than one enrollment."""

    error_code = "ENROLLMENT_CONFLICT"

    def __init__(self, user_id: str, portal_id: str, count: int):
        self.user_id = user_id
        self.portal_id = portal_id
        self.count = count
        super().__init__(f"{count} enrollments found for user {user_id} in portal {portal_id}")
