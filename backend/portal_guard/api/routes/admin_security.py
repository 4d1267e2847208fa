"""
Admin routes for abuse-protection state. Admin only.

- DELETE /api/admin/security/lockouts/{identifier}: lift a login lockout and
  reset the failure count (identifier is ``{email}-{client_ip}``)
- DELETE /api/admin/security/suspicious/{ip}: unblock a flagged IP
"""

from fastapi import APIRouter, Depends

from portal_guard.api.dependencies.request_context import CurrentUser, get_guard, require_admin
from portal_guard.platform.audit import SecurityEvent, SecurityEventType, log_security_event
from portal_guard.security.lockout import LockoutGuard, get_lockout_guard
from portal_guard.security.suspicious import SecurityGuard

router = APIRouter(prefix="/api/admin/security", tags=["admin", "security"])


@router.delete("/lockouts/{identifier}")
def clear_lockout(
    identifier: str,
    admin: CurrentUser = Depends(require_admin),
    lockout_guard: LockoutGuard = Depends(get_lockout_guard),
) -> dict:
    key = lockout_guard.unlock_login(identifier)
    log_security_event(SecurityEvent(
        event_type=SecurityEventType.LOCKOUT_CLEARED,
        user_id=admin.user_id,
        action="clear_lockout",
        metadata={"lockout_key": key},
    ))
    return {"success": True, "cleared": key}


@router.delete("/suspicious/{ip}")
def clear_suspicious_ip(
    ip: str,
    admin: CurrentUser = Depends(require_admin),
    guard: SecurityGuard = Depends(get_guard),
) -> dict:
    guard.clear_suspicious(ip)
    log_security_event(SecurityEvent(
        event_type=SecurityEventType.SUSPICIOUS_IP_CLEARED,
        user_id=admin.user_id,
        action="clear_suspicious_ip",
        metadata={"ip": ip},
    ))
    return {"success": True, "cleared": ip}
