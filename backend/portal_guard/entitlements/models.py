from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime
from enum import Enum
from typing import Any, FrozenSet, Iterable, Mapping, Optional, Union

from .errors import DripConfigError, PermissionModelError


class AccessStatus(str, Enum):
    """Verdict for a (user, lesson) pair."""
    GRANTED = "GRANTED"
    DENIED_DRIP = "DENIED_DRIP"
    DENIED_PAYWALL = "DENIED_PAYWALL"
    DENIED_NO_ENROLLMENT = "DENIED_NO_ENROLLMENT"
    ERROR = "ERROR"

    @property
    def is_granted(self) -> bool:
        return self is AccessStatus.GRANTED

    @property
    def is_policy_denial(self) -> bool:
        return self in (
            AccessStatus.DENIED_DRIP,
            AccessStatus.DENIED_PAYWALL,
            AccessStatus.DENIED_NO_ENROLLMENT,
        )


class DripType(str, Enum):
    DATE = "date"
    DAYS_AFTER_ENROLLMENT = "days_after_enrollment"


@dataclass(frozen=True)
class PermissionModel:
    """Module grant for an enrollment: everything, or an allow-list."""

    access_all: bool = False
    allowed_modules: FrozenSet[str] = frozenset()

    def __post_init__(self) -> None:
        object.__setattr__(
            self,
            "allowed_modules",
            frozenset(str(m).strip() for m in self.allowed_modules if str(m).strip()),
        )

    @classmethod
    def full_access(cls) -> PermissionModel:
        return cls(access_all=True)

    @classmethod
    def from_json(cls, raw: Any) -> PermissionModel:
        """Parse the stored JSON; ``access_all_modules`` is a legacy synonym."""
        if raw is None:
            return cls()
        if not isinstance(raw, Mapping):
            raise PermissionModelError("permissions must be a JSON object")

        access_all = raw.get("access_all", raw.get("access_all_modules", False))
        if not isinstance(access_all, bool):
            raise PermissionModelError("access_all must be a boolean")

        modules = raw.get("allowed_modules") or []
        if isinstance(modules, (str, bytes)) or not isinstance(modules, Iterable):
            raise PermissionModelError("allowed_modules must be a list")
        return cls(access_all=access_all, allowed_modules=frozenset(modules))

    def to_json(self) -> dict:
        return {"access_all": self.access_all, "allowed_modules": sorted(self.allowed_modules)}

    def allows_module(self, module_id: str) -> bool:
        if self.access_all:
            return True
        return str(module_id).strip() in self.allowed_modules

    def grant(self, module_id: str) -> PermissionModel:
        return PermissionModel(self.access_all, self.allowed_modules | {module_id})

    def revoke(self, module_id: str) -> PermissionModel:
        return PermissionModel(self.access_all, self.allowed_modules - {module_id})


ReleaseDate = Union[date, datetime]

_TRUE_STRINGS = ("true", "1", "yes")
_FALSE_STRINGS = ("false", "0", "no", "")


def _as_bool(raw: Mapping[str, Any], key: str) -> bool:
    value = raw.get(key)
    if value is None:
        return False
    if isinstance(value, bool):
        return value
    if isinstance(value, int) and value in (0, 1):
        return bool(value)
    if isinstance(value, str):
        lowered = value.strip().lower()
        if lowered in _TRUE_STRINGS:
            return True
        if lowered in _FALSE_STRINGS:
            return False
    raise DripConfigError(f"{key} must be a boolean", field=key)


def _as_release_date(value: Any) -> Optional[ReleaseDate]:
    if value is None or value == "":
        return None
    if isinstance(value, (date, datetime)):
        return value
    if not isinstance(value, str):
        raise DripConfigError("release_date must be an ISO date", field="release_date")

    text = value.strip()
    try:
        if len(text) == 10:
            return date.fromisoformat(text)
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        return datetime.fromisoformat(text)
    except ValueError as exc:
        raise DripConfigError(f"release_date is not a valid ISO date: {value!r}", field="release_date") from exc


def _as_days(value: Any) -> Optional[int]:
    if value is None or value == "":
        return None
    if isinstance(value, bool):
        raise DripConfigError("days_after_enrollment must be an integer", field="days_after_enrollment")
    if isinstance(value, str) and value.strip().isdigit():
        value = int(value.strip())
    if isinstance(value, float) and value.is_integer():
        value = int(value)
    if not isinstance(value, int):
        raise DripConfigError("days_after_enrollment must be an integer", field="days_after_enrollment")
    if value < 0:
        raise DripConfigError("days_after_enrollment must not be negative", field="days_after_enrollment")
    return value


@dataclass(frozen=True)
class ContentDripConfig:
    """Release rules attached to a lesson."""

    is_free_preview: bool = False
    drip_enabled: bool = False
    drip_type: Optional[DripType] = None
    release_date: Optional[ReleaseDate] = None
    days_after_enrollment: Optional[int] = None

    @classmethod
    def from_blob(cls, raw: Any) -> ContentDripConfig:
        """
        Parse the lesson's stored config; unknown keys are ignored.

        Drip fields are read only for non-preview lessons with drip enabled.
        """
        if raw is None:
            return cls()
        if not isinstance(raw, Mapping):
            raise DripConfigError("lesson config must be a JSON object")

        if _as_bool(raw, "is_free_preview"):
            return cls(is_free_preview=True)
        if not _as_bool(raw, "drip_enabled"):
            return cls()

        raw_type = raw.get("drip_type")
        if raw_type in (None, ""):
            raise DripConfigError("drip_type is required when drip is enabled", field="drip_type")
        try:
            drip_type = DripType(raw_type)
        except ValueError:
            raise DripConfigError(f"unknown drip_type: {raw_type!r}", field="drip_type")

        return cls(
            drip_enabled=True,
            drip_type=drip_type,
            release_date=_as_release_date(raw.get("release_date")),
            days_after_enrollment=_as_days(raw.get("days_after_enrollment")),
        )


@dataclass(frozen=True)
class LessonContext:
    """What the resolver needs to know about a lesson."""

    lesson_id: str
    module_id: str
    portal_id: str
    config: Any = None


@dataclass(frozen=True)
class EnrollmentRecord:
    """Read-only snapshot of an enrollment row."""

    user_id: str
    portal_id: str
    enrolled_at: datetime
    permissions: PermissionModel = field(default_factory=PermissionModel)
    expires_at: Optional[datetime] = None
    is_active: bool = True


@dataclass(frozen=True)
class AccessDecision:
    """Full outcome of an entitlement evaluation."""

    status: AccessStatus
    lesson_id: str
    user_id: str
    reason: str
    portal_id: Optional[str] = None
    module_id: Optional[str] = None
    unlock_date: Optional[date] = None
    error_code: Optional[str] = None

    @property
    def granted(self) -> bool:
        return self.status.is_granted

    def to_dict(self) -> dict:
        return {
            "status": self.status.value,
            "lesson_id": self.lesson_id,
            "reason": self.reason,
            "unlock_date": self.unlock_date.isoformat() if self.unlock_date else None,
        }
