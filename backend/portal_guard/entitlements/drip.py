"""
Drip (scheduled release) evaluation.

Pure functions, no I/O. All comparisons are day-granular: times of day are
discarded in the configured drip timezone, and content unlocks ON the
unlock date (denied only while the unlock date is strictly after today).

Rules:
- drip_type "date":                   unlock = release_date
- drip_type "days_after_enrollment":  unlock = enrolled_at day + N days

A "date" rule without a release_date, or a day rule with no (or zero) day
count, releases immediately.
"""

from dataclasses import dataclass
from datetime import date, datetime, timedelta, timezone, tzinfo
from typing import Optional, Union
from zoneinfo import ZoneInfo

from .models import ContentDripConfig, DripType


@dataclass(frozen=True)
class DripVerdict:
    released: bool
    unlock_date: Optional[date] = None


def get_timezone(name: Optional[str]) -> tzinfo:
    if not name or name.upper() == "UTC":
        return timezone.utc
    return ZoneInfo(name)


def to_day(value: Union[date, datetime], tz: tzinfo = timezone.utc) -> date:
    """Truncate to a calendar day in ``tz``; naive datetimes are taken as UTC."""
    if isinstance(value, datetime):
        if value.tzinfo is None:
            value = value.replace(tzinfo=timezone.utc)
        return value.astimezone(tz).date()
    return value


def today(tz: tzinfo = timezone.utc, now: Optional[datetime] = None) -> date:
    return to_day(now or datetime.now(timezone.utc), tz)


def unlock_date(
    config: ContentDripConfig,
    enrolled_at: Optional[datetime],
    tz: tzinfo = timezone.utc,
) -> Optional[date]:
    """Day the lesson opens for this enrollment, or None if no drip applies."""
    if not config.drip_enabled:
        return None

    if config.drip_type == DripType.DATE:
        if config.release_date is None:
            return None
        return to_day(config.release_date, tz)

    if config.drip_type == DripType.DAYS_AFTER_ENROLLMENT:
        if not config.days_after_enrollment:
            return None
        if enrolled_at is None:
            raise ValueError("enrolled_at is required for days_after_enrollment drip")
        return to_day(enrolled_at, tz) + timedelta(days=config.days_after_enrollment)

    return None


def is_released(
    config: ContentDripConfig,
    enrolled_at: Optional[datetime],
    on_day: date,
    tz: tzinfo = timezone.utc,
) -> DripVerdict:
    """Whether the drip rule allows access on ``on_day``."""
    unlock = unlock_date(config, enrolled_at, tz)
    if unlock is None:
        return DripVerdict(released=True)
    return DripVerdict(released=not unlock > on_day, unlock_date=unlock)
