"""
Entitlement data access.

The resolver talks to an ``EntitlementStore``; the SQLAlchemy
implementation reads the ``contents``/``modules`` and ``enrollments``
tables. All database failures (including Postgres statement timeouts)
are re-raised as EntitlementStoreError so the resolver can fail closed.
"""

import logging
from datetime import datetime, timezone
from typing import List, Optional, Protocol

from sqlalchemy import select
from sqlalchemy.exc import OperationalError, SQLAlchemyError
from sqlalchemy.orm import Session

from portal_guard.models.course import Content, Module
from portal_guard.models.enrollment import Enrollment

from .errors import EntitlementStoreError
from .models import EnrollmentRecord, LessonContext, PermissionModel

logger = logging.getLogger(__name__)


class EntitlementStore(Protocol):
    def get_lesson(self, lesson_id: str) -> Optional[LessonContext]:
        ...

    def get_enrollments(self, user_id: str, portal_id: str) -> List[EnrollmentRecord]:
        ...


def _aware(value: Optional[datetime]) -> Optional[datetime]:
    # SQLite drops tzinfo; stored values are UTC.
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def _is_timeout(exc: SQLAlchemyError) -> bool:
    return isinstance(exc, OperationalError) and "statement timeout" in str(exc).lower()


class SqlAlchemyEntitlementStore:
    """Reads lessons and enrollments through a SQLAlchemy session."""

    def __init__(self, session: Session):
        self.session = session

    def get_lesson(self, lesson_id: str) -> Optional[LessonContext]:
        stmt = (
            select(Content.id, Content.module_id, Content.config, Module.portal_id)
            .join(Module, Module.id == Content.module_id)
            .where(Content.id == lesson_id)
        )
        try:
            row = self.session.execute(stmt).first()
        except SQLAlchemyError as exc:
            raise EntitlementStoreError(
                f"lesson lookup failed for {lesson_id}", cause=exc, timed_out=_is_timeout(exc)
            ) from exc

        if row is None:
            return None
        return LessonContext(
            lesson_id=row.id,
            module_id=row.module_id,
            portal_id=row.portal_id,
            config=row.config,
        )

    def get_enrollments(self, user_id: str, portal_id: str) -> List[EnrollmentRecord]:
        stmt = select(Enrollment).where(
            Enrollment.user_id == user_id,
            Enrollment.portal_id == portal_id,
        )
        try:
            rows = self.session.execute(stmt).scalars().all()
        except SQLAlchemyError as exc:
            raise EntitlementStoreError(
                f"enrollment lookup failed for user {user_id}", cause=exc, timed_out=_is_timeout(exc)
            ) from exc

        return [
            EnrollmentRecord(
                user_id=row.user_id,
                portal_id=row.portal_id,
                enrolled_at=_aware(row.enrolled_at),
                permissions=PermissionModel.from_json(row.permissions),
                expires_at=_aware(row.expires_at),
                is_active=bool(row.is_active),
            )
            for row in rows
        ]
