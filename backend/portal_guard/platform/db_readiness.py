"""Schema readiness: are the tables the portal reads actually present?"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Iterable

from sqlalchemy import inspect
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

logger = logging.getLogger(__name__)

# Read by the entitlement resolver and the comment deleter.
REQUIRED_PORTAL_TABLES = (
    "portals",
    "modules",
    "contents",
    "enrollments",
    "comments",
    "comment_likes",
)


@dataclass(frozen=True)
class DBReadinessResult:
    checked_tables: list[str]
    missing_tables: list[str] = field(default_factory=list)

    @property
    def ready(self) -> bool:
        return not self.missing_tables


def check_required_tables(session: Session, required_tables: Iterable[str]) -> DBReadinessResult:
    wanted = list(required_tables)
    try:
        present = set(inspect(session.get_bind()).get_table_names())
    except SQLAlchemyError:
        logger.exception("Schema inspection failed", extra={"tables": wanted})
        raise

    return DBReadinessResult(
        checked_tables=wanted,
        missing_tables=[name for name in wanted if name not in present],
    )
