"""
Enrollment model.

One row per (user, portal). ``permissions`` holds the module grant:

    {"access_all": true, "allowed_modules": []}
    {"access_all": false, "allowed_modules": ["<module-id>", ...]}

SECURITY:
- (user_id, portal_id) is unique; the entitlement resolver relies on this
  and treats duplicates as an error rather than picking one
- ``expires_at`` NULL means a lifetime enrollment
"""

from sqlalchemy import Boolean, Column, DateTime, ForeignKey, String, UniqueConstraint

from portal_guard.db_base import Base
from portal_guard.models.base import JSONType, TimestampMixin, generate_uuid, utcnow


class Enrollment(Base, TimestampMixin):
    __tablename__ = "enrollments"
    __table_args__ = (
        UniqueConstraint("user_id", "portal_id", name="uq_enrollments_user_portal"),
    )

    id = Column(String(255), primary_key=True, default=generate_uuid)
    user_id = Column(String(255), nullable=False, index=True)
    portal_id = Column(
        String(255),
        ForeignKey("portals.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    permissions = Column(
        JSONType,
        nullable=True,
        comment="Module grant: access_all flag plus allowed module ids",
    )
    enrolled_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)
    expires_at = Column(
        DateTime(timezone=True),
        nullable=True,
        comment="Subscription end; NULL for lifetime access",
    )
    is_active = Column(Boolean, nullable=False, default=True)
