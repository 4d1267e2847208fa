"""
Course structure models: portals, modules and lesson contents.

A portal is a course product, a module groups lessons, and a content row is
a single lesson. The lesson's ``config`` JSON carries its release rules:

    {
        "is_free_preview": false,
        "drip_enabled": true,
        "drip_type": "days_after_enrollment",
        "release_date": null,
        "days_after_enrollment": 7
    }

These rows are written by the course builder (out of scope here) and are
only read by the entitlement resolver.
"""

from sqlalchemy import Column, ForeignKey, Integer, String
from sqlalchemy.orm import relationship

from portal_guard.db_base import Base
from portal_guard.models.base import JSONType, TimestampMixin, generate_uuid


class Portal(Base, TimestampMixin):
    __tablename__ = "portals"

    id = Column(String(255), primary_key=True, default=generate_uuid)
    name = Column(String(255), nullable=False)

    modules = relationship("Module", back_populates="portal")


class Module(Base, TimestampMixin):
    __tablename__ = "modules"

    id = Column(String(255), primary_key=True, default=generate_uuid)
    portal_id = Column(
        String(255),
        ForeignKey("portals.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
        comment="Portal (course) this module belongs to",
    )
    title = Column(String(255), nullable=False, default="")
    position = Column(Integer, nullable=False, default=0)

    portal = relationship("Portal", back_populates="modules")
    contents = relationship("Content", back_populates="module")


class Content(Base, TimestampMixin):
    """A lesson."""

    __tablename__ = "contents"

    id = Column(String(255), primary_key=True, default=generate_uuid)
    module_id = Column(
        String(255),
        ForeignKey("modules.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    title = Column(String(255), nullable=False, default="")
    config = Column(
        JSONType,
        nullable=True,
        comment="Free-preview and drip release configuration",
    )

    module = relationship("Module", back_populates="contents")
