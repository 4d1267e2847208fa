"""
Threaded lesson comments and their likes.

Replies point at their parent through ``parent_id``; parents hold no list
of children. Deleting a comment must delete every descendant reply and
every like attached to any of them (see portal_guard.comments.deleter).
"""

from sqlalchemy import Column, DateTime, ForeignKey, String, Text

from portal_guard.db_base import Base
from portal_guard.models.base import generate_uuid, utcnow


class Comment(Base):
    __tablename__ = "comments"

    id = Column(String(255), primary_key=True, default=generate_uuid)
    content_id = Column(String(255), nullable=True, index=True, comment="Lesson commented on")
    user_id = Column(String(255), nullable=False, index=True)
    parent_id = Column(
        String(255),
        ForeignKey("comments.id"),
        nullable=True,
        index=True,
        comment="Parent comment for replies; NULL for top-level comments",
    )
    body = Column(Text, nullable=False, default="")
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)


class CommentLike(Base):
    __tablename__ = "comment_likes"

    id = Column(String(255), primary_key=True, default=generate_uuid)
    comment_id = Column(
        String(255),
        ForeignKey("comments.id"),
        nullable=False,
        index=True,
    )
    user_id = Column(String(255), nullable=False, index=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)
