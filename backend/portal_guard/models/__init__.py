"""
Database models read and written by the portal guard.

Course structure and enrollments are owned by the admin console; this
service reads them. Comments and likes are deleted by the moderation path.
"""

from portal_guard.models.base import TimestampMixin, generate_uuid
from portal_guard.models.course import Content, Module, Portal
from portal_guard.models.enrollment import Enrollment
from portal_guard.models.comment import Comment, CommentLike

__all__ = [
    "TimestampMixin",
    "generate_uuid",
    "Content",
    "Module",
    "Portal",
    "Enrollment",
    "Comment",
    "CommentLike",
]
