"""
Comment moderation: cascading deletion of a comment and its replies.
"""

from portal_guard.comments.errors import (
    CommentDeletionError,
    CommentNotFoundError,
    CommentStillPresentError,
    CommentStoreError,
)
from portal_guard.comments.store import CommentStore, SqlAlchemyCommentStore
from portal_guard.comments.deleter import CommentTreeDeleter, DeleteResult, delete_comment_tree

__all__ = [
    "CommentDeletionError",
    "CommentNotFoundError",
    "CommentStillPresentError",
    "CommentStoreError",
    "CommentStore",
    "SqlAlchemyCommentStore",
    "CommentTreeDeleter",
    "DeleteResult",
    "delete_comment_tree",
]
