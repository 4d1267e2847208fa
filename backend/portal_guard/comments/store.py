"""Comment and like persistence used by the tree deleter."""

import logging
from typing import List, Protocol

from sqlalchemy import delete, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from portal_guard.models.comment import Comment, CommentLike

from .errors import CommentStoreError

logger = logging.getLogger(__name__)


class CommentStore(Protocol):
    def get_child_ids(self, comment_id: str) -> List[str]:
        ...

    def delete_likes(self, comment_id: str) -> int:
        ...

    def delete_comment(self, comment_id: str) -> int:
        ...

    def exists(self, comment_id: str) -> bool:
        ...

    def commit(self) -> None:
        ...

    def rollback(self) -> None:
        ...


class SqlAlchemyCommentStore:
    """
    Runs every statement on one session so a tree deletion is a single
    transaction: nothing is visible to other sessions until ``commit``.
    """

    def __init__(self, session: Session):
        self.session = session

    def get_child_ids(self, comment_id: str) -> List[str]:
        stmt = select(Comment.id).where(Comment.parent_id == comment_id).order_by(Comment.created_at)
        try:
            return list(self.session.execute(stmt).scalars().all())
        except SQLAlchemyError as exc:
            raise CommentStoreError("Failed to load replies", comment_id, cause=exc) from exc

    def delete_likes(self, comment_id: str) -> int:
        stmt = delete(CommentLike).where(CommentLike.comment_id == comment_id)
        try:
            return self.session.execute(stmt).rowcount or 0
        except SQLAlchemyError as exc:
            raise CommentStoreError("Failed to delete likes", comment_id, cause=exc) from exc

    def delete_comment(self, comment_id: str) -> int:
        stmt = delete(Comment).where(Comment.id == comment_id)
        try:
            return self.session.execute(stmt).rowcount or 0
        except SQLAlchemyError as exc:
            raise CommentStoreError("Failed to delete comment", comment_id, cause=exc) from exc

    def exists(self, comment_id: str) -> bool:
        stmt = select(Comment.id).where(Comment.id == comment_id)
        try:
            return self.session.execute(stmt).first() is not None
        except SQLAlchemyError as exc:
            raise CommentStoreError("Failed to verify deletion", comment_id, cause=exc) from exc

    def commit(self) -> None:
        try:
            self.session.commit()
        except SQLAlchemyError as exc:
            self.session.rollback()
            raise CommentStoreError("Failed to commit comment deletion", cause=exc) from exc

    def rollback(self) -> None:
        self.session.rollback()
