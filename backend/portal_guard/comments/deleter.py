"""
Cascading comment deletion.

Deletes a comment, every reply below it, and every like on any of them.
Replies are removed before their parents (post-order). The traversal uses
an explicit stack so arbitrarily deep reply chains cannot exhaust the
interpreter stack.

Authorization is the caller's job; this module only deletes.
"""

import logging
from dataclasses import dataclass
from typing import List, Optional, Set, Tuple

from sqlalchemy.orm import Session

from portal_guard.platform.audit import AuditOutcome, SecurityEvent, SecurityEventType, log_security_event

from .errors import CommentDeletionError, CommentNotFoundError, CommentStillPresentError, CommentStoreError
from .store import CommentStore, SqlAlchemyCommentStore

logger = logging.getLogger(__name__)

GENERIC_DELETE_ERROR = "Could not delete comment."


@dataclass(frozen=True)
class DeleteResult:
    success: bool
    error: Optional[str] = None
    error_code: Optional[str] = None
    deleted_comments: int = 0
    deleted_likes: int = 0


class CommentTreeDeleter:
    def __init__(self, store: CommentStore, actor_id: Optional[str] = None):
        self.store = store
        self.actor_id = actor_id

    def delete(self, comment_id: str) -> DeleteResult:
        try:
            deleted_comments, deleted_likes = self._delete_tree(comment_id)
            if self.store.exists(comment_id):
                raise CommentStillPresentError(comment_id)
            self.store.commit()
        except CommentDeletionError as exc:
            self._rollback(comment_id)
            self._log_failure(comment_id, exc)
            return DeleteResult(success=False, error=exc.message, error_code=exc.error_code)
        except Exception as exc:
            self._rollback(comment_id)
            logger.exception(
                "Unexpected error deleting comment tree",
                extra={"comment_id": comment_id, "error_type": type(exc).__name__},
            )
            err = CommentStoreError(GENERIC_DELETE_ERROR, comment_id, cause=exc)
            self._log_failure(comment_id, err)
            return DeleteResult(success=False, error=err.message, error_code=err.error_code)

        log_security_event(SecurityEvent(
            event_type=SecurityEventType.COMMENT_TREE_DELETED,
            user_id=self.actor_id,
            action="delete_comment",
            metadata={
                "comment_id": comment_id,
                "deleted_comments": deleted_comments,
                "deleted_likes": deleted_likes,
            },
        ))
        return DeleteResult(
            success=True,
            deleted_comments=deleted_comments,
            deleted_likes=deleted_likes,
        )

    def _delete_tree(self, root_id: str) -> Tuple[int, int]:
        # (comment_id, children_already_pushed)
        stack: List[Tuple[str, bool]] = [(root_id, False)]
        seen: Set[str] = set()
        deleted_comments = 0
        deleted_likes = 0

        while stack:
            comment_id, expanded = stack.pop()
            if not expanded:
                if comment_id in seen:
                    continue
                seen.add(comment_id)
                stack.append((comment_id, True))
                for child_id in reversed(self.store.get_child_ids(comment_id)):
                    stack.append((child_id, False))
                continue

            deleted_likes += self.store.delete_likes(comment_id)
            if self.store.delete_comment(comment_id) == 0:
                raise CommentNotFoundError(comment_id)
            deleted_comments += 1

        return deleted_comments, deleted_likes

    def _rollback(self, comment_id: str) -> None:
        try:
            self.store.rollback()
        except Exception as exc:
            logger.error(
                "Rollback failed after comment delete error",
                extra={"comment_id": comment_id, "error": str(exc)},
            )

    def _log_failure(self, comment_id: str, exc: CommentDeletionError) -> None:
        log_security_event(SecurityEvent(
            event_type=SecurityEventType.COMMENT_TREE_DELETE_FAILED,
            outcome=AuditOutcome.FAILURE,
            user_id=self.actor_id,
            action="delete_comment",
            metadata={
                "comment_id": comment_id,
                "failed_comment_id": exc.comment_id,
                "error_code": exc.error_code,
                "error": exc.message,
            },
        ))


def delete_comment_tree(comment_id: str, session: Session, actor_id: Optional[str] = None) -> DeleteResult:
    """Delete ``comment_id`` and its whole reply tree in one transaction."""
    return CommentTreeDeleter(SqlAlchemyCommentStore(session), actor_id=actor_id).delete(comment_id)
