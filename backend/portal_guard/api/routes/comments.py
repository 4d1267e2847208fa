"""
Comment moderation route. Admin only.

DELETE /api/comments/{comment_id} removes the comment, all replies below
it and every like attached to them, in one transaction.
"""

import logging

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from portal_guard.api.dependencies.request_context import (
    ClientInfo,
    CurrentUser,
    enforce_security_check,
    get_client_info,
    get_guard,
    require_admin,
)
from portal_guard.comments.deleter import GENERIC_DELETE_ERROR, delete_comment_tree
from portal_guard.comments.errors import CommentNotFoundError
from portal_guard.database.session import get_db_session
from portal_guard.platform.errors import AppError, NotFoundError
from portal_guard.security.suspicious import SecurityGuard

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/comments", tags=["comments"])


@router.delete("/{comment_id}")
def delete_comment(
    comment_id: str,
    admin: CurrentUser = Depends(require_admin),
    client: ClientInfo = Depends(get_client_info),
    guard: SecurityGuard = Depends(get_guard),
    db: Session = Depends(get_db_session),
) -> dict:
    enforce_security_check(guard, client, action="delete_comment", input={"comment_id": comment_id})

    result = delete_comment_tree(comment_id, db, actor_id=admin.user_id)
    if result.success:
        return {
            "success": True,
            "deleted_comments": result.deleted_comments,
            "deleted_likes": result.deleted_likes,
        }

    if result.error_code == CommentNotFoundError.error_code:
        raise NotFoundError("Comment", comment_id)
    raise AppError(code=result.error_code or "COMMENT_DELETE_FAILED", message=GENERIC_DELETE_ERROR)
