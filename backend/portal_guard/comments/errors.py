"""
Comment deletion errors.

The specific cause is kept for logging; API callers show a generic
message.
"""

from typing import Optional


class CommentDeletionError(Exception):
    """Base exception for comment tree deletion failures."""

    error_code = "COMMENT_DELETE_FAILED"

    def __init__(self, message: str, comment_id: Optional[str] = None):
        self.message = message
        self.comment_id = comment_id
        super().__init__(message)

    def to_dict(self) -> dict:
        return {"error": self.error_code, "message": self.message, "comment_id": self.comment_id}


class CommentNotFoundError(CommentDeletionError):
    """The delete affected no rows: missing or already deleted."""

    error_code = "COMMENT_NOT_FOUND"

    def __init__(self, comment_id: str):
        super().__init__(f"Comment {comment_id} not found or already deleted", comment_id)


class CommentStillPresentError(CommentDeletionError):
    """The delete reported success but the row is still readable."""

    error_code = "COMMENT_STILL_PRESENT"

    def __init__(self, comment_id: str):
        super().__init__(f"Comment {comment_id} still present after delete", comment_id)


class CommentStoreError(CommentDeletionError):
    """The backing store failed."""

    error_code = "COMMENT_STORE_ERROR"

    def __init__(self, message: str, comment_id: Optional[str] = None, cause: Optional[Exception] = None):
        self.cause = cause
        super().__init__(message, comment_id)
