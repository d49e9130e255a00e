"""Comment records and the writer that stores them in the working copy.

Components:
- Submission: Request-scoped, validated form post
- CommentRecord: Immutable record persisted as YAML
- CommentWriter: Creates uniquely named record files
"""

from staticomment.comments.schemas import CommentRecord, Submission
from staticomment.comments.writer import CommentWriteError, CommentWriter

__all__ = [
    "CommentRecord",
    "CommentWriteError",
    "CommentWriter",
    "Submission",
]
