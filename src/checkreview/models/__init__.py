"""SQLAlchemy ORM models."""

from checkreview.models.ai_task import AiTask, AiTaskFile
from checkreview.models.base import Base
from checkreview.models.review_cache import (
    LargeDocumentResultCache,
    ReviewDocumentCache,
)
from checkreview.models.review_result import ReviewResult
from checkreview.models.review_space import ChecklistItem, ReviewSpace
from checkreview.models.review_target import ReviewTarget

__all__ = [
    "AiTask",
    "AiTaskFile",
    "Base",
    "ChecklistItem",
    "LargeDocumentResultCache",
    "ReviewDocumentCache",
    "ReviewResult",
    "ReviewSpace",
    "ReviewTarget",
]
