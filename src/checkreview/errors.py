"""Domain and infrastructure error types with stable codes.

Callers switch on ``error.code`` rather than on message text. Codes
are part of the external contract and must not be renamed.
"""

from __future__ import annotations

from enum import StrEnum


class ErrorCode(StrEnum):
    RETRY_NO_CACHE = "RETRY_NO_CACHE"
    RETRY_NOT_AVAILABLE = "RETRY_NOT_AVAILABLE"
    RETRY_NO_ITEMS = "RETRY_NO_ITEMS"
    REVIEW_TARGET_NOT_FOUND = "REVIEW_TARGET_NOT_FOUND"
    REVIEW_TARGET_STATUS_INVALID = "REVIEW_TARGET_STATUS_INVALID"
    REVIEW_TARGET_STATUS_INVALID_TRANSITION = (
        "REVIEW_TARGET_STATUS_INVALID_TRANSITION"
    )
    REVIEW_SPACE_NOT_FOUND = "REVIEW_SPACE_NOT_FOUND"
    AI_TASK_NOT_FOUND = "AI_TASK_NOT_FOUND"
    AI_TASK_STATUS_INVALID_TRANSITION = "AI_TASK_STATUS_INVALID_TRANSITION"
    AI_TASK_ENQUEUE_FAILED = "AI_TASK_ENQUEUE_FAILED"
    AI_TASK_PAYLOAD_INVALID = "AI_TASK_PAYLOAD_INVALID"
    AI_CONFIG_MISSING = "AI_CONFIG_MISSING"
    REVIEW_EXECUTION_NO_FILES = "REVIEW_EXECUTION_NO_FILES"
    REVIEW_EXECUTION_NO_CHECKLIST = "REVIEW_EXECUTION_NO_CHECKLIST"
    REVIEW_EXECUTION_FAILED = "REVIEW_EXECUTION_FAILED"
    REVIEW_CANCELLED = "REVIEW_CANCELLED"
    CHECKLIST_GENERATION_FAILED = "CHECKLIST_GENERATION_FAILED"


class CheckReviewError(Exception):
    """Base error carrying a stable code and optional detail."""

    def __init__(self, code: ErrorCode, detail: str | None = None) -> None:
        self.code = code
        self.detail = detail
        super().__init__(f"{code}: {detail}" if detail else str(code))


class DomainValidationError(CheckReviewError):
    """Caller-facing rule violation. Never retried automatically."""


class InternalError(CheckReviewError):
    """Infrastructure failure. Raised ``from`` the underlying cause."""


class WorkflowError(CheckReviewError):
    """A review or generation pipeline could not produce a usable result."""


class ReviewCancelledError(CheckReviewError):
    """Raised at a suspension point after the run was cancelled."""

    def __init__(self, task_id: str) -> None:
        self.task_id = task_id
        super().__init__(ErrorCode.REVIEW_CANCELLED, f"task={task_id}")
