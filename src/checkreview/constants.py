"""Shared constants — single source of truth for cross-module values.

All magic strings and numbers that appear in 2+ files belong here.
StrEnum members are str-compatible, so downstream code (JSON payloads,
SQL columns, log lines) works unchanged.
"""

from __future__ import annotations

from enum import StrEnum

# ── String Enums ─────────────────────────────────────────


class AiTaskType(StrEnum):
    """Kinds of queued AI work. Each maps to one payload shape."""

    SMALL_REVIEW = "small_review"
    LARGE_REVIEW = "large_review"
    CHECKLIST_GENERATION = "checklist_generation"


class AiTaskStatus(StrEnum):
    """Queue row status.

    Only QUEUED and PROCESSING are ever persisted; COMPLETED and FAILED
    exist so the terminal transition can be validated before the row
    is deleted.
    """

    QUEUED = "queued"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


class ReviewTargetStatus(StrEnum):
    """Review target lifecycle status."""

    PENDING = "pending"
    QUEUED = "queued"
    REVIEWING = "reviewing"
    COMPLETED = "completed"
    ERROR = "error"


class ReviewType(StrEnum):
    """Single-pass review vs. per-document review plus consolidation."""

    SMALL = "small"
    LARGE = "large"


class ProcessMode(StrEnum):
    """How an uploaded file is fed to the model."""

    TEXT = "text"
    IMAGE = "image"


class RetryScope(StrEnum):
    """Which checklist items a retry re-runs."""

    FAILED = "failed"
    ALL = "all"


class StageOutcome(StrEnum):
    """Outcome of one stage in a fan-out group."""

    COMPLETED = "completed"
    FAILED = "failed"
    SKIPPED = "skipped"


# ── Queue ────────────────────────────────────────────────

DEFAULT_TASK_PRIORITY = 5
DEFAULT_POLLING_INTERVAL_MS = 10_000
MIN_POLLING_INTERVAL_MS = 1_000
WORKER_ERROR_BACKOFF_SECONDS = 5.0
INTERRUPTED_TASK_MESSAGE = "Task was interrupted by system restart"

# ── Circuit Breaker Configuration ────────────────────────

CB_LLM_FAILURE_THRESHOLD = 5
CB_LLM_RECOVERY_TIMEOUT = 30

# ── Retry Strategy ───────────────────────────────────────

RETRY_MAX_ATTEMPTS = 3
RETRY_INITIAL_WAIT = 2
RETRY_MAX_WAIT = 30

# ── LLM Output ───────────────────────────────────────────

LLM_MAX_OUTPUT_TOKENS = 4096

# ── Review Engine ────────────────────────────────────────

DEFAULT_EVALUATION_LABELS = ("A", "B", "C", "-")
MISSING_RESULT_MAX_ATTEMPTS = 3
MISSING_RESULT_MESSAGE = "AI output missing checklist result"
ALL_ITEMS_FAILED_MESSAGE = "All checklist items failed to review"
DEFAULT_MAX_CATEGORIES = 10
UNCATEGORIZED_LABEL = "Other"
MAX_SPLIT_RETRY_COUNT = 5
CHUNK_OVERLAP_CHARS = 300
DOCUMENT_REVIEW_CONCURRENCY = 5
CATEGORY_REVIEW_CONCURRENCY = 2

# ── Retry Planner ────────────────────────────────────────

RETRY_ITEM_ID_PREFIX = "retry"
SNAPSHOT_ITEM_ID_PREFIX = "snapshot"

# ── Misc ─────────────────────────────────────────────────

ERROR_TRUNCATION_CHARS = 200
ID_HEX_LENGTH = 12
TEXT_CACHE_SUFFIX = ".txt"
IMAGE_CACHE_PREFIX = "page_"
IMAGE_CACHE_SUFFIX = ".png"

# ── Token Estimation ────────────────────────────────────

CHARS_PER_TOKEN_ESTIMATE = 4


def estimate_tokens(text: str) -> int:
    """Rough token estimate using chars-per-token ratio."""
    return len(text) // CHARS_PER_TOKEN_ESTIMATE


def truncate_error(message: str) -> str:
    """Clip an error message for storage and log lines."""
    if len(message) <= ERROR_TRUNCATION_CHARS:
        return message
    return message[:ERROR_TRUNCATION_CHARS] + "..."
