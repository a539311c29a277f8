"""Task payloads as a tagged union keyed by task type.

The queue persists payloads as plain JSON. ``decode_payload`` turns a
stored blob back into exactly one typed shape, once, at dequeue time.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from pydantic import BaseModel, Field, ValidationError

from checkreview.constants import (
    AiTaskType,
    ProcessMode,
    RetryScope,
    ReviewType,
)
from checkreview.domain.value_objects import (
    AiApiConfig,
    ChecklistItemRef,
    FileMeta,
    ReviewSettings,
)
from checkreview.errors import DomainValidationError, ErrorCode


class ReviewTaskPayload(BaseModel):
    """Payload for small_review and large_review tasks."""

    review_target_id: str
    review_space_id: str
    user_id: str
    files: list[FileMeta] = Field(default_factory=lambda: list[FileMeta]())
    checklist_items: list[ChecklistItemRef]
    review_settings: ReviewSettings = Field(default_factory=ReviewSettings)
    review_type: ReviewType = ReviewType.SMALL
    ai_api_config: AiApiConfig
    is_retry: bool = False
    retry_scope: RetryScope | None = None
    results_to_delete_ids: list[str] = Field(
        default_factory=lambda: list[str]()
    )


class ChecklistGenerationTaskPayload(BaseModel):
    """Payload for checklist_generation tasks."""

    review_space_id: str
    user_id: str
    files: list[FileMeta] = Field(default_factory=lambda: list[FileMeta]())
    checklist_requirements: str = ""
    ai_api_config: AiApiConfig


type TaskPayload = ReviewTaskPayload | ChecklistGenerationTaskPayload

_PAYLOAD_TYPES: dict[AiTaskType, type[BaseModel]] = {
    AiTaskType.SMALL_REVIEW: ReviewTaskPayload,
    AiTaskType.LARGE_REVIEW: ReviewTaskPayload,
    AiTaskType.CHECKLIST_GENERATION: ChecklistGenerationTaskPayload,
}


def task_type_for_review(review_type: ReviewType) -> AiTaskType:
    if review_type == ReviewType.LARGE:
        return AiTaskType.LARGE_REVIEW
    return AiTaskType.SMALL_REVIEW


def decode_payload(task_type: str, raw: dict[str, Any]) -> TaskPayload:
    """Validate a stored payload against the shape for its task type."""
    try:
        kind = AiTaskType(task_type)
    except ValueError as exc:
        raise DomainValidationError(
            ErrorCode.AI_TASK_PAYLOAD_INVALID, f"unknown task_type={task_type}"
        ) from exc

    try:
        payload = _PAYLOAD_TYPES[kind].model_validate(raw)
    except ValidationError as exc:
        raise DomainValidationError(
            ErrorCode.AI_TASK_PAYLOAD_INVALID,
            f"task_type={kind} errors={exc.error_count()}",
        ) from exc

    if isinstance(payload, ReviewTaskPayload):
        if task_type_for_review(payload.review_type) != kind:
            raise DomainValidationError(
                ErrorCode.AI_TASK_PAYLOAD_INVALID,
                f"task_type={kind} review_type={payload.review_type}",
            )
        return payload
    if isinstance(payload, ChecklistGenerationTaskPayload):
        return payload
    raise DomainValidationError(  # pragma: no cover
        ErrorCode.AI_TASK_PAYLOAD_INVALID, f"task_type={kind}"
    )


def encode_payload(payload: TaskPayload) -> dict[str, Any]:
    return payload.model_dump(mode="json")


@dataclass(frozen=True)
class TaskFileRecord:
    """A persisted upload owned by one task."""

    id: str
    task_id: str
    file_name: str
    file_size: int
    mime_type: str
    process_mode: ProcessMode
    file_path: str | None = None
    converted_image_count: int = 0


@dataclass(frozen=True)
class DequeuedTask:
    """A task flipped to processing, with its payload already decoded."""

    id: str
    task_type: AiTaskType
    api_key_hash: str
    priority: int
    payload: TaskPayload
    created_at: datetime
    started_at: datetime | None = None
    files: list[TaskFileRecord] = field(
        default_factory=lambda: list[TaskFileRecord]()
    )
