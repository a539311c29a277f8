"""Submit review and checklist-generation work to the queue."""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass

from checkreview.config import Settings
from checkreview.constants import (
    DEFAULT_TASK_PRIORITY,
    AiTaskType,
    ReviewTargetStatus,
    ReviewType,
)
from checkreview.domain.payloads import (
    ChecklistGenerationTaskPayload,
    ReviewTaskPayload,
    task_type_for_review,
)
from checkreview.domain.value_objects import ChecklistItemRef, ReviewSettings
from checkreview.errors import DomainValidationError, ErrorCode
from checkreview.models.review_target import ReviewTarget
from checkreview.queue.bootstrap import AiTaskBootstrap
from checkreview.queue.service import (
    AiTaskQueueService,
    EnqueueResult,
    TaskFileUpload,
)
from checkreview.repositories.protocols import (
    ChecklistItemRepository,
    ReviewSpaceRepository,
    ReviewTargetRepository,
)
from checkreview.services.ai_config import resolve_ai_api_config

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ExecuteReviewResult:
    review_target_id: str
    status: ReviewTargetStatus
    queue_length: int


class ExecuteReviewService:
    def __init__(
        self,
        settings: Settings,
        *,
        target_repo: ReviewTargetRepository,
        space_repo: ReviewSpaceRepository,
        checklist_repo: ChecklistItemRepository,
        queue: AiTaskQueueService,
        bootstrap: AiTaskBootstrap,
    ) -> None:
        self._settings = settings
        self._target_repo = target_repo
        self._space_repo = space_repo
        self._checklist_repo = checklist_repo
        self._queue = queue
        self._bootstrap = bootstrap

    async def execute(
        self,
        *,
        review_space_id: str,
        user_id: str,
        name: str,
        files: list[TaskFileUpload],
        checklist_items: list[ChecklistItemRef] | None = None,
        review_settings: ReviewSettings | None = None,
        review_type: ReviewType = ReviewType.SMALL,
        api_key: str | None = None,
        priority: int = DEFAULT_TASK_PRIORITY,
    ) -> ExecuteReviewResult:
        """Create a review target and queue its first review.

        ``checklist_items`` defaults to the space's current checklist.
        Every precondition is checked before any row is written.
        """
        if not files:
            raise DomainValidationError(ErrorCode.REVIEW_EXECUTION_NO_FILES)
        space = await self._space_repo.get_by_id(review_space_id)
        if space is None:
            raise DomainValidationError(
                ErrorCode.REVIEW_SPACE_NOT_FOUND, review_space_id
            )
        if checklist_items is None:
            checklist_items = [
                ChecklistItemRef(id=item.id, content=item.content)
                for item in await self._checklist_repo.list_by_review_space(
                    review_space_id
                )
            ]
        if not checklist_items:
            raise DomainValidationError(
                ErrorCode.REVIEW_EXECUTION_NO_CHECKLIST, review_space_id
            )
        api_config = resolve_ai_api_config(self._settings, api_key)
        settings = review_settings or ReviewSettings()

        target = ReviewTarget(
            id=str(uuid.uuid4()),
            review_space_id=review_space_id,
            name=name,
            status=ReviewTargetStatus.PENDING,
            review_settings=settings.model_dump(mode="json"),
            review_type=review_type,
        )
        target.transition_to(ReviewTargetStatus.QUEUED)
        target = await self._target_repo.add(target)

        payload = ReviewTaskPayload(
            review_target_id=target.id,
            review_space_id=review_space_id,
            user_id=user_id,
            files=[f.meta for f in files],
            checklist_items=checklist_items,
            review_settings=settings,
            review_type=review_type,
            ai_api_config=api_config,
        )
        try:
            enqueued = await self._queue.enqueue_task(
                task_type_for_review(review_type),
                api_config,
                payload,
                priority=priority,
                files=files,
            )
        except Exception:
            await _mark_error(self._target_repo, target.id)
            raise

        await self._bootstrap.start_workers_for_api_key_hash(
            enqueued.api_key_hash
        )
        logger.info(
            "event=review_submitted target_id=%s task_id=%s items=%d"
            " files=%d",
            target.id,
            enqueued.task_id,
            len(checklist_items),
            len(files),
        )
        return ExecuteReviewResult(
            review_target_id=target.id,
            status=ReviewTargetStatus.QUEUED,
            queue_length=enqueued.queue_length,
        )


class ChecklistGenerationService:
    def __init__(
        self,
        settings: Settings,
        *,
        space_repo: ReviewSpaceRepository,
        queue: AiTaskQueueService,
        bootstrap: AiTaskBootstrap,
    ) -> None:
        self._settings = settings
        self._space_repo = space_repo
        self._queue = queue
        self._bootstrap = bootstrap

    async def execute(
        self,
        *,
        review_space_id: str,
        user_id: str,
        files: list[TaskFileUpload],
        checklist_requirements: str = "",
        api_key: str | None = None,
        priority: int = DEFAULT_TASK_PRIORITY,
    ) -> EnqueueResult:
        if not files:
            raise DomainValidationError(ErrorCode.REVIEW_EXECUTION_NO_FILES)
        if await self._space_repo.get_by_id(review_space_id) is None:
            raise DomainValidationError(
                ErrorCode.REVIEW_SPACE_NOT_FOUND, review_space_id
            )
        api_config = resolve_ai_api_config(self._settings, api_key)

        await self._space_repo.update_checklist_generation_error(
            review_space_id, None
        )
        enqueued = await self._queue.enqueue_task(
            AiTaskType.CHECKLIST_GENERATION,
            api_config,
            ChecklistGenerationTaskPayload(
                review_space_id=review_space_id,
                user_id=user_id,
                files=[f.meta for f in files],
                checklist_requirements=checklist_requirements,
                ai_api_config=api_config,
            ),
            priority=priority,
            files=files,
        )
        await self._bootstrap.start_workers_for_api_key_hash(
            enqueued.api_key_hash
        )
        logger.info(
            "event=checklist_generation_submitted space_id=%s task_id=%s",
            review_space_id,
            enqueued.task_id,
        )
        return enqueued


async def _mark_error(
    target_repo: ReviewTargetRepository, target_id: str
) -> None:
    try:
        await target_repo.transition(target_id, ReviewTargetStatus.ERROR)
    except Exception as exc:
        logger.warning(
            "event=target_error_update_failed target_id=%s error=%s",
            target_id,
            exc,
        )
