"""Retry planner: re-run failed or all items from stored content.

A retry never re-ingests files. It reuses the extracted-content cache
written by the first run, so a target without cache rows cannot be
retried at all.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

from checkreview.config import Settings
from checkreview.constants import (
    DEFAULT_TASK_PRIORITY,
    RETRY_ITEM_ID_PREFIX,
    SNAPSHOT_ITEM_ID_PREFIX,
    RetryScope,
    ReviewTargetStatus,
    ReviewType,
)
from checkreview.domain.payloads import (
    ReviewTaskPayload,
    task_type_for_review,
)
from checkreview.domain.value_objects import ChecklistItemRef, ReviewSettings
from checkreview.errors import DomainValidationError, ErrorCode
from checkreview.models.review_result import ReviewResult
from checkreview.models.review_target import ReviewTarget
from checkreview.queue.bootstrap import AiTaskBootstrap
from checkreview.queue.service import AiTaskQueueService
from checkreview.repositories.protocols import (
    ChecklistItemRepository,
    ReviewDocumentCacheRepository,
    ReviewResultRepository,
    ReviewTargetRepository,
)
from checkreview.services.ai_config import resolve_ai_api_config

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RetryPlan:
    """Items to re-run and the result rows they supersede."""

    checklist_items: list[ChecklistItemRef]
    results_to_delete_ids: list[str]


@dataclass(frozen=True)
class RetryReviewResult:
    status: ReviewTargetStatus
    retry_items: int


def plan_retry_items(
    results: list[ReviewResult],
    retry_scope: RetryScope,
    latest_checklist: list[ChecklistItemRef] | None = None,
) -> RetryPlan:
    """Pick the items in scope from the previous run's results.

    ``failed``: items whose result carries an error. ``all``: every
    snapshotted item, or ``latest_checklist`` when given. Either way
    every result row of the items in scope is superseded.
    """
    if retry_scope == RetryScope.FAILED:
        failed = [r for r in results if r.failed]
        return RetryPlan(
            checklist_items=[
                ChecklistItemRef(
                    id=f"{RETRY_ITEM_ID_PREFIX}-{i}",
                    content=r.checklist_item_content,
                )
                for i, r in enumerate(failed)
            ],
            results_to_delete_ids=[r.id for r in failed],
        )

    if latest_checklist is not None:
        items = list(latest_checklist)
    else:
        contents = list(
            dict.fromkeys(r.checklist_item_content for r in results)
        )
        items = [
            ChecklistItemRef(
                id=f"{SNAPSHOT_ITEM_ID_PREFIX}-{i}", content=content
            )
            for i, content in enumerate(contents)
        ]
    return RetryPlan(
        checklist_items=items,
        results_to_delete_ids=[r.id for r in results],
    )


class RetryReviewService:
    def __init__(
        self,
        settings: Settings,
        *,
        target_repo: ReviewTargetRepository,
        result_repo: ReviewResultRepository,
        cache_repo: ReviewDocumentCacheRepository,
        checklist_repo: ChecklistItemRepository,
        queue: AiTaskQueueService,
        bootstrap: AiTaskBootstrap,
    ) -> None:
        self._settings = settings
        self._target_repo = target_repo
        self._result_repo = result_repo
        self._cache_repo = cache_repo
        self._checklist_repo = checklist_repo
        self._queue = queue
        self._bootstrap = bootstrap

    async def plan(
        self,
        review_target_id: str,
        user_id: str,
        retry_scope: RetryScope,
        *,
        review_type: ReviewType | None = None,
        review_settings: ReviewSettings | None = None,
        use_latest_checklist: bool = False,
        api_key: str | None = None,
    ) -> RetryReviewResult:
        target = await self._target_repo.get_by_id(review_target_id)
        if target is None:
            raise DomainValidationError(
                ErrorCode.REVIEW_TARGET_NOT_FOUND, review_target_id
            )
        queued_state = target.state.prepare_for_retry()

        caches = await self._cache_repo.list_by_review_target(
            review_target_id
        )
        if not caches or not all(c.has_cache for c in caches):
            raise DomainValidationError(
                ErrorCode.RETRY_NO_CACHE, f"review_target={review_target_id}"
            )

        results = await self._result_repo.list_by_review_target(
            review_target_id
        )
        latest = None
        if retry_scope == RetryScope.ALL and use_latest_checklist:
            latest = [
                ChecklistItemRef(id=item.id, content=item.content)
                for item in await self._checklist_repo.list_by_review_space(
                    target.review_space_id
                )
            ]
        plan = plan_retry_items(results, retry_scope, latest)
        if not plan.checklist_items:
            raise DomainValidationError(
                ErrorCode.RETRY_NO_ITEMS,
                f"review_target={review_target_id} scope={retry_scope}",
            )

        api_config = resolve_ai_api_config(self._settings, api_key)
        settings = target.settings.merged_with(review_settings)
        effective_type = ReviewType(
            review_type or target.review_type or ReviewType.SMALL
        )

        target.status = queued_state.value
        target.review_type = effective_type
        target.review_settings = settings.model_dump(mode="json")
        await self._target_repo.save(target)

        payload = ReviewTaskPayload(
            review_target_id=review_target_id,
            review_space_id=target.review_space_id,
            user_id=user_id,
            files=[],
            checklist_items=plan.checklist_items,
            review_settings=settings,
            review_type=effective_type,
            ai_api_config=api_config,
            is_retry=True,
            retry_scope=retry_scope,
            results_to_delete_ids=plan.results_to_delete_ids,
        )
        try:
            enqueued = await self._queue.enqueue_task(
                task_type_for_review(effective_type),
                api_config,
                payload,
                priority=DEFAULT_TASK_PRIORITY,
            )
        except Exception:
            await self._restore_error(target)
            raise

        await self._bootstrap.start_workers_for_api_key_hash(
            enqueued.api_key_hash
        )
        logger.info(
            "event=retry_queued target_id=%s task_id=%s scope=%s items=%d"
            " superseded=%d",
            review_target_id,
            enqueued.task_id,
            retry_scope,
            len(plan.checklist_items),
            len(plan.results_to_delete_ids),
        )
        return RetryReviewResult(
            status=ReviewTargetStatus.QUEUED,
            retry_items=len(plan.checklist_items),
        )

    async def _restore_error(self, target: ReviewTarget) -> None:
        try:
            await self._target_repo.transition(
                target.id, ReviewTargetStatus.ERROR
            )
        except Exception as exc:
            logger.warning(
                "event=target_error_update_failed target_id=%s error=%s",
                target.id,
                exc,
            )
