"""Review execution: content, partitioning, strategy, results, status.

``ReviewExecutionEngine.run`` drives one review task end to end. Per-item
failures become error results and never abort sibling work; only
cancellation, unreadable uploads, a missing retry cache, or a failed
result write escape as exceptions.
"""

from __future__ import annotations

import logging
import uuid
from collections.abc import Awaitable, Callable, Sequence
from dataclasses import dataclass

from checkreview.config import Settings
from checkreview.constants import (
    ALL_ITEMS_FAILED_MESSAGE,
    ReviewTargetStatus,
    ReviewType,
)
from checkreview.domain.documents import ReviewDocument
from checkreview.domain.payloads import ReviewTaskPayload, TaskFileRecord
from checkreview.domain.value_objects import ChecklistItemRef
from checkreview.llm.client import LanguageModel, LanguageModelFactory
from checkreview.models.review_result import ReviewResult
from checkreview.queue.run_registry import CancellationToken
from checkreview.repositories.protocols import (
    LargeDocumentResultRepository,
    ReviewResultRepository,
    ReviewTargetRepository,
)
from checkreview.review.categorize import partition_checklist
from checkreview.review.content import DocumentContentLoader
from checkreview.review.large import LargeReviewer
from checkreview.review.pipeline import ParallelGroup, PipelineStage
from checkreview.review.results import ReviewItemResult, all_failed, failures
from checkreview.review.small import SmallReviewer

logger = logging.getLogger(__name__)

type CategoryReview = Callable[
    [Sequence[ChecklistItemRef]], Awaitable[list[ReviewItemResult]]
]


@dataclass(frozen=True)
class ReviewOutcome:
    """What a run wrote and how the target ended up."""

    results: list[ReviewResult]
    status: ReviewTargetStatus
    error_message: str | None = None

    @property
    def success(self) -> bool:
        return self.status == ReviewTargetStatus.COMPLETED


class ReviewExecutionEngine:
    def __init__(
        self,
        settings: Settings,
        *,
        content: DocumentContentLoader,
        target_repo: ReviewTargetRepository,
        result_repo: ReviewResultRepository,
        trace_repo: LargeDocumentResultRepository,
        model_factory: LanguageModelFactory,
    ) -> None:
        self._settings = settings
        self._content = content
        self._target_repo = target_repo
        self._result_repo = result_repo
        self._trace_repo = trace_repo
        self._model_factory = model_factory

    async def run(
        self,
        task_id: str,
        payload: ReviewTaskPayload,
        files: list[TaskFileRecord],
        token: CancellationToken,
    ) -> ReviewOutcome:
        target_id = payload.review_target_id
        items = payload.checklist_items
        logger.info(
            "event=review_started task_id=%s target_id=%s type=%s"
            " items=%d retry=%s",
            task_id,
            target_id,
            payload.review_type,
            len(items),
            payload.is_retry,
        )

        token.raise_if_cancelled()
        documents = await self._acquire_documents(task_id, payload, files)

        model = self._model_factory(payload.ai_api_config)
        categories = await partition_checklist(
            items,
            payload.review_settings.concurrent_review_items,
            model,
            token,
        )

        if payload.review_type == ReviewType.LARGE:
            await self._drop_stale_traces(target_id, items)

        review = self._strategy(payload, model, documents, token)
        group = ParallelGroup[Sequence[ChecklistItemRef]](
            name="category_review",
            stages=[
                PipelineStage(
                    name=c.name, execute=_bind_category(review, c.items)
                )
                for c in categories
            ],
            max_concurrency=self._settings.review_category_concurrency,
        )
        stage_results = await group.execute(items)

        item_results: list[ReviewItemResult] = []
        for category, stage in zip(categories, stage_results, strict=True):
            if stage.ok and stage.output is not None:
                item_results.extend(stage.output)
            else:
                item_results.extend(
                    failures(category.items, stage.error or "review failed")
                )

        token.raise_if_cancelled()
        rows = await self._write_results(target_id, payload, item_results)

        if all_failed(item_results):
            await self._target_repo.transition(
                target_id, ReviewTargetStatus.ERROR
            )
            logger.warning(
                "event=review_all_failed task_id=%s target_id=%s items=%d",
                task_id,
                target_id,
                len(item_results),
            )
            return ReviewOutcome(
                results=rows,
                status=ReviewTargetStatus.ERROR,
                error_message=ALL_ITEMS_FAILED_MESSAGE,
            )

        await self._target_repo.transition(
            target_id, ReviewTargetStatus.COMPLETED
        )
        logger.info(
            "event=review_completed task_id=%s target_id=%s items=%d"
            " failed=%d",
            task_id,
            target_id,
            len(item_results),
            sum(1 for r in item_results if r.failed),
        )
        return ReviewOutcome(results=rows, status=ReviewTargetStatus.COMPLETED)

    async def _acquire_documents(
        self,
        task_id: str,
        payload: ReviewTaskPayload,
        files: list[TaskFileRecord],
    ) -> list[ReviewDocument]:
        if payload.is_retry:
            return await self._content.load_from_cache(
                payload.review_target_id
            )
        documents = await self._content.load_from_files(task_id, files)
        return await self._content.save_caches(
            payload.review_target_id, documents
        )

    def _strategy(
        self,
        payload: ReviewTaskPayload,
        model: LanguageModel,
        documents: list[ReviewDocument],
        token: CancellationToken,
    ) -> CategoryReview:
        if payload.review_type == ReviewType.LARGE:
            return LargeReviewer(
                model,
                payload.review_settings,
                documents,
                token,
                review_target_id=payload.review_target_id,
                trace_repo=self._trace_repo,
                document_concurrency=(
                    self._settings.review_document_concurrency
                ),
                threshold_chars=(
                    self._settings.large_document_threshold_chars
                ),
            ).review
        return SmallReviewer(
            model, payload.review_settings, documents, token
        ).review

    async def _drop_stale_traces(
        self, target_id: str, items: Sequence[ChecklistItemRef]
    ) -> None:
        # Unlinked traces belong to a run whose consolidation never landed
        dropped = await self._trace_repo.delete_unlinked(
            target_id, [item.content for item in items]
        )
        if dropped:
            logger.info(
                "event=stale_traces_dropped target_id=%s count=%d",
                target_id,
                dropped,
            )

    async def _write_results(
        self,
        target_id: str,
        payload: ReviewTaskPayload,
        item_results: list[ReviewItemResult],
    ) -> list[ReviewResult]:
        """Replace superseded rows and insert new ones in one transaction."""
        rows = [
            ReviewResult(
                id=str(uuid.uuid4()),
                review_target_id=target_id,
                checklist_item_content=r.item.content,
                evaluation=r.evaluation,
                comment=r.comment,
                error_message=r.error_message,
            )
            for r in item_results
        ]
        written = await self._result_repo.replace(
            target_id, payload.results_to_delete_ids, rows
        )
        if payload.review_type == ReviewType.LARGE:
            await self._trace_repo.link_results(
                target_id,
                {
                    row.checklist_item_content: row.id
                    for row in written
                    if not row.failed
                },
            )
        return written


def _bind_category(
    review: CategoryReview, items: list[ChecklistItemRef]
) -> CategoryReview:
    """Bind a stage to its own category instead of the group input."""

    async def _run(_: Sequence[ChecklistItemRef]) -> list[ReviewItemResult]:
        return await review(items)

    return _run
