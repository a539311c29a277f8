"""Dispatch a dequeued task to the workflow for its payload type."""

from __future__ import annotations

import logging
from dataclasses import dataclass

from checkreview.constants import ReviewTargetStatus, truncate_error
from checkreview.domain.payloads import (
    ChecklistGenerationTaskPayload,
    DequeuedTask,
    ReviewTaskPayload,
)
from checkreview.errors import (
    DomainValidationError,
    ErrorCode,
    ReviewCancelledError,
    WorkflowError,
)
from checkreview.llm.client import LanguageModelFactory
from checkreview.models.review_space import ChecklistItem
from checkreview.queue.run_registry import WorkflowRunRegistry
from checkreview.repositories.protocols import (
    ChecklistItemRepository,
    ReviewSpaceRepository,
    ReviewTargetRepository,
)
from checkreview.review.checklist_generation import ChecklistGenerator
from checkreview.review.content import DocumentContentLoader
from checkreview.review.engine import ReviewExecutionEngine

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class TaskExecutionResult:
    success: bool
    error_message: str | None = None


class AiTaskExecutor:
    def __init__(
        self,
        *,
        engine: ReviewExecutionEngine,
        content: DocumentContentLoader,
        target_repo: ReviewTargetRepository,
        space_repo: ReviewSpaceRepository,
        checklist_repo: ChecklistItemRepository,
        run_registry: WorkflowRunRegistry,
        model_factory: LanguageModelFactory,
    ) -> None:
        self._engine = engine
        self._content = content
        self._target_repo = target_repo
        self._space_repo = space_repo
        self._checklist_repo = checklist_repo
        self._run_registry = run_registry
        self._model_factory = model_factory

    async def execute(self, task: DequeuedTask) -> TaskExecutionResult:
        payload = task.payload
        if isinstance(payload, ReviewTaskPayload):
            return await self._execute_review(task, payload)
        return await self._execute_checklist_generation(task, payload)

    # ── Review ───────────────────────────────────────────

    async def _execute_review(
        self, task: DequeuedTask, payload: ReviewTaskPayload
    ) -> TaskExecutionResult:
        """Run a review. Raises on failure after marking the target error."""
        target_id = payload.review_target_id
        target = await self._target_repo.get_by_id(target_id)
        if target is None:
            raise DomainValidationError(
                ErrorCode.REVIEW_TARGET_NOT_FOUND, target_id
            )
        if target.status != ReviewTargetStatus.REVIEWING:
            await self._target_repo.transition(
                target_id, ReviewTargetStatus.REVIEWING
            )

        token = self._run_registry.register(task.id)
        try:
            outcome = await self._engine.run(
                task.id, payload, task.files, token
            )
            if not outcome.results:
                raise WorkflowError(
                    ErrorCode.REVIEW_EXECUTION_FAILED,
                    f"no results for review_target={target_id}",
                )
        except ReviewCancelledError:
            logger.info(
                "event=review_cancelled task_id=%s target_id=%s",
                task.id,
                target_id,
            )
            raise
        except Exception:
            await self._mark_target_error(target_id)
            raise
        finally:
            self._run_registry.deregister(task.id)

        return TaskExecutionResult(
            success=outcome.success, error_message=outcome.error_message
        )

    async def _mark_target_error(self, target_id: str) -> None:
        try:
            await self._target_repo.transition(
                target_id, ReviewTargetStatus.ERROR
            )
        except Exception as exc:
            logger.warning(
                "event=target_error_update_failed target_id=%s error=%s",
                target_id,
                exc,
            )

    # ── Checklist generation ─────────────────────────────

    async def _execute_checklist_generation(
        self, task: DequeuedTask, payload: ChecklistGenerationTaskPayload
    ) -> TaskExecutionResult:
        space_id = payload.review_space_id
        token = self._run_registry.register(task.id)
        try:
            documents = await self._content.load_from_files(
                task.id, task.files
            )
            generator = ChecklistGenerator(
                self._model_factory(payload.ai_api_config)
            )
            contents = await generator.generate(
                documents, payload.checklist_requirements
            )
            token.raise_if_cancelled()
            await self._checklist_repo.bulk_insert(
                [
                    ChecklistItem(review_space_id=space_id, content=content)
                    for content in contents
                ]
            )
        except Exception as exc:
            message = truncate_error(str(exc) or type(exc).__name__)
            logger.error(
                "event=checklist_generation_failed task_id=%s space_id=%s"
                " error=%s",
                task.id,
                space_id,
                message,
            )
            await self._record_generation_error(space_id, message)
            return TaskExecutionResult(success=False, error_message=message)
        finally:
            self._run_registry.deregister(task.id)

        await self._record_generation_error(space_id, None)
        logger.info(
            "event=checklist_generation_completed task_id=%s space_id=%s"
            " items=%d",
            task.id,
            space_id,
            len(contents),
        )
        return TaskExecutionResult(success=True)

    async def _record_generation_error(
        self, space_id: str, message: str | None
    ) -> None:
        try:
            await self._space_repo.update_checklist_generation_error(
                space_id, message
            )
        except Exception:
            logger.warning(
                "event=generation_error_save_failed space_id=%s",
                space_id,
                exc_info=True,
            )
