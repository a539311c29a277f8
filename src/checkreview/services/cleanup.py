"""Best-effort teardown of queued work when targets or spaces go away.

Nothing here raises. Each step is attempted, failures are logged and
collected in a ``CleanupResult`` so callers can inspect partial cleanup
without being blocked by it.
"""

from __future__ import annotations

import logging
from collections.abc import Awaitable
from dataclasses import dataclass, field
from typing import Any

from checkreview.constants import AiTaskStatus, truncate_error
from checkreview.models.ai_task import AiTask
from checkreview.queue.run_registry import WorkflowRunRegistry
from checkreview.repositories.protocols import (
    AiTaskRepository,
    ReviewTargetRepository,
)
from checkreview.storage.blob_store import BlobStore
from checkreview.storage.review_cache import ReviewCacheStore

logger = logging.getLogger(__name__)


@dataclass
class CleanupResult:
    attempted: list[str] = field(default_factory=lambda: list[str]())
    failures: dict[str, str] = field(default_factory=lambda: dict[str, str]())

    @property
    def ok(self) -> bool:
        return not self.failures

    def merge(self, other: CleanupResult) -> CleanupResult:
        self.attempted.extend(other.attempted)
        self.failures.update(other.failures)
        return self


class ReviewTargetCleanupHelper:
    def __init__(
        self,
        task_repo: AiTaskRepository,
        target_repo: ReviewTargetRepository,
        blob_store: BlobStore,
        cache_store: ReviewCacheStore,
        run_registry: WorkflowRunRegistry | None = None,
    ) -> None:
        self._task_repo = task_repo
        self._target_repo = target_repo
        self._blob_store = blob_store
        self._cache_store = cache_store
        self._run_registry = run_registry

    async def cleanup_single_review_target(
        self, review_target_id: str
    ) -> CleanupResult:
        result = CleanupResult()
        task = await self._step(
            result,
            f"find_task:{review_target_id}",
            self._task_repo.find_by_review_target_id(review_target_id),
        )
        if task is not None:
            await self._teardown_task(result, task)
        await self._step(
            result,
            f"delete_cache:{review_target_id}",
            self._cache_store.delete_cache_directory(review_target_id),
        )
        return result

    async def cleanup_review_targets(
        self, review_space_id: str
    ) -> CleanupResult:
        result = CleanupResult()
        targets = await self._step(
            result,
            f"list_targets:{review_space_id}",
            self._target_repo.list_by_review_space(review_space_id),
        )
        for target in targets or []:
            result.merge(await self.cleanup_single_review_target(target.id))
        return result

    async def cleanup_checklist_generation_task(
        self, review_space_id: str
    ) -> CleanupResult:
        result = CleanupResult()
        task = await self._step(
            result,
            f"find_generation_task:{review_space_id}",
            self._task_repo.find_checklist_generation_task(review_space_id),
        )
        if task is not None:
            await self._teardown_task(result, task)
        return result

    async def _teardown_task(
        self, result: CleanupResult, task: AiTask
    ) -> None:
        """Cancel a running task and remove it while workers hold off."""
        registry = self._run_registry
        if registry is not None:
            registry.set_cancelling(True)
        try:
            if task.status == AiTaskStatus.PROCESSING:
                self._cancel(result, task.id)
            await self._step(
                result,
                f"delete_task_files:{task.id}",
                self._blob_store.delete_task_files(task.id),
            )
            await self._step(
                result,
                f"delete_task:{task.id}",
                self._task_repo.delete(task.id),
            )
        finally:
            if registry is not None:
                registry.set_cancelling(False)

    def _cancel(self, result: CleanupResult, task_id: str) -> None:
        if self._run_registry is None:
            return
        step = f"cancel:{task_id}"
        result.attempted.append(step)
        try:
            self._run_registry.cancel(task_id)
        except Exception as exc:
            logger.warning(
                "event=cleanup_cancel_failed task_id=%s error=%s",
                task_id,
                exc,
            )
            result.failures[step] = truncate_error(str(exc))

    async def _step(
        self, result: CleanupResult, step: str, action: Awaitable[Any]
    ) -> Any:
        result.attempted.append(step)
        try:
            return await action
        except Exception as exc:
            logger.warning(
                "event=cleanup_step_failed step=%s error=%s", step, exc
            )
            result.failures[step] = truncate_error(str(exc))
            return None
