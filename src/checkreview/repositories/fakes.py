"""In-memory fake repositories for testing.

Dict-backed implementations of every repository protocol.
No SQLAlchemy sessions, no I/O — instant operations for unit tests.
"""

# pyright: reportUnusedFunction=false

from __future__ import annotations

import asyncio
import uuid
from datetime import UTC, datetime

from checkreview.constants import (
    DEFAULT_TASK_PRIORITY,
    AiTaskStatus,
    AiTaskType,
    ReviewTargetStatus,
)
from checkreview.errors import DomainValidationError, ErrorCode
from checkreview.models.ai_task import AiTask, AiTaskFile
from checkreview.models.review_cache import (
    LargeDocumentResultCache,
    ReviewDocumentCache,
)
from checkreview.models.review_result import ReviewResult
from checkreview.models.review_space import ChecklistItem, ReviewSpace
from checkreview.models.review_target import ReviewTarget


def _new_id() -> str:
    return str(uuid.uuid4())


class FakeAiTaskRepository:
    """Dict-backed AiTaskRepository for testing.

    ``claim_next`` holds a lock across select-and-flip so concurrent
    callers behave like the SQL compare-and-set.
    """

    def __init__(self) -> None:
        self._tasks: dict[str, AiTask] = {}
        self._files: dict[str, list[AiTaskFile]] = {}
        self._lock = asyncio.Lock()

    async def add(self, task: AiTask, files: list[AiTaskFile]) -> None:
        if not task.id:
            task.id = _new_id()
        now = datetime.now(UTC)
        if task.created_at is None:
            task.created_at = now
        task.updated_at = now
        if task.status is None:
            task.status = AiTaskStatus.QUEUED
        if task.priority is None:
            task.priority = DEFAULT_TASK_PRIORITY
        self._tasks[task.id] = task
        self._files[task.id] = list(files)

    async def get_by_id(self, task_id: str) -> AiTask | None:
        return self._tasks.get(task_id)

    async def list_files(self, task_id: str) -> list[AiTaskFile]:
        return list(self._files.get(task_id, []))

    async def claim_next(self, api_key_hash: str) -> AiTask | None:
        async with self._lock:
            queued = [
                t
                for t in self._tasks.values()
                if t.api_key_hash == api_key_hash
                and t.status == AiTaskStatus.QUEUED
            ]
            if not queued:
                return None
            queued.sort(key=lambda t: (-t.priority, t.created_at, t.id))
            head = queued[0]
            # Yield while holding the lock to surface races in tests
            await asyncio.sleep(0)
            now = datetime.now(UTC)
            head.status = AiTaskStatus.PROCESSING
            head.started_at = now
            head.updated_at = now
            return head

    async def count_queued(self, api_key_hash: str) -> int:
        return sum(
            1
            for t in self._tasks.values()
            if t.api_key_hash == api_key_hash
            and t.status == AiTaskStatus.QUEUED
        )

    async def distinct_api_key_hashes(self) -> list[str]:
        return sorted({t.api_key_hash for t in self._tasks.values()})

    async def list_processing(self) -> list[AiTask]:
        return [
            t
            for t in self._tasks.values()
            if t.status == AiTaskStatus.PROCESSING
        ]

    async def find_by_review_target_id(
        self, review_target_id: str
    ) -> AiTask | None:
        matches = [
            t
            for t in self._tasks.values()
            if t.review_target_id == review_target_id
        ]
        return max(matches, key=lambda t: t.created_at, default=None)

    async def find_checklist_generation_task(
        self, review_space_id: str
    ) -> AiTask | None:
        matches = [
            t
            for t in self._tasks.values()
            if t.review_space_id == review_space_id
            and t.task_type == AiTaskType.CHECKLIST_GENERATION
        ]
        return max(matches, key=lambda t: t.created_at, default=None)

    async def delete(self, task_id: str) -> bool:
        self._files.pop(task_id, None)
        return self._tasks.pop(task_id, None) is not None


class FakeReviewTargetRepository:
    """Dict-backed ReviewTargetRepository for testing."""

    def __init__(self) -> None:
        self._store: dict[str, ReviewTarget] = {}
        self.deleted: list[str] = []

    async def get_by_id(self, target_id: str) -> ReviewTarget | None:
        return self._store.get(target_id)

    async def list_by_review_space(
        self, review_space_id: str
    ) -> list[ReviewTarget]:
        return [
            t
            for t in self._store.values()
            if t.review_space_id == review_space_id
        ]

    async def add(self, target: ReviewTarget) -> ReviewTarget:
        if not target.id:
            target.id = _new_id()
        if target.status is None:
            target.status = ReviewTargetStatus.PENDING
        now = datetime.now(UTC)
        target.created_at = now
        target.updated_at = now
        self._store[target.id] = target
        return target

    async def save(self, target: ReviewTarget) -> None:
        target.updated_at = datetime.now(UTC)
        self._store[target.id] = target

    async def transition(
        self, target_id: str, new_status: str
    ) -> ReviewTarget:
        target = self._store.get(target_id)
        if target is None:
            raise DomainValidationError(
                ErrorCode.REVIEW_TARGET_NOT_FOUND, target_id
            )
        target.transition_to(ReviewTargetStatus(new_status))
        target.updated_at = datetime.now(UTC)
        return target

    async def delete(self, target_id: str) -> None:
        self._store.pop(target_id, None)
        self.deleted.append(target_id)


class FakeReviewResultRepository:
    """Dict-backed ReviewResultRepository for testing."""

    def __init__(
        self, traces: FakeLargeDocumentResultRepository | None = None
    ) -> None:
        self._store: dict[str, ReviewResult] = {}
        self._traces = traces

    async def list_by_review_target(
        self, review_target_id: str
    ) -> list[ReviewResult]:
        return [
            r
            for r in self._store.values()
            if r.review_target_id == review_target_id
        ]

    async def replace(
        self,
        review_target_id: str,
        delete_ids: list[str],
        results: list[ReviewResult],
    ) -> list[ReviewResult]:
        for result_id in delete_ids:
            existing = self._store.get(result_id)
            if existing and existing.review_target_id == review_target_id:
                del self._store[result_id]
        if self._traces is not None:
            self._traces.drop_linked(review_target_id, delete_ids)
        for result in results:
            if not result.id:
                result.id = _new_id()
            result.created_at = datetime.now(UTC)
            self._store[result.id] = result
        return results


class FakeReviewDocumentCacheRepository:
    """Dict-backed ReviewDocumentCacheRepository for testing."""

    def __init__(self) -> None:
        self._store: dict[str, ReviewDocumentCache] = {}

    async def list_by_review_target(
        self, review_target_id: str
    ) -> list[ReviewDocumentCache]:
        return [
            c
            for c in self._store.values()
            if c.review_target_id == review_target_id
        ]

    async def add_many(self, caches: list[ReviewDocumentCache]) -> None:
        for cache in caches:
            if not cache.id:
                cache.id = _new_id()
            self._store[cache.id] = cache


class FakeLargeDocumentResultRepository:
    """Dict-backed LargeDocumentResultRepository for testing."""

    def __init__(self) -> None:
        self._store: dict[str, LargeDocumentResultCache] = {}

    async def add_many(
        self, traces: list[LargeDocumentResultCache]
    ) -> None:
        for trace in traces:
            if not trace.id:
                trace.id = _new_id()
            self._store[trace.id] = trace

    async def delete_unlinked(
        self, review_target_id: str, item_contents: list[str]
    ) -> int:
        stale = [
            t.id
            for t in self._store.values()
            if t.review_target_id == review_target_id
            and t.review_result_id is None
            and t.checklist_item_content in item_contents
        ]
        for trace_id in stale:
            del self._store[trace_id]
        return len(stale)

    def drop_linked(
        self, review_target_id: str, result_ids: list[str]
    ) -> None:
        """Mirror the cascade from a deleted result to its traces."""
        for trace_id, trace in list(self._store.items()):
            if (
                trace.review_target_id == review_target_id
                and trace.review_result_id in result_ids
            ):
                del self._store[trace_id]

    async def link_results(
        self, review_target_id: str, result_ids: dict[str, str]
    ) -> None:
        for trace in self._store.values():
            if (
                trace.review_target_id == review_target_id
                and trace.review_result_id is None
                and trace.checklist_item_content in result_ids
            ):
                trace.review_result_id = result_ids[
                    trace.checklist_item_content
                ]

    async def list_by_review_target(
        self, review_target_id: str
    ) -> list[LargeDocumentResultCache]:
        return [
            t
            for t in self._store.values()
            if t.review_target_id == review_target_id
        ]


class FakeChecklistItemRepository:
    """Dict-backed ChecklistItemRepository for testing."""

    def __init__(self) -> None:
        self._store: dict[str, ChecklistItem] = {}

    async def list_by_review_space(
        self, review_space_id: str
    ) -> list[ChecklistItem]:
        return [
            i
            for i in self._store.values()
            if i.review_space_id == review_space_id
        ]

    async def bulk_insert(self, items: list[ChecklistItem]) -> None:
        for item in items:
            if not item.id:
                item.id = _new_id()
            self._store[item.id] = item


class FakeReviewSpaceRepository:
    """Dict-backed ReviewSpaceRepository for testing."""

    def __init__(self) -> None:
        self._store: dict[str, ReviewSpace] = {}

    async def get_by_id(self, space_id: str) -> ReviewSpace | None:
        return self._store.get(space_id)

    async def add(self, space: ReviewSpace) -> ReviewSpace:
        if not space.id:
            space.id = _new_id()
        self._store[space.id] = space
        return space

    async def update_checklist_generation_error(
        self, space_id: str, error_message: str | None
    ) -> None:
        space = self._store.get(space_id)
        if space:
            space.checklist_generation_error = error_message

    async def delete(self, space_id: str) -> None:
        self._store.pop(space_id, None)
