"""Tests for best-effort teardown of queued work."""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable
from typing import Any

import pytest

from checkreview.constants import AiTaskStatus, AiTaskType
from checkreview.models.ai_task import AiTask
from checkreview.models.review_space import ReviewSpace
from checkreview.queue.executor import AiTaskExecutor
from checkreview.queue.run_registry import WorkflowRunRegistry
from checkreview.queue.service import AiTaskQueueService
from checkreview.queue.worker import AiTaskWorker
from checkreview.repositories.fakes import (
    FakeAiTaskRepository,
    FakeReviewTargetRepository,
)
from checkreview.services.cleanup import (
    CleanupResult,
    ReviewTargetCleanupHelper,
)
from checkreview.storage.blob_store import LocalBlobStore
from checkreview.storage.review_cache import ReviewCacheStore

type MakeTarget = Callable[..., Any]


class _BrokenBlobStore(LocalBlobStore):
    async def delete_task_files(self, task_id: str) -> None:
        raise OSError("disk unavailable")


class _YieldingBlobStore(LocalBlobStore):
    """Yields to the loop mid-delete and runs ``during`` at that point."""

    during: Callable[[], Awaitable[None]] | None = None

    async def delete_task_files(self, task_id: str) -> None:
        await asyncio.sleep(0)
        if self.during is not None:
            await self.during()
        await super().delete_task_files(task_id)


@pytest.fixture
def helper(
    task_repo: FakeAiTaskRepository,
    target_repo: FakeReviewTargetRepository,
    blob_store: LocalBlobStore,
    cache_store: ReviewCacheStore,
    run_registry: WorkflowRunRegistry,
) -> ReviewTargetCleanupHelper:
    return ReviewTargetCleanupHelper(
        task_repo, target_repo, blob_store, cache_store, run_registry
    )


async def _add_task(
    task_repo: FakeAiTaskRepository,
    blob_store: LocalBlobStore,
    *,
    review_target_id: str | None = None,
    task_type: AiTaskType = AiTaskType.SMALL_REVIEW,
    status: AiTaskStatus = AiTaskStatus.QUEUED,
) -> AiTask:
    task = AiTask(
        task_type=task_type,
        status=status,
        api_key_hash="hash-a",
        payload={},
        review_target_id=review_target_id,
        review_space_id="space-1",
    )
    await task_repo.add(task, [])
    await blob_store.save_file(task.id, "f1", b"data")
    return task


class TestCleanupResult:
    def test_merge_collects_both_sides(self) -> None:
        left = CleanupResult(attempted=["a"])
        right = CleanupResult(attempted=["b"], failures={"b": "boom"})

        merged = left.merge(right)

        assert merged is left
        assert merged.attempted == ["a", "b"]
        assert not merged.ok


class TestReviewTargetCleanup:
    async def test_removes_queued_task_files_and_cache(
        self,
        helper: ReviewTargetCleanupHelper,
        make_target: MakeTarget,
        task_repo: FakeAiTaskRepository,
        blob_store: LocalBlobStore,
        cache_store: ReviewCacheStore,
    ) -> None:
        target = await make_target()
        task = await _add_task(
            task_repo, blob_store, review_target_id=target.id
        )
        await cache_store.save_text(target.id, "c1", "cached text")

        result = await helper.cleanup_single_review_target(target.id)

        assert result.ok
        assert await task_repo.get_by_id(task.id) is None
        assert not blob_store.task_dir(task.id).exists()
        assert not cache_store.cache_dir(target.id).exists()

    async def test_cancels_running_task(
        self,
        helper: ReviewTargetCleanupHelper,
        make_target: MakeTarget,
        task_repo: FakeAiTaskRepository,
        blob_store: LocalBlobStore,
        run_registry: WorkflowRunRegistry,
    ) -> None:
        target = await make_target()
        task = await _add_task(
            task_repo,
            blob_store,
            review_target_id=target.id,
            status=AiTaskStatus.PROCESSING,
        )
        token = run_registry.register(task.id)

        result = await helper.cleanup_single_review_target(target.id)

        assert result.ok
        assert token.cancelled
        assert f"cancel:{task.id}" in result.attempted
        assert not run_registry.is_cancelling()
        assert await task_repo.get_by_id(task.id) is None

    async def test_workers_hold_off_for_whole_teardown(
        self,
        make_target: MakeTarget,
        task_repo: FakeAiTaskRepository,
        target_repo: FakeReviewTargetRepository,
        blob_store: LocalBlobStore,
        cache_store: ReviewCacheStore,
        queue_service: AiTaskQueueService,
        executor: AiTaskExecutor,
        run_registry: WorkflowRunRegistry,
    ) -> None:
        target = await make_target()
        running = await _add_task(
            task_repo,
            blob_store,
            review_target_id=target.id,
            status=AiTaskStatus.PROCESSING,
        )
        waiting = await _add_task(task_repo, blob_store)
        run_registry.register(running.id)
        worker = AiTaskWorker(
            "hash-a",
            queue_service,
            executor,
            run_registry,
            polling_interval=0.5,
        )
        seen: list[tuple[bool, float]] = []

        async def _observe() -> None:
            cancelling = run_registry.is_cancelling()
            seen.append((cancelling, await worker.run_once()))

        store = _YieldingBlobStore(blob_store.base_dir)
        store.during = _observe
        helper = ReviewTargetCleanupHelper(
            task_repo, target_repo, store, cache_store, run_registry
        )

        result = await helper.cleanup_single_review_target(target.id)

        assert result.ok
        assert seen == [(True, 0.5)]
        assert not run_registry.is_cancelling()
        still_queued = await task_repo.get_by_id(waiting.id)
        assert still_queued is not None
        assert still_queued.status == AiTaskStatus.QUEUED

    async def test_target_without_task(
        self, helper: ReviewTargetCleanupHelper, make_target: MakeTarget
    ) -> None:
        target = await make_target()

        result = await helper.cleanup_single_review_target(target.id)

        assert result.ok
        assert result.attempted == [
            f"find_task:{target.id}",
            f"delete_cache:{target.id}",
        ]

    async def test_failed_step_is_recorded_and_rest_continue(
        self,
        make_target: MakeTarget,
        task_repo: FakeAiTaskRepository,
        target_repo: FakeReviewTargetRepository,
        blob_store: LocalBlobStore,
        cache_store: ReviewCacheStore,
    ) -> None:
        target = await make_target()
        task = await _add_task(
            task_repo, blob_store, review_target_id=target.id
        )
        helper = ReviewTargetCleanupHelper(
            task_repo,
            target_repo,
            _BrokenBlobStore(blob_store.base_dir),
            cache_store,
        )

        result = await helper.cleanup_single_review_target(target.id)

        assert not result.ok
        assert "disk unavailable" in result.failures[
            f"delete_task_files:{task.id}"
        ]
        assert await task_repo.get_by_id(task.id) is None

    async def test_space_cleanup_covers_every_target(
        self,
        helper: ReviewTargetCleanupHelper,
        make_target: MakeTarget,
        space: ReviewSpace,
        task_repo: FakeAiTaskRepository,
        blob_store: LocalBlobStore,
    ) -> None:
        first = await make_target()
        second = await make_target()
        t1 = await _add_task(task_repo, blob_store, review_target_id=first.id)
        t2 = await _add_task(task_repo, blob_store, review_target_id=second.id)

        result = await helper.cleanup_review_targets(space.id)

        assert result.ok
        assert await task_repo.get_by_id(t1.id) is None
        assert await task_repo.get_by_id(t2.id) is None

    async def test_checklist_generation_task(
        self,
        helper: ReviewTargetCleanupHelper,
        space: ReviewSpace,
        task_repo: FakeAiTaskRepository,
        blob_store: LocalBlobStore,
    ) -> None:
        task = await _add_task(
            task_repo, blob_store, task_type=AiTaskType.CHECKLIST_GENERATION
        )

        result = await helper.cleanup_checklist_generation_task(space.id)

        assert result.ok
        assert await task_repo.get_by_id(task.id) is None
