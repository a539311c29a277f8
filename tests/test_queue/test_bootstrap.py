"""Tests for queue bootstrap and stuck-task recovery."""

from __future__ import annotations

import asyncio
from collections.abc import Callable
from typing import Any

import pytest

from checkreview.constants import (
    INTERRUPTED_TASK_MESSAGE,
    AiTaskStatus,
    AiTaskType,
    ReviewTargetStatus,
)
from checkreview.models.ai_task import AiTask
from checkreview.models.review_space import ReviewSpace
from checkreview.queue.bootstrap import AiTaskBootstrap
from checkreview.queue.executor import AiTaskExecutor
from checkreview.queue.run_registry import WorkflowRunRegistry
from checkreview.queue.service import AiTaskQueueService
from checkreview.queue.worker import AiTaskWorker
from checkreview.queue.worker_registry import WorkerRegistry
from checkreview.repositories.fakes import (
    FakeAiTaskRepository,
    FakeReviewSpaceRepository,
    FakeReviewTargetRepository,
)
from checkreview.storage.blob_store import LocalBlobStore

type MakeTarget = Callable[..., Any]


@pytest.fixture
def started() -> list[str]:
    return []


@pytest.fixture
def workers(
    queue_service: AiTaskQueueService,
    executor: AiTaskExecutor,
    run_registry: WorkflowRunRegistry,
    started: list[str],
) -> WorkerRegistry:
    # Hold workers off the queue so tests only observe startup.
    run_registry.set_cancelling(True)

    def _make(api_key_hash: str) -> AiTaskWorker:
        started.append(api_key_hash)
        return AiTaskWorker(
            api_key_hash,
            queue_service,
            executor,
            run_registry,
            polling_interval=60.0,
        )

    return WorkerRegistry(_make)


@pytest.fixture
async def bootstrap(
    queue_service: AiTaskQueueService,
    workers: WorkerRegistry,
    blob_store: LocalBlobStore,
    target_repo: FakeReviewTargetRepository,
    space_repo: FakeReviewSpaceRepository,
) -> Any:
    boot = AiTaskBootstrap(
        queue_service, workers, blob_store, target_repo, space_repo
    )
    yield boot
    await boot.shutdown()


async def _add_task(
    task_repo: FakeAiTaskRepository,
    *,
    task_type: AiTaskType = AiTaskType.SMALL_REVIEW,
    status: AiTaskStatus = AiTaskStatus.QUEUED,
    api_key_hash: str = "hash-a",
    review_target_id: str | None = None,
    review_space_id: str | None = "space-1",
) -> AiTask:
    task = AiTask(
        task_type=task_type,
        status=status,
        api_key_hash=api_key_hash,
        payload={},
        review_target_id=review_target_id,
        review_space_id=review_space_id,
    )
    await task_repo.add(task, [])
    return task


class TestRecoverStuckTasks:
    async def test_review_task_marks_target_error(
        self,
        bootstrap: AiTaskBootstrap,
        make_target: MakeTarget,
        task_repo: FakeAiTaskRepository,
        target_repo: FakeReviewTargetRepository,
    ) -> None:
        target = await make_target(ReviewTargetStatus.REVIEWING)
        task = await _add_task(
            task_repo,
            status=AiTaskStatus.PROCESSING,
            review_target_id=target.id,
        )

        assert await bootstrap.recover_stuck_tasks() == 1

        assert await task_repo.get_by_id(task.id) is None
        updated = await target_repo.get_by_id(target.id)
        assert updated is not None
        assert updated.status == ReviewTargetStatus.ERROR

    async def test_generation_task_records_space_error(
        self,
        bootstrap: AiTaskBootstrap,
        space: ReviewSpace,
        task_repo: FakeAiTaskRepository,
        space_repo: FakeReviewSpaceRepository,
    ) -> None:
        task = await _add_task(
            task_repo,
            task_type=AiTaskType.CHECKLIST_GENERATION,
            status=AiTaskStatus.PROCESSING,
            review_space_id=space.id,
        )

        assert await bootstrap.recover_stuck_tasks() == 1

        assert await task_repo.get_by_id(task.id) is None
        stored = await space_repo.get_by_id(space.id)
        assert stored is not None
        assert stored.checklist_generation_error == INTERRUPTED_TASK_MESSAGE

    async def test_missing_target_still_fails_task(
        self,
        bootstrap: AiTaskBootstrap,
        task_repo: FakeAiTaskRepository,
    ) -> None:
        task = await _add_task(
            task_repo,
            status=AiTaskStatus.PROCESSING,
            review_target_id="gone",
        )

        assert await bootstrap.recover_stuck_tasks() == 1
        assert await task_repo.get_by_id(task.id) is None

    async def test_queued_tasks_untouched(
        self,
        bootstrap: AiTaskBootstrap,
        task_repo: FakeAiTaskRepository,
    ) -> None:
        task = await _add_task(task_repo)

        assert await bootstrap.recover_stuck_tasks() == 0
        assert await task_repo.get_by_id(task.id) is not None


class TestInitialize:
    async def test_starts_one_worker_per_queued_hash(
        self,
        bootstrap: AiTaskBootstrap,
        task_repo: FakeAiTaskRepository,
        workers: WorkerRegistry,
        started: list[str],
    ) -> None:
        await _add_task(task_repo, api_key_hash="hash-a")
        await _add_task(task_repo, api_key_hash="hash-a")
        await _add_task(task_repo, api_key_hash="hash-b")

        await bootstrap.initialize()

        assert bootstrap.initialized
        assert sorted(started) == ["hash-a", "hash-b"]
        assert workers.running_hashes() == ["hash-a", "hash-b"]

    async def test_concurrent_callers_share_one_run(
        self,
        bootstrap: AiTaskBootstrap,
        task_repo: FakeAiTaskRepository,
        started: list[str],
    ) -> None:
        await _add_task(task_repo, api_key_hash="hash-a")

        await asyncio.gather(*(bootstrap.initialize() for _ in range(5)))

        assert started == ["hash-a"]

    async def test_creates_blob_directory(
        self, bootstrap: AiTaskBootstrap, blob_store: LocalBlobStore
    ) -> None:
        await bootstrap.initialize()
        assert blob_store.base_dir.is_dir()

    async def test_start_workers_for_hash_is_idempotent(
        self,
        bootstrap: AiTaskBootstrap,
        workers: WorkerRegistry,
        started: list[str],
    ) -> None:
        await bootstrap.start_workers_for_api_key_hash("hash-z")
        await bootstrap.start_workers_for_api_key_hash("hash-z")

        assert started == ["hash-z"]
        assert workers.is_running("hash-z")

    async def test_shutdown_stops_workers(
        self,
        bootstrap: AiTaskBootstrap,
        workers: WorkerRegistry,
    ) -> None:
        await bootstrap.start_workers_for_api_key_hash("hash-z")
        await bootstrap.shutdown()

        assert workers.running_hashes() == []
        assert not bootstrap.initialized
