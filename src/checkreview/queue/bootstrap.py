"""Worker bootstrap: lazy startup, stuck-task recovery, per-hash start.

Any task still ``processing`` when the process starts was interrupted
by a restart; nothing else could be running it.
"""

from __future__ import annotations

import asyncio
import logging

from checkreview.constants import (
    INTERRUPTED_TASK_MESSAGE,
    AiTaskType,
    ReviewTargetStatus,
)
from checkreview.models.ai_task import AiTask
from checkreview.queue.service import AiTaskQueueService
from checkreview.queue.worker_registry import WorkerRegistry
from checkreview.repositories.protocols import (
    ReviewSpaceRepository,
    ReviewTargetRepository,
)
from checkreview.storage.blob_store import BlobStore

logger = logging.getLogger(__name__)


class AiTaskBootstrap:
    def __init__(
        self,
        queue: AiTaskQueueService,
        workers: WorkerRegistry,
        blob_store: BlobStore,
        target_repo: ReviewTargetRepository,
        space_repo: ReviewSpaceRepository,
    ) -> None:
        self._queue = queue
        self._workers = workers
        self._blob_store = blob_store
        self._target_repo = target_repo
        self._space_repo = space_repo
        self._lock = asyncio.Lock()
        self._initialized = False

    @property
    def initialized(self) -> bool:
        return self._initialized

    async def initialize(self) -> None:
        """Recover stuck tasks and start workers for every queued hash.

        Concurrent callers share one initialization.
        """
        if self._initialized:
            return
        async with self._lock:
            if self._initialized:
                return
            await self._blob_store.ensure_base_dir()
            recovered = await self.recover_stuck_tasks()
            hashes = await self._queue.find_distinct_api_key_hashes_in_queue()
            for api_key_hash in hashes:
                self._workers.start(api_key_hash)
            self._initialized = True
            logger.info(
                "event=queue_bootstrapped recovered=%d hashes=%d",
                recovered,
                len(hashes),
            )

    async def recover_stuck_tasks(self) -> int:
        stuck = await self._queue.find_processing_tasks()
        recovered = 0
        for task in stuck:
            try:
                await self._recover(task)
                recovered += 1
            except Exception:
                logger.error(
                    "event=stuck_task_recovery_failed task_id=%s",
                    task.id,
                    exc_info=True,
                )
        return recovered

    async def _recover(self, task: AiTask) -> None:
        logger.warning(
            "event=stuck_task_recovered task_id=%s type=%s",
            task.id,
            task.task_type,
        )
        if task.task_type == AiTaskType.CHECKLIST_GENERATION:
            if task.review_space_id:
                await self._space_repo.update_checklist_generation_error(
                    task.review_space_id, INTERRUPTED_TASK_MESSAGE
                )
        elif task.review_target_id:
            try:
                await self._target_repo.transition(
                    task.review_target_id, ReviewTargetStatus.ERROR
                )
            except Exception as exc:
                logger.warning(
                    "event=stuck_target_update_failed target_id=%s error=%s",
                    task.review_target_id,
                    exc,
                )
        await self._queue.fail_task(task.id, INTERRUPTED_TASK_MESSAGE)

    async def start_workers_for_api_key_hash(self, api_key_hash: str) -> None:
        """Ensure a loop runs for the hash. No-op if one already does."""
        await self.initialize()
        if not self._workers.is_running(api_key_hash):
            self._workers.start(api_key_hash)

    async def shutdown(self) -> None:
        await self._workers.stop_all()
        self._initialized = False
        logger.info("event=queue_shutdown")
