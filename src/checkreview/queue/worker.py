"""Processing loop bound to one credential hash.

Calls against one external credential never overlap: a worker handles
one task at a time, and the registry runs one worker per hash unless
configured otherwise.
"""

from __future__ import annotations

import asyncio
import logging

from checkreview.constants import WORKER_ERROR_BACKOFF_SECONDS
from checkreview.domain.payloads import DequeuedTask
from checkreview.queue.executor import AiTaskExecutor
from checkreview.queue.run_registry import WorkflowRunRegistry
from checkreview.queue.service import AiTaskQueueService

logger = logging.getLogger(__name__)


class AiTaskWorker:
    def __init__(
        self,
        api_key_hash: str,
        queue: AiTaskQueueService,
        executor: AiTaskExecutor,
        run_registry: WorkflowRunRegistry,
        *,
        polling_interval: float,
        error_backoff: float = WORKER_ERROR_BACKOFF_SECONDS,
    ) -> None:
        self.api_key_hash = api_key_hash
        self._queue = queue
        self._executor = executor
        self._run_registry = run_registry
        self._polling_interval = polling_interval
        self._error_backoff = error_backoff
        self._stop_event = asyncio.Event()

    @property
    def stopped(self) -> bool:
        return self._stop_event.is_set()

    def stop(self) -> None:
        """End the loop after the current iteration. Wakes a sleeping loop."""
        self._stop_event.set()

    async def run(self) -> None:
        logger.info("event=worker_started hash=%s", self.api_key_hash[:8])
        while not self._stop_event.is_set():
            delay = await self.run_once()
            if delay > 0:
                await self._sleep(delay)
        logger.info("event=worker_stopped hash=%s", self.api_key_hash[:8])

    async def run_once(self) -> float:
        """Process at most one task. Returns the delay before the next."""
        if self._run_registry.is_cancelling():
            return self._polling_interval

        task: DequeuedTask | None = None
        try:
            task = await self._queue.dequeue_task(self.api_key_hash)
            if task is None:
                return self._polling_interval

            result = await self._executor.execute(task)
            if result.success:
                await self._queue.complete_task(task.id)
            else:
                await self._queue.fail_task(
                    task.id, result.error_message or "task failed"
                )
            return 0.0
        except Exception as exc:
            logger.error(
                "event=worker_iteration_failed hash=%s task_id=%s",
                self.api_key_hash[:8],
                task.id if task else None,
                exc_info=True,
            )
            if task is not None:
                await self._fail_quietly(
                    task.id, str(exc) or type(exc).__name__
                )
            return self._error_backoff

    async def _fail_quietly(self, task_id: str, message: str) -> None:
        try:
            await self._queue.fail_task(task_id, message)
        except Exception:
            logger.error(
                "event=worker_fail_task_failed task_id=%s",
                task_id,
                exc_info=True,
            )

    async def _sleep(self, seconds: float) -> None:
        try:
            await asyncio.wait_for(self._stop_event.wait(), timeout=seconds)
        except TimeoutError:
            pass
