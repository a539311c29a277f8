"""Process-wide registry of running worker loops, keyed by credential hash.

Constructed once at startup and passed by reference.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable

from checkreview.queue.worker import AiTaskWorker

logger = logging.getLogger(__name__)

type WorkerFactory = Callable[[str], AiTaskWorker]
type _Entry = tuple[AiTaskWorker, asyncio.Task[None]]


class WorkerRegistry:
    def __init__(
        self, worker_factory: WorkerFactory, concurrency: int = 1
    ) -> None:
        self._worker_factory = worker_factory
        self._concurrency = max(1, concurrency)
        self._workers: dict[str, list[_Entry]] = {}

    def start(self, api_key_hash: str) -> bool:
        """Start workers for a hash. False if they were already running."""
        if self.is_running(api_key_hash):
            return False
        entries: list[_Entry] = []
        for index in range(self._concurrency):
            worker = self._worker_factory(api_key_hash)
            task = asyncio.create_task(
                worker.run(), name=f"ai-worker-{api_key_hash[:8]}-{index}"
            )
            entries.append((worker, task))
        self._workers[api_key_hash] = entries
        logger.info(
            "event=workers_started hash=%s count=%d",
            api_key_hash[:8],
            len(entries),
        )
        return True

    async def stop(self, api_key_hash: str) -> None:
        entries = self._workers.pop(api_key_hash, [])
        for worker, _ in entries:
            worker.stop()
        results = await asyncio.gather(
            *(task for _, task in entries), return_exceptions=True
        )
        for result in results:
            if isinstance(result, BaseException):
                logger.warning(
                    "event=worker_exit_error hash=%s error=%s",
                    api_key_hash[:8],
                    result,
                )
        if entries:
            logger.info("event=workers_stopped hash=%s", api_key_hash[:8])

    async def stop_all(self) -> None:
        for api_key_hash in list(self._workers):
            await self.stop(api_key_hash)

    def is_running(self, api_key_hash: str) -> bool:
        entries = self._workers.get(api_key_hash, [])
        return any(not task.done() for _, task in entries)

    def running_hashes(self) -> list[str]:
        return sorted(h for h in self._workers if self.is_running(h))
