"""In-flight run tracking and cooperative cancellation.

The engine polls its token before every model call. Deletion paths
cancel through the registry; a run that already finished simply has no
entry, and cleanup carries on.
"""

from __future__ import annotations

import logging

from checkreview.errors import ReviewCancelledError

logger = logging.getLogger(__name__)


class CancellationToken:
    def __init__(self, task_id: str) -> None:
        self.task_id = task_id
        self._cancelled = False

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    def cancel(self) -> None:
        self._cancelled = True

    def raise_if_cancelled(self) -> None:
        if self._cancelled:
            raise ReviewCancelledError(self.task_id)

    @classmethod
    def never(cls) -> CancellationToken:
        """A token nobody holds, for runs outside the registry."""
        return cls("unregistered")


class WorkflowRunRegistry:
    """Maps task ids to the cancellation token of their running workflow.

    While ``is_cancelling()`` is true, workers hold off dequeuing so a
    deletion can tear down rows without racing a fresh pickup.
    """

    def __init__(self) -> None:
        self._runs: dict[str, CancellationToken] = {}
        self._cancelling = False

    def register(self, task_id: str) -> CancellationToken:
        token = CancellationToken(task_id)
        self._runs[task_id] = token
        logger.debug("event=run_registered task_id=%s", task_id)
        return token

    def deregister(self, task_id: str) -> None:
        self._runs.pop(task_id, None)

    def is_registered(self, task_id: str) -> bool:
        return task_id in self._runs

    def cancel(self, task_id: str) -> bool:
        """Signal the run to stop. False if no run was registered."""
        token = self._runs.pop(task_id, None)
        if token is None:
            logger.debug("event=run_cancel_no_entry task_id=%s", task_id)
            return False
        token.cancel()
        logger.info("event=run_cancelled task_id=%s", task_id)
        return True

    def is_cancelling(self) -> bool:
        return self._cancelling

    def set_cancelling(self, flag: bool) -> None:
        self._cancelling = flag
