"""Per-item review outcomes produced by the review strategies."""

from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable, Sequence
from dataclasses import dataclass

from checkreview.constants import MISSING_RESULT_MAX_ATTEMPTS, truncate_error
from checkreview.domain.value_objects import ChecklistItemRef

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ReviewItemResult:
    """Success (evaluation + comment) or failure (error_message)."""

    item: ChecklistItemRef
    evaluation: str | None = None
    comment: str | None = None
    error_message: str | None = None

    @property
    def failed(self) -> bool:
        return self.error_message is not None


def success(
    item: ChecklistItemRef, evaluation: str, comment: str
) -> ReviewItemResult:
    return ReviewItemResult(item=item, evaluation=evaluation, comment=comment)


def failure(item: ChecklistItemRef, message: str) -> ReviewItemResult:
    return ReviewItemResult(item=item, error_message=truncate_error(message))


def failures(
    items: Sequence[ChecklistItemRef], message: str
) -> list[ReviewItemResult]:
    return [failure(item, message) for item in items]


def all_failed(results: Sequence[ReviewItemResult]) -> bool:
    return all(r.failed for r in results)


type ShortIdRequest[T] = Callable[
    [list[ChecklistItemRef]], Awaitable[dict[int, T]]
]


async def collect_by_short_id[T](
    items: Sequence[ChecklistItemRef],
    request: ShortIdRequest[T],
    *,
    found: dict[int, T],
    purpose: str,
    max_attempts: int = MISSING_RESULT_MAX_ATTEMPTS,
) -> list[int]:
    """Ask for every item, re-asking for the ones the model skipped.

    ``request`` receives the items still pending and returns answers
    keyed by 1-based position within that batch. Answers are stored in
    ``found`` by index into ``items`` as they arrive, so a later failure
    keeps earlier answers. Returns the indices still missing after the
    last attempt.
    """
    pending = list(range(len(items)))
    for attempt in range(1, max_attempts + 1):
        if not pending:
            break
        batch = [items[i] for i in pending]
        answers = await request(batch)
        for short_id, value in answers.items():
            if 1 <= short_id <= len(batch):
                found.setdefault(pending[short_id - 1], value)
        pending = [i for i in pending if i not in found]
        if pending:
            logger.warning(
                "event=results_missing purpose=%s attempt=%d missing=%d",
                purpose,
                attempt,
                len(pending),
            )
    return pending
