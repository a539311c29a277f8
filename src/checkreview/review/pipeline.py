"""Typed fan-out stages with bounded concurrency.

Used for both fan-out levels of a review: categories within a run and
documents within a large-review category.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import Any

from checkreview.constants import StageOutcome, truncate_error
from checkreview.errors import ReviewCancelledError

logger = logging.getLogger(__name__)


@dataclass
class StageResult[TOutput]:
    """Outcome of a single stage execution."""

    stage_name: str
    output: TOutput | None
    duration_ms: float
    status: StageOutcome
    error: str | None = None

    @property
    def ok(self) -> bool:
        return self.status == StageOutcome.COMPLETED


@dataclass
class PipelineStage[TInput, TOutput]:
    """A named async stage with error isolation.

    Any exception becomes a FAILED result, except cancellation, which
    always propagates so the whole run stops.
    """

    name: str
    execute: Callable[[TInput], Awaitable[TOutput]]

    async def run(self, input_data: TInput) -> StageResult[TOutput]:
        start = time.monotonic()
        try:
            output = await self.execute(input_data)
        except ReviewCancelledError:
            raise
        except Exception as exc:
            elapsed = (time.monotonic() - start) * 1000
            logger.warning(
                "event=stage_failed stage=%s error=%s",
                self.name,
                truncate_error(str(exc)),
            )
            return StageResult(
                stage_name=self.name,
                output=None,
                duration_ms=elapsed,
                status=StageOutcome.FAILED,
                error=str(exc),
            )
        elapsed = (time.monotonic() - start) * 1000
        return StageResult(
            stage_name=self.name,
            output=output,
            duration_ms=elapsed,
            status=StageOutcome.COMPLETED,
        )


@dataclass
class ParallelGroup[TInput]:
    """Run multiple stages concurrently on the same input.

    ``execute`` is a barrier: it returns only after every stage has
    finished or failed. Failed stages do not cancel siblings.
    """

    name: str
    stages: list[PipelineStage[TInput, Any]] = field(
        default_factory=lambda: list[PipelineStage[Any, Any]]()
    )
    max_concurrency: int | None = None

    async def execute(self, input_data: TInput) -> list[StageResult[Any]]:
        if not self.stages:
            return []

        results: list[StageResult[Any]] = [
            StageResult(
                stage_name=s.name,
                output=None,
                duration_ms=0.0,
                status=StageOutcome.SKIPPED,
            )
            for s in self.stages
        ]

        semaphore = (
            asyncio.Semaphore(self.max_concurrency)
            if self.max_concurrency
            else None
        )

        async def _run_stage(
            idx: int, stage: PipelineStage[TInput, Any]
        ) -> None:
            if semaphore:
                async with semaphore:
                    results[idx] = await stage.run(input_data)
            else:
                results[idx] = await stage.run(input_data)

        outcomes = await asyncio.gather(
            *(_run_stage(i, stage) for i, stage in enumerate(self.stages)),
            return_exceptions=True,
        )
        # Stages only raise on cancellation
        for outcome in outcomes:
            if isinstance(outcome, BaseException):
                raise outcome

        failed = sum(1 for r in results if not r.ok)
        logger.debug(
            "event=parallel_group_done group=%s stages=%d failed=%d",
            self.name,
            len(results),
            failed,
        )
        return results
