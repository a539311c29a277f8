"""Small review: one model call judges a category against all documents."""

from __future__ import annotations

import logging
from collections.abc import Sequence

from checkreview.constants import MISSING_RESULT_MESSAGE
from checkreview.domain.documents import ReviewDocument
from checkreview.domain.value_objects import ChecklistItemRef, ReviewSettings
from checkreview.errors import ReviewCancelledError
from checkreview.llm.client import EvaluationContext, LanguageModel
from checkreview.llm.schemas import ReviewItemOutput, parse_entries
from checkreview.prompts import REVIEW_SYSTEM_PROMPT, build_review_prompt
from checkreview.queue.run_registry import CancellationToken
from checkreview.review.results import (
    ReviewItemResult,
    collect_by_short_id,
    failure,
    success,
)

logger = logging.getLogger(__name__)


class SmallReviewer:
    def __init__(
        self,
        model: LanguageModel,
        settings: ReviewSettings,
        documents: list[ReviewDocument],
        token: CancellationToken,
    ) -> None:
        self._model = model
        self._settings = settings
        self._labels = settings.evaluation_labels()
        self._documents = documents
        self._token = token

    async def review(
        self, items: Sequence[ChecklistItemRef]
    ) -> list[ReviewItemResult]:
        """Review one category. Never raises except on cancellation.

        A model failure turns every item still unanswered into an error
        result carrying the failure message.
        """
        answers: dict[int, ReviewItemOutput] = {}
        missing: list[int] = []
        error: str | None = None
        try:
            missing = await collect_by_short_id(
                items, self._ask, found=answers, purpose="small_review"
            )
        except ReviewCancelledError:
            raise
        except Exception as exc:
            logger.warning(
                "event=small_review_failed items=%d error=%s",
                len(items),
                exc,
            )
            error = str(exc) or type(exc).__name__

        results: list[ReviewItemResult] = []
        for i, item in enumerate(items):
            answer = answers.get(i)
            if answer is not None:
                results.append(
                    success(item, answer.evaluation, answer.comment)
                )
            elif error is not None:
                results.append(failure(item, error))
            else:
                results.append(failure(item, MISSING_RESULT_MESSAGE))
        if missing and error is None:
            logger.warning(
                "event=small_review_missing_results missing=%d", len(missing)
            )
        return results

    async def _ask(
        self, batch: list[ChecklistItemRef]
    ) -> dict[int, ReviewItemOutput]:
        self._token.raise_if_cancelled()
        data = await self._model.evaluate(
            build_review_prompt(batch, self._settings, self._labels),
            EvaluationContext(
                purpose="small_review",
                system_prompt=REVIEW_SYSTEM_PROMPT,
                documents=self._documents,
            ),
        )
        answers: dict[int, ReviewItemOutput] = {}
        for entry in parse_entries(data, "results", ReviewItemOutput):
            if entry.evaluation not in self._labels:
                logger.warning(
                    "event=evaluation_label_rejected label=%s",
                    entry.evaluation,
                )
                continue
            answers.setdefault(entry.checklist_id, entry)
        return answers
