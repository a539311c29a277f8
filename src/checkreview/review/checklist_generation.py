"""Checklist generation from reference documents.

Three model steps: extract topics, draft items per topic (concurrently),
then refine the merged drafts into one deduplicated list.
"""

from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable

from checkreview.constants import CATEGORY_REVIEW_CONCURRENCY
from checkreview.domain.documents import ReviewDocument
from checkreview.errors import ErrorCode, WorkflowError
from checkreview.llm.client import EvaluationContext, LanguageModel
from checkreview.llm.schemas import TopicOutput, parse_entries, parse_strings
from checkreview.prompts import (
    CHECKLIST_REFINEMENT_SYSTEM_PROMPT,
    TOPIC_CHECKLIST_SYSTEM_PROMPT,
    TOPIC_EXTRACTION_SYSTEM_PROMPT,
    build_refinement_prompt,
    build_topic_checklist_prompt,
    build_topic_extraction_prompt,
)
from checkreview.review.pipeline import ParallelGroup, PipelineStage

logger = logging.getLogger(__name__)


class ChecklistGenerator:
    def __init__(
        self,
        model: LanguageModel,
        *,
        topic_concurrency: int = CATEGORY_REVIEW_CONCURRENCY,
    ) -> None:
        self._model = model
        self._topic_concurrency = topic_concurrency

    async def generate(
        self, documents: list[ReviewDocument], requirements: str = ""
    ) -> list[str]:
        topics = await self._extract_topics(documents, requirements)
        if not topics:
            raise WorkflowError(
                ErrorCode.CHECKLIST_GENERATION_FAILED, "no topics extracted"
            )

        group = ParallelGroup[str](
            name="topic_checklists",
            stages=[
                PipelineStage(
                    name=topic.title,
                    execute=self._topic_stage(topic, documents),
                )
                for topic in topics
            ],
            max_concurrency=self._topic_concurrency,
        )
        stage_results = await group.execute(requirements)
        drafts: list[str] = [
            item for r in stage_results if r.ok for item in r.output or []
        ]
        if not drafts:
            raise WorkflowError(
                ErrorCode.CHECKLIST_GENERATION_FAILED,
                f"no checklist items drafted for {len(topics)} topics",
            )

        items = await self._refine(drafts, requirements)
        logger.info(
            "event=checklist_generated topics=%d drafts=%d items=%d",
            len(topics),
            len(drafts),
            len(items),
        )
        return items

    async def _extract_topics(
        self, documents: list[ReviewDocument], requirements: str
    ) -> list[TopicOutput]:
        data = await self._model.evaluate(
            build_topic_extraction_prompt(requirements),
            EvaluationContext(
                purpose="topic_extraction",
                system_prompt=TOPIC_EXTRACTION_SYSTEM_PROMPT,
                documents=documents,
            ),
        )
        return parse_entries(data, "topics", TopicOutput)

    def _topic_stage(
        self, topic: TopicOutput, documents: list[ReviewDocument]
    ) -> Callable[[str], Awaitable[list[str]]]:
        async def _draft(requirements: str) -> list[str]:
            data = await self._model.evaluate(
                build_topic_checklist_prompt(
                    topic.title, topic.reason, requirements
                ),
                EvaluationContext(
                    purpose="topic_checklist",
                    system_prompt=TOPIC_CHECKLIST_SYSTEM_PROMPT,
                    documents=documents,
                ),
            )
            return parse_strings(data, "checklist_items")

        return _draft

    async def _refine(self, drafts: list[str], requirements: str) -> list[str]:
        try:
            data = await self._model.evaluate(
                build_refinement_prompt(drafts, requirements),
                EvaluationContext(
                    purpose="checklist_refinement",
                    system_prompt=CHECKLIST_REFINEMENT_SYSTEM_PROMPT,
                ),
            )
            refined = parse_strings(data, "checklist_items")
        except Exception as exc:
            logger.warning(
                "event=checklist_refinement_failed error=%s fallback=dedupe",
                exc,
            )
            refined = []
        return refined or list(dict.fromkeys(drafts))
