"""Large review: per-document findings, then one consolidated verdict.

Scatter: every document (or chunk of one) is reviewed on its own and
yields a comment per checklist item, without a verdict. Gather: once
every document has answered, the findings are stored as traces and a
consolidation call turns them into one evaluation per item.
"""

from __future__ import annotations

import logging
from collections.abc import Sequence
from dataclasses import dataclass
from functools import partial

from checkreview.constants import (
    MAX_SPLIT_RETRY_COUNT,
    MISSING_RESULT_MESSAGE,
)
from checkreview.domain.documents import ReviewDocument
from checkreview.domain.value_objects import ChecklistItemRef, ReviewSettings
from checkreview.errors import ReviewCancelledError
from checkreview.llm.client import EvaluationContext, LanguageModel
from checkreview.llm.schemas import (
    IndividualReviewItemOutput,
    ReviewItemOutput,
    parse_entries,
)
from checkreview.models.review_cache import LargeDocumentResultCache
from checkreview.prompts import (
    CONSOLIDATE_SYSTEM_PROMPT,
    INDIVIDUAL_REVIEW_SYSTEM_PROMPT,
    build_consolidate_prompt,
    build_individual_review_prompt,
)
from checkreview.queue.run_registry import CancellationToken
from checkreview.repositories.protocols import LargeDocumentResultRepository
from checkreview.resilience.errors import is_context_length_error
from checkreview.review.chunking import initial_parts, split_document
from checkreview.review.pipeline import ParallelGroup, PipelineStage
from checkreview.review.results import (
    ReviewItemResult,
    collect_by_short_id,
    failure,
    failures,
    success,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class DocumentFinding:
    """What one document (or chunk) says about one checklist item."""

    item: ChecklistItemRef
    document: ReviewDocument
    comment: str


class LargeReviewer:
    def __init__(
        self,
        model: LanguageModel,
        settings: ReviewSettings,
        documents: list[ReviewDocument],
        token: CancellationToken,
        *,
        review_target_id: str,
        trace_repo: LargeDocumentResultRepository,
        document_concurrency: int,
        threshold_chars: int,
    ) -> None:
        self._model = model
        self._settings = settings
        self._labels = settings.evaluation_labels()
        self._documents = documents
        self._token = token
        self._review_target_id = review_target_id
        self._trace_repo = trace_repo
        self._document_concurrency = document_concurrency
        self._threshold_chars = threshold_chars

    async def review(
        self, items: Sequence[ChecklistItemRef]
    ) -> list[ReviewItemResult]:
        group = ParallelGroup[Sequence[ChecklistItemRef]](
            name="document_review",
            stages=[
                PipelineStage(
                    name=doc.name, execute=partial(self._review_document, doc)
                )
                for doc in self._documents
            ],
            max_concurrency=self._document_concurrency,
        )
        stage_results = await group.execute(items)

        failed = [r for r in stage_results if not r.ok]
        if failed:
            logger.warning(
                "event=document_review_failed documents=%d failed=%d",
                len(stage_results),
                len(failed),
            )
            first = failed[0]
            return failures(
                items,
                f"Document review failed for {first.stage_name}:"
                f" {first.error}",
            )

        findings: list[DocumentFinding] = [
            finding for r in stage_results for finding in r.output or []
        ]
        await self._save_traces(findings)
        return await self._consolidate(items, findings)

    async def _review_document(
        self, document: ReviewDocument, items: Sequence[ChecklistItemRef]
    ) -> list[DocumentFinding]:
        """Review a document, splitting it further on context-window errors."""
        parts = initial_parts(document, self._threshold_chars)
        splits = 0
        while True:
            chunks = split_document(document, parts)
            try:
                findings: list[DocumentFinding] = []
                for chunk in chunks:
                    findings.extend(await self._review_chunk(chunk, items))
                return findings
            except ReviewCancelledError:
                raise
            except Exception as exc:
                if (
                    not is_context_length_error(exc)
                    or splits >= MAX_SPLIT_RETRY_COUNT
                    or len(chunks) < parts
                ):
                    raise
                splits += 1
                parts = len(chunks) + 1
                logger.info(
                    "event=document_split_retry document=%s parts=%d",
                    document.name,
                    parts,
                )

    async def _review_chunk(
        self, chunk: ReviewDocument, items: Sequence[ChecklistItemRef]
    ) -> list[DocumentFinding]:
        async def _ask(batch: list[ChecklistItemRef]) -> dict[int, str]:
            self._token.raise_if_cancelled()
            data = await self._model.evaluate(
                build_individual_review_prompt(
                    batch, self._settings, chunk.name
                ),
                EvaluationContext(
                    purpose="individual_review",
                    system_prompt=INDIVIDUAL_REVIEW_SYSTEM_PROMPT,
                    documents=[chunk],
                ),
            )
            return {
                entry.checklist_id: entry.comment
                for entry in parse_entries(
                    data, "results", IndividualReviewItemOutput
                )
            }

        comments: dict[int, str] = {}
        missing = await collect_by_short_id(
            items, _ask, found=comments, purpose="individual_review"
        )
        if missing:
            logger.warning(
                "event=individual_review_incomplete document=%s missing=%d",
                chunk.name,
                len(missing),
            )
        return [
            DocumentFinding(item=item, document=chunk, comment=comments[i])
            for i, item in enumerate(items)
            if i in comments
        ]

    async def _save_traces(self, findings: list[DocumentFinding]) -> None:
        traces = [
            LargeDocumentResultCache(
                review_target_id=self._review_target_id,
                review_document_cache_id=f.document.cache_id,
                document_name=f.document.name,
                checklist_item_content=f.item.content,
                comment=f.comment,
                total_chunks=f.document.total_chunks,
                chunk_index=f.document.chunk_index,
            )
            for f in findings
        ]
        await self._trace_repo.add_many(traces)
        logger.debug(
            "event=traces_saved target_id=%s count=%d",
            self._review_target_id,
            len(traces),
        )

    async def _consolidate(
        self,
        items: Sequence[ChecklistItemRef],
        findings: list[DocumentFinding],
    ) -> list[ReviewItemResult]:
        by_item: dict[str, list[tuple[str, str]]] = {}
        for f in findings:
            by_item.setdefault(f.item.content, []).append(
                (f.document.name, f.comment)
            )

        async def _ask(
            batch: list[ChecklistItemRef],
        ) -> dict[int, ReviewItemOutput]:
            self._token.raise_if_cancelled()
            data = await self._model.evaluate(
                build_consolidate_prompt(
                    batch, by_item, self._settings, self._labels
                ),
                EvaluationContext(
                    purpose="consolidate",
                    system_prompt=CONSOLIDATE_SYSTEM_PROMPT,
                ),
            )
            answers: dict[int, ReviewItemOutput] = {}
            for entry in parse_entries(data, "results", ReviewItemOutput):
                if entry.evaluation in self._labels:
                    answers.setdefault(entry.checklist_id, entry)
            return answers

        verdicts: dict[int, ReviewItemOutput] = {}
        error: str | None = None
        try:
            await collect_by_short_id(
                items, _ask, found=verdicts, purpose="consolidate"
            )
        except ReviewCancelledError:
            raise
        except Exception as exc:
            logger.warning("event=consolidation_failed error=%s", exc)
            error = str(exc) or type(exc).__name__

        results: list[ReviewItemResult] = []
        for i, item in enumerate(items):
            verdict = verdicts.get(i)
            if verdict is not None:
                results.append(
                    success(item, verdict.evaluation, verdict.comment)
                )
            else:
                results.append(failure(item, error or MISSING_RESULT_MESSAGE))
        return results
