"""End-to-end tests for ReviewExecutionEngine over fakes."""

from __future__ import annotations

from collections.abc import Callable
from typing import Any

import pytest

from checkreview.constants import (
    ALL_ITEMS_FAILED_MESSAGE,
    ProcessMode,
    ReviewTargetStatus,
    ReviewType,
)
from checkreview.domain.payloads import ReviewTaskPayload, TaskFileRecord
from checkreview.domain.value_objects import (
    AiApiConfig,
    ChecklistItemRef,
    ReviewSettings,
)
from checkreview.errors import (
    DomainValidationError,
    ErrorCode,
    ReviewCancelledError,
    WorkflowError,
)
from checkreview.llm.client import LLMCallError
from checkreview.models.review_result import ReviewResult
from checkreview.queue.run_registry import CancellationToken
from checkreview.repositories.fakes import (
    FakeLargeDocumentResultRepository,
    FakeReviewDocumentCacheRepository,
    FakeReviewResultRepository,
    FakeReviewTargetRepository,
)
from checkreview.review.engine import ReviewExecutionEngine
from checkreview.storage.blob_store import LocalBlobStore
from tests.conftest import FakeLanguageModel

type MakeTarget = Callable[..., Any]


async def _store(
    blob_store: LocalBlobStore, name: str, text: str
) -> TaskFileRecord:
    path = await blob_store.save_file("task-1", name, text.encode())
    return TaskFileRecord(
        id=name,
        task_id="task-1",
        file_name=name,
        file_size=len(text),
        mime_type="text/plain",
        process_mode=ProcessMode.TEXT,
        file_path=path,
    )


def _payload(
    target_id: str,
    checklist: list[ChecklistItemRef],
    api_config: AiApiConfig,
    **overrides: Any,
) -> ReviewTaskPayload:
    fields: dict[str, Any] = {
        "review_target_id": target_id,
        "review_space_id": "space-1",
        "user_id": "user-1",
        "checklist_items": checklist,
        "ai_api_config": api_config,
    }
    fields.update(overrides)
    return ReviewTaskPayload(**fields)


class TestSmallReview:
    async def test_all_items_succeed(
        self,
        review_engine: ReviewExecutionEngine,
        make_target: MakeTarget,
        blob_store: LocalBlobStore,
        target_repo: FakeReviewTargetRepository,
        result_repo: FakeReviewResultRepository,
        cache_repo: FakeReviewDocumentCacheRepository,
        fake_llm: FakeLanguageModel,
        checklist: list[ChecklistItemRef],
        api_config: AiApiConfig,
    ) -> None:
        target = await make_target(ReviewTargetStatus.REVIEWING)
        fake_llm.script("small_review", FakeLanguageModel.verdicts("A"))
        files = [await _store(blob_store, "a.txt", "Budget 10k, owner Bob")]

        outcome = await review_engine.run(
            "task-1",
            _payload(target.id, checklist, api_config),
            files,
            CancellationToken.never(),
        )

        assert outcome.success
        stored = await result_repo.list_by_review_target(target.id)
        assert len(stored) == 3
        assert all(r.error_message is None for r in stored)
        assert {r.checklist_item_content for r in stored} == {
            c.content for c in checklist
        }
        updated = await target_repo.get_by_id(target.id)
        assert updated is not None
        assert updated.status == ReviewTargetStatus.COMPLETED
        assert len(await cache_repo.list_by_review_target(target.id)) == 1

    async def test_model_failure_for_every_item(
        self,
        review_engine: ReviewExecutionEngine,
        make_target: MakeTarget,
        blob_store: LocalBlobStore,
        target_repo: FakeReviewTargetRepository,
        result_repo: FakeReviewResultRepository,
        fake_llm: FakeLanguageModel,
        checklist: list[ChecklistItemRef],
        api_config: AiApiConfig,
    ) -> None:
        target = await make_target(ReviewTargetStatus.REVIEWING)
        fake_llm.script("small_review", LLMCallError("all models failed"))
        files = [await _store(blob_store, "a.txt", "text")]

        outcome = await review_engine.run(
            "task-1",
            _payload(target.id, checklist, api_config),
            files,
            CancellationToken.never(),
        )

        assert not outcome.success
        assert outcome.error_message == ALL_ITEMS_FAILED_MESSAGE
        stored = await result_repo.list_by_review_target(target.id)
        assert len(stored) == 3
        assert not [r for r in stored if not r.failed]
        updated = await target_repo.get_by_id(target.id)
        assert updated is not None
        assert updated.status == ReviewTargetStatus.ERROR

    async def test_categories_reviewed_independently(
        self,
        review_engine: ReviewExecutionEngine,
        make_target: MakeTarget,
        blob_store: LocalBlobStore,
        fake_llm: FakeLanguageModel,
        checklist: list[ChecklistItemRef],
        api_config: AiApiConfig,
    ) -> None:
        target = await make_target(ReviewTargetStatus.REVIEWING)
        fake_llm.script("categorize", LLMCallError("no categorizer"))
        fake_llm.script("small_review", FakeLanguageModel.verdicts())
        files = [await _store(blob_store, "a.txt", "text")]

        outcome = await review_engine.run(
            "task-1",
            _payload(
                target.id,
                checklist,
                api_config,
                review_settings=ReviewSettings(concurrent_review_items=2),
            ),
            files,
            CancellationToken.never(),
        )

        assert outcome.success
        batches = sorted(
            len(FakeLanguageModel.short_ids(p))
            for p, _ in fake_llm.calls_for("small_review")
        )
        assert batches == [1, 2]

    async def test_unreadable_upload_raises(
        self,
        review_engine: ReviewExecutionEngine,
        make_target: MakeTarget,
        result_repo: FakeReviewResultRepository,
        checklist: list[ChecklistItemRef],
        api_config: AiApiConfig,
    ) -> None:
        target = await make_target(ReviewTargetStatus.REVIEWING)
        missing = TaskFileRecord(
            id="f1",
            task_id="task-1",
            file_name="gone.txt",
            file_size=0,
            mime_type="text/plain",
            process_mode=ProcessMode.TEXT,
            file_path="/nonexistent/gone.txt",
        )
        with pytest.raises(WorkflowError):
            await review_engine.run(
                "task-1",
                _payload(target.id, checklist, api_config),
                [missing],
                CancellationToken.never(),
            )
        assert await result_repo.list_by_review_target(target.id) == []

    async def test_cancelled_run_writes_nothing(
        self,
        review_engine: ReviewExecutionEngine,
        make_target: MakeTarget,
        blob_store: LocalBlobStore,
        result_repo: FakeReviewResultRepository,
        fake_llm: FakeLanguageModel,
        checklist: list[ChecklistItemRef],
        api_config: AiApiConfig,
    ) -> None:
        target = await make_target(ReviewTargetStatus.REVIEWING)
        token = CancellationToken("task-1")

        def _cancel_mid_call(prompt: str, ctx: Any) -> dict[str, Any]:
            token.cancel()
            return FakeLanguageModel.verdicts()(prompt, ctx)

        fake_llm.script("small_review", _cancel_mid_call)
        files = [await _store(blob_store, "a.txt", "text")]

        with pytest.raises(ReviewCancelledError):
            await review_engine.run(
                "task-1",
                _payload(target.id, checklist, api_config),
                files,
                token,
            )
        assert await result_repo.list_by_review_target(target.id) == []


class TestRetry:
    async def test_retry_reads_cache_and_replaces_failed_rows(
        self,
        review_engine: ReviewExecutionEngine,
        make_target: MakeTarget,
        blob_store: LocalBlobStore,
        target_repo: FakeReviewTargetRepository,
        result_repo: FakeReviewResultRepository,
        fake_llm: FakeLanguageModel,
        checklist: list[ChecklistItemRef],
        api_config: AiApiConfig,
    ) -> None:
        target = await make_target(ReviewTargetStatus.REVIEWING)
        fake_llm.script(
            "small_review",
            {
                "results": [
                    {"checklist_id": 1, "comment": "ok", "evaluation": "A"},
                    {"checklist_id": 3, "comment": "ok", "evaluation": "A"},
                ]
            },
            {"results": []},
        )
        files = [await _store(blob_store, "a.txt", "Budget 10k")]
        await review_engine.run(
            "task-1",
            _payload(target.id, checklist, api_config),
            files,
            CancellationToken.never(),
        )
        failed = [
            r
            for r in await result_repo.list_by_review_target(target.id)
            if r.failed
        ]
        assert len(failed) == 1

        # Uploads are gone by the time a retry runs
        await blob_store.delete_task_files("task-1")
        await target_repo.transition(target.id, ReviewTargetStatus.QUEUED)
        await target_repo.transition(target.id, ReviewTargetStatus.REVIEWING)
        retry_fake = FakeLanguageModel()
        retry_fake.script("small_review", FakeLanguageModel.verdicts("B"))
        review_engine._model_factory = lambda _config: retry_fake

        outcome = await review_engine.run(
            "task-2",
            _payload(
                target.id,
                [ChecklistItemRef(id="retry-0", content=checklist[1].content)],
                api_config,
                is_retry=True,
                results_to_delete_ids=[failed[0].id],
            ),
            [],
            CancellationToken.never(),
        )

        assert outcome.success
        prompt, ctx = retry_fake.calls[0]
        assert ctx.documents[0].text == "Budget 10k"
        stored = await result_repo.list_by_review_target(target.id)
        assert len(stored) == 3
        assert not any(r.failed for r in stored)
        by_content = {r.checklist_item_content: r for r in stored}
        assert by_content[checklist[1].content].evaluation == "B"

    async def test_retry_without_cache_raises(
        self,
        review_engine: ReviewExecutionEngine,
        make_target: MakeTarget,
        checklist: list[ChecklistItemRef],
        api_config: AiApiConfig,
    ) -> None:
        target = await make_target(ReviewTargetStatus.REVIEWING)
        with pytest.raises(DomainValidationError) as exc_info:
            await review_engine.run(
                "task-1",
                _payload(target.id, checklist, api_config, is_retry=True),
                [],
                CancellationToken.never(),
            )
        assert exc_info.value.code == ErrorCode.RETRY_NO_CACHE


class TestLargeReview:
    async def test_results_linked_to_traces(
        self,
        review_engine: ReviewExecutionEngine,
        make_target: MakeTarget,
        blob_store: LocalBlobStore,
        result_repo: FakeReviewResultRepository,
        trace_repo: FakeLargeDocumentResultRepository,
        fake_llm: FakeLanguageModel,
        checklist: list[ChecklistItemRef],
        api_config: AiApiConfig,
    ) -> None:
        target = await make_target(
            ReviewTargetStatus.REVIEWING, review_type="large"
        )
        fake_llm.script("individual_review", FakeLanguageModel.findings())
        fake_llm.script("consolidate", FakeLanguageModel.verdicts("A"))
        files = [
            await _store(blob_store, "a.txt", "Budget 10k"),
            await _store(blob_store, "b.txt", "Owner: Bob"),
        ]

        outcome = await review_engine.run(
            "task-1",
            _payload(
                target.id,
                checklist,
                api_config,
                review_type=ReviewType.LARGE,
            ),
            files,
            CancellationToken.never(),
        )

        assert outcome.success
        assert len(fake_llm.calls_for("individual_review")) == 2
        assert len(fake_llm.calls_for("consolidate")) == 1
        stored: list[ReviewResult] = await result_repo.list_by_review_target(
            target.id
        )
        assert len(stored) == 3
        assert all(r.evaluation == "A" for r in stored)

        ids = {r.checklist_item_content: r.id for r in stored}
        traces = await trace_repo.list_by_review_target(target.id)
        assert len(traces) == 6
        assert all(
            t.review_result_id == ids[t.checklist_item_content]
            for t in traces
        )

    async def _rerun_large(
        self,
        review_engine: ReviewExecutionEngine,
        target_repo: FakeReviewTargetRepository,
        target_id: str,
        checklist: list[ChecklistItemRef],
        api_config: AiApiConfig,
        delete_ids: list[str],
    ) -> FakeLanguageModel:
        await target_repo.transition(target_id, ReviewTargetStatus.QUEUED)
        await target_repo.transition(target_id, ReviewTargetStatus.REVIEWING)
        retry_fake = FakeLanguageModel()
        retry_fake.script(
            "individual_review", FakeLanguageModel.findings("second run")
        )
        retry_fake.script("consolidate", FakeLanguageModel.verdicts("B"))
        review_engine._model_factory = lambda _config: retry_fake
        outcome = await review_engine.run(
            "task-2",
            _payload(
                target_id,
                [
                    ChecklistItemRef(id=f"retry-{i}", content=item.content)
                    for i, item in enumerate(checklist)
                ],
                api_config,
                review_type=ReviewType.LARGE,
                is_retry=True,
                results_to_delete_ids=delete_ids,
            ),
            [],
            CancellationToken.never(),
        )
        assert outcome.success
        return retry_fake

    async def test_retry_drops_traces_of_failed_consolidation(
        self,
        review_engine: ReviewExecutionEngine,
        make_target: MakeTarget,
        blob_store: LocalBlobStore,
        target_repo: FakeReviewTargetRepository,
        result_repo: FakeReviewResultRepository,
        trace_repo: FakeLargeDocumentResultRepository,
        fake_llm: FakeLanguageModel,
        checklist: list[ChecklistItemRef],
        api_config: AiApiConfig,
    ) -> None:
        target = await make_target(
            ReviewTargetStatus.REVIEWING, review_type="large"
        )
        fake_llm.script("individual_review", FakeLanguageModel.findings())
        fake_llm.script("consolidate", LLMCallError("all models failed"))
        files = [
            await _store(blob_store, "a.txt", "Budget 10k"),
            await _store(blob_store, "b.txt", "Owner: Bob"),
        ]
        first = await review_engine.run(
            "task-1",
            _payload(
                target.id, checklist, api_config, review_type=ReviewType.LARGE
            ),
            files,
            CancellationToken.never(),
        )
        assert not first.success
        failed_ids = [r.id for r in first.results if r.failed]
        assert len(failed_ids) == 3
        assert len(await trace_repo.list_by_review_target(target.id)) == 6

        await self._rerun_large(
            review_engine,
            target_repo,
            target.id,
            checklist,
            api_config,
            failed_ids,
        )

        stored = await result_repo.list_by_review_target(target.id)
        ids = {r.checklist_item_content: r.id for r in stored}
        traces = await trace_repo.list_by_review_target(target.id)
        assert len(traces) == 6
        assert all(t.comment.endswith("second run") for t in traces)
        assert all(
            t.review_result_id == ids[t.checklist_item_content]
            for t in traces
        )

    async def test_superseded_result_takes_its_traces(
        self,
        review_engine: ReviewExecutionEngine,
        make_target: MakeTarget,
        blob_store: LocalBlobStore,
        target_repo: FakeReviewTargetRepository,
        result_repo: FakeReviewResultRepository,
        trace_repo: FakeLargeDocumentResultRepository,
        fake_llm: FakeLanguageModel,
        checklist: list[ChecklistItemRef],
        api_config: AiApiConfig,
    ) -> None:
        target = await make_target(
            ReviewTargetStatus.REVIEWING, review_type="large"
        )
        fake_llm.script("individual_review", FakeLanguageModel.findings())
        fake_llm.script("consolidate", FakeLanguageModel.verdicts("A"))
        files = [await _store(blob_store, "a.txt", "Budget 10k")]
        first = await review_engine.run(
            "task-1",
            _payload(
                target.id, checklist, api_config, review_type=ReviewType.LARGE
            ),
            files,
            CancellationToken.never(),
        )
        old_ids = [r.id for r in first.results]

        await self._rerun_large(
            review_engine,
            target_repo,
            target.id,
            checklist,
            api_config,
            old_ids,
        )

        traces = await trace_repo.list_by_review_target(target.id)
        assert len(traces) == 3
        assert not any(t.review_result_id in old_ids for t in traces)
        assert all(t.comment.endswith("second run") for t in traces)
