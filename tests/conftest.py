"""Shared test fixtures — in-memory SQLite, fakes, scripted model."""

import asyncio
import os

# Never let a test reach a real provider, whatever the shell exports.
os.environ["AI_API_KEY"] = "for-demo-purposes-only"
os.environ["OPENAI_API_KEY"] = "for-demo-purposes-only"

import re
from collections.abc import Callable
from pathlib import Path
from typing import Any

import pytest
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from checkreview.config import Settings
from checkreview.constants import ReviewTargetStatus
from checkreview.domain.value_objects import AiApiConfig, ChecklistItemRef
from checkreview.llm.client import EvaluationContext
from checkreview.models.base import Base
from checkreview.models.review_space import ReviewSpace
from checkreview.models.review_target import ReviewTarget
from checkreview.queue.bootstrap import AiTaskBootstrap
from checkreview.queue.executor import AiTaskExecutor
from checkreview.queue.run_registry import WorkflowRunRegistry
from checkreview.queue.service import AiTaskQueueService
from checkreview.queue.worker import AiTaskWorker
from checkreview.queue.worker_registry import WorkerRegistry
from checkreview.repositories.fakes import (
    FakeAiTaskRepository,
    FakeChecklistItemRepository,
    FakeLargeDocumentResultRepository,
    FakeReviewDocumentCacheRepository,
    FakeReviewResultRepository,
    FakeReviewSpaceRepository,
    FakeReviewTargetRepository,
)
from checkreview.repositories.protocols import ReviewTargetRepository
from checkreview.review.content import DocumentContentLoader
from checkreview.review.engine import ReviewExecutionEngine
from checkreview.storage.blob_store import LocalBlobStore
from checkreview.storage.review_cache import ReviewCacheStore

_SHORT_ID_RE = re.compile(r"ID: (\d+) - ")

type Responder = Callable[[str, EvaluationContext], dict[str, Any]]


class FakeLanguageModel:
    """Scripted LanguageModel keyed by ``EvaluationContext.purpose``.

    Each purpose holds a queue of responses; the last one repeats. A
    response is a dict, an exception to raise, or a callable taking
    ``(prompt, context)``.
    """

    def __init__(self) -> None:
        self.calls: list[tuple[str, EvaluationContext]] = []
        self._scripts: dict[str, list[Any]] = {}

    def script(self, purpose: str, *responses: Any) -> None:
        self._scripts.setdefault(purpose, []).extend(responses)

    def calls_for(self, purpose: str) -> list[tuple[str, EvaluationContext]]:
        return [c for c in self.calls if c[1].purpose == purpose]

    async def evaluate(
        self, prompt: str, context: EvaluationContext
    ) -> dict[str, Any]:
        self.calls.append((prompt, context))
        queue = self._scripts.get(context.purpose)
        if not queue:
            msg = f"no scripted response for {context.purpose}"
            raise AssertionError(msg)
        response = queue.pop(0) if len(queue) > 1 else queue[0]
        if isinstance(response, Exception):
            raise response
        if callable(response):
            return response(prompt, context)
        return response

    # ── Responders ───────────────────────────────────────

    @staticmethod
    def short_ids(prompt: str) -> list[int]:
        return [int(m) for m in _SHORT_ID_RE.findall(prompt)]

    @classmethod
    def verdicts(
        cls, evaluation: str = "A", comment: str = "looks fine"
    ) -> Responder:
        """Answer every checklist id in the prompt with one verdict."""

        def _respond(prompt: str, _: EvaluationContext) -> dict[str, Any]:
            return {
                "results": [
                    {
                        "checklist_id": i,
                        "comment": comment,
                        "evaluation": evaluation,
                    }
                    for i in cls.short_ids(prompt)
                ]
            }

        return _respond

    @classmethod
    def findings(cls, comment: str = "mentions it") -> Responder:
        """Answer every checklist id in the prompt with a finding."""

        def _respond(prompt: str, ctx: EvaluationContext) -> dict[str, Any]:
            doc = ctx.documents[0].name if ctx.documents else "?"
            return {
                "results": [
                    {"checklist_id": i, "comment": f"{doc}: {comment}"}
                    for i in cls.short_ids(prompt)
                ]
            }

        return _respond


@pytest.fixture
def fake_llm() -> FakeLanguageModel:
    return FakeLanguageModel()


@pytest.fixture
def settings(tmp_path: Path) -> Settings:
    return Settings(
        ai_api_key="sk-test-default",
        litellm_model_chain=["test/primary", "test/fallback"],
        database_url="sqlite:///:memory:",
        data_dir=tmp_path,
        task_file_dir=tmp_path / "task_files",
        review_cache_dir=tmp_path / "review_cache",
        ai_queue_polling_interval_ms=1000,
    )


@pytest.fixture
def api_config() -> AiApiConfig:
    return AiApiConfig(api_key="sk-test-key")


@pytest.fixture
def checklist() -> list[ChecklistItemRef]:
    return [
        ChecklistItemRef(id="c1", content="States the project budget"),
        ChecklistItemRef(id="c2", content="Names a responsible owner"),
        ChecklistItemRef(id="c3", content="Defines a delivery date"),
    ]


# ── Database ─────────────────────────────────────────────


@pytest.fixture
async def engine() -> Any:
    """Function-scoped in-memory engine — a fresh schema per test."""
    engine = create_async_engine("sqlite+aiosqlite:///:memory:")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(
    engine: AsyncEngine,
) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(engine, expire_on_commit=False)


# ── Fakes ────────────────────────────────────────────────


@pytest.fixture
def task_repo() -> FakeAiTaskRepository:
    return FakeAiTaskRepository()


@pytest.fixture
def target_repo() -> FakeReviewTargetRepository:
    return FakeReviewTargetRepository()


@pytest.fixture
def result_repo(
    trace_repo: FakeLargeDocumentResultRepository,
) -> FakeReviewResultRepository:
    return FakeReviewResultRepository(trace_repo)


@pytest.fixture
def cache_repo() -> FakeReviewDocumentCacheRepository:
    return FakeReviewDocumentCacheRepository()


@pytest.fixture
def trace_repo() -> FakeLargeDocumentResultRepository:
    return FakeLargeDocumentResultRepository()


@pytest.fixture
def space_repo() -> FakeReviewSpaceRepository:
    return FakeReviewSpaceRepository()


@pytest.fixture
def checklist_repo() -> FakeChecklistItemRepository:
    return FakeChecklistItemRepository()


@pytest.fixture
def blob_store(settings: Settings) -> LocalBlobStore:
    return LocalBlobStore(settings.task_file_dir)


@pytest.fixture
def cache_store(settings: Settings) -> ReviewCacheStore:
    return ReviewCacheStore(settings.review_cache_dir)


@pytest.fixture
def run_registry() -> WorkflowRunRegistry:
    return WorkflowRunRegistry()


@pytest.fixture
def queue_service(
    task_repo: FakeAiTaskRepository, blob_store: LocalBlobStore
) -> AiTaskQueueService:
    return AiTaskQueueService(task_repo, blob_store)


@pytest.fixture
def content_loader(
    blob_store: LocalBlobStore,
    cache_store: ReviewCacheStore,
    cache_repo: FakeReviewDocumentCacheRepository,
) -> DocumentContentLoader:
    return DocumentContentLoader(blob_store, cache_store, cache_repo)


@pytest.fixture
def review_engine(
    settings: Settings,
    content_loader: DocumentContentLoader,
    target_repo: FakeReviewTargetRepository,
    result_repo: FakeReviewResultRepository,
    trace_repo: FakeLargeDocumentResultRepository,
    fake_llm: FakeLanguageModel,
) -> ReviewExecutionEngine:
    return ReviewExecutionEngine(
        settings,
        content=content_loader,
        target_repo=target_repo,
        result_repo=result_repo,
        trace_repo=trace_repo,
        model_factory=lambda _config: fake_llm,
    )


@pytest.fixture
def executor(
    review_engine: ReviewExecutionEngine,
    content_loader: DocumentContentLoader,
    target_repo: FakeReviewTargetRepository,
    space_repo: FakeReviewSpaceRepository,
    checklist_repo: FakeChecklistItemRepository,
    run_registry: WorkflowRunRegistry,
    fake_llm: FakeLanguageModel,
) -> AiTaskExecutor:
    return AiTaskExecutor(
        engine=review_engine,
        content=content_loader,
        target_repo=target_repo,
        space_repo=space_repo,
        checklist_repo=checklist_repo,
        run_registry=run_registry,
        model_factory=lambda _config: fake_llm,
    )


@pytest.fixture
def worker_registry(
    queue_service: AiTaskQueueService,
    executor: AiTaskExecutor,
    run_registry: WorkflowRunRegistry,
) -> WorkerRegistry:
    return WorkerRegistry(
        lambda api_key_hash: AiTaskWorker(
            api_key_hash,
            queue_service,
            executor,
            run_registry,
            polling_interval=0.01,
        )
    )


@pytest.fixture
async def bootstrap(
    queue_service: AiTaskQueueService,
    worker_registry: WorkerRegistry,
    blob_store: LocalBlobStore,
    target_repo: FakeReviewTargetRepository,
    space_repo: FakeReviewSpaceRepository,
) -> Any:
    boot = AiTaskBootstrap(
        queue_service, worker_registry, blob_store, target_repo, space_repo
    )
    yield boot
    await boot.shutdown()


async def wait_for_status(
    target_repo: ReviewTargetRepository,
    target_id: str,
    status: ReviewTargetStatus,
    timeout: float = 5.0,
) -> ReviewTarget:
    """Poll until a background worker moves the target to ``status``."""
    async with asyncio.timeout(timeout):
        while True:
            target = await target_repo.get_by_id(target_id)
            if target is not None and target.status == status:
                return target
            await asyncio.sleep(0.01)


@pytest.fixture
async def space(space_repo: FakeReviewSpaceRepository) -> ReviewSpace:
    return await space_repo.add(
        ReviewSpace(id="space-1", project_id="project-1", name="Contracts")
    )


@pytest.fixture
def make_target(
    target_repo: FakeReviewTargetRepository, space: ReviewSpace
) -> Callable[..., Any]:
    async def _make(
        status: ReviewTargetStatus = ReviewTargetStatus.QUEUED,
        *,
        review_type: str = "small",
        review_settings: dict[str, Any] | None = None,
    ) -> ReviewTarget:
        return await target_repo.add(
            ReviewTarget(
                review_space_id=space.id,
                name="Q3 contract",
                status=status,
                review_type=review_type,
                review_settings=review_settings,
            )
        )

    return _make
