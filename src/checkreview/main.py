"""Runtime wiring — build every collaborator and run the queue."""

from __future__ import annotations

import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from dataclasses import dataclass

from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
)

from checkreview.config import Settings, create_app_engine
from checkreview.llm.client import LanguageModelFactory, LiteLLMClient
from checkreview.models.base import Base
from checkreview.queue.bootstrap import AiTaskBootstrap
from checkreview.queue.executor import AiTaskExecutor
from checkreview.queue.run_registry import WorkflowRunRegistry
from checkreview.queue.service import AiTaskQueueService
from checkreview.queue.worker import AiTaskWorker
from checkreview.queue.worker_registry import WorkerRegistry
from checkreview.repositories.ai_task_repo import SqlAiTaskRepository
from checkreview.repositories.cache_repo import (
    SqlLargeDocumentResultRepository,
    SqlReviewDocumentCacheRepository,
)
from checkreview.repositories.review_result_repo import (
    SqlReviewResultRepository,
)
from checkreview.repositories.review_space_repo import (
    SqlChecklistItemRepository,
    SqlReviewSpaceRepository,
)
from checkreview.repositories.review_target_repo import (
    SqlReviewTargetRepository,
)
from checkreview.review.content import DocumentContentLoader
from checkreview.review.engine import ReviewExecutionEngine
from checkreview.services.cleanup import ReviewTargetCleanupHelper
from checkreview.services.deletion import DeletionService
from checkreview.services.execute_review import (
    ChecklistGenerationService,
    ExecuteReviewService,
)
from checkreview.services.retry_review import RetryReviewService
from checkreview.storage.blob_store import LocalBlobStore
from checkreview.storage.review_cache import ReviewCacheStore

logger = logging.getLogger(__name__)


@dataclass
class AppState:
    """Typed container for every long-lived collaborator."""

    settings: Settings
    engine: AsyncEngine
    session_factory: async_sessionmaker[AsyncSession]
    run_registry: WorkflowRunRegistry
    workers: WorkerRegistry
    queue: AiTaskQueueService
    executor: AiTaskExecutor
    bootstrap: AiTaskBootstrap
    execute_review: ExecuteReviewService
    checklist_generation: ChecklistGenerationService
    retry_review: RetryReviewService
    cleanup: ReviewTargetCleanupHelper
    deletion: DeletionService


async def create_tables(engine: AsyncEngine) -> None:
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


def build_app_state(
    settings: Settings,
    engine: AsyncEngine,
    *,
    model_factory: LanguageModelFactory | None = None,
) -> AppState:
    session_factory = async_sessionmaker(engine, expire_on_commit=False)

    task_repo = SqlAiTaskRepository(session_factory)
    target_repo = SqlReviewTargetRepository(session_factory)
    result_repo = SqlReviewResultRepository(session_factory)
    cache_repo = SqlReviewDocumentCacheRepository(session_factory)
    trace_repo = SqlLargeDocumentResultRepository(session_factory)
    space_repo = SqlReviewSpaceRepository(session_factory)
    checklist_repo = SqlChecklistItemRepository(session_factory)

    blob_store = LocalBlobStore(settings.task_file_dir)
    cache_store = ReviewCacheStore(settings.review_cache_dir)
    model_factory = model_factory or LiteLLMClient.factory(settings)
    run_registry = WorkflowRunRegistry()

    content = DocumentContentLoader(blob_store, cache_store, cache_repo)
    queue = AiTaskQueueService(task_repo, blob_store)
    executor = AiTaskExecutor(
        engine=ReviewExecutionEngine(
            settings,
            content=content,
            target_repo=target_repo,
            result_repo=result_repo,
            trace_repo=trace_repo,
            model_factory=model_factory,
        ),
        content=content,
        target_repo=target_repo,
        space_repo=space_repo,
        checklist_repo=checklist_repo,
        run_registry=run_registry,
        model_factory=model_factory,
    )

    def _make_worker(api_key_hash: str) -> AiTaskWorker:
        return AiTaskWorker(
            api_key_hash,
            queue,
            executor,
            run_registry,
            polling_interval=settings.polling_interval_seconds,
        )

    workers = WorkerRegistry(_make_worker, settings.ai_queue_concurrency)
    bootstrap = AiTaskBootstrap(
        queue, workers, blob_store, target_repo, space_repo
    )
    cleanup = ReviewTargetCleanupHelper(
        task_repo, target_repo, blob_store, cache_store, run_registry
    )

    return AppState(
        settings=settings,
        engine=engine,
        session_factory=session_factory,
        run_registry=run_registry,
        workers=workers,
        queue=queue,
        executor=executor,
        bootstrap=bootstrap,
        execute_review=ExecuteReviewService(
            settings,
            target_repo=target_repo,
            space_repo=space_repo,
            checklist_repo=checklist_repo,
            queue=queue,
            bootstrap=bootstrap,
        ),
        checklist_generation=ChecklistGenerationService(
            settings, space_repo=space_repo, queue=queue, bootstrap=bootstrap
        ),
        retry_review=RetryReviewService(
            settings,
            target_repo=target_repo,
            result_repo=result_repo,
            cache_repo=cache_repo,
            checklist_repo=checklist_repo,
            queue=queue,
            bootstrap=bootstrap,
        ),
        cleanup=cleanup,
        deletion=DeletionService(target_repo, space_repo, cleanup),
    )


@asynccontextmanager
async def lifespan(
    settings: Settings,
    *,
    model_factory: LanguageModelFactory | None = None,
) -> AsyncIterator[AppState]:
    # 1. Engine + tables (WAL set via pool-connect listener)
    settings.data_dir.mkdir(parents=True, exist_ok=True)
    engine = create_app_engine(settings.database_url, echo=settings.debug_mode)
    await create_tables(engine)

    # 2. Collaborators
    state = build_app_state(settings, engine, model_factory=model_factory)

    # 3. Recover interrupted tasks and start workers for queued hashes
    await state.bootstrap.initialize()
    if not settings.ai_api_key:
        logger.warning("event=no_default_api_key action=per_call_keys_only")

    try:
        yield state
    finally:
        await state.bootstrap.shutdown()
        await engine.dispose()
