"""SQL implementation of AiTaskRepository."""

from __future__ import annotations

from datetime import UTC, datetime

from sqlalchemy import delete as sa_delete
from sqlalchemy import func, select
from sqlalchemy import update as sa_update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from checkreview.constants import AiTaskStatus, AiTaskType
from checkreview.models.ai_task import AiTask, AiTaskFile

# Claim attempts before giving up on a hash whose head keeps moving
_CLAIM_ATTEMPTS = 5


class SqlAiTaskRepository:
    """Queue repo that owns its own sessions.

    Workers run outside any request scope, so each operation opens a
    short-lived session and commits before returning. That keeps a
    claimed task visible as ``processing`` to every other reader the
    moment ``claim_next`` returns.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
    ) -> None:
        self._session_factory = session_factory

    async def add(self, task: AiTask, files: list[AiTaskFile]) -> None:
        async with self._session_factory() as session, session.begin():
            session.add(task)
            await session.flush()
            session.add_all(files)

    async def get_by_id(self, task_id: str) -> AiTask | None:
        async with self._session_factory() as session:
            return await session.get(AiTask, task_id)

    async def list_files(self, task_id: str) -> list[AiTaskFile]:
        async with self._session_factory() as session:
            result = await session.execute(
                select(AiTaskFile)
                .where(AiTaskFile.task_id == task_id)
                .order_by(AiTaskFile.created_at, AiTaskFile.id)
            )
            return list(result.scalars().all())

    async def claim_next(self, api_key_hash: str) -> AiTask | None:
        """Flip the head of the hash's queue to processing and return it.

        Compare-and-set on ``status`` guarantees that two concurrent
        callers never claim the same row: the loser's UPDATE matches
        zero rows and it moves on to the next candidate.
        """
        for _ in range(_CLAIM_ATTEMPTS):
            async with self._session_factory() as session, session.begin():
                candidate_id = (
                    await session.execute(
                        select(AiTask.id)
                        .where(
                            AiTask.api_key_hash == api_key_hash,
                            AiTask.status == AiTaskStatus.QUEUED,
                        )
                        .order_by(
                            AiTask.priority.desc(),
                            AiTask.created_at.asc(),
                            AiTask.id.asc(),
                        )
                        .limit(1)
                    )
                ).scalar_one_or_none()
                if candidate_id is None:
                    return None

                now = datetime.now(UTC)
                result = await session.execute(
                    sa_update(AiTask)
                    .where(
                        AiTask.id == candidate_id,
                        AiTask.status == AiTaskStatus.QUEUED,
                    )
                    .values(
                        status=AiTaskStatus.PROCESSING,
                        started_at=now,
                        updated_at=now,
                    )
                    .execution_options(synchronize_session=False)
                )
                rowcount: int = getattr(result, "rowcount", 0) or 0
                if rowcount == 0:
                    continue
                return (
                    await session.execute(
                        select(AiTask).where(AiTask.id == candidate_id)
                    )
                ).scalar_one()
        return None

    async def count_queued(self, api_key_hash: str) -> int:
        async with self._session_factory() as session:
            result = await session.execute(
                select(func.count()).where(
                    AiTask.api_key_hash == api_key_hash,
                    AiTask.status == AiTaskStatus.QUEUED,
                )
            )
            return result.scalar_one()

    async def distinct_api_key_hashes(self) -> list[str]:
        async with self._session_factory() as session:
            result = await session.execute(
                select(AiTask.api_key_hash)
                .distinct()
                .order_by(AiTask.api_key_hash)
            )
            return list(result.scalars().all())

    async def list_processing(self) -> list[AiTask]:
        async with self._session_factory() as session:
            result = await session.execute(
                select(AiTask)
                .where(AiTask.status == AiTaskStatus.PROCESSING)
                .order_by(AiTask.started_at)
            )
            return list(result.scalars().all())

    async def find_by_review_target_id(
        self, review_target_id: str
    ) -> AiTask | None:
        async with self._session_factory() as session:
            result = await session.execute(
                select(AiTask)
                .where(AiTask.review_target_id == review_target_id)
                .order_by(AiTask.created_at.desc())
                .limit(1)
            )
            return result.scalar_one_or_none()

    async def find_checklist_generation_task(
        self, review_space_id: str
    ) -> AiTask | None:
        async with self._session_factory() as session:
            result = await session.execute(
                select(AiTask)
                .where(
                    AiTask.review_space_id == review_space_id,
                    AiTask.task_type == AiTaskType.CHECKLIST_GENERATION,
                )
                .order_by(AiTask.created_at.desc())
                .limit(1)
            )
            return result.scalar_one_or_none()

    async def delete(self, task_id: str) -> bool:
        """Delete the task and its file rows in one transaction."""
        async with self._session_factory() as session, session.begin():
            await session.execute(
                sa_delete(AiTaskFile).where(AiTaskFile.task_id == task_id)
            )
            result = await session.execute(
                sa_delete(AiTask).where(AiTask.id == task_id)
            )
            rowcount: int = getattr(result, "rowcount", 0) or 0
            return rowcount > 0
