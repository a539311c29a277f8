"""SQL implementation of ReviewTargetRepository."""

from __future__ import annotations

from sqlalchemy import delete as sa_delete
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from checkreview.constants import ReviewTargetStatus
from checkreview.errors import DomainValidationError, ErrorCode
from checkreview.models.review_cache import (
    LargeDocumentResultCache,
    ReviewDocumentCache,
)
from checkreview.models.review_result import ReviewResult
from checkreview.models.review_target import ReviewTarget


class SqlReviewTargetRepository:
    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
    ) -> None:
        self._session_factory = session_factory

    async def get_by_id(self, target_id: str) -> ReviewTarget | None:
        async with self._session_factory() as session:
            return await session.get(ReviewTarget, target_id)

    async def list_by_review_space(
        self, review_space_id: str
    ) -> list[ReviewTarget]:
        async with self._session_factory() as session:
            result = await session.execute(
                select(ReviewTarget)
                .where(ReviewTarget.review_space_id == review_space_id)
                .order_by(ReviewTarget.created_at)
            )
            return list(result.scalars().all())

    async def add(self, target: ReviewTarget) -> ReviewTarget:
        async with self._session_factory() as session, session.begin():
            session.add(target)
        return target

    async def save(self, target: ReviewTarget) -> None:
        async with self._session_factory() as session, session.begin():
            await session.merge(target)

    async def transition(
        self, target_id: str, new_status: str
    ) -> ReviewTarget:
        """Load, validate and apply a status change in one transaction."""
        async with self._session_factory() as session, session.begin():
            target = await session.get(
                ReviewTarget, target_id, with_for_update=True
            )
            if target is None:
                raise DomainValidationError(
                    ErrorCode.REVIEW_TARGET_NOT_FOUND, target_id
                )
            target.transition_to(ReviewTargetStatus(new_status))
        return target

    async def delete(self, target_id: str) -> None:
        """Delete the target with its results, caches and traces."""
        async with self._session_factory() as session, session.begin():
            for model in (
                LargeDocumentResultCache,
                ReviewDocumentCache,
                ReviewResult,
            ):
                await session.execute(
                    sa_delete(model).where(
                        model.review_target_id == target_id
                    )
                )
            await session.execute(
                sa_delete(ReviewTarget).where(ReviewTarget.id == target_id)
            )
