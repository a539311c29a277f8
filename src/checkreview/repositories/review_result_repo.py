"""SQL implementation of ReviewResultRepository."""

from __future__ import annotations

from sqlalchemy import delete as sa_delete
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from checkreview.models.review_cache import LargeDocumentResultCache
from checkreview.models.review_result import ReviewResult


class SqlReviewResultRepository:
    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
    ) -> None:
        self._session_factory = session_factory

    async def list_by_review_target(
        self, review_target_id: str
    ) -> list[ReviewResult]:
        async with self._session_factory() as session:
            result = await session.execute(
                select(ReviewResult)
                .where(ReviewResult.review_target_id == review_target_id)
                .order_by(ReviewResult.created_at, ReviewResult.id)
            )
            return list(result.scalars().all())

    async def replace(
        self,
        review_target_id: str,
        delete_ids: list[str],
        results: list[ReviewResult],
    ) -> list[ReviewResult]:
        """Delete superseded rows and their traces, insert new ones atomically.

        Readers never see a checklist item with both old and new rows,
        and a crash mid-write never leaves an item with none.
        """
        async with self._session_factory() as session, session.begin():
            if delete_ids:
                await session.execute(
                    sa_delete(LargeDocumentResultCache).where(
                        LargeDocumentResultCache.review_target_id
                        == review_target_id,
                        LargeDocumentResultCache.review_result_id.in_(
                            delete_ids
                        ),
                    )
                )
                await session.execute(
                    sa_delete(ReviewResult).where(
                        ReviewResult.review_target_id == review_target_id,
                        ReviewResult.id.in_(delete_ids),
                    )
                )
            session.add_all(results)
            await session.flush()
        return results
