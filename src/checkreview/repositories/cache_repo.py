"""SQL implementations of the document-cache and trace repositories."""

from __future__ import annotations

from sqlalchemy import delete as sa_delete
from sqlalchemy import select
from sqlalchemy import update as sa_update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from checkreview.models.review_cache import (
    LargeDocumentResultCache,
    ReviewDocumentCache,
)


class SqlReviewDocumentCacheRepository:
    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
    ) -> None:
        self._session_factory = session_factory

    async def list_by_review_target(
        self, review_target_id: str
    ) -> list[ReviewDocumentCache]:
        async with self._session_factory() as session:
            result = await session.execute(
                select(ReviewDocumentCache)
                .where(
                    ReviewDocumentCache.review_target_id == review_target_id
                )
                .order_by(
                    ReviewDocumentCache.created_at, ReviewDocumentCache.id
                )
            )
            return list(result.scalars().all())

    async def add_many(self, caches: list[ReviewDocumentCache]) -> None:
        async with self._session_factory() as session, session.begin():
            session.add_all(caches)


class SqlLargeDocumentResultRepository:
    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
    ) -> None:
        self._session_factory = session_factory

    async def add_many(
        self, traces: list[LargeDocumentResultCache]
    ) -> None:
        async with self._session_factory() as session, session.begin():
            session.add_all(traces)

    async def delete_unlinked(
        self, review_target_id: str, item_contents: list[str]
    ) -> int:
        """Drop traces a previous run left without a consolidated result."""
        if not item_contents:
            return 0
        async with self._session_factory() as session, session.begin():
            result = await session.execute(
                sa_delete(LargeDocumentResultCache).where(
                    LargeDocumentResultCache.review_target_id
                    == review_target_id,
                    LargeDocumentResultCache.checklist_item_content.in_(
                        item_contents
                    ),
                    LargeDocumentResultCache.review_result_id.is_(None),
                )
            )
            rowcount: int = getattr(result, "rowcount", 0) or 0
            return rowcount

    async def link_results(
        self, review_target_id: str, result_ids: dict[str, str]
    ) -> None:
        """Attach consolidated result ids, keyed by checklist item content."""
        async with self._session_factory() as session, session.begin():
            for content, result_id in result_ids.items():
                await session.execute(
                    sa_update(LargeDocumentResultCache)
                    .where(
                        LargeDocumentResultCache.review_target_id
                        == review_target_id,
                        LargeDocumentResultCache.checklist_item_content
                        == content,
                        LargeDocumentResultCache.review_result_id.is_(None),
                    )
                    .values(review_result_id=result_id)
                )

    async def list_by_review_target(
        self, review_target_id: str
    ) -> list[LargeDocumentResultCache]:
        async with self._session_factory() as session:
            result = await session.execute(
                select(LargeDocumentResultCache)
                .where(
                    LargeDocumentResultCache.review_target_id
                    == review_target_id
                )
                .order_by(
                    LargeDocumentResultCache.document_name,
                    LargeDocumentResultCache.chunk_index,
                )
            )
            return list(result.scalars().all())
