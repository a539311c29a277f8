"""SQL implementations of ReviewSpaceRepository and ChecklistItemRepository."""

from __future__ import annotations

from sqlalchemy import delete as sa_delete
from sqlalchemy import select
from sqlalchemy import update as sa_update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from checkreview.models.review_space import ChecklistItem, ReviewSpace


class SqlReviewSpaceRepository:
    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
    ) -> None:
        self._session_factory = session_factory

    async def get_by_id(self, space_id: str) -> ReviewSpace | None:
        async with self._session_factory() as session:
            return await session.get(ReviewSpace, space_id)

    async def add(self, space: ReviewSpace) -> ReviewSpace:
        async with self._session_factory() as session, session.begin():
            session.add(space)
        return space

    async def update_checklist_generation_error(
        self, space_id: str, error_message: str | None
    ) -> None:
        async with self._session_factory() as session, session.begin():
            await session.execute(
                sa_update(ReviewSpace)
                .where(ReviewSpace.id == space_id)
                .values(checklist_generation_error=error_message)
            )

    async def delete(self, space_id: str) -> None:
        """Delete the space and its checklist items.

        Review targets are removed first by the caller so their caches
        and results go with them.
        """
        async with self._session_factory() as session, session.begin():
            await session.execute(
                sa_delete(ChecklistItem).where(
                    ChecklistItem.review_space_id == space_id
                )
            )
            await session.execute(
                sa_delete(ReviewSpace).where(ReviewSpace.id == space_id)
            )


class SqlChecklistItemRepository:
    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
    ) -> None:
        self._session_factory = session_factory

    async def list_by_review_space(
        self, review_space_id: str
    ) -> list[ChecklistItem]:
        async with self._session_factory() as session:
            result = await session.execute(
                select(ChecklistItem)
                .where(ChecklistItem.review_space_id == review_space_id)
                .order_by(ChecklistItem.created_at, ChecklistItem.id)
            )
            return list(result.scalars().all())

    async def bulk_insert(self, items: list[ChecklistItem]) -> None:
        async with self._session_factory() as session, session.begin():
            session.add_all(items)
