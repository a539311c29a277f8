"""Delete review targets and spaces after tearing down their queued work."""

from __future__ import annotations

import logging

from checkreview.errors import DomainValidationError, ErrorCode
from checkreview.repositories.protocols import (
    ReviewSpaceRepository,
    ReviewTargetRepository,
)
from checkreview.services.cleanup import (
    CleanupResult,
    ReviewTargetCleanupHelper,
)

logger = logging.getLogger(__name__)


class DeletionService:
    def __init__(
        self,
        target_repo: ReviewTargetRepository,
        space_repo: ReviewSpaceRepository,
        cleanup: ReviewTargetCleanupHelper,
    ) -> None:
        self._target_repo = target_repo
        self._space_repo = space_repo
        self._cleanup = cleanup

    async def delete_review_target(
        self, review_target_id: str
    ) -> CleanupResult:
        if await self._target_repo.get_by_id(review_target_id) is None:
            raise DomainValidationError(
                ErrorCode.REVIEW_TARGET_NOT_FOUND, review_target_id
            )
        result = await self._cleanup.cleanup_single_review_target(
            review_target_id
        )
        await self._target_repo.delete(review_target_id)
        logger.info(
            "event=review_target_deleted target_id=%s cleanup_ok=%s",
            review_target_id,
            result.ok,
        )
        return result

    async def delete_review_space(self, review_space_id: str) -> CleanupResult:
        if await self._space_repo.get_by_id(review_space_id) is None:
            raise DomainValidationError(
                ErrorCode.REVIEW_SPACE_NOT_FOUND, review_space_id
            )
        targets = await self._target_repo.list_by_review_space(review_space_id)
        result = await self._cleanup.cleanup_review_targets(review_space_id)
        result.merge(
            await self._cleanup.cleanup_checklist_generation_task(
                review_space_id
            )
        )
        for target in targets:
            await self._target_repo.delete(target.id)
        await self._space_repo.delete(review_space_id)
        logger.info(
            "event=review_space_deleted space_id=%s targets=%d cleanup_ok=%s",
            review_space_id,
            len(targets),
            result.ok,
        )
        return result
