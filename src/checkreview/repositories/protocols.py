"""Protocol-based repository interfaces.

SQL implementations satisfy these protocols structurally (no inheritance).
Test doubles can be plain classes or mocks matching the same signature.
"""

from typing import Protocol

from checkreview.models.ai_task import AiTask, AiTaskFile
from checkreview.models.review_cache import (
    LargeDocumentResultCache,
    ReviewDocumentCache,
)
from checkreview.models.review_result import ReviewResult
from checkreview.models.review_space import ChecklistItem, ReviewSpace
from checkreview.models.review_target import ReviewTarget


class AiTaskRepository(Protocol):
    async def add(self, task: AiTask, files: list[AiTaskFile]) -> None: ...
    async def get_by_id(self, task_id: str) -> AiTask | None: ...
    async def list_files(self, task_id: str) -> list[AiTaskFile]: ...
    async def claim_next(self, api_key_hash: str) -> AiTask | None: ...
    async def count_queued(self, api_key_hash: str) -> int: ...
    async def distinct_api_key_hashes(self) -> list[str]: ...
    async def list_processing(self) -> list[AiTask]: ...
    async def find_by_review_target_id(
        self, review_target_id: str
    ) -> AiTask | None: ...
    async def find_checklist_generation_task(
        self, review_space_id: str
    ) -> AiTask | None: ...
    async def delete(self, task_id: str) -> bool: ...


class ReviewTargetRepository(Protocol):
    async def get_by_id(self, target_id: str) -> ReviewTarget | None: ...
    async def list_by_review_space(
        self, review_space_id: str
    ) -> list[ReviewTarget]: ...
    async def add(self, target: ReviewTarget) -> ReviewTarget: ...
    async def save(self, target: ReviewTarget) -> None: ...
    async def transition(
        self, target_id: str, new_status: str
    ) -> ReviewTarget: ...
    async def delete(self, target_id: str) -> None: ...


class ReviewResultRepository(Protocol):
    async def list_by_review_target(
        self, review_target_id: str
    ) -> list[ReviewResult]: ...
    async def replace(
        self,
        review_target_id: str,
        delete_ids: list[str],
        results: list[ReviewResult],
    ) -> list[ReviewResult]: ...


class ReviewDocumentCacheRepository(Protocol):
    async def list_by_review_target(
        self, review_target_id: str
    ) -> list[ReviewDocumentCache]: ...
    async def add_many(self, caches: list[ReviewDocumentCache]) -> None: ...


class LargeDocumentResultRepository(Protocol):
    async def add_many(
        self, traces: list[LargeDocumentResultCache]
    ) -> None: ...
    async def delete_unlinked(
        self, review_target_id: str, item_contents: list[str]
    ) -> int: ...
    async def link_results(
        self, review_target_id: str, result_ids: dict[str, str]
    ) -> None: ...
    async def list_by_review_target(
        self, review_target_id: str
    ) -> list[LargeDocumentResultCache]: ...


class ChecklistItemRepository(Protocol):
    async def list_by_review_space(
        self, review_space_id: str
    ) -> list[ChecklistItem]: ...
    async def bulk_insert(self, items: list[ChecklistItem]) -> None: ...


class ReviewSpaceRepository(Protocol):
    async def get_by_id(self, space_id: str) -> ReviewSpace | None: ...
    async def add(self, space: ReviewSpace) -> ReviewSpace: ...
    async def update_checklist_generation_error(
        self, space_id: str, error_message: str | None
    ) -> None: ...
    async def delete(self, space_id: str) -> None: ...
