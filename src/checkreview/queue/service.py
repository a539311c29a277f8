"""AI task queue — enqueue, atomic dequeue, complete and fail.

The queue holds only live work. Completing or failing a task deletes
its row and its stored files; history lives in the review results.
"""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass, field

from checkreview.constants import (
    DEFAULT_TASK_PRIORITY,
    AiTaskStatus,
    AiTaskType,
    ProcessMode,
    truncate_error,
)
from checkreview.domain.payloads import (
    ChecklistGenerationTaskPayload,
    DequeuedTask,
    ReviewTaskPayload,
    TaskFileRecord,
    TaskPayload,
    decode_payload,
    encode_payload,
    task_type_for_review,
)
from checkreview.domain.status import AiTaskState
from checkreview.domain.value_objects import AiApiConfig, FileMeta
from checkreview.errors import (
    DomainValidationError,
    ErrorCode,
    InternalError,
)
from checkreview.models.ai_task import AiTask, AiTaskFile
from checkreview.repositories.protocols import AiTaskRepository
from checkreview.storage.blob_store import BlobStore

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class TaskFileUpload:
    """An uploaded file as handed to ``enqueue_task``.

    Text-mode files carry their bytes in ``data``; image-mode files
    carry one PNG per page in ``converted_images``.
    """

    meta: FileMeta
    data: bytes = b""
    converted_images: list[bytes] = field(
        default_factory=lambda: list[bytes]()
    )


@dataclass(frozen=True)
class EnqueueResult:
    task_id: str
    api_key_hash: str
    queue_length: int


class AiTaskQueueService:
    def __init__(self, repo: AiTaskRepository, blob_store: BlobStore) -> None:
        self._repo = repo
        self._blob_store = blob_store

    async def enqueue_task(
        self,
        task_type: AiTaskType,
        api_config: AiApiConfig,
        payload: TaskPayload,
        *,
        priority: int = DEFAULT_TASK_PRIORITY,
        files: list[TaskFileUpload] | None = None,
    ) -> EnqueueResult:
        """Store uploads, insert the task row, return the queue length.

        Files already written are not removed if a later step fails.
        """
        _validate_payload(task_type, payload)

        task_id = str(uuid.uuid4())
        api_key_hash = api_config.api_key_hash
        try:
            file_rows = [
                await self._store_file(task_id, upload)
                for upload in files or []
            ]
            task = AiTask(
                id=task_id,
                task_type=task_type,
                status=AiTaskStatus.QUEUED,
                api_key_hash=api_key_hash,
                priority=priority,
                payload=encode_payload(payload),
                review_target_id=(
                    payload.review_target_id
                    if isinstance(payload, ReviewTaskPayload)
                    else None
                ),
                review_space_id=payload.review_space_id,
            )
            await self._repo.add(task, file_rows)
            queue_length = await self._repo.count_queued(api_key_hash)
        except Exception as exc:
            logger.error(
                "event=enqueue_failed task_id=%s type=%s",
                task_id,
                task_type,
                exc_info=True,
            )
            raise InternalError(
                ErrorCode.AI_TASK_ENQUEUE_FAILED, str(exc)
            ) from exc

        logger.info(
            "event=task_enqueued task_id=%s type=%s hash=%s"
            " priority=%d files=%d queue_length=%d",
            task_id,
            task_type,
            api_key_hash[:8],
            priority,
            len(file_rows),
            queue_length,
        )
        return EnqueueResult(
            task_id=task_id,
            api_key_hash=api_key_hash,
            queue_length=queue_length,
        )

    async def _store_file(
        self, task_id: str, upload: TaskFileUpload
    ) -> AiTaskFile:
        file_id = str(uuid.uuid4())
        meta = upload.meta
        file_path: str | None = None
        image_count = 0
        if meta.process_mode == ProcessMode.IMAGE:
            image_count = await self._blob_store.save_converted_images(
                task_id, file_id, upload.converted_images
            )
        else:
            file_path = await self._blob_store.save_file(
                task_id, file_id, upload.data
            )
        return AiTaskFile(
            id=file_id,
            task_id=task_id,
            file_name=meta.name,
            file_size=meta.size or len(upload.data),
            mime_type=meta.mime_type,
            process_mode=meta.process_mode,
            file_path=file_path,
            converted_image_count=image_count,
        )

    async def dequeue_task(self, api_key_hash: str) -> DequeuedTask | None:
        """Claim the next task for a hash, or None if its queue is empty.

        A claimed task whose payload no longer decodes is failed on the
        spot and the next one is tried.
        """
        while True:
            task = await self._repo.claim_next(api_key_hash)
            if task is None:
                return None
            try:
                payload = decode_payload(task.task_type, task.payload)
            except DomainValidationError as exc:
                logger.error(
                    "event=task_payload_invalid task_id=%s error=%s",
                    task.id,
                    exc,
                )
                await self.fail_task(task.id, str(exc))
                continue

            files = await self._repo.list_files(task.id)
            logger.info(
                "event=task_dequeued task_id=%s type=%s hash=%s",
                task.id,
                task.task_type,
                api_key_hash[:8],
            )
            return DequeuedTask(
                id=task.id,
                task_type=AiTaskType(task.task_type),
                api_key_hash=task.api_key_hash,
                priority=task.priority,
                payload=payload,
                created_at=task.created_at,
                started_at=task.started_at,
                files=[_file_record(f) for f in files],
            )

    async def complete_task(self, task_id: str) -> None:
        task = await self._repo.get_by_id(task_id)
        if task is None:
            logger.warning("event=complete_task_missing task_id=%s", task_id)
            return
        AiTaskState.reconstruct(task.status).complete()
        await self._remove(task_id)
        logger.info("event=task_completed task_id=%s", task_id)

    async def fail_task(self, task_id: str, error_message: str) -> None:
        task = await self._repo.get_by_id(task_id)
        if task is None:
            logger.warning("event=fail_task_missing task_id=%s", task_id)
            return
        AiTaskState.reconstruct(task.status).fail()
        await self._remove(task_id)
        logger.warning(
            "event=task_failed task_id=%s error=%s",
            task_id,
            truncate_error(error_message),
        )

    async def _remove(self, task_id: str) -> None:
        await self._blob_store.delete_task_files(task_id)
        await self._repo.delete(task_id)

    async def get_queue_length(self, api_key_hash: str) -> int:
        return await self._repo.count_queued(api_key_hash)

    async def find_distinct_api_key_hashes_in_queue(self) -> list[str]:
        return await self._repo.distinct_api_key_hashes()

    async def find_processing_tasks(self) -> list[AiTask]:
        return await self._repo.list_processing()

    async def delete_task(self, task_id: str) -> bool:
        """Remove a task regardless of status. Used by cleanup paths."""
        await self._blob_store.delete_task_files(task_id)
        return await self._repo.delete(task_id)


def _validate_payload(task_type: AiTaskType, payload: TaskPayload) -> None:
    if isinstance(payload, ReviewTaskPayload):
        if task_type_for_review(payload.review_type) != task_type:
            raise DomainValidationError(
                ErrorCode.AI_TASK_PAYLOAD_INVALID,
                f"task_type={task_type} review_type={payload.review_type}",
            )
        if not payload.checklist_items:
            raise DomainValidationError(
                ErrorCode.REVIEW_EXECUTION_NO_CHECKLIST,
                f"review_target={payload.review_target_id}",
            )
    elif isinstance(payload, ChecklistGenerationTaskPayload):
        if task_type != AiTaskType.CHECKLIST_GENERATION:
            raise DomainValidationError(
                ErrorCode.AI_TASK_PAYLOAD_INVALID, f"task_type={task_type}"
            )


def _file_record(row: AiTaskFile) -> TaskFileRecord:
    return TaskFileRecord(
        id=row.id,
        task_id=row.task_id,
        file_name=row.file_name,
        file_size=row.file_size,
        mime_type=row.mime_type,
        process_mode=ProcessMode(row.process_mode),
        file_path=row.file_path,
        converted_image_count=row.converted_image_count,
    )
