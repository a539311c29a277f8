"""Document content acquisition and the extracted-content cache.

First runs read uploads from the blob store and write a cache entry per
file. Retries read only the cache; uploads are gone by then.
"""

from __future__ import annotations

import base64
import logging
import uuid
from dataclasses import replace
from typing import Protocol

from checkreview.constants import ProcessMode
from checkreview.domain.documents import ReviewDocument
from checkreview.domain.payloads import TaskFileRecord
from checkreview.errors import DomainValidationError, ErrorCode, WorkflowError
from checkreview.models.review_cache import ReviewDocumentCache
from checkreview.repositories.protocols import ReviewDocumentCacheRepository
from checkreview.storage.blob_store import BlobStore
from checkreview.storage.review_cache import ReviewCacheStore

logger = logging.getLogger(__name__)


class TextExtractor(Protocol):
    async def extract(self, data: bytes, file: TaskFileRecord) -> str: ...


class PlainTextExtractor:
    """Decodes uploads as UTF-8 text. Undecodable bytes are replaced."""

    async def extract(self, data: bytes, file: TaskFileRecord) -> str:
        return data.decode("utf-8", errors="replace")


class DocumentContentLoader:
    def __init__(
        self,
        blob_store: BlobStore,
        cache_store: ReviewCacheStore,
        cache_repo: ReviewDocumentCacheRepository,
        extractor: TextExtractor | None = None,
    ) -> None:
        self._blob_store = blob_store
        self._cache_store = cache_store
        self._cache_repo = cache_repo
        self._extractor = extractor or PlainTextExtractor()

    async def load_from_files(
        self, task_id: str, files: list[TaskFileRecord]
    ) -> list[ReviewDocument]:
        """Read every upload of a task. Any unreadable file is fatal."""
        documents: list[ReviewDocument] = []
        for file in files:
            try:
                documents.append(await self._load_file(task_id, file))
            except Exception as exc:
                logger.error(
                    "event=file_processing_failed task_id=%s file=%s",
                    task_id,
                    file.file_name,
                    exc_info=True,
                )
                raise WorkflowError(
                    ErrorCode.REVIEW_EXECUTION_FAILED,
                    f"file processing failed for {file.file_name}: {exc}",
                ) from exc
        return documents

    async def _load_file(
        self, task_id: str, file: TaskFileRecord
    ) -> ReviewDocument:
        if file.process_mode == ProcessMode.IMAGE:
            pages = await self._blob_store.read_converted_images(
                task_id, file.id, file.converted_image_count
            )
            return ReviewDocument(
                id=file.id,
                name=file.file_name,
                process_mode=ProcessMode.IMAGE,
                images=[base64.b64encode(p).decode("ascii") for p in pages],
            )
        if not file.file_path:
            raise ValueError("text-mode file has no stored path")
        data = await self._blob_store.read_file(file.file_path)
        return ReviewDocument(
            id=file.id,
            name=file.file_name,
            process_mode=ProcessMode.TEXT,
            text=await self._extractor.extract(data, file),
        )

    async def save_caches(
        self, review_target_id: str, documents: list[ReviewDocument]
    ) -> list[ReviewDocument]:
        """Persist extracted content, tagging documents with cache ids."""
        rows: list[ReviewDocumentCache] = []
        tagged: list[ReviewDocument] = []
        for doc in documents:
            cache_id = str(uuid.uuid4())
            if doc.process_mode == ProcessMode.IMAGE:
                path = await self._cache_store.save_images(
                    review_target_id, cache_id, doc.images
                )
            else:
                path = await self._cache_store.save_text(
                    review_target_id, cache_id, doc.text
                )
            rows.append(
                ReviewDocumentCache(
                    id=cache_id,
                    review_target_id=review_target_id,
                    file_name=doc.name,
                    process_mode=doc.process_mode,
                    cache_path=path,
                )
            )
            tagged.append(replace(doc, cache_id=cache_id))
        await self._cache_repo.add_many(rows)
        logger.info(
            "event=document_caches_saved target_id=%s count=%d",
            review_target_id,
            len(rows),
        )
        return tagged

    async def load_from_cache(
        self, review_target_id: str
    ) -> list[ReviewDocument]:
        caches = await self._cache_repo.list_by_review_target(
            review_target_id
        )
        paths = {c.id: c.cache_path for c in caches if c.cache_path}
        if not caches or len(paths) < len(caches):
            raise DomainValidationError(
                ErrorCode.RETRY_NO_CACHE, f"review_target={review_target_id}"
            )
        documents: list[ReviewDocument] = []
        for cache in caches:
            path = paths[cache.id]
            if cache.process_mode == ProcessMode.IMAGE:
                documents.append(
                    ReviewDocument(
                        id=cache.id,
                        name=cache.file_name,
                        process_mode=ProcessMode.IMAGE,
                        images=await self._cache_store.load_images(path),
                        cache_id=cache.id,
                    )
                )
            else:
                documents.append(
                    ReviewDocument(
                        id=cache.id,
                        name=cache.file_name,
                        process_mode=ProcessMode.TEXT,
                        text=await self._cache_store.load_text(path),
                        cache_id=cache.id,
                    )
                )
        logger.info(
            "event=document_caches_loaded target_id=%s count=%d",
            review_target_id,
            len(documents),
        )
        return documents
