"""Extracted-content caches and large-review trace rows."""

import uuid
from datetime import UTC, datetime

from sqlalchemy import ForeignKey, Integer, String, Text, func
from sqlalchemy.orm import Mapped, mapped_column

from checkreview.constants import ProcessMode
from checkreview.models.base import Base


class ReviewDocumentCache(Base):
    """Pointer to extracted text or page images for one reviewed file.

    Written once on the first review of a target and reused by every
    retry. ``cache_path`` is None until the content has been stored.
    """

    __tablename__ = "review_document_caches"

    id: Mapped[str] = mapped_column(
        String(36), primary_key=True, default=lambda: str(uuid.uuid4())
    )
    review_target_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey("review_targets.id", ondelete="CASCADE"),
        index=True,
    )
    file_name: Mapped[str] = mapped_column(String(500))
    process_mode: Mapped[str] = mapped_column(
        String(20), default=ProcessMode.TEXT
    )
    cache_path: Mapped[str | None] = mapped_column(
        String(1000), nullable=True
    )
    created_at: Mapped[datetime] = mapped_column(
        default=lambda: datetime.now(UTC),
        server_default=func.now(),
    )

    @property
    def has_cache(self) -> bool:
        return bool(self.cache_path)


class LargeDocumentResultCache(Base):
    """Per-document finding from a large review, kept for audit and Q&A.

    ``review_result_id`` is filled in once the consolidated result for
    the checklist item has been written. Superseding that result removes
    its traces with it.
    """

    __tablename__ = "large_document_result_caches"

    id: Mapped[str] = mapped_column(
        String(36), primary_key=True, default=lambda: str(uuid.uuid4())
    )
    review_target_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey("review_targets.id", ondelete="CASCADE"),
        index=True,
    )
    review_document_cache_id: Mapped[str | None] = mapped_column(
        String(36), nullable=True
    )
    review_result_id: Mapped[str | None] = mapped_column(
        String(36),
        ForeignKey("review_results.id", ondelete="CASCADE"),
        nullable=True,
        index=True,
    )
    document_name: Mapped[str] = mapped_column(String(500))
    checklist_item_content: Mapped[str] = mapped_column(Text)
    comment: Mapped[str] = mapped_column(Text)
    total_chunks: Mapped[int] = mapped_column(Integer, default=1)
    chunk_index: Mapped[int] = mapped_column(Integer, default=0)
    created_at: Mapped[datetime] = mapped_column(
        default=lambda: datetime.now(UTC),
        server_default=func.now(),
    )
