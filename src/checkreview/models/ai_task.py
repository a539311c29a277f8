"""AiTask queue rows and the files each task owns.

The queue holds only live work: a row is deleted (with its files) as
soon as the task completes or fails.
"""

import uuid
from datetime import UTC, datetime
from typing import Any

from sqlalchemy import JSON, ForeignKey, Index, Integer, String, Text, func
from sqlalchemy.orm import Mapped, mapped_column

from checkreview.constants import (
    DEFAULT_TASK_PRIORITY,
    AiTaskStatus,
    ProcessMode,
)
from checkreview.models.base import Base


class AiTask(Base):
    __tablename__ = "ai_tasks"

    id: Mapped[str] = mapped_column(
        String(36), primary_key=True, default=lambda: str(uuid.uuid4())
    )
    task_type: Mapped[str] = mapped_column(String(50))
    status: Mapped[str] = mapped_column(
        String(20), default=AiTaskStatus.QUEUED
    )
    api_key_hash: Mapped[str] = mapped_column(String(64))
    priority: Mapped[int] = mapped_column(
        Integer, default=DEFAULT_TASK_PRIORITY
    )
    payload: Mapped[dict[str, Any]] = mapped_column(JSON)
    # Denormalized from payload for cleanup lookups
    review_target_id: Mapped[str | None] = mapped_column(
        String(36), nullable=True, index=True
    )
    review_space_id: Mapped[str | None] = mapped_column(
        String(36), nullable=True, index=True
    )
    error_message: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        default=lambda: datetime.now(UTC),
        server_default=func.now(),
    )
    updated_at: Mapped[datetime] = mapped_column(
        default=lambda: datetime.now(UTC),
        server_default=func.now(),
        onupdate=lambda: datetime.now(UTC),
    )
    started_at: Mapped[datetime | None] = mapped_column(nullable=True)
    completed_at: Mapped[datetime | None] = mapped_column(nullable=True)

    __table_args__ = (
        Index(
            "ix_ai_tasks_dequeue",
            "api_key_hash",
            "status",
            "priority",
            "created_at",
        ),
    )

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "task_type": self.task_type,
            "status": self.status,
            "api_key_hash": self.api_key_hash,
            "priority": self.priority,
            "review_target_id": self.review_target_id,
            "review_space_id": self.review_space_id,
            "error_message": self.error_message,
            "created_at": self.created_at.isoformat(),
            "started_at": (
                self.started_at.isoformat() if self.started_at else None
            ),
        }


class AiTaskFile(Base):
    __tablename__ = "ai_task_files"

    id: Mapped[str] = mapped_column(
        String(36), primary_key=True, default=lambda: str(uuid.uuid4())
    )
    task_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey("ai_tasks.id", ondelete="CASCADE"),
        index=True,
    )
    file_name: Mapped[str] = mapped_column(String(500))
    file_size: Mapped[int] = mapped_column(Integer, default=0)
    mime_type: Mapped[str] = mapped_column(String(200))
    process_mode: Mapped[str] = mapped_column(
        String(20), default=ProcessMode.TEXT
    )
    # Text mode: path of the stored upload. Image mode: None.
    file_path: Mapped[str | None] = mapped_column(
        String(1000), nullable=True
    )
    converted_image_count: Mapped[int] = mapped_column(Integer, default=0)
    created_at: Mapped[datetime] = mapped_column(
        default=lambda: datetime.now(UTC),
        server_default=func.now(),
    )
