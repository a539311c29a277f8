"""ReviewResult ORM model — one verdict per checklist item per run.

``checklist_item_content`` is a text snapshot, not a foreign key, so
later checklist edits never rewrite history.
"""

import uuid
from datetime import UTC, datetime
from typing import Any

from sqlalchemy import ForeignKey, String, Text, func
from sqlalchemy.orm import Mapped, mapped_column

from checkreview.models.base import Base


class ReviewResult(Base):
    __tablename__ = "review_results"

    id: Mapped[str] = mapped_column(
        String(36), primary_key=True, default=lambda: str(uuid.uuid4())
    )
    review_target_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey("review_targets.id", ondelete="CASCADE"),
        index=True,
    )
    checklist_item_content: Mapped[str] = mapped_column(Text)
    evaluation: Mapped[str | None] = mapped_column(String(50), nullable=True)
    comment: Mapped[str | None] = mapped_column(Text, nullable=True)
    error_message: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        default=lambda: datetime.now(UTC),
        server_default=func.now(),
    )

    @property
    def failed(self) -> bool:
        return self.error_message is not None

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "review_target_id": self.review_target_id,
            "checklist_item_content": self.checklist_item_content,
            "evaluation": self.evaluation,
            "comment": self.comment,
            "error_message": self.error_message,
            "created_at": self.created_at.isoformat(),
        }
