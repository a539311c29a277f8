"""ReviewTarget ORM model — one document set under review."""

import uuid
from datetime import UTC, datetime
from typing import Any

from sqlalchemy import JSON, ForeignKey, String, func
from sqlalchemy.orm import Mapped, mapped_column

from checkreview.constants import ReviewTargetStatus
from checkreview.domain.status import ReviewTargetState
from checkreview.domain.value_objects import ReviewSettings
from checkreview.models.base import Base


class ReviewTarget(Base):
    __tablename__ = "review_targets"

    id: Mapped[str] = mapped_column(
        String(36), primary_key=True, default=lambda: str(uuid.uuid4())
    )
    review_space_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey("review_spaces.id", ondelete="CASCADE"),
        index=True,
    )
    name: Mapped[str] = mapped_column(String(300))
    status: Mapped[str] = mapped_column(
        String(20), default=ReviewTargetStatus.PENDING
    )
    review_settings: Mapped[dict[str, Any] | None] = mapped_column(
        JSON, nullable=True
    )
    review_type: Mapped[str | None] = mapped_column(String(20), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        default=lambda: datetime.now(UTC),
        server_default=func.now(),
    )
    updated_at: Mapped[datetime] = mapped_column(
        default=lambda: datetime.now(UTC),
        server_default=func.now(),
        onupdate=lambda: datetime.now(UTC),
    )

    @property
    def state(self) -> ReviewTargetState:
        return ReviewTargetState.reconstruct(self.status)

    def transition_to(self, new: ReviewTargetStatus) -> None:
        """Apply a guarded status change in place."""
        self.status = self.state.transition_to(new).value

    @property
    def settings(self) -> ReviewSettings:
        return ReviewSettings.model_validate(self.review_settings or {})

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "review_space_id": self.review_space_id,
            "name": self.name,
            "status": self.status,
            "review_settings": self.review_settings,
            "review_type": self.review_type,
            "created_at": self.created_at.isoformat(),
            "updated_at": self.updated_at.isoformat(),
        }
