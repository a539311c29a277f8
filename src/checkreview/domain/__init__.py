"""Domain vocabulary — value objects, status machines and task payloads."""

from checkreview.domain.status import (
    AiTaskState,
    ReviewTargetState,
)

__all__ = [
    "AiTaskState",
    "ReviewTargetState",
]
