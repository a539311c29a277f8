"""Status value objects that own their transition rules.

Transitions are checked here, not by callers, so no service can move
a row into a state the lifecycle does not allow.
"""

from __future__ import annotations

from dataclasses import dataclass

from checkreview.constants import AiTaskStatus, ReviewTargetStatus
from checkreview.errors import DomainValidationError, ErrorCode

_S = ReviewTargetStatus

_REVIEW_TARGET_TRANSITIONS: dict[
    ReviewTargetStatus, frozenset[ReviewTargetStatus]
] = {
    _S.PENDING: frozenset({_S.QUEUED, _S.REVIEWING, _S.ERROR}),
    _S.QUEUED: frozenset({_S.REVIEWING, _S.ERROR}),
    _S.REVIEWING: frozenset({_S.COMPLETED, _S.ERROR}),
    _S.COMPLETED: frozenset({_S.QUEUED}),
    _S.ERROR: frozenset({_S.QUEUED}),
}

_RETRYABLE = frozenset({_S.COMPLETED, _S.ERROR})


@dataclass(frozen=True)
class ReviewTargetState:
    """Immutable review target status with guarded transitions.

    pending → queued | reviewing
    queued → reviewing
    reviewing → completed
    pending | queued | reviewing → error
    completed | error → queued (retry only)
    """

    value: ReviewTargetStatus

    @classmethod
    def create(cls) -> ReviewTargetState:
        return cls(ReviewTargetStatus.PENDING)

    @classmethod
    def reconstruct(cls, raw: str) -> ReviewTargetState:
        try:
            return cls(ReviewTargetStatus(raw))
        except ValueError as exc:
            raise DomainValidationError(
                ErrorCode.REVIEW_TARGET_STATUS_INVALID, raw
            ) from exc

    def can_transition_to(self, new: ReviewTargetStatus) -> bool:
        return new in _REVIEW_TARGET_TRANSITIONS[self.value]

    def transition_to(self, new: ReviewTargetStatus) -> ReviewTargetState:
        if not self.can_transition_to(new):
            raise DomainValidationError(
                ErrorCode.REVIEW_TARGET_STATUS_INVALID_TRANSITION,
                f"{self.value} -> {new}",
            )
        return ReviewTargetState(new)

    def can_retry(self) -> bool:
        return self.value in _RETRYABLE

    def to_queued(self) -> ReviewTargetState:
        return self.transition_to(_S.QUEUED)

    def to_reviewing(self) -> ReviewTargetState:
        return self.transition_to(_S.REVIEWING)

    def to_completed(self) -> ReviewTargetState:
        return self.transition_to(_S.COMPLETED)

    def to_error(self) -> ReviewTargetState:
        return self.transition_to(_S.ERROR)

    def prepare_for_retry(self) -> ReviewTargetState:
        """Retry entry point. Only completed or errored targets qualify."""
        if not self.can_retry():
            raise DomainValidationError(
                ErrorCode.RETRY_NOT_AVAILABLE, f"status={self.value}"
            )
        return self.to_queued()

    def __str__(self) -> str:
        return self.value


_T = AiTaskStatus

_AI_TASK_TRANSITIONS: dict[AiTaskStatus, frozenset[AiTaskStatus]] = {
    _T.QUEUED: frozenset({_T.PROCESSING}),
    _T.PROCESSING: frozenset({_T.COMPLETED, _T.FAILED}),
    _T.COMPLETED: frozenset(),
    _T.FAILED: frozenset(),
}


@dataclass(frozen=True)
class AiTaskState:
    """Queue row status. Terminal states are validated, never stored."""

    value: AiTaskStatus

    @classmethod
    def reconstruct(cls, raw: str) -> AiTaskState:
        try:
            return cls(AiTaskStatus(raw))
        except ValueError as exc:
            raise DomainValidationError(
                ErrorCode.AI_TASK_STATUS_INVALID_TRANSITION, raw
            ) from exc

    def transition_to(self, new: AiTaskStatus) -> AiTaskState:
        if new not in _AI_TASK_TRANSITIONS[self.value]:
            raise DomainValidationError(
                ErrorCode.AI_TASK_STATUS_INVALID_TRANSITION,
                f"{self.value} -> {new}",
            )
        return AiTaskState(new)

    def start_processing(self) -> AiTaskState:
        return self.transition_to(_T.PROCESSING)

    def complete(self) -> AiTaskState:
        return self.transition_to(_T.COMPLETED)

    def fail(self) -> AiTaskState:
        return self.transition_to(_T.FAILED)
