"""Frozen, identity-less domain types shared across all layers.

Checklist items travel by value (id + content snapshot), never as a
live reference, so a finished or retried review is unaffected by later
checklist edits.
"""

from __future__ import annotations

import hashlib

from pydantic import BaseModel, ConfigDict, Field

from checkreview.constants import DEFAULT_EVALUATION_LABELS, ProcessMode


class ChecklistItemRef(BaseModel):
    """A checklist item snapshot as submitted with a run."""

    model_config = ConfigDict(frozen=True)

    id: str
    content: str


class EvaluationCriterion(BaseModel):
    """One allowed evaluation label and what it means."""

    model_config = ConfigDict(frozen=True)

    label: str
    description: str = ""


class ReviewSettings(BaseModel):
    """Per-target review knobs. All fields optional."""

    model_config = ConfigDict(frozen=True)

    additional_instructions: str | None = None
    # Max checklist items reviewed together in one category
    concurrent_review_items: int | None = None
    comment_format: str | None = None
    evaluation_criteria: list[EvaluationCriterion] = Field(
        default_factory=lambda: list[EvaluationCriterion]()
    )

    def evaluation_labels(self) -> list[str]:
        if self.evaluation_criteria:
            return [c.label for c in self.evaluation_criteria]
        return list(DEFAULT_EVALUATION_LABELS)

    def merged_with(self, override: ReviewSettings | None) -> ReviewSettings:
        """Overlay explicitly set fields of ``override`` onto self."""
        if override is None:
            return self
        merged = self.model_dump()
        merged.update(override.model_dump(exclude_unset=True))
        return ReviewSettings.model_validate(merged)


class AiApiConfig(BaseModel):
    """Credential and endpoint for language-model calls."""

    model_config = ConfigDict(frozen=True)

    api_key: str
    api_url: str | None = None
    model: str | None = None

    @property
    def api_key_hash(self) -> str:
        return compute_api_key_hash(self.api_key)


class FileMeta(BaseModel):
    """Uploaded file description carried in a task payload."""

    model_config = ConfigDict(frozen=True)

    id: str
    name: str
    size: int = 0
    mime_type: str = "application/octet-stream"
    process_mode: ProcessMode = ProcessMode.TEXT
    converted_image_count: int = 0


def compute_api_key_hash(api_key: str) -> str:
    """Derive the queue partition key. The raw credential is never stored."""
    return hashlib.sha256(api_key.encode("utf-8")).hexdigest()
