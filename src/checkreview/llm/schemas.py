"""Pydantic models for structured model output.

Entries are validated one by one: a malformed entry is dropped and
logged, the rest of the response is kept. Dropped entries surface as
missing items and are re-asked by the caller.
"""

from __future__ import annotations

import logging
from typing import Any, cast

from pydantic import BaseModel, Field, ValidationError

logger = logging.getLogger(__name__)


class CategoryOutput(BaseModel):
    name: str = ""
    checklist_ids: list[int] = Field(default_factory=lambda: list[int]())


class ReviewItemOutput(BaseModel):
    """Verdict for one checklist item, addressed by its 1-based number."""

    checklist_id: int
    comment: str
    evaluation: str


class IndividualReviewItemOutput(BaseModel):
    """Per-document finding. No evaluation at this stage."""

    checklist_id: int
    comment: str


class TopicOutput(BaseModel):
    title: str
    reason: str = ""


def parse_entries[TModel: BaseModel](
    data: dict[str, Any], key: str, model: type[TModel]
) -> list[TModel]:
    """Validate ``data[key]`` as a list of ``model`` entries."""
    raw = data.get(key, [])
    if not isinstance(raw, list):
        logger.warning("event=output_not_list key=%s", key)
        return []
    entries: list[TModel] = []
    for item in cast(list[Any], raw):
        try:
            entries.append(model.model_validate(item))
        except ValidationError:
            logger.warning(
                "event=output_entry_invalid key=%s model=%s",
                key,
                model.__name__,
            )
    return entries


def parse_strings(data: dict[str, Any], key: str) -> list[str]:
    raw = data.get(key, [])
    if not isinstance(raw, list):
        return []
    return [
        str(item).strip()
        for item in cast(list[Any], raw)
        if isinstance(item, str) and item.strip()
    ]
