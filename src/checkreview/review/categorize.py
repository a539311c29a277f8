"""Checklist partitioning into independently reviewed categories."""

from __future__ import annotations

import logging
import math
from collections.abc import Sequence
from dataclasses import dataclass

from checkreview.constants import DEFAULT_MAX_CATEGORIES, UNCATEGORIZED_LABEL
from checkreview.domain.value_objects import ChecklistItemRef
from checkreview.errors import ReviewCancelledError
from checkreview.llm.client import EvaluationContext, LanguageModel
from checkreview.llm.schemas import CategoryOutput, parse_entries
from checkreview.prompts import (
    CATEGORIZE_SYSTEM_PROMPT,
    build_categorize_prompt,
)
from checkreview.queue.run_registry import CancellationToken

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ChecklistCategory:
    name: str
    items: list[ChecklistItemRef]


def split_checklist_equally(
    items: Sequence[ChecklistItemRef], max_items: int
) -> list[ChecklistCategory]:
    """Split into the fewest parts of at most ``max_items``, sizes balanced.

    Ten items with a max of four become 4 / 3 / 3, not 4 / 4 / 2.
    """
    if not items:
        return []
    max_items = max(1, max_items)
    parts = math.ceil(len(items) / max_items)
    base, remainder = divmod(len(items), parts)
    categories: list[ChecklistCategory] = []
    start = 0
    for i in range(parts):
        size = base + (1 if i < remainder else 0)
        categories.append(
            ChecklistCategory(
                name=f"Part {i + 1}", items=list(items[start : start + size])
            )
        )
        start += size
    return categories


async def partition_checklist(
    items: Sequence[ChecklistItemRef],
    max_items: int | None,
    model: LanguageModel,
    token: CancellationToken,
) -> list[ChecklistCategory]:
    """Group checklist items so each group holds at most ``max_items``.

    Unset, or at least the item count: one group. One or less: one
    item per group. Otherwise the model groups items by topic; on any
    model failure the list is split evenly instead.
    """
    if max_items is None or max_items >= len(items):
        return [ChecklistCategory(name="All", items=list(items))]
    if max_items <= 1:
        return [
            ChecklistCategory(name=item.content, items=[item])
            for item in items
        ]

    token.raise_if_cancelled()
    try:
        categories = await _categorize_with_model(items, max_items, model)
    except ReviewCancelledError:
        raise
    except Exception as exc:
        logger.warning(
            "event=categorize_failed items=%d error=%s fallback=equal_split",
            len(items),
            exc,
        )
        return split_checklist_equally(items, max_items)

    logger.info(
        "event=checklist_categorized items=%d categories=%d",
        len(items),
        len(categories),
    )
    return categories


async def _categorize_with_model(
    items: Sequence[ChecklistItemRef],
    max_items: int,
    model: LanguageModel,
) -> list[ChecklistCategory]:
    system_prompt = CATEGORIZE_SYSTEM_PROMPT.format(
        max_per_category=max_items, max_categories=DEFAULT_MAX_CATEGORIES
    )
    data = await model.evaluate(
        build_categorize_prompt(items),
        EvaluationContext(purpose="categorize", system_prompt=system_prompt),
    )
    outputs = parse_entries(data, "categories", CategoryOutput)

    assigned: set[int] = set()
    grouped: list[tuple[str, list[ChecklistItemRef]]] = []
    for output in outputs:
        members: list[ChecklistItemRef] = []
        for short_id in output.checklist_ids:
            idx = short_id - 1
            if 0 <= idx < len(items) and idx not in assigned:
                assigned.add(idx)
                members.append(items[idx])
        if members:
            grouped.append((output.name or UNCATEGORIZED_LABEL, members))

    leftover = [item for i, item in enumerate(items) if i not in assigned]
    if leftover:
        logger.debug("event=categorize_unassigned count=%d", len(leftover))
        grouped.append((UNCATEGORIZED_LABEL, leftover))

    categories: list[ChecklistCategory] = []
    for name, members in grouped:
        if len(members) <= max_items:
            categories.append(ChecklistCategory(name=name, items=members))
            continue
        for part in split_checklist_equally(members, max_items):
            categories.append(
                ChecklistCategory(
                    name=f"{name} ({part.name})", items=part.items
                )
            )
    return categories
