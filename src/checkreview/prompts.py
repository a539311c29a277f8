"""LLM system prompts and prompt builders for review and generation.

Every prompt asks for a single JSON object; the parsers in
``checkreview.llm.schemas`` expect the keys named here.
"""

from __future__ import annotations

from collections.abc import Sequence

from checkreview.domain.value_objects import ChecklistItemRef, ReviewSettings

# ── Checklist categorization ──────────────────────────────────────

CATEGORIZE_SYSTEM_PROMPT = """\
You group checklist items into semantically coherent categories so that \
related items are reviewed together.

Rules:
- Every item id appears in exactly one category.
- No category holds more than {max_per_category} items.
- Use at most {max_categories} categories.
- Balance category sizes where the meaning allows it.

Return JSON: {{"categories": [{{"name": str, "checklist_ids": [int]}}]}}"""


def build_categorize_prompt(items: Sequence[ChecklistItemRef]) -> str:
    lines = [f"ID: {i} - {item.content}" for i, item in enumerate(items, 1)]
    return "Checklist items:\n" + "\n".join(lines)


# ── Small review (single pass) ────────────────────────────────────

REVIEW_SYSTEM_PROMPT = """\
You are a meticulous document reviewer. Evaluate the attached documents \
against each checklist item and justify every verdict with concrete \
references to the documents.

Return JSON: {"results": [{"checklist_id": int, "comment": str, \
"evaluation": str}]} with one entry per checklist item."""


def _settings_block(settings: ReviewSettings, labels: Sequence[str]) -> str:
    lines = ["## Evaluation labels"]
    if settings.evaluation_criteria:
        lines += [
            f"- {c.label}: {c.description}"
            for c in settings.evaluation_criteria
        ]
    else:
        lines.append(", ".join(labels))
    if settings.comment_format:
        lines += ["", "## Comment format", settings.comment_format]
    if settings.additional_instructions:
        lines += [
            "",
            "## Additional instructions",
            settings.additional_instructions,
        ]
    return "\n".join(lines)


def _checklist_block(items: Sequence[ChecklistItemRef]) -> str:
    return "\n".join(
        f"- ID: {i} - {item.content}" for i, item in enumerate(items, 1)
    )


def build_review_prompt(
    items: Sequence[ChecklistItemRef],
    settings: ReviewSettings,
    labels: Sequence[str],
) -> str:
    return (
        f"{_settings_block(settings, labels)}\n\n"
        "## Checklist items to review\n"
        f"{_checklist_block(items)}\n\n"
        "Review the documents against every checklist item above. "
        f"The evaluation must be one of: {', '.join(labels)}."
    )


# ── Large review: per-document pass ───────────────────────────────

INDIVIDUAL_REVIEW_SYSTEM_PROMPT = """\
You review ONE document (or one part of a document) out of a larger set. \
For each checklist item, record what this document says that is relevant, \
including when it says nothing. Do not give a verdict; a later step \
consolidates findings across all documents.

Return JSON: {"results": [{"checklist_id": int, "comment": str}]}"""


def build_individual_review_prompt(
    items: Sequence[ChecklistItemRef],
    settings: ReviewSettings,
    document_name: str,
) -> str:
    extra = (
        f"\n\n## Additional instructions\n{settings.additional_instructions}"
        if settings.additional_instructions
        else ""
    )
    return (
        f"Document under review: {document_name}\n\n"
        "## Checklist items\n"
        f"{_checklist_block(items)}{extra}"
    )


# ── Large review: consolidation ───────────────────────────────────

CONSOLIDATE_SYSTEM_PROMPT = """\
You consolidate per-document review findings into one verdict per \
checklist item. For each item first decide whether it is a requirement \
that EACH document must satisfy on its own, or one the document SET must \
satisfy together, and score accordingly. Reason over every finding; do \
not ignore documents that reported nothing.

Return JSON: {"results": [{"checklist_id": int, "comment": str, \
"evaluation": str}]}"""


def build_consolidate_prompt(
    items: Sequence[ChecklistItemRef],
    findings: dict[str, list[tuple[str, str]]],
    settings: ReviewSettings,
    labels: Sequence[str],
) -> str:
    """``findings`` maps item content to (document name, comment) pairs."""
    sections: list[str] = []
    for i, item in enumerate(items, 1):
        lines = [f"### ID: {i} - {item.content}"]
        lines += [
            f"- [{doc_name}] {comment}"
            for doc_name, comment in findings.get(item.content, [])
        ]
        sections.append("\n".join(lines))
    return (
        f"{_settings_block(settings, labels)}\n\n"
        "## Findings per checklist item\n\n"
        + "\n\n".join(sections)
        + f"\n\nThe evaluation must be one of: {', '.join(labels)}."
    )


# ── Checklist generation ──────────────────────────────────────────

TOPIC_EXTRACTION_SYSTEM_PROMPT = """\
You read reference documents and list the distinct topics a reviewer \
should build checklist items for.

Return JSON: {"topics": [{"title": str, "reason": str}]}"""

TOPIC_CHECKLIST_SYSTEM_PROMPT = """\
You write concrete, verifiable checklist items for a single topic, \
grounded in the attached documents.

Return JSON: {"checklist_items": [str]}"""

CHECKLIST_REFINEMENT_SYSTEM_PROMPT = """\
You merge checklist items drafted per topic into one clean list: remove \
duplicates and near-duplicates, make each item self-contained, and keep \
the wording precise.

Return JSON: {"checklist_items": [str]}"""


def build_topic_extraction_prompt(requirements: str) -> str:
    if not requirements:
        return "Extract the review topics from the documents."
    return (
        "Extract the review topics from the documents.\n\n"
        f"## Requirements\n{requirements}"
    )


def build_topic_checklist_prompt(
    title: str, reason: str, requirements: str
) -> str:
    prompt = f"## Topic\n{title}\n\n{reason}".rstrip()
    if requirements:
        prompt += f"\n\n## Requirements\n{requirements}"
    return prompt


def build_refinement_prompt(items: Sequence[str], requirements: str) -> str:
    prompt = "## Draft checklist items\n" + "\n".join(f"- {i}" for i in items)
    if requirements:
        prompt += f"\n\n## Requirements\n{requirements}"
    return prompt
