"""Tests for frozen domain value objects."""

from __future__ import annotations

import hashlib

import pytest
from pydantic import ValidationError

from checkreview.domain.value_objects import (
    AiApiConfig,
    ChecklistItemRef,
    EvaluationCriterion,
    ReviewSettings,
    compute_api_key_hash,
)


def test_api_key_hash_is_sha256_hex() -> None:
    expected = hashlib.sha256(b"sk-abc").hexdigest()
    assert compute_api_key_hash("sk-abc") == expected
    assert AiApiConfig(api_key="sk-abc").api_key_hash == expected


def test_distinct_keys_distinct_hashes() -> None:
    assert compute_api_key_hash("a") != compute_api_key_hash("b")


def test_checklist_item_ref_is_frozen() -> None:
    ref = ChecklistItemRef(id="c1", content="budget")
    with pytest.raises(ValidationError):
        ref.content = "changed"  # type: ignore[misc]


class TestReviewSettings:
    def test_default_labels(self) -> None:
        assert ReviewSettings().evaluation_labels() == ["A", "B", "C", "-"]

    def test_custom_labels(self) -> None:
        s = ReviewSettings(
            evaluation_criteria=[
                EvaluationCriterion(label="PASS"),
                EvaluationCriterion(label="FAIL", description="missing"),
            ]
        )
        assert s.evaluation_labels() == ["PASS", "FAIL"]

    def test_merged_with_none_returns_self(self) -> None:
        s = ReviewSettings(additional_instructions="be strict")
        assert s.merged_with(None) is s

    def test_merged_with_overrides_only_set_fields(self) -> None:
        base = ReviewSettings(
            additional_instructions="be strict", concurrent_review_items=4
        )
        merged = base.merged_with(ReviewSettings(concurrent_review_items=2))
        assert merged.additional_instructions == "be strict"
        assert merged.concurrent_review_items == 2

    def test_merged_with_replaces_criteria(self) -> None:
        base = ReviewSettings(
            evaluation_criteria=[EvaluationCriterion(label="A")]
        )
        merged = base.merged_with(
            ReviewSettings(
                evaluation_criteria=[EvaluationCriterion(label="OK")]
            )
        )
        assert merged.evaluation_labels() == ["OK"]
