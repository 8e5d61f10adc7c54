"""Tests for the rejection feedback taxonomy."""

from __future__ import annotations

import pytest

from catalog_intake.exceptions import MalformedFeedbackError
from catalog_intake.review.taxonomy import (
    TEMPLATE_CATEGORIES,
    feedback_categories,
    subcategories_for,
    validate_feedback,
)
from catalog_intake.schemas.enums import FeedbackCategory, FeedbackSeverity
from catalog_intake.schemas.validation import FeedbackPayload


def test_every_category_is_listed_once() -> None:
    listed = [entry.id for entry in feedback_categories()]

    assert sorted(listed) == sorted(FeedbackCategory)
    assert len(listed) == len(set(listed))
    assert all(entry.subcategories for entry in feedback_categories())


def test_template_categories_are_a_subset() -> None:
    assert FeedbackCategory.MISSING_FIELD in TEMPLATE_CATEGORIES
    assert FeedbackCategory.DUPLICATE_PRODUCT not in TEMPLATE_CATEGORIES
    assert TEMPLATE_CATEGORIES <= set(FeedbackCategory)


def test_valid_feedback_is_normalized() -> None:
    payload = validate_feedback(
        {
            "category": "invalid_format",
            "subcategory": "PRICE_FORMAT",
            "fields": [" price "],
            "severity": "high",
        }
    )

    assert payload.category is FeedbackCategory.INVALID_FORMAT
    assert payload.subcategory == "price_format"
    assert payload.fields == ["price"]
    assert payload.severity is FeedbackSeverity.HIGH


def test_payload_objects_are_accepted() -> None:
    payload = FeedbackPayload(category=FeedbackCategory.POOR_QUALITY, note="blurry")

    assert validate_feedback(payload).severity is FeedbackSeverity.MEDIUM


def test_subcategory_must_belong_to_category() -> None:
    assert "blurry_image" in subcategories_for(FeedbackCategory.POOR_QUALITY)

    with pytest.raises(MalformedFeedbackError, match="Unknown subcategory"):
        validate_feedback({"category": "missing_field", "subcategory": "blurry_image"})


def test_missing_field_requires_a_field() -> None:
    with pytest.raises(MalformedFeedbackError, match="at least one field"):
        validate_feedback({"category": "missing_field", "fields": []})


@pytest.mark.parametrize(
    "feedback",
    [
        "missing_field",
        {"category": "made_up"},
        {"category": "poor_quality", "severity": "critical"},
        {"category": "poor_quality", "note": "x" * 1001},
    ],
)
def test_malformed_feedback(feedback: object) -> None:
    with pytest.raises(MalformedFeedbackError):
        validate_feedback(feedback)  # type: ignore[arg-type]
