"""Fixed rejection feedback taxonomy."""

from __future__ import annotations

from collections.abc import Mapping
from typing import Any

from pydantic import ValidationError as PydanticValidationError

from ..exceptions import MalformedFeedbackError
from ..schemas.enums import FeedbackCategory
from ..schemas.validation import FeedbackCategoryInfo, FeedbackPayload

_TAXONOMY: dict[FeedbackCategory, tuple[str, str, tuple[str, ...]]] = {
    FeedbackCategory.MISSING_FIELD: (
        "Missing Field",
        "A field the product needs was not extracted",
        ("required_field", "specification", "pricing", "stock"),
    ),
    FeedbackCategory.INVALID_FORMAT: (
        "Invalid Format",
        "A value was extracted in the wrong format",
        ("price_format", "date_format", "unit_format", "number_format"),
    ),
    FeedbackCategory.OUT_OF_RANGE: (
        "Out of Range",
        "A value falls outside the accepted bounds",
        ("price_range", "quantity_range", "dimension_range"),
    ),
    FeedbackCategory.INCORRECT_VALUE: (
        "Incorrect Value",
        "The extractor read the wrong value",
        ("incorrect_product_name", "wrong_price", "wrong_brand", "missing_specifications"),
    ),
    FeedbackCategory.WRONG_CATEGORY: (
        "Wrong Category",
        "The product was assigned to the wrong catalog category",
        ("incorrect_category", "ambiguous_category"),
    ),
    FeedbackCategory.EXTRANEOUS_FIELD: (
        "Extraneous Field",
        "A field was extracted that does not belong to the product",
        ("unexpected_field", "duplicated_field"),
    ),
    FeedbackCategory.POOR_QUALITY: (
        "Poor Quality Content",
        "Original content quality issues",
        ("blurry_image", "incomplete_information", "unclear_text", "corrupted_file"),
    ),
    FeedbackCategory.DUPLICATE_PRODUCT: (
        "Duplicate Product",
        "Product already exists in system",
        ("exact_duplicate", "similar_product", "variant_exists"),
    ),
    FeedbackCategory.INVALID_CONTENT: (
        "Invalid Content",
        "Content does not contain valid product information",
        ("not_a_product", "spam_content", "test_message", "personal_message"),
    ),
    FeedbackCategory.POLICY_VIOLATION: (
        "Policy Violation",
        "Content violates platform policies",
        ("prohibited_item", "inappropriate_content", "copyright_violation"),
    ),
}

# Problems with the extraction template rather than with the supplier's content.
TEMPLATE_CATEGORIES: frozenset[FeedbackCategory] = frozenset(
    {
        FeedbackCategory.MISSING_FIELD,
        FeedbackCategory.INVALID_FORMAT,
        FeedbackCategory.OUT_OF_RANGE,
        FeedbackCategory.INCORRECT_VALUE,
        FeedbackCategory.WRONG_CATEGORY,
        FeedbackCategory.EXTRANEOUS_FIELD,
    }
)


def subcategories_for(category: FeedbackCategory) -> tuple[str, ...]:
    return _TAXONOMY[category][2]


def feedback_categories() -> list[FeedbackCategoryInfo]:
    """Return the taxonomy in display order for review tooling."""

    return [
        FeedbackCategoryInfo(
            id=category,
            name=name,
            description=description,
            subcategories=list(subcategories),
        )
        for category, (name, description, subcategories) in _TAXONOMY.items()
    ]


def validate_feedback(feedback: FeedbackPayload | Mapping[str, Any]) -> FeedbackPayload:
    """
    Validate reviewer feedback against the taxonomy.

    Raises:
        MalformedFeedbackError: If the category or subcategory is unknown or fields are invalid
    """
    if isinstance(feedback, FeedbackPayload):
        payload = feedback
    elif isinstance(feedback, Mapping):
        try:
            payload = FeedbackPayload.model_validate(dict(feedback))
        except PydanticValidationError as exc:
            raise MalformedFeedbackError(f"Invalid feedback: {exc}") from exc
    else:
        raise MalformedFeedbackError("Feedback must be a mapping with at least a category")

    if payload.subcategory is not None:
        subcategory = payload.subcategory.strip().lower()
        allowed = subcategories_for(payload.category)
        if subcategory not in allowed:
            raise MalformedFeedbackError(
                f"Unknown subcategory '{payload.subcategory}' for category "
                f"'{payload.category.value}'. Expected one of: {', '.join(allowed)}."
            )
        payload = payload.model_copy(update={"subcategory": subcategory})

    fields = [name.strip() for name in payload.fields if name and name.strip()]
    if len(fields) != len(payload.fields):
        raise MalformedFeedbackError("Feedback field references must be non-empty names")
    if payload.category is FeedbackCategory.MISSING_FIELD and not fields:
        raise MalformedFeedbackError("missing_field feedback must reference at least one field")

    return payload.model_copy(update={"fields": fields})
