"""Pydantic schemas for the validation queue and review decisions."""

from __future__ import annotations

from datetime import datetime
from typing import Any

from pydantic import BaseModel, Field, model_validator

from .enums import ContentType, FeedbackCategory, FeedbackSeverity, PriorityTier

MAX_PAGE_LIMIT = 100


class QueueFilters(BaseModel):
    """Filters accepted by the validation queue listing."""

    supplier_id: str | None = None
    content_type: ContentType | None = None
    priority: PriorityTier | None = None
    category: str | None = None
    min_confidence: float | None = Field(None, ge=0, le=100)
    max_confidence: float | None = Field(None, ge=0, le=100)
    page: int = Field(1, ge=1)
    limit: int = Field(20, ge=1, le=MAX_PAGE_LIMIT)

    @model_validator(mode="after")
    def _check_confidence_range(self) -> QueueFilters:
        if (
            self.min_confidence is not None
            and self.max_confidence is not None
            and self.min_confidence > self.max_confidence
        ):
            raise ValueError("min_confidence must not exceed max_confidence")
        return self


class SuggestedAction(BaseModel):
    """Hint shown to the reviewer next to a queue item."""

    action: str = Field(..., description="approve, review_field, check_category, review_group")
    reason: str
    field: str | None = None


class ValidationQueueItem(BaseModel):
    """Completed submission awaiting review, decorated for ranking."""

    submission_id: str
    supplier_id: str
    template_id: str | None = None
    content_type: ContentType
    group_id: str
    sibling_ids: list[str] = Field(default_factory=list)
    extracted_data: dict[str, Any] = Field(default_factory=dict)
    category: str | None = None
    confidence: float = Field(..., ge=0, le=100)
    priority: PriorityTier
    age_hours: float
    suggested_actions: list[SuggestedAction] = Field(default_factory=list)
    created_at: datetime


class QueuePage(BaseModel):
    """One page of the validation queue."""

    items: list[ValidationQueueItem] = Field(default_factory=list)
    total: int
    page: int
    limit: int
    pages: int
    truncated: bool = Field(
        False, description="True when the scan cap was reached before all candidates were read"
    )


class FeedbackPayload(BaseModel):
    """Structured rejection reason submitted by a reviewer."""

    category: FeedbackCategory
    subcategory: str | None = None
    note: str | None = Field(None, max_length=1000)
    fields: list[str] = Field(default_factory=list)
    severity: FeedbackSeverity = FeedbackSeverity.MEDIUM
    suggested_improvement: str | None = Field(None, max_length=500)


class ApproveRequest(BaseModel):
    edits: dict[str, Any] | None = None
    notes: str | None = None
    reviewer: str | None = None


class RejectRequest(BaseModel):
    feedback: dict[str, Any]
    notes: str | None = None
    reviewer: str | None = None


class BulkApproveRequest(BaseModel):
    submission_ids: list[str] = Field(..., min_length=1)
    notes: str | None = None
    reviewer: str | None = None


class BulkRejectRequest(BaseModel):
    submission_ids: list[str] = Field(..., min_length=1)
    feedback: dict[str, Any]
    notes: str | None = None
    reviewer: str | None = None


class ApprovalResult(BaseModel):
    """Outcome of a committed approval."""

    submission_id: str
    product_reference: str
    committed_data: dict[str, Any]
    validated_by: str | None = None
    validated_at: datetime


class BulkFailure(BaseModel):
    id: str
    error: str


class BulkResult(BaseModel):
    """Per-id outcome of a bulk decision."""

    successful: list[str] = Field(default_factory=list)
    failed: list[BulkFailure] = Field(default_factory=list)
    total_processed: int = 0


class FeedbackCategoryInfo(BaseModel):
    """Feedback taxonomy entry exposed to review tooling."""

    id: FeedbackCategory
    name: str
    description: str
    subcategories: list[str]
