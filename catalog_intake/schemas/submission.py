"""Pydantic schemas for submissions, extraction output, and the processing log."""

from __future__ import annotations

from datetime import datetime
from typing import Any

from pydantic import BaseModel, Field, field_validator

from .enums import (
    ContentType,
    FeedbackCategory,
    FeedbackSeverity,
    ProcessingStatus,
    StageName,
    StageStatus,
    ValidationStatus,
)


class FieldError(BaseModel):
    """Per-field problem reported by the extraction capability."""

    field: str = Field(..., description="Name of the offending field")
    message: str = Field("", description="Human-readable error description")
    code: str | None = Field(None, description="Optional machine-readable error code")


class ExtractionResult(BaseModel):
    """Normalized structure returned by the extraction boundary."""

    data: dict[str, Any] = Field(default_factory=dict, description="Extracted product fields")
    confidence: float | None = Field(
        None, description="Extractor-reported confidence, 0..100 or a 0..1 fraction"
    )
    field_errors: list[FieldError] = Field(default_factory=list)


class IngestRequest(BaseModel):
    """Inbound message delivered by the messaging boundary."""

    external_message_id: str = Field(..., min_length=1, max_length=255)
    supplier_id: str = Field(..., min_length=1)
    content_type: ContentType
    raw_content: str = ""
    media_locator: str | None = None
    template_id: str | None = None
    source_message_id: str | None = Field(
        None, description="Identifier shared by every product split out of one source message"
    )


class IngestResponse(BaseModel):
    """Identifiers returned once a message is stored."""

    submission_id: str
    group_id: str
    template_id: str | None = None
    processing_status: ProcessingStatus
    validation_status: ValidationStatus

    @classmethod
    def from_submission(cls, submission: Any) -> IngestResponse:
        return cls(
            submission_id=submission.id,
            group_id=submission.group_id,
            template_id=submission.template_id,
            processing_status=submission.processing_status,
            validation_status=submission.validation_status,
        )


class ProcessingLogView(BaseModel):
    """Read-only view of one processing log entry."""

    id: int
    stage: StageName
    status: StageStatus
    duration_ms: int
    error_message: str | None = None
    metadata: dict[str, Any] | None = None
    created_at: datetime

    @classmethod
    def from_entry(cls, entry: Any) -> ProcessingLogView:
        return cls(
            id=entry.id,
            stage=entry.stage,
            status=entry.status,
            duration_ms=entry.duration_ms,
            error_message=entry.error_message,
            metadata=entry.stage_metadata,
            created_at=entry.created_at,
        )


class FeedbackView(BaseModel):
    """Stored rejection feedback."""

    category: FeedbackCategory
    subcategory: str | None = None
    note: str | None = None
    fields: list[str] = Field(default_factory=list)
    severity: FeedbackSeverity
    suggested_improvement: str | None = None
    created_by: str | None = None
    created_at: datetime

    @classmethod
    def from_record(cls, record: Any) -> FeedbackView:
        return cls(
            category=record.category,
            subcategory=record.subcategory,
            note=record.note,
            fields=list(record.fields or []),
            severity=record.severity,
            suggested_improvement=record.suggested_improvement,
            created_by=record.created_by,
            created_at=record.created_at,
        )


class SubmissionDetail(BaseModel):
    """Full operator view of a submission."""

    id: str
    external_message_id: str
    group_id: str
    supplier_id: str
    template_id: str | None = None
    content_type: ContentType
    raw_content: str
    media_locator: str | None = None
    processing_status: ProcessingStatus
    validation_status: ValidationStatus
    attempt_count: int
    extracted_data: dict[str, Any] | None = None
    extraction_confidence: float | None = None
    field_errors: list[FieldError] = Field(default_factory=list)
    validated_by: str | None = None
    validation_notes: str | None = None
    validated_at: datetime | None = None
    product_reference: str | None = None
    latest_error: str | None = None
    sibling_ids: list[str] = Field(default_factory=list)
    processing_log: list[ProcessingLogView] = Field(default_factory=list)
    feedback: FeedbackView | None = None
    created_at: datetime
    updated_at: datetime

    @field_validator("field_errors", mode="before")
    @classmethod
    def _coerce_field_errors(cls, value: Any) -> Any:
        return value or []
