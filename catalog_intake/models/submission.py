"""SQLAlchemy models for suppliers, submissions, and the processing log."""

from __future__ import annotations

import uuid
from datetime import datetime
from enum import Enum as PyEnum
from typing import Any

from sqlalchemy import (
    JSON,
    Boolean,
    DateTime,
    Enum,
    Float,
    ForeignKey,
    Integer,
    String,
    Text,
    event,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from ..schemas.enums import (
    ContentType,
    ProcessingStatus,
    StageName,
    StageStatus,
    ValidationStatus,
)
from .base import Base, utcnow


def _new_id() -> str:
    return str(uuid.uuid4())


def enum_column(enum_cls: type[PyEnum]) -> Enum:
    """Store a closed enumeration by value, rejecting unknown members."""

    return Enum(
        enum_cls,
        values_callable=lambda members: [member.value for member in members],
        native_enum=False,
        validate_strings=True,
        length=32,
    )


class Supplier(Base):
    """Registered source of submissions."""

    __tablename__ = "suppliers"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
    contact_id: Mapped[str] = mapped_column(String(64), nullable=False, unique=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    preferred_categories: Mapped[list[str]] = mapped_column(JSON, nullable=False, default=list)
    performance_metrics: Mapped[dict[str, Any] | None] = mapped_column(JSON, nullable=True)
    metrics_computed_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, nullable=False
    )

    submissions: Mapped[list[Submission]] = relationship(back_populates="supplier")

    def __repr__(self) -> str:
        return f"<Supplier id={self.id} contact={self.contact_id} active={self.is_active}>"


class Submission(Base):
    """One inbound supplier message tracked through extraction and review."""

    __tablename__ = "submissions"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
    external_message_id: Mapped[str] = mapped_column(String(255), nullable=False, unique=True)
    group_id: Mapped[str] = mapped_column(String(255), nullable=False, index=True)
    supplier_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("suppliers.id"), nullable=False, index=True
    )
    template_id: Mapped[str | None] = mapped_column(String(64), nullable=True, index=True)
    content_type: Mapped[ContentType] = mapped_column(enum_column(ContentType), nullable=False)
    raw_content: Mapped[str] = mapped_column(Text, nullable=False, default="")
    media_locator: Mapped[str | None] = mapped_column(String(1024), nullable=True)

    processing_status: Mapped[ProcessingStatus] = mapped_column(
        enum_column(ProcessingStatus),
        nullable=False,
        default=ProcessingStatus.PENDING,
        index=True,
    )
    attempt_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    last_error: Mapped[str | None] = mapped_column(Text, nullable=True)
    last_attempt_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    extracted_data: Mapped[dict[str, Any] | None] = mapped_column(JSON, nullable=True)
    extraction_confidence: Mapped[float | None] = mapped_column(Float, nullable=True)
    field_errors: Mapped[list[dict[str, Any]]] = mapped_column(JSON, nullable=False, default=list)

    validation_status: Mapped[ValidationStatus] = mapped_column(
        enum_column(ValidationStatus),
        nullable=False,
        default=ValidationStatus.PENDING,
        index=True,
    )
    validated_by: Mapped[str | None] = mapped_column(String(255), nullable=True)
    validation_notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    validated_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    product_reference: Mapped[str | None] = mapped_column(String(255), nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, nullable=False, index=True
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, onupdate=utcnow, nullable=False
    )

    supplier: Mapped[Supplier] = relationship(back_populates="submissions")

    def __repr__(self) -> str:
        return (
            f"<Submission id={self.id} external={self.external_message_id} "
            f"processing={self.processing_status.value} validation={self.validation_status.value}>"
        )


class ProcessingLogEntry(Base):
    """Append-only record of one stage execution attempt."""

    __tablename__ = "processing_log_entries"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    submission_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("submissions.id"), nullable=False, index=True
    )
    stage: Mapped[StageName] = mapped_column(enum_column(StageName), nullable=False, index=True)
    status: Mapped[StageStatus] = mapped_column(enum_column(StageStatus), nullable=False)
    duration_ms: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    error_message: Mapped[str | None] = mapped_column(Text, nullable=True)
    stage_metadata: Mapped[dict[str, Any] | None] = mapped_column(JSON, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, nullable=False
    )

    def __repr__(self) -> str:
        return (
            f"<ProcessingLogEntry id={self.id} submission={self.submission_id} "
            f"stage={self.stage.value} status={self.status.value}>"
        )


class ImmutableRecordError(RuntimeError):
    """Raised when code attempts to modify an append-only record."""


def reject_mutation(mapper: Any, connection: Any, target: Any) -> None:
    """Mapper hook rejecting updates and deletes of append-only rows."""

    raise ImmutableRecordError(f"{type(target).__name__} rows are append-only")


event.listen(ProcessingLogEntry, "before_update", reject_mutation)
event.listen(ProcessingLogEntry, "before_delete", reject_mutation)
