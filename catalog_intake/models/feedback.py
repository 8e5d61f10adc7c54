"""SQLAlchemy model for structured rejection feedback."""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import JSON, DateTime, ForeignKey, Integer, String, Text, event
from sqlalchemy.orm import Mapped, mapped_column

from ..schemas.enums import FeedbackCategory, FeedbackSeverity
from .base import Base, utcnow
from .submission import enum_column, reject_mutation


class FeedbackRecord(Base):
    """Rejection reason attached to exactly one rejected submission."""

    __tablename__ = "feedback_records"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    submission_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("submissions.id"), nullable=False, unique=True
    )
    template_id: Mapped[str | None] = mapped_column(String(64), nullable=True, index=True)
    supplier_id: Mapped[str] = mapped_column(String(36), nullable=False, index=True)
    category: Mapped[FeedbackCategory] = mapped_column(
        enum_column(FeedbackCategory), nullable=False, index=True
    )
    subcategory: Mapped[str | None] = mapped_column(String(64), nullable=True)
    note: Mapped[str | None] = mapped_column(Text, nullable=True)
    fields: Mapped[list[str]] = mapped_column(JSON, nullable=False, default=list)
    severity: Mapped[FeedbackSeverity] = mapped_column(
        enum_column(FeedbackSeverity), nullable=False, default=FeedbackSeverity.MEDIUM
    )
    suggested_improvement: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_by: Mapped[str | None] = mapped_column(String(255), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, nullable=False
    )

    def __repr__(self) -> str:
        return (
            f"<FeedbackRecord id={self.id} submission={self.submission_id} "
            f"category={self.category.value} fields={self.fields}>"
        )


event.listen(FeedbackRecord, "before_update", reject_mutation)
event.listen(FeedbackRecord, "before_delete", reject_mutation)
