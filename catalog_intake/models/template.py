"""SQLAlchemy models for extraction template configuration and its history."""

from __future__ import annotations

from datetime import datetime
from typing import Any

from sqlalchemy import JSON, Boolean, DateTime, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from ..schemas.enums import ContentType, ProposalType
from .base import Base, utcnow
from .submission import enum_column


class ExtractionTemplate(Base):
    """Instructions, expected fields, and examples driving extraction."""

    __tablename__ = "extraction_templates"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    content_type: Mapped[ContentType | None] = mapped_column(
        enum_column(ContentType), nullable=True
    )
    fields: Mapped[list[dict[str, Any]]] = mapped_column(JSON, nullable=False, default=list)
    instructions: Mapped[str] = mapped_column(Text, nullable=False, default="")
    examples: Mapped[list[str]] = mapped_column(JSON, nullable=False, default=list)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    version: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, onupdate=utcnow, nullable=False
    )

    def __repr__(self) -> str:
        return f"<ExtractionTemplate id={self.id} version={self.version} active={self.is_active}>"


class TemplateChange(Base):
    """Audit row for one applied improvement proposal."""

    __tablename__ = "template_changes"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    template_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    proposal_type: Mapped[ProposalType] = mapped_column(enum_column(ProposalType), nullable=False)
    affected_field: Mapped[str | None] = mapped_column(String(128), nullable=True)
    before: Mapped[dict[str, Any]] = mapped_column(JSON, nullable=False)
    after: Mapped[dict[str, Any]] = mapped_column(JSON, nullable=False)
    applied_by: Mapped[str | None] = mapped_column(String(255), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, nullable=False
    )


class TemplateHealthSnapshot(Base):
    """Latest computed analysis for a template, re-derivable from the logs."""

    __tablename__ = "template_health_snapshots"

    template_id: Mapped[str] = mapped_column(String(64), primary_key=True)
    health: Mapped[str] = mapped_column(String(32), nullable=False)
    success_rate: Mapped[float] = mapped_column(nullable=False, default=0.0)
    result: Mapped[dict[str, Any]] = mapped_column(JSON, nullable=False)
    computed_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
