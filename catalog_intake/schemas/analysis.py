"""Pydantic schemas for template configuration and analysis results."""

from __future__ import annotations

from datetime import datetime
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field

from .enums import ContentType, HealthTier, ProposalPriority, ProposalType


class FieldValidation(BaseModel):
    """Optional validation rules attached to a template field."""

    model_config = ConfigDict(extra="forbid")

    pattern: str | None = None
    min: float | None = None
    max: float | None = None
    min_length: int | None = Field(None, ge=0)
    max_length: int | None = Field(None, ge=0)


class TemplateField(BaseModel):
    """One expected field in an extraction template."""

    name: str = Field(..., min_length=1)
    label: str | None = None
    type: Literal["text", "number", "select", "multiline"] = "text"
    required: bool = False
    options: list[str] | None = None
    validation: FieldValidation | None = None

    @property
    def display_name(self) -> str:
        return self.label or self.name


class TemplateConfig(BaseModel):
    """Snapshot of an extraction template's configuration."""

    id: str
    name: str
    content_type: ContentType | None = None
    fields: list[TemplateField] = Field(default_factory=list)
    instructions: str = ""
    examples: list[str] = Field(default_factory=list)
    is_active: bool = True
    version: int = 1
    updated_at: datetime | None = None

    @classmethod
    def from_model(cls, template: Any) -> TemplateConfig:
        return cls(
            id=template.id,
            name=template.name,
            content_type=template.content_type,
            fields=[TemplateField.model_validate(item) for item in template.fields or []],
            instructions=template.instructions or "",
            examples=list(template.examples or []),
            is_active=template.is_active,
            version=template.version,
            updated_at=template.updated_at,
        )

    def field_named(self, name: str) -> TemplateField | None:
        for template_field in self.fields:
            if template_field.name == name:
                return template_field
        return None


class SupportingData(BaseModel):
    """Statistics backing an improvement proposal."""

    error_count: int = Field(0, ge=0)
    error_rate: float = Field(0.0, ge=0, le=1)
    sample_errors: list[str] = Field(default_factory=list)


class ImprovementProposal(BaseModel):
    """Machine-applicable suggested change to a template."""

    type: ProposalType
    priority: ProposalPriority
    description: str
    reasoning: str
    suggested_change: dict[str, Any] = Field(default_factory=dict)
    affected_field: str | None = None
    supporting_data: SupportingData = Field(default_factory=SupportingData)


class TemplateAnalysisResult(BaseModel):
    """Per-template aggregate over a rolling window."""

    template_id: str
    template_name: str
    window_start: datetime
    window_end: datetime
    total_submissions: int
    approved: int
    rejected: int
    decided: int
    success_rate: float = Field(..., ge=0, le=1)
    health: HealthTier
    sample_sufficient: bool
    improvements: list[ImprovementProposal] = Field(default_factory=list)
    computed_at: datetime


class ApplyImprovementRequest(BaseModel):
    proposal: ImprovementProposal
    applied_by: str | None = None
