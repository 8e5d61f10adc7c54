"""Closed enumerations for every taxonomy the pipeline stores."""

from __future__ import annotations

from enum import Enum


class ContentType(str, Enum):
    """Kind of content carried by an inbound supplier message."""

    TEXT = "text"
    IMAGE = "image"
    PDF = "pdf"
    VOICE = "voice"


class ProcessingStatus(str, Enum):
    """Extraction lifecycle of a submission."""

    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


class ValidationStatus(str, Enum):
    """Human review sub-state of a completed submission."""

    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"


class StageName(str, Enum):
    """Named steps recorded in the processing log."""

    WEBHOOK = "webhook"
    AI_EXTRACTION = "ai_extraction"
    VALIDATION = "validation"
    INVENTORY_UPDATE = "inventory_update"


class StageStatus(str, Enum):
    """Outcome of one stage execution attempt."""

    STARTED = "started"
    COMPLETED = "completed"
    FAILED = "failed"


class PriorityTier(str, Enum):
    """Validation queue ranking bucket."""

    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"

    @property
    def rank(self) -> int:
        return _PRIORITY_RANK[self]

    def escalate(self) -> PriorityTier:
        """Return the next higher tier (HIGH stays HIGH)."""

        if self is PriorityTier.LOW:
            return PriorityTier.MEDIUM
        return PriorityTier.HIGH


_PRIORITY_RANK = {PriorityTier.LOW: 1, PriorityTier.MEDIUM: 2, PriorityTier.HIGH: 3}


class ProposalType(str, Enum):
    """Kind of change an improvement proposal makes to a template."""

    FIELD_ADDITION = "field_addition"
    FIELD_REMOVAL = "field_removal"
    VALIDATION_ADJUSTMENT = "validation_adjustment"
    INSTRUCTION_CLARIFICATION = "instruction_clarification"
    EXAMPLE_UPDATE = "example_update"


class ProposalPriority(str, Enum):
    """Urgency of an improvement proposal."""

    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"

    @property
    def rank(self) -> int:
        return _PRIORITY_RANK[PriorityTier(self.value)]


class HealthTier(str, Enum):
    """Coarse classification of a template's recent success rate."""

    EXCELLENT = "excellent"
    GOOD = "good"
    NEEDS_IMPROVEMENT = "needs_improvement"
    POOR = "poor"


class FeedbackCategory(str, Enum):
    """Top-level rejection reasons reviewers may cite."""

    MISSING_FIELD = "missing_field"
    INVALID_FORMAT = "invalid_format"
    OUT_OF_RANGE = "out_of_range"
    INCORRECT_VALUE = "incorrect_value"
    WRONG_CATEGORY = "wrong_category"
    EXTRANEOUS_FIELD = "extraneous_field"
    POOR_QUALITY = "poor_quality"
    DUPLICATE_PRODUCT = "duplicate_product"
    INVALID_CONTENT = "invalid_content"
    POLICY_VIOLATION = "policy_violation"


class FeedbackSeverity(str, Enum):
    """Reviewer-assessed severity of a rejection."""

    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
