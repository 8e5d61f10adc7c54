"""Schemas package initialization."""
from .analysis import (
    ImprovementProposal,
    SupportingData,
    TemplateAnalysisResult,
    TemplateConfig,
    TemplateField,
)
from .enums import (
    ContentType,
    FeedbackCategory,
    FeedbackSeverity,
    HealthTier,
    PriorityTier,
    ProcessingStatus,
    ProposalPriority,
    ProposalType,
    StageName,
    StageStatus,
    ValidationStatus,
)
from .submission import ExtractionResult, FieldError, SubmissionDetail
from .validation import (
    ApprovalResult,
    FeedbackPayload,
    QueueFilters,
    QueuePage,
    ValidationQueueItem,
)

__all__ = [
    "ApprovalResult",
    "ContentType",
    "ExtractionResult",
    "FeedbackCategory",
    "FeedbackPayload",
    "FeedbackSeverity",
    "FieldError",
    "HealthTier",
    "ImprovementProposal",
    "PriorityTier",
    "ProcessingStatus",
    "ProposalPriority",
    "ProposalType",
    "QueueFilters",
    "QueuePage",
    "StageName",
    "StageStatus",
    "SubmissionDetail",
    "SupportingData",
    "TemplateAnalysisResult",
    "TemplateConfig",
    "TemplateField",
    "ValidationQueueItem",
    "ValidationStatus",
]
