"""Validation queue, review decisions, and feedback taxonomy."""

from .decisions import ReviewDecisionHandler, merge_edits
from .queue import (
    SupplierHistory,
    ValidationQueueManager,
    compute_confidence,
    compute_priority,
)
from .taxonomy import feedback_categories, validate_feedback

__all__ = [
    "ReviewDecisionHandler",
    "SupplierHistory",
    "ValidationQueueManager",
    "compute_confidence",
    "compute_priority",
    "feedback_categories",
    "merge_edits",
    "validate_feedback",
]
