"""Supplier performance snapshots computed from submissions and the processing log."""

from __future__ import annotations

from typing import Any

from ..models.base import session_scope
from ..models.repository import (
    ProcessingLogRepository,
    SubmissionRepository,
    SupplierRepository,
)
from ..schemas.enums import StageName, StageStatus, ValidationStatus
from ..utils.audit import AuditAction, get_audit_logger
from ..utils.logging import setup_logger

logger = setup_logger(__name__, context={"component": "supplier_metrics"})

# Weight of the approval rate in the quality rating; the rest comes from confidence.
_APPROVAL_WEIGHT = 0.7


def quality_rating(approval_rate: float, average_confidence: float | None) -> float:
    """Map approval rate and average confidence onto the 1..5 rating scale."""

    confidence_share = (average_confidence or 0.0) / 100.0
    blended = _APPROVAL_WEIGHT * approval_rate + (1 - _APPROVAL_WEIGHT) * confidence_share
    return round(1.0 + 4.0 * min(max(blended, 0.0), 1.0), 1)


def recompute_supplier_metrics(supplier_id: str) -> dict[str, Any]:
    """
    Recompute and store the performance snapshot for one supplier.

    Raises:
        SupplierNotFoundError: If the supplier is unknown or inactive
    """
    with session_scope() as session:
        suppliers = SupplierRepository(session)
        suppliers.require_active(supplier_id)
        submissions = SubmissionRepository(session).for_supplier(supplier_id)
        entries = ProcessingLogRepository(session).for_submissions(
            [item.id for item in submissions],
            stage=StageName.AI_EXTRACTION,
            status=StageStatus.COMPLETED,
        )

        statuses = [item.validation_status for item in submissions]
        approved = statuses.count(ValidationStatus.APPROVED)
        rejected = statuses.count(ValidationStatus.REJECTED)
        decided = approved + rejected
        approval_rate = approved / decided if decided else 0.0

        confidences = [
            item.extraction_confidence
            for item in submissions
            if item.extraction_confidence is not None
        ]
        average_confidence = sum(confidences) / len(confidences) if confidences else None
        durations = [entry.duration_ms for entry in entries]
        last_submission = max((item.created_at for item in submissions), default=None)

        metrics: dict[str, Any] = {
            "total_submissions": len(submissions),
            "approved": approved,
            "rejected": rejected,
            "pending_review": len(submissions) - decided,
            "approval_rate": round(approval_rate, 4),
            "average_confidence": (
                round(average_confidence, 2) if average_confidence is not None else None
            ),
            "average_extraction_ms": round(sum(durations) / len(durations)) if durations else None,
            "last_submission_at": last_submission.isoformat() if last_submission else None,
            "quality_rating": (
                quality_rating(approval_rate, average_confidence) if decided else None
            ),
        }
        suppliers.store_metrics(supplier_id, metrics)

    logger.info(
        "Supplier metrics recomputed: %s submissions, approval rate %.2f",
        metrics["total_submissions"],
        approval_rate,
        extra={"supplier_id": supplier_id, "status": "completed"},
    )
    get_audit_logger().log_system_event(
        AuditAction.SUPPLIER_METRICS_RECOMPUTED,
        resource=supplier_id,
        resource_type="supplier",
        total_submissions=metrics["total_submissions"],
        approval_rate=metrics["approval_rate"],
    )
    return metrics


def recompute_all() -> int:
    """Recompute snapshots for every active supplier, returning how many were updated."""

    with session_scope() as session:
        supplier_ids = SupplierRepository(session).all_ids()
    for supplier_id in supplier_ids:
        recompute_supplier_metrics(supplier_id)
    return len(supplier_ids)
