"""Approve/reject decisions with an atomic inventory commit."""

from __future__ import annotations

import time
from collections.abc import Mapping, Sequence
from typing import Any

from ..exceptions import (
    CatalogIntakeError,
    InventoryCommitError,
    ValidationConflictError,
)
from ..models.base import session_scope, utcnow
from ..models.feedback import FeedbackRecord
from ..models.repository import (
    FeedbackCreate,
    FeedbackRepository,
    ProcessingLogRepository,
    SubmissionRepository,
    SupplierRepository,
)
from ..models.submission import Submission
from ..monitoring.metrics import (
    record_inventory_failure,
    record_review_conflict,
    record_review_decision,
    record_stage_attempt,
)
from ..pipeline.boundaries import InventoryGateway, get_inventory_gateway
from ..pipeline.error_handling import build_stage_error_report
from ..schemas.enums import ProcessingStatus, StageName, StageStatus, ValidationStatus
from ..schemas.validation import ApprovalResult, BulkFailure, BulkResult, FeedbackPayload
from ..utils.audit import AuditAction, AuditOutcome, get_audit_logger
from ..utils.config import AutoApprovalConfig, ScoringConfig, get_service_configuration
from ..utils.logging import log_stage_attempt, setup_logger
from .queue import compute_confidence
from .taxonomy import validate_feedback

logger = setup_logger(__name__, context={"component": "review"})

AUTO_APPROVER = "system-auto-approval"


def merge_edits(
    extracted: Mapping[str, Any] | None, edits: Mapping[str, Any] | None
) -> dict[str, Any]:
    """Overlay reviewer edits on extracted data; edits win field by field."""

    merged = dict(extracted or {})
    if edits:
        merged.update(edits)
    return merged


def _conflict_reason(submission: Submission) -> str:
    if submission.processing_status is not ProcessingStatus.COMPLETED:
        return f"processing status is {submission.processing_status.value}"
    if submission.validation_status is not ValidationStatus.PENDING:
        return f"already {submission.validation_status.value}"
    return "decided concurrently"


class ReviewDecisionHandler:
    """Commits at most one decision per submission."""

    def __init__(self, inventory: InventoryGateway | None = None) -> None:
        self._inventory = inventory

    @property
    def inventory(self) -> InventoryGateway:
        if self._inventory is None:
            self._inventory = get_inventory_gateway()
        return self._inventory

    def approve(
        self,
        submission_id: str,
        edits: Mapping[str, Any] | None = None,
        notes: str | None = None,
        reviewer: str | None = None,
    ) -> ApprovalResult:
        """
        Approve a submission and commit the merged product to inventory.

        The decision and the inventory commit share one transaction: if the
        commit fails nothing is persisted except an ``inventory_update`` failure
        entry, and the submission remains open for another approval.

        Raises:
            SubmissionNotFoundError: If the submission does not exist
            ValidationConflictError: If the submission is not completed or already decided
            InventoryCommitError: If the inventory boundary fails
        """
        if edits is not None and not isinstance(edits, Mapping):
            raise TypeError("edits must be a mapping of field names to values")

        decided_at = utcnow()
        start = time.perf_counter()
        try:
            with session_scope() as session:
                submissions = SubmissionRepository(session)
                submission = submissions.require(submission_id)
                extracted = dict(submission.extracted_data or {})
                template_id = submission.template_id

                if not submissions.record_decision(
                    submission_id,
                    status=ValidationStatus.APPROVED,
                    reviewer=reviewer,
                    notes=notes,
                    decided_at=decided_at,
                ):
                    raise ValidationConflictError(submission_id, _conflict_reason(submission))

                merged = merge_edits(extracted, edits)
                product_reference = self._commit_to_inventory(submission_id, merged)
                submissions.set_product_reference(submission_id, product_reference)

                duration_ms = int((time.perf_counter() - start) * 1000)
                logs = ProcessingLogRepository(session)
                logs.append(
                    submission_id,
                    StageName.VALIDATION,
                    StageStatus.COMPLETED,
                    metadata={"decision": "approved", "reviewer": reviewer},
                )
                logs.append(
                    submission_id,
                    StageName.INVENTORY_UPDATE,
                    StageStatus.COMPLETED,
                    duration_ms=duration_ms,
                    metadata={
                        "product_reference": product_reference,
                        "edited_fields": sorted(edits or {}),
                    },
                )
        except ValidationConflictError:
            record_review_conflict()
            logger.warning(
                "Approval refused for submission %s",
                submission_id,
                extra={"submission_id": submission_id, "stage": StageName.VALIDATION.value},
            )
            raise
        except InventoryCommitError as exc:
            self._record_inventory_failure(submission_id, exc, start, reviewer)
            raise

        record_review_decision(ValidationStatus.APPROVED.value)
        record_stage_attempt(
            StageName.INVENTORY_UPDATE.value, StageStatus.COMPLETED.value, duration_ms / 1000
        )
        log_stage_attempt(
            logger,
            submission_id,
            StageName.INVENTORY_UPDATE.value,
            StageStatus.COMPLETED.value,
            duration_ms,
            template_id=template_id,
            product_reference=product_reference,
        )
        get_audit_logger().log_decision(
            AuditAction.SUBMISSION_APPROVED,
            submission_id,
            reviewer,
            product_reference=product_reference,
            edited_fields=sorted(edits or {}),
            notes=notes,
        )
        return ApprovalResult(
            submission_id=submission_id,
            product_reference=product_reference,
            committed_data=merged,
            validated_by=reviewer,
            validated_at=decided_at,
        )

    def reject(
        self,
        submission_id: str,
        feedback: FeedbackPayload | Mapping[str, Any],
        notes: str | None = None,
        reviewer: str | None = None,
    ) -> FeedbackRecord:
        """
        Reject a submission with structured feedback. Rejection is terminal.

        Raises:
            MalformedFeedbackError: If feedback does not match the taxonomy (nothing is written)
            SubmissionNotFoundError: If the submission does not exist
            ValidationConflictError: If the submission is not completed or already decided
        """
        payload = validate_feedback(feedback)

        try:
            with session_scope() as session:
                submissions = SubmissionRepository(session)
                submission = submissions.require(submission_id)
                if not submissions.record_decision(
                    submission_id,
                    status=ValidationStatus.REJECTED,
                    reviewer=reviewer,
                    notes=notes,
                ):
                    raise ValidationConflictError(submission_id, _conflict_reason(submission))

                record = FeedbackRepository(session).create(
                    FeedbackCreate(
                        submission_id=submission_id,
                        supplier_id=submission.supplier_id,
                        template_id=submission.template_id,
                        category=payload.category,
                        subcategory=payload.subcategory,
                        note=payload.note,
                        fields=payload.fields,
                        severity=payload.severity,
                        suggested_improvement=payload.suggested_improvement,
                        created_by=reviewer,
                    )
                )
                ProcessingLogRepository(session).append(
                    submission_id,
                    StageName.VALIDATION,
                    StageStatus.COMPLETED,
                    metadata={
                        "decision": "rejected",
                        "reviewer": reviewer,
                        "category": payload.category.value,
                        "subcategory": payload.subcategory,
                        "fields": payload.fields,
                    },
                )
        except ValidationConflictError:
            record_review_conflict()
            logger.warning(
                "Rejection refused for submission %s",
                submission_id,
                extra={"submission_id": submission_id, "stage": StageName.VALIDATION.value},
            )
            raise

        record_review_decision(ValidationStatus.REJECTED.value)
        get_audit_logger().log_decision(
            AuditAction.SUBMISSION_REJECTED,
            submission_id,
            reviewer,
            category=payload.category.value,
            subcategory=payload.subcategory,
            fields=payload.fields,
            severity=payload.severity.value,
            notes=notes,
        )
        return record

    def bulk_approve(
        self,
        submission_ids: Sequence[str],
        notes: str | None = None,
        reviewer: str | None = None,
    ) -> BulkResult:
        """Approve each id independently, collecting per-id failures."""

        result = BulkResult(total_processed=len(submission_ids))
        for submission_id in submission_ids:
            try:
                self.approve(submission_id, notes=notes, reviewer=reviewer)
            except CatalogIntakeError as exc:
                result.failed.append(BulkFailure(id=submission_id, error=str(exc)))
            else:
                result.successful.append(submission_id)
        return result

    def bulk_reject(
        self,
        submission_ids: Sequence[str],
        feedback: FeedbackPayload | Mapping[str, Any],
        notes: str | None = None,
        reviewer: str | None = None,
    ) -> BulkResult:
        """Reject each id with the same feedback, collecting per-id failures.

        Malformed feedback fails the whole call before any submission is touched.
        """
        payload = validate_feedback(feedback)
        result = BulkResult(total_processed=len(submission_ids))
        for submission_id in submission_ids:
            try:
                self.reject(submission_id, payload, notes=notes, reviewer=reviewer)
            except CatalogIntakeError as exc:
                result.failed.append(BulkFailure(id=submission_id, error=str(exc)))
            else:
                result.successful.append(submission_id)
        return result

    def auto_approve_if_trusted(
        self,
        submission_id: str,
        *,
        config: AutoApprovalConfig | None = None,
        scoring: ScoringConfig | None = None,
    ) -> ApprovalResult | None:
        """
        Approve without review when the supplier's last metrics snapshot and the
        submission's confidence clear the auto-approval bar.

        Returns None when auto-approval is disabled or the criteria are not met.
        """
        service_config = get_service_configuration()
        config = config or service_config.auto_approval
        scoring = scoring or service_config.scoring
        if not config.enabled:
            return None

        with session_scope() as session:
            submission = SubmissionRepository(session).require(submission_id)
            if (
                submission.processing_status is not ProcessingStatus.COMPLETED
                or submission.validation_status is not ValidationStatus.PENDING
            ):
                return None
            supplier = SupplierRepository(session).get(submission.supplier_id)
            metrics = dict(supplier.performance_metrics or {}) if supplier is not None else {}
            score = compute_confidence(submission, scoring)

        history = int(metrics.get("total_submissions", 0))
        approval_rate = float(metrics.get("approval_rate", 0.0))
        if (
            history < config.min_history
            or approval_rate < config.min_approval_rate
            or score < config.min_confidence
        ):
            return None

        result = self.approve(
            submission_id,
            notes=(
                f"Auto-approved: confidence {score:.1f}, "
                f"supplier approval rate {approval_rate:.2f}"
            ),
            reviewer=AUTO_APPROVER,
        )
        get_audit_logger().log_decision(
            AuditAction.SUBMISSION_AUTO_APPROVED,
            submission_id,
            AUTO_APPROVER,
            confidence=score,
            supplier_history=history,
            approval_rate=approval_rate,
        )
        return result

    def _commit_to_inventory(self, submission_id: str, merged: dict[str, Any]) -> str:
        try:
            reference = self.inventory.commit_product(dict(merged))
        except InventoryCommitError:
            raise
        except Exception as exc:
            raise InventoryCommitError(submission_id, str(exc) or type(exc).__name__) from exc
        if not reference:
            raise InventoryCommitError(submission_id, "inventory returned no product reference")
        return str(reference)

    def _record_inventory_failure(
        self,
        submission_id: str,
        exc: InventoryCommitError,
        start: float,
        reviewer: str | None,
    ) -> None:
        duration_ms = int((time.perf_counter() - start) * 1000)
        report = build_stage_error_report(
            exc, submission_id=submission_id, stage=StageName.INVENTORY_UPDATE.value
        )
        cause = exc.__cause__
        message = str(cause) if cause is not None and str(cause) else report.message

        with session_scope() as session:
            ProcessingLogRepository(session).append(
                submission_id,
                StageName.INVENTORY_UPDATE,
                StageStatus.FAILED,
                duration_ms=duration_ms,
                error_message=message,
                metadata={
                    "error_type": type(cause).__name__ if cause is not None else report.error_type,
                    "classification": report.classification,
                    "retryable": report.retryable,
                    "reviewer": reviewer,
                },
            )

        record_inventory_failure()
        record_stage_attempt(
            StageName.INVENTORY_UPDATE.value, StageStatus.FAILED.value, duration_ms / 1000
        )
        log_stage_attempt(
            logger,
            submission_id,
            StageName.INVENTORY_UPDATE.value,
            StageStatus.FAILED.value,
            duration_ms,
            error=message,
        )
        get_audit_logger().log_decision(
            AuditAction.INVENTORY_COMMIT_FAILED,
            submission_id,
            reviewer,
            outcome=AuditOutcome.FAILURE,
            error_message=message,
        )
