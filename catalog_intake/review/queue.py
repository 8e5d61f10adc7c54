"""Validation queue: confidence scoring, priority ranking, and reviewer views."""

from __future__ import annotations

import math
from collections import Counter
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any

from ..models.base import as_utc, session_scope, utcnow
from ..models.repository import (
    FeedbackRepository,
    ProcessingLogRepository,
    SubmissionRepository,
)
from ..monitoring.metrics import set_queue_depth, set_stale_validations
from ..schemas.enums import PriorityTier
from ..schemas.submission import FeedbackView, ProcessingLogView, SubmissionDetail
from ..schemas.validation import QueueFilters, QueuePage, SuggestedAction, ValidationQueueItem
from ..utils.config import ScoringConfig, get_service_configuration, get_settings
from ..utils.logging import setup_logger

logger = setup_logger(__name__, context={"component": "validation_queue"})


@dataclass(slots=True)
class ConfidenceAssessment:
    """Score plus the structural signals that lowered it."""

    score: float
    reported: float | None
    missing_fields: list[str] = field(default_factory=list)
    malformed_fields: list[str] = field(default_factory=list)
    unknown_category: str | None = None
    field_error_count: int = 0

    @property
    def structurally_complete(self) -> bool:
        return not (self.missing_fields or self.malformed_fields or self.unknown_category)


@dataclass(slots=True)
class SupplierHistory:
    """Decided-submission counts for one supplier."""

    approved: int = 0
    rejected: int = 0

    @property
    def decided(self) -> int:
        return self.approved + self.rejected

    @property
    def defect_rate(self) -> float:
        if self.decided == 0:
            return 0.0
        return self.rejected / self.decided

    def is_clean(self, scoring: ScoringConfig) -> bool:
        return (
            self.decided >= scoring.clean_supplier_min_decisions
            and self.defect_rate <= scoring.clean_supplier_max_defect_rate
        )


def _is_blank(value: Any) -> bool:
    if value is None:
        return True
    if isinstance(value, str):
        return not value.strip()
    if isinstance(value, (list, dict)):
        return len(value) == 0
    return False


def _parses_as_number(value: Any) -> bool:
    if isinstance(value, bool):
        return False
    if isinstance(value, (int, float)):
        return math.isfinite(value)
    if isinstance(value, str):
        try:
            return math.isfinite(float(value.strip().replace(",", "")))
        except ValueError:
            return False
    return False


def assess_confidence(submission: Any, scoring: ScoringConfig) -> ConfidenceAssessment:
    """Score a completed submission and record which checks failed."""

    data: dict[str, Any] = submission.extracted_data or {}
    reported = submission.extraction_confidence
    base = reported if reported is not None else scoring.unreported_base

    assessment = ConfidenceAssessment(score=0.0, reported=reported)
    assessment.missing_fields = [
        name for name in scoring.required_fields if _is_blank(data.get(name))
    ]
    assessment.malformed_fields = [
        name
        for name in scoring.numeric_fields
        if not _is_blank(data.get(name)) and not _parses_as_number(data.get(name))
    ]
    category = data.get(scoring.category_field)
    if not _is_blank(category) and str(category).strip().lower() not in scoring.known_categories:
        assessment.unknown_category = str(category)
    assessment.field_error_count = len(submission.field_errors or [])

    penalty = (
        scoring.missing_required_penalty * len(assessment.missing_fields)
        + scoring.malformed_numeric_penalty * len(assessment.malformed_fields)
        + (scoring.unknown_category_penalty if assessment.unknown_category else 0.0)
        + scoring.field_error_penalty * assessment.field_error_count
    )
    assessment.score = max(0.0, min(100.0, float(base) - penalty))
    return assessment


def compute_confidence(submission: Any, scoring: ScoringConfig | None = None) -> float:
    """Return the confidence score in [0, 100] for a completed submission."""

    scoring = scoring or get_service_configuration().scoring
    return assess_confidence(submission, scoring).score


def compute_priority(
    score: float,
    age: timedelta,
    supplier_history: SupplierHistory | None,
    scoring: ScoringConfig | None = None,
) -> PriorityTier:
    """
    Rank a queue item.

    The base tier comes from the score. Items older than the stale threshold
    escalate one tier, and so do low-confidence items from suppliers with a
    clean record, so anomalies surface ahead of chronic low performers.
    """
    scoring = scoring or get_service_configuration().scoring

    if score >= scoring.low_priority_min_confidence:
        tier = PriorityTier.LOW
    elif score >= scoring.medium_priority_min_confidence:
        tier = PriorityTier.MEDIUM
    else:
        tier = PriorityTier.HIGH

    if age > timedelta(hours=scoring.stale_after_hours):
        tier = tier.escalate()
    if (
        supplier_history is not None
        and score < scoring.low_priority_min_confidence
        and supplier_history.is_clean(scoring)
    ):
        tier = tier.escalate()
    return tier


def suggest_actions(
    assessment: ConfidenceAssessment,
    scoring: ScoringConfig,
    sibling_ids: list[str],
) -> list[SuggestedAction]:
    actions: list[SuggestedAction] = []
    if assessment.score >= scoring.low_priority_min_confidence and assessment.structurally_complete:
        actions.append(
            SuggestedAction(
                action="approve",
                reason="High confidence extraction with all required fields present",
            )
        )
    for name in assessment.missing_fields:
        actions.append(
            SuggestedAction(action="review_field", reason="Required field is missing", field=name)
        )
    for name in assessment.malformed_fields:
        actions.append(
            SuggestedAction(
                action="review_field", reason="Numeric value does not parse", field=name
            )
        )
    if assessment.unknown_category:
        actions.append(
            SuggestedAction(
                action="check_category",
                reason=f"Category '{assessment.unknown_category}' is not in the catalog taxonomy",
                field=scoring.category_field,
            )
        )
    if assessment.score < scoring.review_suggestion_below and assessment.field_error_count:
        actions.append(
            SuggestedAction(
                action="review_field",
                reason=f"Extractor reported {assessment.field_error_count} field error(s)",
            )
        )
    if sibling_ids:
        actions.append(
            SuggestedAction(
                action="review_group",
                reason=f"{len(sibling_ids)} other product(s) came from the same message",
            )
        )
    return actions


class ValidationQueueManager:
    """Serves ranked, filtered views over submissions awaiting review."""

    def __init__(
        self,
        scoring: ScoringConfig | None = None,
        *,
        scan_limit: int | None = None,
    ) -> None:
        self.scoring = scoring or get_service_configuration().scoring
        self.scan_limit = scan_limit or get_settings().queue_scan_limit

    def list_queue(self, filters: QueueFilters | None = None) -> QueuePage:
        """Return one page of the queue ordered by priority, age, then confidence."""

        filters = filters or QueueFilters()
        now = utcnow()

        with session_scope() as session:
            submissions = SubmissionRepository(session)
            candidates = submissions.awaiting_validation(
                limit=self.scan_limit + 1,
                supplier_id=filters.supplier_id,
                content_type=filters.content_type,
            )
            truncated = len(candidates) > self.scan_limit
            candidates = candidates[: self.scan_limit]

            supplier_ids = sorted({candidate.supplier_id for candidate in candidates})
            histories = {
                supplier_id: SupplierHistory(**counts)
                for supplier_id, counts in submissions.decision_counts_by_supplier(
                    supplier_ids
                ).items()
            }
            groups = submissions.siblings_by_group(
                sorted({candidate.group_id for candidate in candidates})
            )

        if truncated:
            logger.warning(
                "Validation queue scan capped at %s rows; results may be incomplete",
                self.scan_limit,
            )

        items: list[ValidationQueueItem] = []
        depth: Counter[str] = Counter({tier.value: 0 for tier in PriorityTier})
        for candidate in candidates:
            created_at = as_utc(candidate.created_at)
            age = now - created_at
            assessment = assess_confidence(candidate, self.scoring)
            priority = compute_priority(
                assessment.score, age, histories.get(candidate.supplier_id), self.scoring
            )
            depth[priority.value] += 1
            siblings = [
                sibling for sibling in groups.get(candidate.group_id, []) if sibling != candidate.id
            ]
            data = dict(candidate.extracted_data or {})
            category = data.get(self.scoring.category_field)
            item = ValidationQueueItem(
                submission_id=candidate.id,
                supplier_id=candidate.supplier_id,
                template_id=candidate.template_id,
                content_type=candidate.content_type,
                group_id=candidate.group_id,
                sibling_ids=siblings,
                extracted_data=data,
                category=str(category) if category is not None else None,
                confidence=assessment.score,
                priority=priority,
                age_hours=round(age.total_seconds() / 3600, 2),
                suggested_actions=suggest_actions(assessment, self.scoring, siblings),
                created_at=created_at,
            )
            if self._matches(item, filters):
                items.append(item)

        set_queue_depth(dict(depth))

        items.sort(key=lambda item: (-item.priority.rank, item.created_at, item.confidence))
        total = len(items)
        offset = (filters.page - 1) * filters.limit
        return QueuePage(
            items=items[offset : offset + filters.limit],
            total=total,
            page=filters.page,
            limit=filters.limit,
            pages=math.ceil(total / filters.limit) if total else 0,
            truncated=truncated,
        )

    @staticmethod
    def _matches(item: ValidationQueueItem, filters: QueueFilters) -> bool:
        if filters.priority is not None and item.priority is not filters.priority:
            return False
        if filters.category is not None:
            if item.category is None or item.category.lower() != filters.category.strip().lower():
                return False
        if filters.min_confidence is not None and item.confidence < filters.min_confidence:
            return False
        if filters.max_confidence is not None and item.confidence > filters.max_confidence:
            return False
        return True

    def get_submission(self, submission_id: str) -> SubmissionDetail:
        """Return the full operator view of one submission."""

        with session_scope() as session:
            submission = SubmissionRepository(session).require(submission_id)
            logs = ProcessingLogRepository(session)
            entries = logs.for_submission(submission_id)
            latest_error = submission.last_error or logs.latest_error(submission_id)
            siblings = SubmissionRepository(session).sibling_ids(
                submission.group_id, submission_id
            )
            feedback = FeedbackRepository(session).for_submission(submission_id)

            return SubmissionDetail(
                id=submission.id,
                external_message_id=submission.external_message_id,
                group_id=submission.group_id,
                supplier_id=submission.supplier_id,
                template_id=submission.template_id,
                content_type=submission.content_type,
                raw_content=submission.raw_content,
                media_locator=submission.media_locator,
                processing_status=submission.processing_status,
                validation_status=submission.validation_status,
                attempt_count=submission.attempt_count,
                extracted_data=submission.extracted_data,
                extraction_confidence=submission.extraction_confidence,
                field_errors=submission.field_errors,
                validated_by=submission.validated_by,
                validation_notes=submission.validation_notes,
                validated_at=submission.validated_at,
                product_reference=submission.product_reference,
                latest_error=latest_error,
                sibling_ids=siblings,
                processing_log=[ProcessingLogView.from_entry(entry) for entry in entries],
                feedback=FeedbackView.from_record(feedback) if feedback is not None else None,
                created_at=submission.created_at,
                updated_at=submission.updated_at,
            )

    def list_processing_log(self, submission_id: str) -> list[ProcessingLogView]:
        """Read-only audit view of a submission's stage history."""

        with session_scope() as session:
            SubmissionRepository(session).require(submission_id)
            entries = ProcessingLogRepository(session).for_submission(submission_id)
            return [ProcessingLogView.from_entry(entry) for entry in entries]

    def count_stale_validations(self, now: datetime | None = None) -> int:
        cutoff = (now or utcnow()) - timedelta(hours=self.scoring.stale_after_hours)
        with session_scope() as session:
            return SubmissionRepository(session).count_awaiting_validation_before(cutoff)

    def check_stale_validations(self) -> int:
        """Log and export the number of reviews waiting past the stale threshold."""

        stale = self.count_stale_validations()
        set_stale_validations(stale)
        if stale:
            logger.warning(
                "%s submission(s) awaiting review for more than %s hours",
                stale,
                self.scoring.stale_after_hours,
            )
        return stale

    def count_stale_processing(self, now: datetime | None = None) -> int:
        minutes = get_settings().stale_processing_minutes
        cutoff = (now or utcnow()) - timedelta(minutes=minutes)
        with session_scope() as session:
            return SubmissionRepository(session).count_processing_before(cutoff)

    def pipeline_stats(self) -> dict[str, Any]:
        """Counts by processing and validation status plus stale review and claim counts."""

        with session_scope() as session:
            counts = SubmissionRepository(session).status_counts()
        counts["stale_validations"] = self.count_stale_validations()
        counts["stale_processing"] = self.count_stale_processing()
        return counts
