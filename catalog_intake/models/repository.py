"""Repository helpers for persistence models."""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from sqlalchemy import func, or_, select, update
from sqlalchemy.orm import Session

from ..exceptions import (
    SubmissionNotFoundError,
    SupplierNotFoundError,
    TemplateNotFoundError,
)
from ..schemas.enums import (
    ContentType,
    FeedbackCategory,
    FeedbackSeverity,
    ProcessingStatus,
    ProposalType,
    StageName,
    StageStatus,
    ValidationStatus,
)
from .base import utcnow
from .feedback import FeedbackRecord
from .submission import ProcessingLogEntry, Submission, Supplier
from .template import ExtractionTemplate, TemplateChange, TemplateHealthSnapshot


@dataclass(slots=True)
class SubmissionCreate:
    """Value object capturing required fields to persist a submission."""

    external_message_id: str
    group_id: str
    supplier_id: str
    content_type: ContentType
    raw_content: str
    media_locator: str | None = None
    template_id: str | None = None


@dataclass(slots=True)
class FeedbackCreate:
    """Value object describing one rejection feedback record."""

    submission_id: str
    supplier_id: str
    category: FeedbackCategory
    template_id: str | None = None
    subcategory: str | None = None
    note: str | None = None
    fields: list[str] = field(default_factory=list)
    severity: FeedbackSeverity = FeedbackSeverity.MEDIUM
    suggested_improvement: str | None = None
    created_by: str | None = None


class SubmissionRepository:
    """Data access helpers for :class:`Submission`.

    Every state transition is a conditional ``UPDATE`` guarded on the observed
    state; the boolean return tells the caller whether it won the transition.
    """

    def __init__(self, session: Session):
        self._session = session

    def get(self, submission_id: str) -> Submission | None:
        return self._session.get(Submission, submission_id)

    def require(self, submission_id: str) -> Submission:
        submission = self.get(submission_id)
        if submission is None:
            raise SubmissionNotFoundError(submission_id)
        return submission

    def get_by_external_id(self, external_message_id: str) -> Submission | None:
        stmt = select(Submission).where(Submission.external_message_id == external_message_id)
        return self._session.scalars(stmt).first()

    def create(self, data: SubmissionCreate) -> Submission:
        """Persist a new submission and flush so unique constraints fire now."""

        submission = Submission(
            external_message_id=data.external_message_id,
            group_id=data.group_id,
            supplier_id=data.supplier_id,
            content_type=data.content_type,
            raw_content=data.raw_content,
            media_locator=data.media_locator,
            template_id=data.template_id,
            processing_status=ProcessingStatus.PENDING,
            validation_status=ValidationStatus.PENDING,
            attempt_count=0,
            field_errors=[],
        )
        self._session.add(submission)
        self._session.flush()
        return submission

    def claim_for_extraction(self, submission_id: str, observed: ProcessingStatus) -> bool:
        """Move a submission to ``processing`` if it is still in ``observed``."""

        stmt = (
            update(Submission)
            .where(Submission.id == submission_id)
            .where(Submission.processing_status == observed)
            .values(
                processing_status=ProcessingStatus.PROCESSING,
                attempt_count=Submission.attempt_count + 1,
                last_attempt_at=utcnow(),
            )
        )
        return self._session.execute(stmt).rowcount == 1

    def revert_claim(
        self, submission_id: str, prior_status: ProcessingStatus, prior_attempts: int
    ) -> bool:
        stmt = (
            update(Submission)
            .where(Submission.id == submission_id)
            .where(Submission.processing_status == ProcessingStatus.PROCESSING)
            .values(processing_status=prior_status, attempt_count=prior_attempts)
        )
        return self._session.execute(stmt).rowcount == 1

    def complete_extraction(
        self,
        submission_id: str,
        *,
        data: dict[str, Any],
        confidence: float | None,
        field_errors: list[dict[str, Any]],
    ) -> bool:
        stmt = (
            update(Submission)
            .where(Submission.id == submission_id)
            .where(Submission.processing_status == ProcessingStatus.PROCESSING)
            .values(
                processing_status=ProcessingStatus.COMPLETED,
                extracted_data=data,
                extraction_confidence=confidence,
                field_errors=field_errors,
                last_error=None,
            )
        )
        return self._session.execute(stmt).rowcount == 1

    def fail_extraction(self, submission_id: str, error_message: str) -> bool:
        stmt = (
            update(Submission)
            .where(Submission.id == submission_id)
            .where(Submission.processing_status == ProcessingStatus.PROCESSING)
            .values(processing_status=ProcessingStatus.FAILED, last_error=error_message)
        )
        return self._session.execute(stmt).rowcount == 1

    def reset_for_retry(self, submission_id: str) -> bool:
        stmt = (
            update(Submission)
            .where(Submission.id == submission_id)
            .where(Submission.processing_status == ProcessingStatus.FAILED)
            .values(processing_status=ProcessingStatus.PENDING)
        )
        return self._session.execute(stmt).rowcount == 1

    def record_decision(
        self,
        submission_id: str,
        *,
        status: ValidationStatus,
        reviewer: str | None,
        notes: str | None,
        decided_at: datetime | None = None,
    ) -> bool:
        """Apply an approve/reject decision iff the submission is still undecided."""

        stmt = (
            update(Submission)
            .where(Submission.id == submission_id)
            .where(Submission.processing_status == ProcessingStatus.COMPLETED)
            .where(Submission.validation_status == ValidationStatus.PENDING)
            .values(
                validation_status=status,
                validated_by=reviewer,
                validation_notes=notes,
                validated_at=decided_at or utcnow(),
            )
        )
        return self._session.execute(stmt).rowcount == 1

    def set_product_reference(self, submission_id: str, product_reference: str) -> None:
        stmt = (
            update(Submission)
            .where(Submission.id == submission_id)
            .values(product_reference=product_reference)
        )
        self._session.execute(stmt)

    def sibling_ids(self, group_id: str, exclude_id: str) -> list[str]:
        stmt = (
            select(Submission.id)
            .where(Submission.group_id == group_id)
            .where(Submission.id != exclude_id)
            .order_by(Submission.created_at, Submission.id)
        )
        return list(self._session.scalars(stmt))

    def siblings_by_group(self, group_ids: Sequence[str]) -> dict[str, list[str]]:
        """Return all submission ids for each of ``group_ids``."""

        if not group_ids:
            return {}
        stmt = (
            select(Submission.group_id, Submission.id)
            .where(Submission.group_id.in_(list(group_ids)))
            .order_by(Submission.created_at, Submission.id)
        )
        groups: dict[str, list[str]] = {}
        for group_id, submission_id in self._session.execute(stmt):
            groups.setdefault(group_id, []).append(submission_id)
        return groups

    def awaiting_validation(
        self,
        *,
        limit: int,
        supplier_id: str | None = None,
        content_type: ContentType | None = None,
    ) -> list[Submission]:
        """Completed submissions still pending review, oldest first."""

        stmt = (
            select(Submission)
            .where(Submission.processing_status == ProcessingStatus.COMPLETED)
            .where(Submission.validation_status == ValidationStatus.PENDING)
        )
        if supplier_id is not None:
            stmt = stmt.where(Submission.supplier_id == supplier_id)
        if content_type is not None:
            stmt = stmt.where(Submission.content_type == content_type)
        stmt = stmt.order_by(Submission.created_at, Submission.id).limit(limit)
        return list(self._session.scalars(stmt))

    def ids_with_status(self, status: ProcessingStatus, *, limit: int) -> list[str]:
        stmt = (
            select(Submission.id)
            .where(Submission.processing_status == status)
            .order_by(Submission.created_at, Submission.id)
            .limit(limit)
        )
        return list(self._session.scalars(stmt))

    def retryable_failed_ids(
        self,
        max_attempts: int,
        *,
        limit: int,
        last_attempt_before: datetime | None = None,
    ) -> list[str]:
        """Failed submissions with attempt budget left, least recently tried first.

        ``last_attempt_before`` skips rows whose scheduled retry may still be pending.
        """

        stmt = (
            select(Submission.id)
            .where(Submission.processing_status == ProcessingStatus.FAILED)
            .where(Submission.attempt_count < max_attempts)
        )
        if last_attempt_before is not None:
            stmt = stmt.where(
                or_(
                    Submission.last_attempt_at.is_(None),
                    Submission.last_attempt_at < last_attempt_before,
                )
            )
        stmt = stmt.order_by(Submission.last_attempt_at, Submission.id).limit(limit)
        return list(self._session.scalars(stmt))

    def stale_claim_ids(self, claimed_before: datetime, *, limit: int) -> list[str]:
        """Submissions stuck in ``processing`` since before ``claimed_before``."""

        stmt = (
            select(Submission.id)
            .where(Submission.processing_status == ProcessingStatus.PROCESSING)
            .where(Submission.last_attempt_at < claimed_before)
            .order_by(Submission.last_attempt_at, Submission.id)
            .limit(limit)
        )
        return list(self._session.scalars(stmt))

    def release_stale_claim(
        self, submission_id: str, claimed_before: datetime, error_message: str
    ) -> bool:
        """Fail an abandoned claim; a worker that finished meanwhile wins."""

        stmt = (
            update(Submission)
            .where(Submission.id == submission_id)
            .where(Submission.processing_status == ProcessingStatus.PROCESSING)
            .where(Submission.last_attempt_at < claimed_before)
            .values(processing_status=ProcessingStatus.FAILED, last_error=error_message)
        )
        return self._session.execute(stmt).rowcount == 1

    def count_processing_before(self, claimed_before: datetime) -> int:
        stmt = (
            select(func.count())
            .select_from(Submission)
            .where(Submission.processing_status == ProcessingStatus.PROCESSING)
            .where(Submission.last_attempt_at < claimed_before)
        )
        return int(self._session.scalar(stmt) or 0)

    def latest_pending_in_window(self, supplier_id: str, since: datetime) -> Submission | None:
        stmt = (
            select(Submission)
            .where(Submission.supplier_id == supplier_id)
            .where(Submission.processing_status == ProcessingStatus.PENDING)
            .where(Submission.created_at >= since)
            .order_by(Submission.created_at.desc(), Submission.id.desc())
        )
        return self._session.scalars(stmt).first()

    def status_counts(self) -> dict[str, dict[str, int]]:
        """Return counts keyed by processing status and by validation status."""

        processing = {status.value: 0 for status in ProcessingStatus}
        for status, count in self._session.execute(
            select(Submission.processing_status, func.count()).group_by(
                Submission.processing_status
            )
        ):
            processing[ProcessingStatus(status).value] = count

        validation = {status.value: 0 for status in ValidationStatus}
        completed = select(Submission.validation_status, func.count()).where(
            Submission.processing_status == ProcessingStatus.COMPLETED
        )
        for status, count in self._session.execute(
            completed.group_by(Submission.validation_status)
        ):
            validation[ValidationStatus(status).value] = count

        return {"processing": processing, "validation": validation}

    def count_awaiting_validation_before(self, cutoff: datetime) -> int:
        stmt = (
            select(func.count())
            .select_from(Submission)
            .where(Submission.processing_status == ProcessingStatus.COMPLETED)
            .where(Submission.validation_status == ValidationStatus.PENDING)
            .where(Submission.created_at < cutoff)
        )
        return int(self._session.scalar(stmt) or 0)

    def for_template(self, template_id: str, since: datetime) -> list[Submission]:
        stmt = (
            select(Submission)
            .where(Submission.template_id == template_id)
            .where(Submission.created_at >= since)
        )
        return list(self._session.scalars(stmt))

    def for_supplier(self, supplier_id: str) -> list[Submission]:
        stmt = (
            select(Submission)
            .where(Submission.supplier_id == supplier_id)
            .order_by(Submission.created_at)
        )
        return list(self._session.scalars(stmt))

    def decision_counts_by_supplier(
        self, supplier_ids: Sequence[str]
    ) -> dict[str, dict[str, int]]:
        """Approved and rejected counts for each supplier in ``supplier_ids``."""

        counts: dict[str, dict[str, int]] = {
            supplier_id: {"approved": 0, "rejected": 0} for supplier_id in supplier_ids
        }
        if not supplier_ids:
            return counts
        stmt = (
            select(Submission.supplier_id, Submission.validation_status, func.count())
            .where(Submission.supplier_id.in_(list(supplier_ids)))
            .where(
                Submission.validation_status.in_(
                    [ValidationStatus.APPROVED, ValidationStatus.REJECTED]
                )
            )
            .group_by(Submission.supplier_id, Submission.validation_status)
        )
        for supplier_id, status, count in self._session.execute(stmt):
            counts[supplier_id][ValidationStatus(status).value] = count
        return counts


class ProcessingLogRepository:
    """Append-only access to :class:`ProcessingLogEntry`."""

    def __init__(self, session: Session):
        self._session = session

    def append(
        self,
        submission_id: str,
        stage: StageName,
        status: StageStatus,
        *,
        duration_ms: int = 0,
        error_message: str | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> ProcessingLogEntry:
        entry = ProcessingLogEntry(
            submission_id=submission_id,
            stage=stage,
            status=status,
            duration_ms=max(int(duration_ms), 0),
            error_message=error_message,
            stage_metadata=metadata,
        )
        self._session.add(entry)
        self._session.flush()
        return entry

    def for_submission(self, submission_id: str) -> list[ProcessingLogEntry]:
        stmt = (
            select(ProcessingLogEntry)
            .where(ProcessingLogEntry.submission_id == submission_id)
            .order_by(ProcessingLogEntry.created_at, ProcessingLogEntry.id)
        )
        return list(self._session.scalars(stmt))

    def latest_error(self, submission_id: str) -> str | None:
        stmt = (
            select(ProcessingLogEntry.error_message)
            .where(ProcessingLogEntry.submission_id == submission_id)
            .where(ProcessingLogEntry.status == StageStatus.FAILED)
            .order_by(ProcessingLogEntry.created_at.desc(), ProcessingLogEntry.id.desc())
        )
        return self._session.scalars(stmt).first()

    def for_submissions(
        self,
        submission_ids: Sequence[str],
        *,
        stage: StageName,
        status: StageStatus,
    ) -> list[ProcessingLogEntry]:
        if not submission_ids:
            return []
        stmt = (
            select(ProcessingLogEntry)
            .where(ProcessingLogEntry.submission_id.in_(list(submission_ids)))
            .where(ProcessingLogEntry.stage == stage)
            .where(ProcessingLogEntry.status == status)
            .order_by(ProcessingLogEntry.created_at, ProcessingLogEntry.id)
        )
        return list(self._session.scalars(stmt))


class FeedbackRepository:
    """Data access helpers for :class:`FeedbackRecord`."""

    def __init__(self, session: Session):
        self._session = session

    def create(self, data: FeedbackCreate) -> FeedbackRecord:
        record = FeedbackRecord(
            submission_id=data.submission_id,
            supplier_id=data.supplier_id,
            template_id=data.template_id,
            category=data.category,
            subcategory=data.subcategory,
            note=data.note,
            fields=list(data.fields),
            severity=data.severity,
            suggested_improvement=data.suggested_improvement,
            created_by=data.created_by,
        )
        self._session.add(record)
        self._session.flush()
        return record

    def for_submission(self, submission_id: str) -> FeedbackRecord | None:
        stmt = select(FeedbackRecord).where(FeedbackRecord.submission_id == submission_id)
        return self._session.scalars(stmt).first()

    def for_submissions(self, submission_ids: Sequence[str]) -> list[FeedbackRecord]:
        if not submission_ids:
            return []
        stmt = (
            select(FeedbackRecord)
            .where(FeedbackRecord.submission_id.in_(list(submission_ids)))
            .order_by(FeedbackRecord.created_at, FeedbackRecord.id)
        )
        return list(self._session.scalars(stmt))


class TemplateRepository:
    """Data access helpers for extraction templates and their history."""

    def __init__(self, session: Session):
        self._session = session

    def get(self, template_id: str) -> ExtractionTemplate | None:
        return self._session.get(ExtractionTemplate, template_id)

    def require(self, template_id: str) -> ExtractionTemplate:
        template = self.get(template_id)
        if template is None:
            raise TemplateNotFoundError(template_id)
        return template

    def active(self) -> list[ExtractionTemplate]:
        stmt = (
            select(ExtractionTemplate)
            .where(ExtractionTemplate.is_active.is_(True))
            .order_by(ExtractionTemplate.id)
        )
        return list(self._session.scalars(stmt))

    def resolve_for(self, content_type: ContentType) -> ExtractionTemplate | None:
        """Pick the active template for ``content_type``, falling back to a generic one."""

        generic: ExtractionTemplate | None = None
        for template in self.active():
            if template.content_type == content_type:
                return template
            if template.content_type is None and generic is None:
                generic = template
        return generic

    def add(self, template: ExtractionTemplate) -> ExtractionTemplate:
        self._session.add(template)
        self._session.flush()
        return template

    def record_change(
        self,
        *,
        template_id: str,
        proposal_type: ProposalType,
        affected_field: str | None,
        before: dict[str, Any],
        after: dict[str, Any],
        applied_by: str | None,
    ) -> TemplateChange:
        change = TemplateChange(
            template_id=template_id,
            proposal_type=proposal_type,
            affected_field=affected_field,
            before=before,
            after=after,
            applied_by=applied_by,
        )
        self._session.add(change)
        self._session.flush()
        return change

    def changes_for(self, template_id: str) -> list[TemplateChange]:
        stmt = (
            select(TemplateChange)
            .where(TemplateChange.template_id == template_id)
            .order_by(TemplateChange.created_at, TemplateChange.id)
        )
        return list(self._session.scalars(stmt))

    def upsert_snapshot(
        self,
        template_id: str,
        *,
        health: str,
        success_rate: float,
        result: dict[str, Any],
        computed_at: datetime,
    ) -> TemplateHealthSnapshot:
        snapshot = self._session.get(TemplateHealthSnapshot, template_id)
        if snapshot is None:
            snapshot = TemplateHealthSnapshot(template_id=template_id)
            self._session.add(snapshot)
        snapshot.health = health
        snapshot.success_rate = success_rate
        snapshot.result = result
        snapshot.computed_at = computed_at
        self._session.flush()
        return snapshot

    def get_snapshot(self, template_id: str) -> TemplateHealthSnapshot | None:
        return self._session.get(TemplateHealthSnapshot, template_id)


class SupplierRepository:
    """Data access helpers for :class:`Supplier`."""

    def __init__(self, session: Session):
        self._session = session

    def get(self, supplier_id: str) -> Supplier | None:
        return self._session.get(Supplier, supplier_id)

    def require_active(self, supplier_id: str) -> Supplier:
        supplier = self.get(supplier_id)
        if supplier is None:
            raise SupplierNotFoundError(f"Supplier '{supplier_id}' not found")
        if not supplier.is_active:
            raise SupplierNotFoundError(f"Supplier '{supplier_id}' is inactive")
        return supplier

    def get_by_contact(self, contact_id: str) -> Supplier | None:
        stmt = select(Supplier).where(Supplier.contact_id == contact_id)
        return self._session.scalars(stmt).first()

    def create(
        self,
        *,
        contact_id: str,
        name: str,
        preferred_categories: list[str] | None = None,
        is_active: bool = True,
    ) -> Supplier:
        supplier = Supplier(
            contact_id=contact_id,
            name=name,
            preferred_categories=list(preferred_categories or []),
            is_active=is_active,
        )
        self._session.add(supplier)
        self._session.flush()
        return supplier

    def all_ids(self, *, active_only: bool = True) -> list[str]:
        stmt = select(Supplier.id).order_by(Supplier.created_at, Supplier.id)
        if active_only:
            stmt = stmt.where(Supplier.is_active.is_(True))
        return list(self._session.scalars(stmt))

    def store_metrics(self, supplier_id: str, metrics: dict[str, Any]) -> None:
        stmt = (
            update(Supplier)
            .where(Supplier.id == supplier_id)
            .values(performance_metrics=metrics, metrics_computed_at=utcnow())
        )
        self._session.execute(stmt)
