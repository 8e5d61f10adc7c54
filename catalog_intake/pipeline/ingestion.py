"""Idempotent ingestion boundary for inbound supplier messages."""

from __future__ import annotations

import time
from datetime import timedelta
from typing import Any

from sqlalchemy.exc import IntegrityError

from ..exceptions import InvalidSubmissionError
from ..models.base import session_scope, utcnow
from ..models.repository import (
    ProcessingLogRepository,
    SubmissionCreate,
    SubmissionRepository,
    SupplierRepository,
    TemplateRepository,
)
from ..models.submission import Submission
from ..monitoring.metrics import record_ingestion, record_stage_attempt
from ..schemas.enums import ContentType, StageName, StageStatus
from ..utils.audit import AuditAction, get_audit_logger
from ..utils.config import GlobalSettings, get_settings
from ..utils.logging import log_stage_attempt, setup_logger

logger = setup_logger(__name__, context={"component": "ingestion"})


def coerce_content_type(value: Any) -> ContentType:
    """Validate ``value`` against the closed content type taxonomy."""

    if isinstance(value, ContentType):
        return value
    try:
        return ContentType(str(value).strip().lower())
    except ValueError as exc:
        allowed = ", ".join(member.value for member in ContentType)
        raise InvalidSubmissionError(
            f"Unsupported content type '{value}'. Expected one of: {allowed}."
        ) from exc


def ingest(
    external_message_id: str,
    supplier_id: str,
    content_type: ContentType | str,
    raw_content: str = "",
    media_locator: str | None = None,
    *,
    template_id: str | None = None,
    source_message_id: str | None = None,
    settings: GlobalSettings | None = None,
) -> Submission:
    """
    Record an inbound message as a pending submission.

    Redelivery of an already stored ``external_message_id`` returns the stored
    submission unchanged; the unique constraint decides races between
    concurrent deliveries.

    Raises:
        InvalidSubmissionError: If the message id is blank or the content type is unknown
        SupplierNotFoundError: If the supplier is unknown or inactive
        TemplateNotFoundError: If an explicit template id does not exist
    """
    if not external_message_id or not external_message_id.strip():
        raise InvalidSubmissionError("external_message_id must be a non-empty string")
    external_message_id = external_message_id.strip()
    resolved_type = coerce_content_type(content_type)
    settings = settings or get_settings()

    with session_scope() as session:
        existing = SubmissionRepository(session).get_by_external_id(external_message_id)
    if existing is not None:
        return _already_ingested(existing)

    start = time.perf_counter()
    try:
        with session_scope() as session:
            SupplierRepository(session).require_active(supplier_id)
            templates = TemplateRepository(session)
            submissions = SubmissionRepository(session)

            if template_id is not None:
                resolved_template_id: str | None = templates.require(template_id).id
            else:
                resolved = templates.resolve_for(resolved_type)
                resolved_template_id = resolved.id if resolved is not None else None

            group_id = _resolve_group_id(
                submissions,
                external_message_id=external_message_id,
                supplier_id=supplier_id,
                source_message_id=source_message_id,
                window_seconds=settings.grouping_window_seconds,
            )

            submission = submissions.create(
                SubmissionCreate(
                    external_message_id=external_message_id,
                    group_id=group_id,
                    supplier_id=supplier_id,
                    content_type=resolved_type,
                    raw_content=raw_content or "",
                    media_locator=media_locator,
                    template_id=resolved_template_id,
                )
            )
            duration_ms = int((time.perf_counter() - start) * 1000)
            ProcessingLogRepository(session).append(
                submission.id,
                StageName.WEBHOOK,
                StageStatus.COMPLETED,
                duration_ms=duration_ms,
                metadata={
                    "external_message_id": external_message_id,
                    "content_type": resolved_type.value,
                    "group_id": group_id,
                },
            )
    except IntegrityError:
        with session_scope() as session:
            existing = SubmissionRepository(session).get_by_external_id(external_message_id)
        if existing is None:
            raise
        return _already_ingested(existing)

    record_ingestion(resolved_type.value, "created")
    record_stage_attempt(StageName.WEBHOOK.value, StageStatus.COMPLETED.value, duration_ms / 1000)
    log_stage_attempt(
        logger,
        submission.id,
        StageName.WEBHOOK.value,
        StageStatus.COMPLETED.value,
        duration_ms,
        template_id=resolved_template_id,
        group_id=group_id,
    )
    get_audit_logger().log_system_event(
        AuditAction.SUBMISSION_INGESTED,
        resource=submission.id,
        resource_type="submission",
        external_message_id=external_message_id,
        supplier_id=supplier_id,
        content_type=resolved_type.value,
    )
    return submission


def _already_ingested(existing: Submission) -> Submission:
    record_ingestion(existing.content_type.value, "duplicate")
    logger.info(
        "Message %s already ingested; resuming from stored status %s",
        existing.external_message_id,
        existing.processing_status.value,
        extra={"submission_id": existing.id, "status": existing.processing_status.value},
    )
    return existing


def _resolve_group_id(
    submissions: SubmissionRepository,
    *,
    external_message_id: str,
    supplier_id: str,
    source_message_id: str | None,
    window_seconds: int,
) -> str:
    """Pick the shared group id linking products split from one source message."""

    if source_message_id:
        return source_message_id
    if window_seconds > 0:
        since = utcnow() - timedelta(seconds=window_seconds)
        recent = submissions.latest_pending_in_window(supplier_id, since)
        if recent is not None:
            return recent.group_id
    return external_message_id
