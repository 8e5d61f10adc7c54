"""Submission intake and inspection endpoints."""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter, status

from ...exceptions import ProcessingConflictError
from ...models.base import session_scope
from ...models.repository import SubmissionRepository
from ...pipeline.ingestion import ingest
from ...review.queue import ValidationQueueManager
from ...schemas.enums import ProcessingStatus
from ...schemas.submission import (
    IngestRequest,
    IngestResponse,
    ProcessingLogView,
    SubmissionDetail,
)
from ...tasks.processing import process_submission_task
from ...utils.logging import setup_logger

logger = setup_logger(__name__, context={"component": "SubmissionsAPI"})
router = APIRouter(prefix="/submissions")


def dispatch_processing(submission_id: str) -> None:
    """Queue extraction for a submission on the Celery workers."""

    process_submission_task.delay(submission_id)


@router.post("", response_model=IngestResponse, status_code=status.HTTP_201_CREATED)
def create_submission(request: IngestRequest) -> IngestResponse:
    """Store an inbound supplier message; redelivery returns the stored submission."""

    submission = ingest(
        request.external_message_id,
        request.supplier_id,
        request.content_type,
        request.raw_content,
        request.media_locator,
        template_id=request.template_id,
        source_message_id=request.source_message_id,
    )
    if submission.processing_status is ProcessingStatus.PENDING:
        dispatch_processing(submission.id)
    return IngestResponse.from_submission(submission)


@router.get("/stats")
def pipeline_stats() -> dict[str, Any]:
    return ValidationQueueManager().pipeline_stats()


@router.get("/{submission_id}", response_model=SubmissionDetail)
def get_submission(submission_id: str) -> SubmissionDetail:
    return ValidationQueueManager().get_submission(submission_id)


@router.get("/{submission_id}/logs", response_model=list[ProcessingLogView])
def get_processing_log(submission_id: str) -> list[ProcessingLogView]:
    return ValidationQueueManager().list_processing_log(submission_id)


@router.post("/{submission_id}/retry", status_code=status.HTTP_202_ACCEPTED)
def retry_submission(submission_id: str) -> dict[str, str]:
    """Move a failed submission back to pending and dispatch it again."""

    with session_scope() as session:
        submissions = SubmissionRepository(session)
        submissions.require(submission_id)
        if not submissions.reset_for_retry(submission_id):
            raise ProcessingConflictError(
                f"Submission '{submission_id}' is not in failed state and cannot be retried"
            )

    logger.info(
        "Manual retry requested",
        extra={"submission_id": submission_id, "status": ProcessingStatus.PENDING.value},
    )
    dispatch_processing(submission_id)
    return {"submission_id": submission_id, "status": ProcessingStatus.PENDING.value}
