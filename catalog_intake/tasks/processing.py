"""Celery tasks driving extraction, retries, and periodic maintenance."""

from __future__ import annotations

import threading
from datetime import timedelta
from typing import Any

from celery import Task

from ..analysis.suppliers import recompute_all
from ..analysis.templates import TemplateAnalysisEngine
from ..exceptions import (
    InventoryCommitError,
    ProcessingConflictError,
    RetryExhaustedError,
    StageCancelledError,
)
from ..models.base import session_scope, utcnow
from ..models.repository import SubmissionRepository
from ..pipeline.boundaries import get_extractor
from ..pipeline.extraction import ExtractionStageRunner, release_abandoned_claims
from ..review.decisions import ReviewDecisionHandler
from ..review.queue import ValidationQueueManager
from ..schemas.enums import ProcessingStatus
from ..utils.config import get_settings
from ..utils.logging import setup_logger
from .celery_app import celery_app

logger = setup_logger(__name__, context={"component": "CeleryTasks"})

_runner: ExtractionStageRunner | None = None
_runner_lock = threading.Lock()


def get_stage_runner() -> ExtractionStageRunner:
    """Return the process-wide extraction runner, creating it on first use."""

    global _runner
    with _runner_lock:
        if _runner is None:
            _runner = ExtractionStageRunner(get_extractor())
        return _runner


def reset_stage_runner() -> None:
    global _runner
    with _runner_lock:
        if _runner is not None:
            _runner.shutdown()
        _runner = None


def run_extraction(task: Task, submission_id: str) -> dict[str, Any]:
    """Run one extraction attempt and schedule a Celery retry for retryable failures."""

    runner = get_stage_runner()
    try:
        outcome = runner.process_submission(submission_id)
    except RetryExhaustedError as exc:
        logger.warning(
            "Extraction retries exhausted",
            extra={"submission_id": submission_id, "status": "exhausted", "error": str(exc)},
        )
        return {"submission_id": submission_id, "status": "exhausted"}
    except ProcessingConflictError as exc:
        logger.info(
            "Submission not claimable, skipping: %s",
            exc,
            extra={"submission_id": submission_id, "status": "skipped"},
        )
        return {"submission_id": submission_id, "status": "skipped"}
    except StageCancelledError as exc:
        logger.warning(
            "Extraction deferred, claim released: %s",
            exc,
            extra={"submission_id": submission_id, "status": "deferred"},
        )
        return {"submission_id": submission_id, "status": "deferred"}

    if outcome.succeeded:
        auto_approved = _try_auto_approval(submission_id)
        return {
            "submission_id": submission_id,
            "status": outcome.status.value,
            "attempt": outcome.attempt,
            "confidence": outcome.confidence,
            "auto_approved": auto_approved,
        }

    policy = runner.retry_policy
    if outcome.retryable and policy.allows(outcome.attempt):
        # Stays failed until the delayed retry claims it, so sweeps leave it alone.
        countdown = policy.next_countdown(task.request.retries)
        logger.info(
            "Scheduling extraction retry in %ss",
            countdown,
            extra={"submission_id": submission_id, "status": "retrying"},
        )
        raise task.retry(countdown=countdown, max_retries=policy.max_attempts)

    return {
        "submission_id": submission_id,
        "status": outcome.status.value,
        "attempt": outcome.attempt,
        "error": outcome.error.to_dict() if outcome.error else None,
    }


def _try_auto_approval(submission_id: str) -> bool:
    try:
        result = ReviewDecisionHandler().auto_approve_if_trusted(submission_id)
    except InventoryCommitError as exc:
        logger.error(
            "Auto-approval could not commit to inventory; left for manual review: %s",
            exc,
            extra={"submission_id": submission_id, "status": "failed"},
        )
        return False
    return result is not None


@celery_app.task(name="catalog_intake.process_submission", bind=True)
def process_submission_task(self: Task, submission_id: str) -> dict[str, Any]:
    """Extract one submission, retrying transient failures with backoff."""

    return run_extraction(self, submission_id)


@celery_app.task(name="catalog_intake.process_pending_sweep")
def process_pending_sweep(limit: int | None = None) -> int:
    """Dispatch extraction for pending submissions."""

    batch = limit or get_settings().pending_batch_size
    with session_scope() as session:
        submission_ids = SubmissionRepository(session).ids_with_status(
            ProcessingStatus.PENDING, limit=batch
        )
    for submission_id in submission_ids:
        process_submission_task.delay(submission_id)
    if submission_ids:
        logger.info("Dispatched %s pending submission(s)", len(submission_ids))
    return len(submission_ids)


@celery_app.task(name="catalog_intake.retry_failed_sweep")
def retry_failed_sweep(limit: int | None = None) -> int:
    """Reset failed submissions that still have attempt budget and dispatch them.

    Rows tried within the maximum backoff are skipped; their delayed Celery
    retry is still due.
    """

    settings = get_settings()
    cutoff = utcnow() - timedelta(seconds=settings.retry_max_backoff_seconds)
    with session_scope() as session:
        submission_ids = SubmissionRepository(session).retryable_failed_ids(
            settings.retry_max_attempts,
            limit=limit or settings.pending_batch_size,
            last_attempt_before=cutoff,
        )

    runner = get_stage_runner()
    dispatched = 0
    for submission_id in submission_ids:
        if runner.reset_for_retry(submission_id):
            process_submission_task.delay(submission_id)
            dispatched += 1
    return dispatched


@celery_app.task(name="catalog_intake.stale_processing_sweep")
def stale_processing_sweep() -> int:
    """Fail claims abandoned in ``processing`` so the retry sweep can pick them up."""

    released = release_abandoned_claims()
    if released:
        logger.warning(
            "Released %s abandoned extraction claim(s)",
            len(released),
            extra={"status": "abandoned"},
        )
    return len(released)


@celery_app.task(name="catalog_intake.stale_validation_check")
def stale_validation_check() -> int:
    return ValidationQueueManager().check_stale_validations()


@celery_app.task(name="catalog_intake.analyze_templates")
def analyze_templates_task(window_days: int | None = None) -> list[dict[str, Any]]:
    """Analyze all active templates and return the ones needing attention."""

    engine = TemplateAnalysisEngine(window_days=window_days)
    results = engine.analyze_all()
    flagged = engine.needs_attention(results)
    for result in flagged:
        logger.warning(
            "Template needs attention: success rate %.2f over %s decided",
            result.success_rate,
            result.decided,
            extra={"template_id": result.template_id, "status": result.health.value},
        )
    return [
        {
            "template_id": result.template_id,
            "success_rate": result.success_rate,
            "health": result.health.value,
            "improvements": len(result.improvements),
        }
        for result in flagged
    ]


@celery_app.task(name="catalog_intake.recompute_suppliers")
def recompute_suppliers_task() -> int:
    return recompute_all()


__all__ = [
    "analyze_templates_task",
    "get_stage_runner",
    "process_pending_sweep",
    "process_submission_task",
    "recompute_suppliers_task",
    "reset_stage_runner",
    "retry_failed_sweep",
    "run_extraction",
    "stale_processing_sweep",
    "stale_validation_check",
]
