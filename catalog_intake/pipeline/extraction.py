"""Extraction stage runner: claims a submission, calls the extractor, records the outcome."""

from __future__ import annotations

import json
import math
import threading
import time
from collections.abc import Callable, Mapping
from concurrent.futures import Future, ThreadPoolExecutor
from concurrent.futures import TimeoutError as FuturesTimeoutError
from dataclasses import dataclass
from datetime import date, datetime, timedelta, time as dt_time
from decimal import Decimal
from typing import Any
from uuid import UUID

from pydantic import ValidationError as PydanticValidationError
from tenacity import RetryCallState, Retrying, retry_if_result, stop_after_attempt, wait_exponential

from ..exceptions import (
    ExtractionError,
    ExtractionTimeoutError,
    ExtractorBusyError,
    ProcessingConflictError,
    RetryExhaustedError,
    StageCancelledError,
)
from ..models.base import session_scope, utcnow
from ..models.repository import (
    ProcessingLogRepository,
    SubmissionRepository,
    TemplateRepository,
)
from ..monitoring.metrics import record_stage_attempt, record_stage_error, set_stale_processing
from ..schemas.analysis import TemplateConfig
from ..schemas.enums import ContentType, ProcessingStatus, StageName, StageStatus
from ..schemas.submission import ExtractionResult
from ..utils.config import get_settings
from ..utils.logging import log_stage_attempt, setup_logger
from .boundaries import Extractor
from .error_handling import StageErrorReport, build_stage_error_report
from .policies import StageRetryPolicy

logger = setup_logger(__name__, context={"component": "extraction"})

_STAGE = StageName.AI_EXTRACTION
_CANCEL_POLL_SECONDS = 0.05


@dataclass(slots=True)
class StageOutcome:
    """Result of one extraction attempt."""

    submission_id: str
    status: ProcessingStatus
    attempt: int
    duration_ms: int
    confidence: float | None = None
    error: StageErrorReport | None = None

    @property
    def succeeded(self) -> bool:
        return self.status is ProcessingStatus.COMPLETED

    @property
    def retryable(self) -> bool:
        return self.error is not None and self.error.retryable


@dataclass(slots=True)
class _ClaimSnapshot:
    content: str
    content_type: ContentType
    template_id: str | None
    template_config: TemplateConfig | None
    prior_status: ProcessingStatus
    prior_attempts: int

    @property
    def attempt(self) -> int:
        return self.prior_attempts + 1


def normalize_confidence(value: Any) -> float | None:
    """Scale a reported confidence into [0, 100].

    Values in [0, 1] are read as fractions, so exactly 1 becomes 100 while 2
    stays 2. Non-numeric input yields ``None``.
    """
    if value is None or isinstance(value, bool):
        return None
    try:
        numeric = float(value)
    except (TypeError, ValueError):
        return None
    if math.isnan(numeric):
        return None
    if 0.0 <= numeric <= 1.0:
        numeric *= 100.0
    return max(0.0, min(100.0, numeric))


def _clean_value(value: Any) -> Any:
    if isinstance(value, str):
        return value.strip()
    if isinstance(value, Mapping):
        return {key: _clean_value(item) for key, item in value.items() if item is not None}
    if isinstance(value, list):
        return [_clean_value(item) for item in value if item is not None]
    return value


def _json_default(value: Any) -> Any:
    if isinstance(value, Decimal):
        return float(value)
    if isinstance(value, (datetime, date, dt_time)):
        return value.isoformat()
    if isinstance(value, UUID):
        return str(value)
    if isinstance(value, (set, frozenset)):
        return sorted(value, key=str)
    raise TypeError(f"Object of type {type(value).__name__} is not JSON serializable")


def _json_safe(data: dict[str, Any]) -> dict[str, Any]:
    """Round-trip through JSON so stored data matches what the database returns."""
    try:
        return json.loads(json.dumps(data, default=_json_default, allow_nan=False))
    except (TypeError, ValueError) as exc:
        raise ExtractionError(f"Extractor data cannot be stored: {exc}") from exc


def normalize_extraction(raw: Any) -> ExtractionResult:
    """
    Normalize extractor output into an :class:`ExtractionResult`.

    Accepts an ``ExtractionResult`` or a mapping with ``data`` plus optional
    ``confidence`` and ``field_errors`` (``fieldErrors`` is also accepted).

    Raises:
        ExtractionError: If the output cannot be interpreted
    """
    if isinstance(raw, ExtractionResult):
        payload: dict[str, Any] = raw.model_dump()
    elif isinstance(raw, Mapping):
        if "data" not in raw:
            raise ExtractionError("Extractor output is missing the 'data' mapping")
        payload = {
            "data": raw.get("data"),
            "confidence": raw.get("confidence"),
            "field_errors": raw.get("field_errors", raw.get("fieldErrors")) or [],
        }
    else:
        raise ExtractionError(
            f"Extractor returned unsupported type {type(raw).__name__}"
        )

    if not isinstance(payload["data"], Mapping):
        raise ExtractionError("Extractor 'data' must be a mapping of field values")

    payload["data"] = _json_safe(_clean_value(dict(payload["data"])))
    payload["confidence"] = normalize_confidence(payload["confidence"])
    try:
        return ExtractionResult.model_validate(payload)
    except PydanticValidationError as exc:
        raise ExtractionError(f"Extractor output failed validation: {exc}") from exc


class ExtractionStageRunner:
    """Runs the ``ai_extraction`` stage for one submission at a time.

    Many runners (or threads sharing one) may operate concurrently; the claim
    is a status-guarded update so at most one attempt per submission is in
    flight.

    The extraction timeout starts when a pool thread begins the call. Waiting
    for a free thread is bounded separately by ``queue_timeout_seconds``; when
    that expires the claim is released without spending an attempt.
    """

    def __init__(
        self,
        extractor: Extractor,
        *,
        timeout_seconds: float | None = None,
        retry_policy: StageRetryPolicy | None = None,
        max_workers: int | None = None,
        queue_timeout_seconds: float | None = None,
    ) -> None:
        settings = get_settings()
        self._extractor = extractor
        self.timeout_seconds = timeout_seconds or settings.extraction_timeout_seconds
        self.queue_timeout_seconds = (
            queue_timeout_seconds or settings.extraction_queue_timeout_seconds
        )
        self.retry_policy = retry_policy or StageRetryPolicy.from_settings(settings)
        self._executor = ThreadPoolExecutor(
            max_workers=max_workers or settings.extraction_workers,
            thread_name_prefix="intake-extraction",
        )

    def shutdown(self, wait: bool = False) -> None:
        self._executor.shutdown(wait=wait, cancel_futures=True)

    def process_submission(
        self,
        submission_id: str,
        *,
        deadline: float | None = None,
        cancel_event: threading.Event | None = None,
    ) -> StageOutcome:
        """
        Execute one extraction attempt.

        Args:
            submission_id: Submission to process
            deadline: Optional ``time.monotonic()`` instant after which the attempt is abandoned
            cancel_event: Optional event the caller sets to abandon the attempt

        Returns:
            StageOutcome describing a completed or failed attempt

        Raises:
            SubmissionNotFoundError: If the submission does not exist
            ProcessingConflictError: If the submission is not claimable
            RetryExhaustedError: If a failed submission used its attempt budget
            StageCancelledError: If cancelled or past deadline; prior state is kept
            ExtractorBusyError: If no pool thread picked the call up in time; prior state is kept
        """
        if deadline is not None and time.monotonic() >= deadline:
            raise StageCancelledError(f"Deadline already passed for submission '{submission_id}'")

        snapshot = self._claim(submission_id)
        start = time.perf_counter()
        started = threading.Event()
        future = self._executor.submit(self._call_extractor, started, snapshot)

        try:
            self._await_start(future, started, deadline=deadline, cancel_event=cancel_event)
            raw = self._await_result(future, deadline=deadline, cancel_event=cancel_event)
            result = normalize_extraction(raw)
        except StageCancelledError as exc:
            self._revert(submission_id, snapshot, exc, start)
            raise
        except Exception as exc:
            return self._record_failure(submission_id, snapshot, exc, start)

        try:
            return self._record_success(submission_id, snapshot, result, start)
        except ProcessingConflictError:
            raise
        except Exception as exc:
            logger.exception(
                "Storing extraction result failed",
                extra={"submission_id": submission_id, "stage": _STAGE.value},
            )
            return self._record_failure(submission_id, snapshot, exc, start)

    def reset_for_retry(self, submission_id: str) -> bool:
        """Explicit ``failed -> pending`` transition. Returns False if not failed."""

        with session_scope() as session:
            submissions = SubmissionRepository(session)
            submissions.require(submission_id)
            reset = submissions.reset_for_retry(submission_id)
        if reset:
            logger.info(
                "Submission reset for retry",
                extra={"submission_id": submission_id, "status": ProcessingStatus.PENDING.value},
            )
        return reset

    def process_until_settled(
        self,
        submission_id: str,
        *,
        sleep: Callable[[float], None] = time.sleep,
    ) -> StageOutcome:
        """Retry extraction with exponential backoff until it succeeds or the policy stops it."""

        policy = self.retry_policy

        def _should_retry(outcome: StageOutcome) -> bool:
            return (
                not outcome.succeeded
                and outcome.retryable
                and policy.allows(outcome.attempt)
            )

        def _last_outcome(retry_state: RetryCallState) -> StageOutcome:
            if retry_state.outcome is None:
                raise RuntimeError("Retry attempt completed without outcome")
            return retry_state.outcome.result()

        retryer = Retrying(
            stop=stop_after_attempt(policy.max_attempts),
            wait=wait_exponential(
                multiplier=policy.backoff_seconds, max=policy.max_backoff_seconds
            ),
            retry=retry_if_result(_should_retry),
            retry_error_callback=_last_outcome,
            sleep=sleep,
            reraise=True,
        )
        return retryer(self.process_submission, submission_id)

    def _claim(self, submission_id: str) -> _ClaimSnapshot:
        with session_scope() as session:
            submissions = SubmissionRepository(session)
            submission = submissions.require(submission_id)
            status = submission.processing_status

            if status is ProcessingStatus.FAILED:
                if not self.retry_policy.allows(submission.attempt_count):
                    raise RetryExhaustedError(submission_id, submission.attempt_count)
            elif status is not ProcessingStatus.PENDING:
                raise ProcessingConflictError(
                    f"Submission '{submission_id}' is {status.value}; "
                    "only pending or failed submissions can be processed"
                )

            template_config: TemplateConfig | None = None
            if submission.template_id is not None:
                template = TemplateRepository(session).get(submission.template_id)
                if template is not None:
                    template_config = TemplateConfig.from_model(template)

            snapshot = _ClaimSnapshot(
                content=submission.raw_content,
                content_type=submission.content_type,
                template_id=submission.template_id,
                template_config=template_config,
                prior_status=status,
                prior_attempts=submission.attempt_count,
            )

            if not submissions.claim_for_extraction(submission_id, status):
                raise ProcessingConflictError(
                    f"Submission '{submission_id}' was claimed by another worker"
                )
            ProcessingLogRepository(session).append(
                submission_id,
                _STAGE,
                StageStatus.STARTED,
                metadata={"attempt": snapshot.attempt, "template_id": snapshot.template_id},
            )

        record_stage_attempt(_STAGE.value, StageStatus.STARTED.value)
        log_stage_attempt(
            logger,
            submission_id,
            _STAGE.value,
            StageStatus.STARTED.value,
            0,
            template_id=snapshot.template_id,
            attempt=snapshot.attempt,
        )
        return snapshot

    def _call_extractor(self, started: threading.Event, snapshot: _ClaimSnapshot) -> Any:
        started.set()
        return self._extractor.extract(
            snapshot.content, snapshot.content_type, snapshot.template_config
        )

    @staticmethod
    def _check_interrupt(
        future: Future[Any],
        now: float,
        deadline: float | None,
        cancel_event: threading.Event | None,
    ) -> None:
        if cancel_event is not None and cancel_event.is_set():
            future.cancel()
            raise StageCancelledError("Extraction cancelled by caller")
        if deadline is not None and now >= deadline:
            future.cancel()
            raise StageCancelledError("Extraction deadline exceeded")

    def _await_start(
        self,
        future: Future[Any],
        started: threading.Event,
        *,
        deadline: float | None,
        cancel_event: threading.Event | None,
    ) -> None:
        limit = time.monotonic() + self.queue_timeout_seconds
        while not started.is_set():
            now = time.monotonic()
            self._check_interrupt(future, now, deadline, cancel_event)
            if now >= limit:
                if future.cancel():
                    raise ExtractorBusyError(self.queue_timeout_seconds)
                # Picked up between checks; the flag is the call's first statement.
                started.wait()
                return

            wait = limit - now
            if deadline is not None:
                wait = min(wait, deadline - now)
            if cancel_event is not None:
                wait = min(wait, _CANCEL_POLL_SECONDS)
            started.wait(max(wait, 0.0))

    def _await_result(
        self,
        future: Future[Any],
        *,
        deadline: float | None,
        cancel_event: threading.Event | None,
    ) -> Any:
        limit = time.monotonic() + self.timeout_seconds
        while True:
            now = time.monotonic()
            self._check_interrupt(future, now, deadline, cancel_event)
            remaining = limit - now
            if remaining <= 0:
                future.cancel()
                raise ExtractionTimeoutError(self.timeout_seconds)

            wait = remaining
            if deadline is not None:
                wait = min(wait, deadline - now)
            if cancel_event is not None:
                wait = min(wait, _CANCEL_POLL_SECONDS)

            try:
                return future.result(timeout=max(wait, 0.0))
            except FuturesTimeoutError:
                if future.done():
                    raise

    def _record_success(
        self,
        submission_id: str,
        snapshot: _ClaimSnapshot,
        result: ExtractionResult,
        start: float,
    ) -> StageOutcome:
        duration_ms = int((time.perf_counter() - start) * 1000)
        field_errors = [error.model_dump() for error in result.field_errors]

        with session_scope() as session:
            updated = SubmissionRepository(session).complete_extraction(
                submission_id,
                data=result.data,
                confidence=result.confidence,
                field_errors=field_errors,
            )
            if not updated:
                raise ProcessingConflictError(
                    f"Submission '{submission_id}' left the processing state during extraction"
                )
            ProcessingLogRepository(session).append(
                submission_id,
                _STAGE,
                StageStatus.COMPLETED,
                duration_ms=duration_ms,
                metadata={
                    "attempt": snapshot.attempt,
                    "template_id": snapshot.template_id,
                    "confidence": result.confidence,
                    "fields": sorted(result.data),
                    "field_errors": field_errors,
                },
            )

        record_stage_attempt(_STAGE.value, StageStatus.COMPLETED.value, duration_ms / 1000)
        log_stage_attempt(
            logger,
            submission_id,
            _STAGE.value,
            StageStatus.COMPLETED.value,
            duration_ms,
            template_id=snapshot.template_id,
            attempt=snapshot.attempt,
            confidence=result.confidence,
        )
        return StageOutcome(
            submission_id=submission_id,
            status=ProcessingStatus.COMPLETED,
            attempt=snapshot.attempt,
            duration_ms=duration_ms,
            confidence=result.confidence,
        )

    def _record_failure(
        self,
        submission_id: str,
        snapshot: _ClaimSnapshot,
        exc: Exception,
        start: float,
    ) -> StageOutcome:
        duration_ms = int((time.perf_counter() - start) * 1000)
        report = build_stage_error_report(
            exc,
            submission_id=submission_id,
            stage=_STAGE.value,
            extra_details={"attempt": snapshot.attempt},
        )

        with session_scope() as session:
            SubmissionRepository(session).fail_extraction(submission_id, report.message)
            ProcessingLogRepository(session).append(
                submission_id,
                _STAGE,
                StageStatus.FAILED,
                duration_ms=duration_ms,
                error_message=report.message,
                metadata={
                    "attempt": snapshot.attempt,
                    "template_id": snapshot.template_id,
                    "error_type": report.error_type,
                    "classification": report.classification,
                    "retryable": report.retryable,
                },
            )

        record_stage_attempt(_STAGE.value, StageStatus.FAILED.value, duration_ms / 1000)
        record_stage_error(_STAGE.value, report.classification)
        log_stage_attempt(
            logger,
            submission_id,
            _STAGE.value,
            StageStatus.FAILED.value,
            duration_ms,
            template_id=snapshot.template_id,
            attempt=snapshot.attempt,
            error_type=report.error_type,
            classification=report.classification,
            error=report.message,
        )
        return StageOutcome(
            submission_id=submission_id,
            status=ProcessingStatus.FAILED,
            attempt=snapshot.attempt,
            duration_ms=duration_ms,
            error=report,
        )

    def _revert(
        self,
        submission_id: str,
        snapshot: _ClaimSnapshot,
        exc: StageCancelledError,
        start: float,
    ) -> None:
        duration_ms = int((time.perf_counter() - start) * 1000)
        classification = build_stage_error_report(
            exc, submission_id=submission_id, stage=_STAGE.value
        ).classification
        with session_scope() as session:
            SubmissionRepository(session).revert_claim(
                submission_id, snapshot.prior_status, snapshot.prior_attempts
            )
            ProcessingLogRepository(session).append(
                submission_id,
                _STAGE,
                StageStatus.FAILED,
                duration_ms=duration_ms,
                error_message=str(exc),
                metadata={
                    "attempt": snapshot.attempt,
                    "template_id": snapshot.template_id,
                    "cancelled": True,
                    "classification": classification,
                },
            )

        record_stage_attempt(_STAGE.value, StageStatus.FAILED.value, duration_ms / 1000)
        record_stage_error(_STAGE.value, classification)
        log_stage_attempt(
            logger,
            submission_id,
            _STAGE.value,
            StageStatus.FAILED.value,
            duration_ms,
            template_id=snapshot.template_id,
            cancelled=True,
            restored_status=snapshot.prior_status.value,
        )


def release_abandoned_claims(
    older_than: timedelta | None = None, *, limit: int | None = None
) -> list[str]:
    """Fail ``processing`` claims whose worker never reported back.

    A worker that crashes or loses its database connection after claiming a
    submission leaves it in ``processing``, where neither sweep will pick it
    up. Released claims get an ``ai_extraction``/``failed`` entry and keep the
    attempt they spent, so the failed-retry sweep takes over while budget lasts.

    Returns:
        Ids of the submissions that were released
    """
    settings = get_settings()
    age = older_than or timedelta(minutes=settings.stale_processing_minutes)
    cutoff = utcnow() - age
    message = f"Abandoned claim: no result within {int(age.total_seconds() // 60)} minute(s)"

    released: list[str] = []
    with session_scope() as session:
        submissions = SubmissionRepository(session)
        log = ProcessingLogRepository(session)
        for submission_id in submissions.stale_claim_ids(
            cutoff, limit=limit or settings.queue_scan_limit
        ):
            if not submissions.release_stale_claim(submission_id, cutoff, message):
                continue
            log.append(
                submission_id,
                _STAGE,
                StageStatus.FAILED,
                error_message=message,
                metadata={"abandoned": True, "classification": "abandoned"},
            )
            released.append(submission_id)

    set_stale_processing(len(released))
    for submission_id in released:
        record_stage_attempt(_STAGE.value, StageStatus.FAILED.value)
        record_stage_error(_STAGE.value, "abandoned")
        log_stage_attempt(
            logger,
            submission_id,
            _STAGE.value,
            StageStatus.FAILED.value,
            0,
            abandoned=True,
            error=message,
        )
    return released
