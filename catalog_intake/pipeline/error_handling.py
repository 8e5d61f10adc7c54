"""Structured error reports for failed processing stages."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any

from ..exceptions import (
    CatalogIntakeError,
    ConfigurationError,
    ExtractionError,
    ExtractionTimeoutError,
    ExtractorBusyError,
    InventoryCommitError,
    StageCancelledError,
)


@dataclass(slots=True)
class StageErrorReport:
    """Structured payload describing a failed stage attempt."""

    submission_id: str
    stage: str
    error_type: str
    message: str
    classification: str
    retryable: bool
    timestamp: str
    details: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        """Return a serializable dictionary representation of the error report."""

        payload: dict[str, Any] = {
            "submission_id": self.submission_id,
            "stage": self.stage,
            "error_type": self.error_type,
            "message": self.message,
            "classification": self.classification,
            "retryable": self.retryable,
            "timestamp": self.timestamp,
        }
        if self.details:
            payload["details"] = self.details
        return payload


def build_stage_error_report(
    exc: BaseException,
    *,
    submission_id: str,
    stage: str,
    retryable_override: bool | None = None,
    extra_details: dict[str, Any] | None = None,
) -> StageErrorReport:
    """Construct a :class:`StageErrorReport` describing the supplied exception."""

    classification, default_retryable = _classify_exception(exc)
    retryable = retryable_override if retryable_override is not None else default_retryable

    details: dict[str, Any] = {
        "args": [repr(arg) for arg in getattr(exc, "args", ())],
        "exception_module": exc.__class__.__module__,
    }
    if extra_details:
        details.update(extra_details)

    message = str(exc) if str(exc) else exc.__class__.__name__

    return StageErrorReport(
        submission_id=submission_id,
        stage=stage,
        error_type=exc.__class__.__name__,
        message=message,
        classification=classification,
        retryable=retryable,
        timestamp=datetime.now(timezone.utc).isoformat(),
        details=details,
    )


def _classify_exception(exc: BaseException) -> tuple[str, bool]:
    """Return a tuple of (classification, retryable) for a given exception."""

    if isinstance(exc, ExtractionTimeoutError):
        return "timeout", True
    if isinstance(exc, ExtractorBusyError):
        return "capacity", True
    if isinstance(exc, StageCancelledError):
        return "cancelled", False
    if isinstance(exc, ConfigurationError):
        return "configuration", False
    if isinstance(exc, InventoryCommitError):
        # Surfaced to operators, never retried automatically.
        return "inventory", False
    if isinstance(exc, ExtractionError):
        return "extraction", True
    if isinstance(exc, CatalogIntakeError):
        return "application", False
    return "unexpected", True
