"""Custom exceptions for Catalog Intake."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any


if TYPE_CHECKING:  # pragma: no cover - type checking only
    from catalog_intake.pipeline.error_handling import StageErrorReport


class CatalogIntakeError(Exception):
    """Base exception for all Catalog Intake errors."""

    pass


class ConfigurationError(CatalogIntakeError):
    """Raised when configuration is invalid or missing."""

    pass


class InvalidSubmissionError(CatalogIntakeError):
    """Raised when an inbound message carries values outside the known taxonomies."""

    pass


class SupplierNotFoundError(CatalogIntakeError):
    """Raised when a submission references an unknown or inactive supplier."""

    pass


class SubmissionNotFoundError(CatalogIntakeError):
    """Raised when a submission id does not exist."""

    def __init__(self, submission_id: str) -> None:
        super().__init__(f"Submission '{submission_id}' not found")
        self.submission_id = submission_id


class TemplateNotFoundError(CatalogIntakeError):
    """Raised when an extraction template id does not exist."""

    def __init__(self, template_id: str) -> None:
        super().__init__(f"Template '{template_id}' not found")
        self.template_id = template_id


class ProcessingConflictError(CatalogIntakeError):
    """Raised when a submission cannot be claimed for extraction."""

    pass


class RetryExhaustedError(ProcessingConflictError):
    """Raised when a failed submission has used up its extraction attempts."""

    def __init__(self, submission_id: str, attempts: int) -> None:
        super().__init__(
            f"Submission '{submission_id}' exhausted its retry budget after {attempts} attempts"
        )
        self.submission_id = submission_id
        self.attempts = attempts


class StageCancelledError(CatalogIntakeError):
    """Raised when the caller cancels a stage or its deadline has already passed."""

    pass


class ExtractorBusyError(StageCancelledError):
    """Raised when no extraction worker picks the call up in time; the claim is released."""

    def __init__(self, wait_seconds: float) -> None:
        super().__init__(f"No extraction worker became free within {wait_seconds:.1f}s")
        self.wait_seconds = wait_seconds


class ExtractionError(CatalogIntakeError):
    """Raised when the extraction capability fails or returns unusable output."""

    pass


class ExtractionTimeoutError(ExtractionError):
    """Raised when the extraction capability does not answer within its timeout."""

    def __init__(self, timeout_seconds: float) -> None:
        super().__init__(f"Extraction timed out after {timeout_seconds:.1f}s")
        self.timeout_seconds = timeout_seconds


class ValidationConflictError(CatalogIntakeError):
    """Raised when a review decision targets an already decided or unfinished submission."""

    def __init__(self, submission_id: str, reason: str) -> None:
        super().__init__(f"Cannot decide submission '{submission_id}': {reason}")
        self.submission_id = submission_id
        self.reason = reason


class InventoryCommitError(CatalogIntakeError):
    """Raised when the inventory boundary fails to commit an approved product."""

    def __init__(self, submission_id: str, message: str) -> None:
        super().__init__(f"Inventory commit failed for submission '{submission_id}': {message}")
        self.submission_id = submission_id


class MalformedFeedbackError(CatalogIntakeError):
    """Raised when rejection feedback cites an unknown category or subcategory."""

    pass


class ImprovementNotApplicableError(CatalogIntakeError):
    """Raised when an improvement proposal cannot be applied to the template."""

    pass


class StageExecutionError(CatalogIntakeError):
    """Raised by workers when a stage failure should be surfaced after reporting."""

    def __init__(self, report: StageErrorReport) -> None:
        super().__init__(report.message)
        self.report = report

    def as_dict(self) -> dict[str, Any]:
        """Return a serializable representation of the stage error for logging/tests."""

        return {
            "message": self.report.message,
            "error_type": self.report.error_type,
            "classification": self.report.classification,
            "retryable": self.report.retryable,
        }
