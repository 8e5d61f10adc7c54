"""Prometheus metrics definitions for Catalog Intake."""

from __future__ import annotations

from prometheus_client import Counter, Gauge, Histogram

STAGE_ATTEMPTS = Counter(
    "intake_stage_attempts_total",
    "Total processing stage attempts by stage and outcome.",
    labelnames=("stage", "status"),
)

STAGE_DURATION = Histogram(
    "intake_stage_duration_seconds",
    "Distribution of processing stage durations in seconds.",
    labelnames=("stage",),
    buckets=(0.05, 0.1, 0.25, 0.5, 1, 2, 5, 10, 30, 60, 120),
)

STAGE_ERRORS = Counter(
    "intake_stage_errors_total",
    "Total stage failures grouped by error classification.",
    labelnames=("stage", "classification"),
)

SUBMISSIONS_INGESTED = Counter(
    "intake_submissions_ingested_total",
    "Inbound messages received, split by whether they were new or redelivered.",
    labelnames=("content_type", "outcome"),
)

REVIEW_DECISIONS = Counter(
    "intake_review_decisions_total",
    "Committed review decisions by outcome.",
    labelnames=("decision",),
)

REVIEW_CONFLICTS = Counter(
    "intake_review_conflicts_total",
    "Decision attempts refused because the submission was already decided or not ready.",
)

INVENTORY_FAILURES = Counter(
    "intake_inventory_commit_failures_total",
    "Inventory boundary failures surfaced to operators.",
)

VALIDATION_QUEUE_DEPTH = Gauge(
    "intake_validation_queue_depth",
    "Submissions awaiting review in the last queue listing, by priority.",
    labelnames=("priority",),
)

STALE_VALIDATIONS = Gauge(
    "intake_stale_validations",
    "Submissions awaiting review for longer than the stale threshold.",
)

STALE_PROCESSING = Gauge(
    "intake_stale_processing",
    "Extraction claims found abandoned by the last stale-processing sweep.",
)

TEMPLATE_SUCCESS_RATE = Gauge(
    "intake_template_success_rate",
    "Latest computed approval rate per template.",
    labelnames=("template_id",),
)

TEMPLATE_IMPROVEMENTS_APPLIED = Counter(
    "intake_template_improvements_applied_total",
    "Improvement proposals applied to templates by type.",
    labelnames=("proposal_type",),
)


def record_stage_attempt(stage: str, status: str, duration_seconds: float | None = None) -> None:
    """Increment the stage attempt counter and observe its duration when known."""

    STAGE_ATTEMPTS.labels(stage=stage, status=status).inc()
    if duration_seconds is not None:
        STAGE_DURATION.labels(stage=stage).observe(max(duration_seconds, 0.0))


def record_stage_error(stage: str, classification: str) -> None:
    STAGE_ERRORS.labels(stage=stage, classification=classification).inc()


def record_ingestion(content_type: str, outcome: str) -> None:
    """Count an inbound message as ``created`` or ``duplicate``."""

    SUBMISSIONS_INGESTED.labels(content_type=content_type, outcome=outcome).inc()


def record_review_decision(decision: str) -> None:
    REVIEW_DECISIONS.labels(decision=decision).inc()


def record_review_conflict() -> None:
    REVIEW_CONFLICTS.inc()


def record_inventory_failure() -> None:
    INVENTORY_FAILURES.inc()


def set_queue_depth(counts: dict[str, int]) -> None:
    """Publish the per-priority queue depth observed by the last listing."""

    for priority, count in counts.items():
        VALIDATION_QUEUE_DEPTH.labels(priority=priority).set(count)


def set_stale_validations(count: int) -> None:
    STALE_VALIDATIONS.set(max(count, 0))


def set_stale_processing(count: int) -> None:
    STALE_PROCESSING.set(max(count, 0))


def set_template_success_rate(template_id: str, success_rate: float) -> None:
    TEMPLATE_SUCCESS_RATE.labels(template_id=template_id).set(success_rate)


def record_improvement_applied(proposal_type: str) -> None:
    TEMPLATE_IMPROVEMENTS_APPLIED.labels(proposal_type=proposal_type).inc()
