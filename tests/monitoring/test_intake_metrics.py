"""Tests for the Prometheus metric helpers."""

from __future__ import annotations

import pytest
from prometheus_client import REGISTRY

from catalog_intake.monitoring.metrics import (
    record_improvement_applied,
    record_ingestion,
    record_inventory_failure,
    record_review_conflict,
    record_review_decision,
    record_stage_attempt,
    record_stage_error,
    set_queue_depth,
    set_stale_processing,
    set_stale_validations,
    set_template_success_rate,
)


def _get_metric_value(metric_name: str, labels: dict[str, str] | None = None) -> float:
    """Helper to retrieve current metric value from registry."""
    labels = labels or {}
    value = REGISTRY.get_sample_value(metric_name, labels)
    return float(value) if value is not None else 0.0


class TestStageMetrics:
    """Stage attempt counters and duration histogram."""

    def test_attempt_without_duration_only_counts(self) -> None:
        labels = {"stage": "webhook", "status": "started"}
        before = _get_metric_value("intake_stage_attempts_total", labels)
        before_count = _get_metric_value(
            "intake_stage_duration_seconds_count", {"stage": "webhook"}
        )

        record_stage_attempt("webhook", "started")

        assert _get_metric_value("intake_stage_attempts_total", labels) == pytest.approx(before + 1)
        assert _get_metric_value(
            "intake_stage_duration_seconds_count", {"stage": "webhook"}
        ) == pytest.approx(before_count)

    def test_negative_duration_is_clamped(self) -> None:
        """Clock skew must not push a negative value into the histogram."""
        labels = {"stage": "inventory_update"}
        before_sum = _get_metric_value("intake_stage_duration_seconds_sum", labels)
        before_count = _get_metric_value("intake_stage_duration_seconds_count", labels)

        record_stage_attempt("inventory_update", "completed", -3.0)

        assert _get_metric_value("intake_stage_duration_seconds_sum", labels) == pytest.approx(
            before_sum
        )
        assert _get_metric_value(
            "intake_stage_duration_seconds_count", labels
        ) == pytest.approx(before_count + 1)

    def test_stage_errors_by_classification(self) -> None:
        labels = {"stage": "ai_extraction", "classification": "timeout"}
        before = _get_metric_value("intake_stage_errors_total", labels)

        record_stage_error("ai_extraction", "timeout")

        assert _get_metric_value("intake_stage_errors_total", labels) == pytest.approx(before + 1)


class TestReviewMetrics:
    """Ingestion, decision, and inventory counters."""

    def test_ingestion_outcomes(self) -> None:
        created = {"content_type": "voice", "outcome": "created"}
        duplicate = {"content_type": "voice", "outcome": "duplicate"}
        before_created = _get_metric_value("intake_submissions_ingested_total", created)
        before_duplicate = _get_metric_value("intake_submissions_ingested_total", duplicate)

        record_ingestion("voice", "created")
        record_ingestion("voice", "duplicate")
        record_ingestion("voice", "duplicate")

        assert _get_metric_value(
            "intake_submissions_ingested_total", created
        ) == pytest.approx(before_created + 1)
        assert _get_metric_value(
            "intake_submissions_ingested_total", duplicate
        ) == pytest.approx(before_duplicate + 2)

    def test_decisions_conflicts_and_inventory_failures(self) -> None:
        approved = {"decision": "approved"}
        before_approved = _get_metric_value("intake_review_decisions_total", approved)
        before_conflicts = _get_metric_value("intake_review_conflicts_total")
        before_failures = _get_metric_value("intake_inventory_commit_failures_total")

        record_review_decision("approved")
        record_review_conflict()
        record_inventory_failure()

        assert _get_metric_value(
            "intake_review_decisions_total", approved
        ) == pytest.approx(before_approved + 1)
        assert _get_metric_value("intake_review_conflicts_total") == pytest.approx(
            before_conflicts + 1
        )
        assert _get_metric_value("intake_inventory_commit_failures_total") == pytest.approx(
            before_failures + 1
        )


class TestGauges:
    """Gauges reflect the latest observation rather than accumulating."""

    def test_queue_depth_per_priority(self) -> None:
        set_queue_depth({"high": 4, "medium": 0, "low": 7})
        set_queue_depth({"high": 2})

        assert _get_metric_value("intake_validation_queue_depth", {"priority": "high"}) == 2
        assert _get_metric_value("intake_validation_queue_depth", {"priority": "low"}) == 7

    def test_stale_validations_never_negative(self) -> None:
        set_stale_validations(-1)
        assert _get_metric_value("intake_stale_validations") == 0

        set_stale_validations(3)
        assert _get_metric_value("intake_stale_validations") == 3

    def test_stale_processing_never_negative(self) -> None:
        set_stale_processing(-1)
        assert _get_metric_value("intake_stale_processing") == 0

        set_stale_processing(2)
        assert _get_metric_value("intake_stale_processing") == 2

    def test_template_success_rate(self) -> None:
        set_template_success_rate("T-gauge", 0.42)

        assert _get_metric_value(
            "intake_template_success_rate", {"template_id": "T-gauge"}
        ) == pytest.approx(0.42)

    def test_improvements_applied(self) -> None:
        labels = {"proposal_type": "example_update"}
        before = _get_metric_value("intake_template_improvements_applied_total", labels)

        record_improvement_applied("example_update")

        assert _get_metric_value(
            "intake_template_improvements_applied_total", labels
        ) == pytest.approx(before + 1)
