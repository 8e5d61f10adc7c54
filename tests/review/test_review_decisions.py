"""Tests for approve/reject decisions and the inventory commit."""

from __future__ import annotations

import threading

import pytest
from prometheus_client import REGISTRY

from catalog_intake.exceptions import (
    InventoryCommitError,
    MalformedFeedbackError,
    SubmissionNotFoundError,
    ValidationConflictError,
)
from catalog_intake.models.base import session_scope
from catalog_intake.models.repository import (
    FeedbackRepository,
    ProcessingLogRepository,
    SubmissionRepository,
    SupplierRepository,
)
from catalog_intake.pipeline.ingestion import ingest
from catalog_intake.review.decisions import AUTO_APPROVER, ReviewDecisionHandler, merge_edits
from catalog_intake.schemas.enums import (
    FeedbackCategory,
    StageName,
    StageStatus,
    ValidationStatus,
)
from catalog_intake.utils.config import AutoApprovalConfig

MISSING_WARRANTY = {"category": "missing_field", "fields": ["warrantyMonths"]}


def _load(submission_id: str):  # type: ignore[no-untyped-def]
    with session_scope() as session:
        return SubmissionRepository(session).require(submission_id)


def _log(submission_id: str) -> list[tuple[StageName, StageStatus]]:
    with session_scope() as session:
        entries = ProcessingLogRepository(session).for_submission(submission_id)
    return [(entry.stage, entry.status) for entry in entries]


def _metric(name: str, labels: dict[str, str] | None = None) -> float:
    value = REGISTRY.get_sample_value(name, labels or {})
    return float(value) if value is not None else 0.0


def test_merge_edits_overlays_reviewer_values() -> None:
    assert merge_edits({"name": "Phone", "price": "499"}, {"price": "459"}) == {
        "name": "Phone",
        "price": "459",
    }
    assert merge_edits(None, None) == {}


def test_approve_commits_merged_product(make_completed, inventory) -> None:
    submission_id = make_completed()

    result = ReviewDecisionHandler().approve(
        submission_id, edits={"price": "459.00"}, notes="price fixed", reviewer="alice"
    )

    assert result.product_reference == "PRD-0001"
    assert result.committed_data == {"name": "Phone X", "price": "459.00", "category": "phones"}
    assert inventory.committed == [result.committed_data]

    submission = _load(submission_id)
    assert submission.validation_status is ValidationStatus.APPROVED
    assert submission.validated_by == "alice"
    assert submission.validation_notes == "price fixed"
    assert submission.validated_at is not None
    assert submission.product_reference == "PRD-0001"
    assert submission.extracted_data["price"] == "499.00"
    assert _log(submission_id) == [
        (StageName.VALIDATION, StageStatus.COMPLETED),
        (StageName.INVENTORY_UPDATE, StageStatus.COMPLETED),
    ]


def test_approve_without_edits_commits_extracted_data(make_completed, inventory) -> None:
    submission_id = make_completed()

    result = ReviewDecisionHandler().approve(submission_id, edits={})

    assert result.committed_data == _load(submission_id).extracted_data


def test_inventory_failure_keeps_submission_open(
    make_completed, failing_inventory, inventory
) -> None:
    """A failed commit persists only the failure entry; a later approval may succeed."""

    submission_id = make_completed()
    failures_before = _metric("intake_inventory_commit_failures_total")
    handler = ReviewDecisionHandler(inventory=failing_inventory)

    with pytest.raises(InventoryCommitError, match="unreachable"):
        handler.approve(submission_id, reviewer="alice")

    submission = _load(submission_id)
    assert submission.validation_status is ValidationStatus.PENDING
    assert submission.validated_by is None
    assert submission.product_reference is None
    assert _log(submission_id) == [(StageName.INVENTORY_UPDATE, StageStatus.FAILED)]
    assert _metric("intake_inventory_commit_failures_total") == pytest.approx(failures_before + 1)

    with session_scope() as session:
        failure = ProcessingLogRepository(session).for_submission(submission_id)[0]
    assert failure.error_message == "inventory service unreachable"
    assert failure.stage_metadata["error_type"] == "ConnectionError"

    result = ReviewDecisionHandler(inventory=inventory).approve(submission_id, reviewer="bob")

    assert result.product_reference == "PRD-0001"
    assert _load(submission_id).validation_status is ValidationStatus.APPROVED


def test_inventory_without_reference_is_a_failure(make_completed) -> None:
    class EmptyInventory:
        def commit_product(self, merged_data):  # type: ignore[no-untyped-def]
            return ""

    submission_id = make_completed()

    with pytest.raises(InventoryCommitError, match="no product reference"):
        ReviewDecisionHandler(inventory=EmptyInventory()).approve(submission_id)

    assert _load(submission_id).validation_status is ValidationStatus.PENDING


def test_second_decision_is_refused(make_completed, inventory) -> None:
    submission_id = make_completed()
    handler = ReviewDecisionHandler()
    handler.approve(submission_id)
    conflicts_before = _metric("intake_review_conflicts_total")

    with pytest.raises(ValidationConflictError, match="already approved"):
        handler.approve(submission_id)
    with pytest.raises(ValidationConflictError):
        handler.reject(submission_id, MISSING_WARRANTY)

    assert len(inventory.committed) == 1
    assert _metric("intake_review_conflicts_total") == pytest.approx(conflicts_before + 2)


def test_rejection_is_terminal(make_completed, inventory) -> None:
    submission_id = make_completed()
    handler = ReviewDecisionHandler()
    handler.reject(submission_id, MISSING_WARRANTY)

    with pytest.raises(ValidationConflictError, match="already rejected"):
        handler.approve(submission_id)

    assert inventory.committed == []


def test_undecidable_processing_states(supplier_id: str, inventory) -> None:
    pending = ingest("not-extracted", supplier_id, "text", "Phone").id

    with pytest.raises(ValidationConflictError, match="processing status is pending"):
        ReviewDecisionHandler().approve(pending)
    with pytest.raises(SubmissionNotFoundError):
        ReviewDecisionHandler().approve("missing")


def test_concurrent_approvals_commit_once(make_completed, inventory) -> None:
    submission_id = make_completed()
    outcomes: list[str] = []
    barrier = threading.Barrier(4)

    def approve() -> None:
        barrier.wait()
        try:
            ReviewDecisionHandler().approve(submission_id)
        except ValidationConflictError:
            outcomes.append("conflict")
        else:
            outcomes.append("approved")

    threads = [threading.Thread(target=approve) for _ in range(4)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    assert outcomes.count("approved") == 1
    assert outcomes.count("conflict") == 3
    assert len(inventory.committed) == 1


def test_reject_stores_feedback(make_completed, template_id: str) -> None:
    submission_id = make_completed(template_id=template_id)

    record = ReviewDecisionHandler().reject(
        submission_id,
        {
            "category": "missing_field",
            "subcategory": " Specification ",
            "fields": ["warrantyMonths"],
            "note": "No warranty listed",
        },
        notes="needs warranty",
        reviewer="carol",
    )

    assert record.category is FeedbackCategory.MISSING_FIELD
    assert record.subcategory == "specification"
    assert record.fields == ["warrantyMonths"]
    assert record.template_id == template_id
    assert record.created_by == "carol"

    submission = _load(submission_id)
    assert submission.validation_status is ValidationStatus.REJECTED
    assert submission.validation_notes == "needs warranty"
    assert _log(submission_id) == [(StageName.VALIDATION, StageStatus.COMPLETED)]


@pytest.mark.parametrize(
    "feedback",
    [
        {"category": "not_a_category"},
        {"category": "missing_field"},
        {"category": "invalid_format", "subcategory": "colour_format"},
        {"category": "poor_quality", "fields": ["  "]},
        {"note": "no category"},
    ],
)
def test_malformed_feedback_writes_nothing(make_completed, feedback: dict) -> None:
    submission_id = make_completed()

    with pytest.raises(MalformedFeedbackError):
        ReviewDecisionHandler().reject(submission_id, feedback)

    assert _load(submission_id).validation_status is ValidationStatus.PENDING
    with session_scope() as session:
        assert FeedbackRepository(session).for_submission(submission_id) is None
    assert _log(submission_id) == []


def test_bulk_approve_reports_each_id(make_completed, inventory) -> None:
    first = make_completed()
    second = make_completed()
    ReviewDecisionHandler().approve(second)

    result = ReviewDecisionHandler().bulk_approve([first, second, "missing"], reviewer="alice")

    assert result.successful == [first]
    assert [failure.id for failure in result.failed] == [second, "missing"]
    assert result.total_processed == 3


def test_bulk_reject_validates_feedback_first(make_completed) -> None:
    first = make_completed()
    second = make_completed()

    with pytest.raises(MalformedFeedbackError):
        ReviewDecisionHandler().bulk_reject([first, second], {"category": "unknown"})
    assert _load(first).validation_status is ValidationStatus.PENDING

    result = ReviewDecisionHandler().bulk_reject(
        [first, second], {"category": "duplicate_product", "subcategory": "exact_duplicate"}
    )

    assert result.successful == [first, second]
    assert result.failed == []


def _trusted_supplier(supplier_id: str, *, total: int, approval_rate: float) -> None:
    with session_scope() as session:
        SupplierRepository(session).store_metrics(
            supplier_id, {"total_submissions": total, "approval_rate": approval_rate}
        )


def test_auto_approval_disabled_by_default(make_completed, supplier_id: str, inventory) -> None:
    _trusted_supplier(supplier_id, total=50, approval_rate=1.0)
    submission_id = make_completed(confidence=99)

    assert ReviewDecisionHandler().auto_approve_if_trusted(submission_id) is None
    assert inventory.committed == []


def test_auto_approval_for_trusted_supplier(make_completed, supplier_id: str, inventory) -> None:
    config = AutoApprovalConfig(enabled=True, min_history=10, min_approval_rate=0.9)
    _trusted_supplier(supplier_id, total=20, approval_rate=0.95)
    confident = make_completed(confidence=97)
    doubtful = make_completed({"name": "Phone X"}, confidence=97)

    handler = ReviewDecisionHandler()
    result = handler.auto_approve_if_trusted(confident, config=config)

    assert result is not None
    assert result.validated_by == AUTO_APPROVER
    assert _load(confident).validation_status is ValidationStatus.APPROVED
    assert handler.auto_approve_if_trusted(doubtful, config=config) is None
    assert handler.auto_approve_if_trusted(confident, config=config) is None


def test_auto_approval_requires_history(make_completed, supplier_id: str, inventory) -> None:
    config = AutoApprovalConfig(enabled=True, min_history=10, min_approval_rate=0.9)
    _trusted_supplier(supplier_id, total=3, approval_rate=1.0)
    submission_id = make_completed(confidence=99)

    assert ReviewDecisionHandler().auto_approve_if_trusted(submission_id, config=config) is None
