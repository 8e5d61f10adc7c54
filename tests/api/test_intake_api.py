"""End-to-end tests for the intake HTTP API."""

from __future__ import annotations

from collections.abc import Iterator

import pytest
from fastapi.testclient import TestClient

from catalog_intake.api.main import app
from catalog_intake.api.routes import submissions as submission_routes
from catalog_intake.models.base import session_scope
from catalog_intake.models.repository import SubmissionRepository
from catalog_intake.schemas.enums import ProcessingStatus


@pytest.fixture
def dispatched(monkeypatch: pytest.MonkeyPatch) -> list[str]:
    queued: list[str] = []
    monkeypatch.setattr(submission_routes, "dispatch_processing", queued.append)
    return queued


@pytest.fixture
def client(dispatched: list[str]) -> Iterator[TestClient]:
    with TestClient(app) as test_client:
        yield test_client


def _error(response) -> dict:  # type: ignore[no-untyped-def]
    body = response.json()
    assert body["status"] == "error"
    return body


def test_health_reports_database(client: TestClient) -> None:
    response = client.get("/health")

    assert response.status_code == 200
    assert response.json()["status"] == "healthy"
    assert response.json()["database"] == {"status": "ok"}


def test_create_submission_dispatches_extraction(
    client: TestClient, dispatched: list[str], supplier_id: str, template_id: str
) -> None:
    payload = {
        "external_message_id": "wa-100",
        "supplier_id": supplier_id,
        "content_type": "text",
        "raw_content": "Phone X, 499 USD",
    }

    response = client.post("/api/v1/submissions", json=payload)

    assert response.status_code == 201
    body = response.json()
    assert body["processing_status"] == "pending"
    assert body["validation_status"] == "pending"
    assert body["template_id"] == template_id
    assert dispatched == [body["submission_id"]]

    again = client.post("/api/v1/submissions", json=payload)
    assert again.json()["submission_id"] == body["submission_id"]


def test_create_submission_errors(client: TestClient, supplier_id: str) -> None:
    unknown = client.post(
        "/api/v1/submissions",
        json={"external_message_id": "wa-1", "supplier_id": "nobody", "content_type": "text"},
    )
    bad_type = client.post(
        "/api/v1/submissions",
        json={"external_message_id": "wa-2", "supplier_id": supplier_id, "content_type": "gif"},
    )

    assert unknown.status_code == 404
    assert _error(unknown)["error_type"] == "SupplierNotFoundError"
    assert bad_type.status_code == 422


def test_submission_detail_and_log(client: TestClient, supplier_id: str) -> None:
    created = client.post(
        "/api/v1/submissions",
        json={
            "external_message_id": "wa-200",
            "supplier_id": supplier_id,
            "content_type": "image",
            "media_locator": "s3://bucket/wa-200.jpg",
        },
    ).json()
    submission_id = created["submission_id"]

    detail = client.get(f"/api/v1/submissions/{submission_id}")
    log = client.get(f"/api/v1/submissions/{submission_id}/logs")
    missing = client.get("/api/v1/submissions/does-not-exist")

    assert detail.status_code == 200
    assert detail.json()["media_locator"] == "s3://bucket/wa-200.jpg"
    assert detail.json()["attempt_count"] == 0
    assert [(entry["stage"], entry["status"]) for entry in log.json()] == [
        ("webhook", "completed")
    ]
    assert missing.status_code == 404
    assert _error(missing)["error_type"] == "SubmissionNotFoundError"


def test_pipeline_stats(client: TestClient, make_completed) -> None:
    make_completed()

    body = client.get("/api/v1/submissions/stats").json()

    assert body["processing"]["completed"] == 1
    assert body["validation"]["pending"] == 1
    assert body["stale_validations"] == 0


def test_retry_only_failed_submissions(
    client: TestClient, dispatched: list[str], supplier_id: str
) -> None:
    submission_id = client.post(
        "/api/v1/submissions",
        json={"external_message_id": "wa-300", "supplier_id": supplier_id, "content_type": "text"},
    ).json()["submission_id"]
    dispatched.clear()

    refused = client.post(f"/api/v1/submissions/{submission_id}/retry")
    assert refused.status_code == 409
    assert _error(refused)["error_type"] == "ProcessingConflictError"

    with session_scope() as session:
        submissions = SubmissionRepository(session)
        submissions.claim_for_extraction(submission_id, ProcessingStatus.PENDING)
        submissions.fail_extraction(submission_id, "model unavailable")

    accepted = client.post(f"/api/v1/submissions/{submission_id}/retry")

    assert accepted.status_code == 202
    assert accepted.json() == {"submission_id": submission_id, "status": "pending"}
    assert dispatched == [submission_id]


def test_validation_queue(client: TestClient, make_completed) -> None:
    low = make_completed()
    high = make_completed({"name": "Phone X"}, confidence=40)

    page = client.get("/api/v1/validation/queue").json()
    only_high = client.get("/api/v1/validation/queue", params={"priority": "high"}).json()
    invalid = client.get("/api/v1/validation/queue", params={"limit": 500})
    inverted = client.get(
        "/api/v1/validation/queue", params={"min_confidence": 80, "max_confidence": 20}
    )

    assert [item["submission_id"] for item in page["items"]] == [high, low]
    assert page["total"] == 2
    assert [item["submission_id"] for item in only_high["items"]] == [high]
    assert invalid.status_code == 422
    assert inverted.status_code == 422


def test_feedback_categories(client: TestClient) -> None:
    categories = client.get("/api/v1/validation/feedback-categories").json()

    assert len(categories) == 10
    assert categories[0]["id"] == "missing_field"


def test_approve_flow(client: TestClient, make_completed, inventory) -> None:
    submission_id = make_completed()

    approved = client.post(
        f"/api/v1/validation/{submission_id}/approve",
        json={"edits": {"price": "459.00"}, "reviewer": "alice"},
    )
    again = client.post(f"/api/v1/validation/{submission_id}/approve", json={})

    assert approved.status_code == 200
    assert approved.json()["product_reference"] == "PRD-0001"
    assert approved.json()["committed_data"]["price"] == "459.00"
    assert again.status_code == 409
    assert _error(again)["error_type"] == "ValidationConflictError"


def test_approve_inventory_failure(client: TestClient, make_completed, failing_inventory) -> None:
    submission_id = make_completed()

    response = client.post(f"/api/v1/validation/{submission_id}/approve", json={})

    assert response.status_code == 502
    assert _error(response)["error_type"] == "InventoryCommitError"
    detail = client.get(f"/api/v1/submissions/{submission_id}").json()
    assert detail["validation_status"] == "pending"


def test_reject_flow(client: TestClient, make_completed) -> None:
    submission_id = make_completed()

    malformed = client.post(
        f"/api/v1/validation/{submission_id}/reject",
        json={"feedback": {"category": "missing_field"}},
    )
    rejected = client.post(
        f"/api/v1/validation/{submission_id}/reject",
        json={
            "feedback": {"category": "missing_field", "fields": ["warrantyMonths"]},
            "reviewer": "carol",
        },
    )

    assert malformed.status_code == 422
    assert _error(malformed)["error_type"] == "MalformedFeedbackError"
    assert rejected.status_code == 200
    assert rejected.json()["fields"] == ["warrantyMonths"]
    assert rejected.json()["created_by"] == "carol"


def test_bulk_decisions(client: TestClient, make_completed, inventory) -> None:
    first, second, third = make_completed(), make_completed(), make_completed()

    approved = client.post(
        "/api/v1/validation/bulk-approve", json={"submission_ids": [first, "missing"]}
    ).json()
    rejected = client.post(
        "/api/v1/validation/bulk-reject",
        json={
            "submission_ids": [second, third, first],
            "feedback": {"category": "invalid_content", "subcategory": "spam_content"},
        },
    ).json()
    empty = client.post("/api/v1/validation/bulk-approve", json={"submission_ids": []})

    assert approved["successful"] == [first]
    assert [failure["id"] for failure in approved["failed"]] == ["missing"]
    assert rejected["successful"] == [second, third]
    assert [failure["id"] for failure in rejected["failed"]] == [first]
    assert rejected["total_processed"] == 3
    assert empty.status_code == 422


def test_template_endpoints(client: TestClient, template_id: str) -> None:
    template = client.get(f"/api/v1/templates/{template_id}")
    missing = client.get("/api/v1/templates/unknown")
    analysis = client.get(f"/api/v1/templates/{template_id}/analysis", params={"window_days": 7})
    all_results = client.get("/api/v1/templates/analysis", params={"attention_only": True})

    assert template.status_code == 200
    assert [field["name"] for field in template.json()["fields"]] == [
        "name",
        "price",
        "category",
        "brand",
    ]
    assert missing.status_code == 404
    assert analysis.json()["total_submissions"] == 0
    assert analysis.json()["health"] == "poor"
    assert all_results.json() == []


def test_apply_improvement_endpoint(client: TestClient, template_id: str) -> None:
    proposal = {
        "type": "field_addition",
        "priority": "high",
        "description": "Add warranty",
        "reasoning": "30.0% of submissions were missing it",
        "suggested_change": {
            "action": "add_field",
            "field": {"name": "warrantyMonths", "label": "Warranty Months", "type": "number"},
        },
        "affected_field": "warrantyMonths",
    }

    applied = client.post(
        f"/api/v1/templates/{template_id}/improvements",
        json={"proposal": proposal, "applied_by": "ops"},
    )
    repeated = client.post(
        f"/api/v1/templates/{template_id}/improvements", json={"proposal": proposal}
    )

    assert applied.status_code == 200
    assert applied.json()["version"] == 2
    assert applied.json()["fields"][-1]["name"] == "warrantyMonths"
    assert repeated.status_code == 422
    assert _error(repeated)["error_type"] == "ImprovementNotApplicableError"


def test_metrics_endpoint(client: TestClient, supplier_id: str) -> None:
    client.post(
        "/api/v1/submissions",
        json={"external_message_id": "wa-400", "supplier_id": supplier_id, "content_type": "pdf"},
    )

    response = client.get("/metrics")

    assert response.status_code == 200
    assert "intake_submissions_ingested_total" in response.text
