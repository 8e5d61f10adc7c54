"""Tests for the operator CLI."""

from __future__ import annotations

import json

import pytest
from click.testing import CliRunner

from catalog_intake.cli.intake import cli
from catalog_intake.exceptions import ExtractionError
from catalog_intake.models.base import session_scope
from catalog_intake.models.repository import SupplierRepository
from catalog_intake.pipeline.boundaries import set_extractor
from catalog_intake.pipeline.ingestion import ingest


@pytest.fixture
def runner() -> CliRunner:
    return CliRunner()


def test_stats_json(runner: CliRunner, make_completed) -> None:
    make_completed()

    result = runner.invoke(cli, ["stats", "--json"])

    assert result.exit_code == 0
    stats = json.loads(result.output)
    assert stats["processing"]["completed"] == 1
    assert stats["validation"]["pending"] == 1


def test_stats_table(runner: CliRunner) -> None:
    result = runner.invoke(cli, ["stats"])

    assert result.exit_code == 0
    assert "PIPELINE STATISTICS" in result.output
    assert "Stale validations: 0" in result.output
    assert "Stale processing:  0" in result.output


def test_queue_lists_highest_priority_first(runner: CliRunner, make_completed) -> None:
    make_completed()
    urgent = make_completed({"name": "Tablet Z"}, confidence=35)

    table = runner.invoke(cli, ["queue"])
    filtered = runner.invoke(cli, ["queue", "--priority", "high", "--json"])

    assert table.exit_code == 0
    assert "2 item(s)" in table.output
    assert table.output.index(urgent) < table.output.index("Phone X")
    assert "review_field" in table.output
    assert [item["submission_id"] for item in json.loads(filtered.output)["items"]] == [urgent]


def test_queue_rejects_bad_paging(runner: CliRunner) -> None:
    result = runner.invoke(cli, ["queue", "--limit", "0"])

    assert result.exit_code != 0
    assert "Invalid value" in result.output


def test_analyze(runner: CliRunner, template_id: str) -> None:
    table = runner.invoke(cli, ["analyze"])
    as_json = runner.invoke(cli, ["analyze", "--template-id", template_id, "--json"])
    attention = runner.invoke(cli, ["analyze", "--attention-only"])

    assert table.exit_code == 0
    assert "Electronics (T1): poor" in table.output
    assert "Sample below minimum size" in table.output
    assert json.loads(as_json.output)[0]["template_id"] == template_id
    assert attention.output.strip() == "No templates analyzed."


def test_analyze_unknown_template(runner: CliRunner) -> None:
    result = runner.invoke(cli, ["analyze", "--template-id", "missing"])

    assert result.exit_code == 1
    assert "missing" in result.output


def test_process_pending(runner: CliRunner, supplier_id: str, make_extractor) -> None:
    assert runner.invoke(cli, ["process-pending"]).output.strip() == "No pending submissions."

    ingest("cli-1", supplier_id, "text", "Phone X 499")
    ingest("cli-2", supplier_id, "text", "???")
    set_extractor(
        make_extractor(
            {"data": {"name": "Phone X"}, "confidence": 88},
            ExtractionError("model returned nothing"),
        )
    )

    result = runner.invoke(cli, ["process-pending", "--limit", "5"])

    assert result.exit_code == 0
    assert ": completed (confidence 88.0)" in result.output
    assert ": failed (model returned nothing)" in result.output
    assert "Processed 2: 1 completed, 1 failed" in result.output


def test_process_pending_without_extractor(runner: CliRunner, supplier_id: str) -> None:
    ingest("cli-3", supplier_id, "text", "Phone X 499")

    result = runner.invoke(cli, ["process-pending"])

    assert result.exit_code == 1
    assert "INTAKE_EXTRACTOR_PATH" in result.output


def test_recompute_suppliers(runner: CliRunner, supplier_id: str) -> None:
    with session_scope() as session:
        SupplierRepository(session).create(contact_id="+15550004444", name="Gamma")

    result = runner.invoke(cli, ["recompute-suppliers"])

    assert result.exit_code == 0
    assert result.output.strip() == "Recomputed metrics for 2 supplier(s)"
