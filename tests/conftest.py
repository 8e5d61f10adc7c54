"""Pytest configuration - no path manipulation, rely on proper package installation."""

from __future__ import annotations

import time
from collections.abc import Callable, Iterator
from datetime import datetime
from pathlib import Path
from typing import Any

import pytest
from sqlalchemy import update

from catalog_intake.models.base import reset_engine, session_scope
from catalog_intake.models.repository import (
    SubmissionCreate,
    SubmissionRepository,
    SupplierRepository,
    TemplateRepository,
)
from catalog_intake.models.submission import Submission
from catalog_intake.models.template import ExtractionTemplate
from catalog_intake.pipeline.boundaries import set_extractor, set_inventory_gateway
from catalog_intake.schemas.enums import ContentType, ProcessingStatus
from catalog_intake.tasks.processing import reset_stage_runner
from catalog_intake.utils.config import get_service_configuration, get_settings

REPO_ROOT = Path(__file__).resolve().parents[1]


class StubExtractor:
    """Test double returning queued responses (or raising queued exceptions)."""

    def __init__(self, *responses: Any, delay: float = 0.0) -> None:
        self.responses = list(responses) or [
            {
                "data": {"name": "Phone X", "price": "499.00", "category": "phones"},
                "confidence": 92,
            }
        ]
        self.delay = delay
        self.calls: list[tuple[str, ContentType, Any]] = []

    def extract(self, content: str, content_type: ContentType, template_config: Any) -> Any:
        self.calls.append((content, content_type, template_config))
        if self.delay:
            time.sleep(self.delay)
        response = self.responses.pop(0) if len(self.responses) > 1 else self.responses[0]
        if isinstance(response, Exception):
            raise response
        return response


class StubInventory:
    """Test double capturing committed products."""

    def __init__(self, error: Exception | None = None) -> None:
        self.error = error
        self.committed: list[dict[str, Any]] = []

    def commit_product(self, merged_data: dict[str, Any]) -> str:
        if self.error is not None:
            raise self.error
        self.committed.append(dict(merged_data))
        return f"PRD-{len(self.committed):04d}"


@pytest.fixture(autouse=True)
def intake_environment(
    monkeypatch: pytest.MonkeyPatch, tmp_path_factory: pytest.TempPathFactory
) -> Iterator[None]:
    """Point every test at its own SQLite database and the repository config templates."""

    db_path = tmp_path_factory.mktemp("intake-db") / "intake.sqlite"
    monkeypatch.setenv("INTAKE_DATABASE_URL", f"sqlite:///{db_path}")
    monkeypatch.setenv("INTAKE_CONFIG_DIR", str(REPO_ROOT / "config"))
    monkeypatch.setenv("INTAKE_ENVIRONMENT", "development")
    monkeypatch.delenv("INTAKE_CONFIG_PROFILE", raising=False)
    monkeypatch.delenv("INTAKE_GROUPING_WINDOW_SECONDS", raising=False)

    get_settings(reload=True)
    get_service_configuration(reload=True)
    reset_engine()
    yield
    set_extractor(None)
    set_inventory_gateway(None)
    reset_stage_runner()
    reset_engine()


@pytest.fixture
def make_extractor() -> Callable[..., StubExtractor]:
    return StubExtractor


@pytest.fixture
def inventory() -> StubInventory:
    gateway = StubInventory()
    set_inventory_gateway(gateway)
    return gateway


@pytest.fixture
def failing_inventory() -> StubInventory:
    gateway = StubInventory(error=ConnectionError("inventory service unreachable"))
    set_inventory_gateway(gateway)
    return gateway


@pytest.fixture
def supplier_id() -> str:
    """Create an active supplier and return its id."""

    with session_scope() as session:
        supplier = SupplierRepository(session).create(contact_id="+15550001111", name="Acme")
        return supplier.id


@pytest.fixture
def template_id() -> str:
    """Create an active text template with name, price, category, and brand fields."""

    with session_scope() as session:
        template = TemplateRepository(session).add(
            ExtractionTemplate(
                id="T1",
                name="Electronics",
                content_type=ContentType.TEXT,
                fields=[
                    {"name": "name", "label": "Product Name", "type": "text", "required": True},
                    {"name": "price", "label": "Price", "type": "number", "required": True},
                    {"name": "category", "label": "Category", "type": "text", "required": True},
                    {"name": "brand", "label": "Brand", "type": "text"},
                ],
                instructions="Extract the product details.",
                examples=[],
            )
        )
        return template.id


CompletedFactory = Callable[..., str]


@pytest.fixture
def make_completed(supplier_id: str) -> CompletedFactory:
    """Factory inserting a submission that already finished extraction."""

    counter = {"value": 0}

    def _make(
        data: dict[str, Any] | None = None,
        *,
        confidence: float | None = 92.0,
        template_id: str | None = None,
        field_errors: list[dict[str, Any]] | None = None,
        created_at: datetime | None = None,
        group_id: str | None = None,
        owner_id: str | None = None,
    ) -> str:
        counter["value"] += 1
        external_id = f"msg-{counter['value']:04d}"
        with session_scope() as session:
            submissions = SubmissionRepository(session)
            submission = submissions.create(
                SubmissionCreate(
                    external_message_id=external_id,
                    group_id=group_id or external_id,
                    supplier_id=owner_id or supplier_id,
                    content_type=ContentType.TEXT,
                    raw_content="Phone X, 499 USD",
                    template_id=template_id,
                )
            )
            submissions.claim_for_extraction(submission.id, ProcessingStatus.PENDING)
            submissions.complete_extraction(
                submission.id,
                data=data
                if data is not None
                else {"name": "Phone X", "price": "499.00", "category": "phones"},
                confidence=confidence,
                field_errors=field_errors or [],
            )
            if created_at is not None:
                session.execute(
                    update(Submission)
                    .where(Submission.id == submission.id)
                    .values(created_at=created_at)
                )
            return submission.id

    return _make
