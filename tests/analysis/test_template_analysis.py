"""Tests for template health analysis and improvement proposals."""

from __future__ import annotations

from datetime import timedelta

import pytest
from prometheus_client import REGISTRY

from catalog_intake.analysis.templates import (
    TemplateAnalysisEngine,
    classify_health,
    rank_proposals,
)
from catalog_intake.exceptions import ImprovementNotApplicableError, TemplateNotFoundError
from catalog_intake.models.base import session_scope, utcnow
from catalog_intake.models.repository import TemplateRepository
from catalog_intake.review.decisions import ReviewDecisionHandler
from catalog_intake.schemas.analysis import (
    ImprovementProposal,
    SupportingData,
    TemplateAnalysisResult,
)
from catalog_intake.schemas.enums import HealthTier, ProposalPriority, ProposalType

WITH_BRAND = {"name": "Phone X", "price": "499.00", "category": "phones", "brand": "Acme"}


def _decide(  # type: ignore[no-untyped-def]
    make_completed, template_id: str, *, approved: int, rejected: int, feedback: dict
) -> None:
    handler = ReviewDecisionHandler()
    for _ in range(approved):
        handler.approve(make_completed(WITH_BRAND, template_id=template_id))
    for _ in range(rejected):
        handler.reject(make_completed(WITH_BRAND, template_id=template_id), feedback)


def _proposal(
    proposal_type: ProposalType,
    change: dict,
    *,
    field: str | None = None,
    priority: ProposalPriority = ProposalPriority.MEDIUM,
    error_count: int = 0,
) -> ImprovementProposal:
    return ImprovementProposal(
        type=proposal_type,
        priority=priority,
        description="test proposal",
        reasoning="test",
        suggested_change=change,
        affected_field=field,
        supporting_data=SupportingData(error_count=error_count),
    )


def test_repeated_missing_field_proposes_field_addition(
    make_completed, template_id: str, inventory
) -> None:
    """Twelve of forty rejections citing warrantyMonths propose adding that field."""

    _decide(
        make_completed,
        template_id,
        approved=28,
        rejected=12,
        feedback={"category": "missing_field", "fields": ["warrantyMonths"]},
    )

    result = TemplateAnalysisEngine().analyze(template_id)

    assert result.total_submissions == 40
    assert (result.approved, result.rejected, result.decided) == (28, 12, 40)
    assert result.success_rate == pytest.approx(0.7)
    assert result.health is HealthTier.NEEDS_IMPROVEMENT
    assert result.sample_sufficient

    top = result.improvements[0]
    assert top.type is ProposalType.FIELD_ADDITION
    assert top.affected_field == "warrantyMonths"
    assert top.supporting_data.error_count == 12
    assert top.supporting_data.error_rate == pytest.approx(0.3)
    assert top.priority is ProposalPriority.HIGH
    assert top.suggested_change["field"]["name"] == "warrantyMonths"

    with session_scope() as session:
        snapshot = TemplateRepository(session).get_snapshot(template_id)
        assert snapshot is not None
        assert snapshot.health == "needs_improvement"
        assert snapshot.result["improvements"][0]["affected_field"] == "warrantyMonths"
    assert REGISTRY.get_sample_value(
        "intake_template_success_rate", {"template_id": template_id}
    ) == pytest.approx(0.7)


def test_template_without_decisions(make_completed, template_id: str) -> None:
    for _ in range(3):
        make_completed(WITH_BRAND, template_id=template_id)

    engine = TemplateAnalysisEngine()
    result = engine.analyze(template_id)

    assert result.total_submissions == 3
    assert result.decided == 0
    assert result.success_rate == 0.0
    assert result.improvements == []
    assert engine.needs_attention([result]) == []


def test_missing_existing_field_asks_for_clearer_instructions(
    make_completed, template_id: str, inventory
) -> None:
    _decide(
        make_completed,
        template_id,
        approved=5,
        rejected=5,
        feedback={"category": "missing_field", "fields": ["price"]},
    )

    result = TemplateAnalysisEngine().analyze(template_id)

    proposal = result.improvements[0]
    assert proposal.type is ProposalType.INSTRUCTION_CLARIFICATION
    assert proposal.affected_field == "price"
    assert "Price" in proposal.suggested_change["instruction"]


def test_rare_errors_and_content_problems_produce_no_proposals(
    make_completed, template_id: str, inventory
) -> None:
    _decide(
        make_completed,
        template_id,
        approved=9,
        rejected=1,
        feedback={"category": "missing_field", "fields": ["warrantyMonths"]},
    )
    _decide(
        make_completed,
        template_id,
        approved=0,
        rejected=5,
        feedback={"category": "poor_quality", "subcategory": "blurry_image"},
    )

    result = TemplateAnalysisEngine().analyze(template_id)

    assert result.improvements == []


def test_rarely_used_optional_field_is_flagged(make_completed, template_id: str) -> None:
    for _ in range(10):
        make_completed(template_id=template_id)

    result = TemplateAnalysisEngine().analyze(template_id)

    assert [(item.type, item.affected_field, item.priority) for item in result.improvements] == [
        (ProposalType.FIELD_REMOVAL, "brand", ProposalPriority.LOW)
    ]


def test_submissions_outside_window_are_ignored(make_completed, template_id: str) -> None:
    make_completed(WITH_BRAND, template_id=template_id, created_at=utcnow() - timedelta(days=60))
    make_completed(WITH_BRAND, template_id=template_id)

    result = TemplateAnalysisEngine(window_days=7).analyze(template_id)

    assert result.total_submissions == 1
    assert result.window_end - result.window_start == timedelta(days=7)


def test_unknown_template() -> None:
    with pytest.raises(TemplateNotFoundError):
        TemplateAnalysisEngine().analyze("missing")


def test_analyze_all_covers_active_templates(template_id: str) -> None:
    results = TemplateAnalysisEngine().analyze_all()

    assert [result.template_id for result in results] == [template_id]


@pytest.mark.parametrize(
    ("rate", "tier"),
    [
        (1.0, HealthTier.EXCELLENT),
        (0.9, HealthTier.EXCELLENT),
        (0.8, HealthTier.GOOD),
        (0.75, HealthTier.GOOD),
        (0.6, HealthTier.NEEDS_IMPROVEMENT),
        (0.49, HealthTier.POOR),
        (0.0, HealthTier.POOR),
    ],
)
def test_classify_health(rate: float, tier: HealthTier) -> None:
    assert classify_health(rate) is tier


def test_rank_proposals_orders_and_deduplicates() -> None:
    low = _proposal(ProposalType.EXAMPLE_UPDATE, {}, field="price", priority=ProposalPriority.LOW)
    medium_small = _proposal(ProposalType.FIELD_ADDITION, {}, field="a", error_count=3)
    medium_large = _proposal(ProposalType.FIELD_ADDITION, {}, field="b", error_count=9)
    duplicate = _proposal(ProposalType.FIELD_ADDITION, {}, field="b", error_count=4)
    high = _proposal(
        ProposalType.INSTRUCTION_CLARIFICATION, {}, field="name", priority=ProposalPriority.HIGH
    )

    ranked = rank_proposals([low, medium_small, duplicate, high, medium_large])

    assert ranked == [high, medium_large, medium_small, low]


def test_needs_attention_ranks_by_weighted_shortfall() -> None:
    def result(template_id: str, success_rate: float, decided: int) -> TemplateAnalysisResult:
        now = utcnow()
        return TemplateAnalysisResult(
            template_id=template_id,
            template_name=template_id,
            window_start=now - timedelta(days=30),
            window_end=now,
            total_submissions=decided,
            approved=round(success_rate * decided),
            rejected=decided - round(success_rate * decided),
            decided=decided,
            success_rate=success_rate,
            health=classify_health(success_rate),
            sample_sufficient=decided >= 10,
            computed_at=now,
        )

    small_but_bad = result("small", 0.2, 10)
    large_mediocre = result("large", 0.7, 100)
    undersized = result("tiny", 0.0, 4)

    ranked = TemplateAnalysisEngine().needs_attention([small_but_bad, undersized, large_mediocre])

    assert [item.template_id for item in ranked] == ["large", "small"]


def _applied(proposal_type: ProposalType) -> float:
    value = REGISTRY.get_sample_value(
        "intake_template_improvements_applied_total", {"proposal_type": proposal_type.value}
    )
    return float(value) if value is not None else 0.0


def test_apply_field_addition_bumps_version(template_id: str) -> None:
    proposal = _proposal(
        ProposalType.FIELD_ADDITION,
        {"action": "add_field", "field": {"name": "warrantyMonths", "type": "number"}},
        field="warrantyMonths",
    )
    applied_before = _applied(ProposalType.FIELD_ADDITION)
    engine = TemplateAnalysisEngine()

    updated = engine.apply_improvement(template_id, proposal, applied_by="ops")

    assert updated.version == 2
    assert updated.field_named("warrantyMonths") is not None
    assert _applied(ProposalType.FIELD_ADDITION) == pytest.approx(applied_before + 1)

    with session_scope() as session:
        changes = TemplateRepository(session).changes_for(template_id)
        assert len(changes) == 1
        change = changes[0]
        assert change.proposal_type is ProposalType.FIELD_ADDITION
        assert change.applied_by == "ops"
        assert change.before["version"] == 1
        assert change.after["version"] == 2
        assert len(change.after["fields"]) == len(change.before["fields"]) + 1

    with pytest.raises(ImprovementNotApplicableError, match="already exists"):
        engine.apply_improvement(template_id, proposal)


def test_apply_instruction_and_example_keep_version(template_id: str) -> None:
    engine = TemplateAnalysisEngine()
    clarify = _proposal(
        ProposalType.INSTRUCTION_CLARIFICATION,
        {"action": "add_instruction", "instruction": "Always state the warranty."},
    )
    example = _proposal(
        ProposalType.EXAMPLE_UPDATE,
        {"action": "add_format_example", "example": "Price: 1299.00"},
        field="price",
    )

    engine.apply_improvement(template_id, clarify)
    updated = engine.apply_improvement(template_id, example)

    assert updated.version == 1
    assert updated.instructions == "Extract the product details.\n\nAlways state the warranty."
    assert updated.examples == ["Price: 1299.00"]
    with pytest.raises(ImprovementNotApplicableError, match="already present"):
        engine.apply_improvement(template_id, clarify)


def test_apply_field_removal(template_id: str) -> None:
    engine = TemplateAnalysisEngine()
    removal = _proposal(
        ProposalType.FIELD_REMOVAL, {"action": "remove_field", "field": "brand"}, field="brand"
    )

    updated = engine.apply_improvement(template_id, removal)

    assert updated.field_named("brand") is None
    assert updated.version == 2
    with pytest.raises(ImprovementNotApplicableError, match="not part of the template"):
        engine.apply_improvement(template_id, removal)


def test_apply_validation_adjustment(template_id: str) -> None:
    engine = TemplateAnalysisEngine()
    advisory = _proposal(
        ProposalType.VALIDATION_ADJUSTMENT,
        {"action": "adjust_validation", "field": "price", "suggestion": "review"},
        field="price",
    )
    concrete = _proposal(
        ProposalType.VALIDATION_ADJUSTMENT,
        {"action": "adjust_validation", "field": "price", "validation": {"min": 0, "max": 10000}},
        field="price",
    )

    with pytest.raises(ImprovementNotApplicableError, match="review it manually"):
        engine.apply_improvement(template_id, advisory)

    updated = engine.apply_improvement(template_id, concrete)

    price = updated.field_named("price")
    assert price is not None and price.validation is not None
    assert (price.validation.min, price.validation.max) == (0, 10000)


@pytest.mark.parametrize(
    "proposal",
    [
        _proposal(ProposalType.FIELD_ADDITION, {"action": "remove_field", "field": "x"}),
        _proposal(ProposalType.FIELD_ADDITION, {"action": "add_field"}),
        _proposal(ProposalType.FIELD_REMOVAL, {"action": "remove_field"}),
        _proposal(ProposalType.INSTRUCTION_CLARIFICATION, {"action": "add_instruction"}),
    ],
)
def test_inapplicable_proposals_leave_template_unchanged(
    template_id: str, proposal: ImprovementProposal
) -> None:
    with pytest.raises(ImprovementNotApplicableError):
        TemplateAnalysisEngine().apply_improvement(template_id, proposal)

    with session_scope() as session:
        assert TemplateRepository(session).changes_for(template_id) == []
        assert TemplateRepository(session).require(template_id).version == 1
