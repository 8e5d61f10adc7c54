"""Template analysis: health tiers, improvement proposals, and applying them."""

from __future__ import annotations

from collections import defaultdict
from collections.abc import Iterable, Sequence
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any

from pydantic import ValidationError as PydanticValidationError

from ..exceptions import CatalogIntakeError, ImprovementNotApplicableError
from ..models.base import session_scope, utcnow
from ..models.feedback import FeedbackRecord
from ..models.repository import (
    FeedbackRepository,
    ProcessingLogRepository,
    SubmissionRepository,
    TemplateRepository,
)
from ..models.submission import ProcessingLogEntry, Submission
from ..monitoring.metrics import record_improvement_applied, set_template_success_rate
from ..review.taxonomy import TEMPLATE_CATEGORIES
from ..schemas.analysis import (
    FieldValidation,
    ImprovementProposal,
    SupportingData,
    TemplateAnalysisResult,
    TemplateConfig,
    TemplateField,
)
from ..schemas.enums import (
    FeedbackCategory,
    HealthTier,
    ProposalPriority,
    ProposalType,
    StageName,
    StageStatus,
    ValidationStatus,
)
from ..utils.audit import AuditAction, get_audit_logger
from ..utils.config import AnalysisThresholds, get_service_configuration, get_settings
from ..utils.logging import setup_logger

logger = setup_logger(__name__, context={"component": "template_analysis"})

_STRUCTURAL_CHANGES = frozenset(
    {
        ProposalType.FIELD_ADDITION,
        ProposalType.FIELD_REMOVAL,
        ProposalType.VALIDATION_ADJUSTMENT,
    }
)


def classify_health(success_rate: float) -> HealthTier:
    if success_rate >= 0.9:
        return HealthTier.EXCELLENT
    if success_rate >= 0.75:
        return HealthTier.GOOD
    if success_rate >= 0.5:
        return HealthTier.NEEDS_IMPROVEMENT
    return HealthTier.POOR


def rank_proposals(proposals: Iterable[ImprovementProposal]) -> list[ImprovementProposal]:
    """Order by (priority, error count) descending, keeping one proposal per type and field."""

    ordered = sorted(
        proposals,
        key=lambda proposal: (proposal.priority.rank, proposal.supporting_data.error_count),
        reverse=True,
    )
    seen: set[tuple[ProposalType, str | None]] = set()
    ranked: list[ImprovementProposal] = []
    for proposal in ordered:
        key = (proposal.type, proposal.affected_field)
        if key in seen:
            continue
        seen.add(key)
        ranked.append(proposal)
    return ranked


def _humanize(name: str) -> str:
    spaced = "".join(f" {char}" if char.isupper() else char for char in name)
    return spaced.replace("_", " ").strip().capitalize()


@dataclass(slots=True)
class _FeedbackGroup:
    category: FeedbackCategory
    subcategory: str | None
    field_name: str | None
    submission_ids: set[str] = field(default_factory=set)
    samples: list[str] = field(default_factory=list)


class TemplateAnalysisEngine:
    """Aggregates review outcomes per template and turns failure patterns into proposals."""

    def __init__(
        self,
        thresholds: AnalysisThresholds | None = None,
        *,
        window_days: int | None = None,
    ) -> None:
        self.thresholds = thresholds or get_service_configuration().analysis
        self.window = timedelta(days=window_days or get_settings().analysis_window_days)

    def analyze(
        self,
        template_id: str,
        window: timedelta | None = None,
        *,
        now: datetime | None = None,
    ) -> TemplateAnalysisResult:
        """
        Analyze one template over the submissions created inside ``window``.

        The result is stored as the template's latest health snapshot.

        Raises:
            TemplateNotFoundError: If the template does not exist
        """
        window_end = now or utcnow()
        window_start = window_end - (window or self.window)

        with session_scope() as session:
            templates = TemplateRepository(session)
            config = TemplateConfig.from_model(templates.require(template_id))
            submissions = SubmissionRepository(session).for_template(template_id, window_start)
            submission_ids = [submission.id for submission in submissions]
            feedback = FeedbackRepository(session).for_submissions(submission_ids)
            extraction_entries = ProcessingLogRepository(session).for_submissions(
                submission_ids, stage=StageName.AI_EXTRACTION, status=StageStatus.COMPLETED
            )

            total = len(submissions)
            approved = sum(
                1 for item in submissions if item.validation_status is ValidationStatus.APPROVED
            )
            rejected = sum(
                1 for item in submissions if item.validation_status is ValidationStatus.REJECTED
            )
            decided = approved + rejected
            success_rate = approved / decided if decided else 0.0

            proposals = self._proposals_from_feedback(config, feedback, total)
            proposals.extend(self._validation_proposals(config, extraction_entries))
            proposals.extend(self._usage_proposals(config, submissions))

            result = TemplateAnalysisResult(
                template_id=config.id,
                template_name=config.name,
                window_start=window_start,
                window_end=window_end,
                total_submissions=total,
                approved=approved,
                rejected=rejected,
                decided=decided,
                success_rate=success_rate,
                health=classify_health(success_rate),
                sample_sufficient=decided >= self.thresholds.min_sample_size,
                improvements=rank_proposals(proposals),
                computed_at=utcnow(),
            )
            templates.upsert_snapshot(
                template_id,
                health=result.health.value,
                success_rate=result.success_rate,
                result=result.model_dump(mode="json"),
                computed_at=result.computed_at,
            )

        set_template_success_rate(template_id, success_rate)
        logger.info(
            "Template analyzed: %s submissions, success rate %.2f, %s proposal(s)",
            total,
            success_rate,
            len(result.improvements),
            extra={"template_id": template_id, "status": result.health.value},
        )
        get_audit_logger().log_system_event(
            AuditAction.TEMPLATE_ANALYZED,
            resource=template_id,
            resource_type="template",
            total_submissions=total,
            success_rate=success_rate,
            health=result.health.value,
            improvements_found=len(result.improvements),
        )
        return result

    def analyze_all(self, window: timedelta | None = None) -> list[TemplateAnalysisResult]:
        """Analyze every active template."""

        with session_scope() as session:
            template_ids = [template.id for template in TemplateRepository(session).active()]

        results: list[TemplateAnalysisResult] = []
        for template_id in template_ids:
            try:
                results.append(self.analyze(template_id, window))
            except CatalogIntakeError as exc:
                logger.error(
                    "Template analysis failed: %s",
                    exc,
                    extra={"template_id": template_id, "status": "failed"},
                )
        return results

    def needs_attention(
        self, results: Sequence[TemplateAnalysisResult]
    ) -> list[TemplateAnalysisResult]:
        """
        Rank templates by volume-weighted shortfall, ``(1 - success_rate) * decided``.

        Templates with no decided submissions or an undersized sample are left out.
        """
        eligible = [result for result in results if result.decided > 0 and result.sample_sufficient]
        return sorted(
            eligible,
            key=lambda result: (1.0 - result.success_rate) * result.decided,
            reverse=True,
        )

    def apply_improvement(
        self,
        template_id: str,
        proposal: ImprovementProposal,
        applied_by: str | None = None,
    ) -> TemplateConfig:
        """
        Apply a proposal to the template configuration and record the change.

        Past submissions and feedback are left untouched.

        Raises:
            TemplateNotFoundError: If the template does not exist
            ImprovementNotApplicableError: If the proposal cannot be applied as stated
        """
        with session_scope() as session:
            templates = TemplateRepository(session)
            template = templates.require(template_id)
            before = TemplateConfig.from_model(template)
            after = _apply_to_config(before, proposal)
            if proposal.type in _STRUCTURAL_CHANGES:
                after = after.model_copy(update={"version": before.version + 1})

            template.fields = [item.model_dump(exclude_none=True) for item in after.fields]
            template.instructions = after.instructions
            template.examples = list(after.examples)
            template.version = after.version

            before_state = before.model_dump(mode="json", exclude={"updated_at"})
            after_state = after.model_dump(mode="json", exclude={"updated_at"})
            templates.record_change(
                template_id=template_id,
                proposal_type=proposal.type,
                affected_field=proposal.affected_field,
                before=before_state,
                after=after_state,
                applied_by=applied_by,
            )
            session.flush()
            updated = TemplateConfig.from_model(template)

        record_improvement_applied(proposal.type.value)
        get_audit_logger().log_template_change(
            template_id,
            applied_by,
            before_state,
            after_state,
            proposal_type=proposal.type.value,
            affected_field=proposal.affected_field,
        )
        logger.info(
            "Applied %s improvement",
            proposal.type.value,
            extra={"template_id": template_id, "status": "applied"},
        )
        return updated

    def _priority_for(self, error_rate: float) -> ProposalPriority:
        if error_rate >= self.thresholds.high_priority_error_rate:
            return ProposalPriority.HIGH
        if error_rate >= self.thresholds.min_error_rate:
            return ProposalPriority.MEDIUM
        return ProposalPriority.LOW

    def _proposals_from_feedback(
        self,
        config: TemplateConfig,
        feedback: Sequence[FeedbackRecord],
        total: int,
    ) -> list[ImprovementProposal]:
        if total == 0:
            return []

        groups: dict[tuple[FeedbackCategory, str | None, str | None], _FeedbackGroup] = {}
        for record in feedback:
            if record.category not in TEMPLATE_CATEGORIES:
                continue
            for field_name in record.fields or [None]:
                key = (record.category, record.subcategory, field_name)
                group = groups.get(key)
                if group is None:
                    group = _FeedbackGroup(record.category, record.subcategory, field_name)
                    groups[key] = group
                group.submission_ids.add(record.submission_id)
                if len(group.samples) < self.thresholds.sample_error_limit:
                    group.samples.append(
                        record.note or f"{record.category.value}: {field_name or 'unspecified'}"
                    )

        proposals: list[ImprovementProposal] = []
        for group in groups.values():
            error_count = len(group.submission_ids)
            error_rate = error_count / total
            if error_rate < self.thresholds.min_error_rate:
                continue
            proposal = self._proposal_for_group(config, group, error_count, error_rate)
            if proposal is not None:
                proposals.append(proposal)
        return proposals

    def _proposal_for_group(
        self,
        config: TemplateConfig,
        group: _FeedbackGroup,
        error_count: int,
        error_rate: float,
    ) -> ImprovementProposal | None:
        name = group.field_name
        template_field = config.field_named(name) if name else None
        label = template_field.display_name if template_field else _humanize(name or "value")
        supporting = SupportingData(
            error_count=error_count, error_rate=error_rate, sample_errors=list(group.samples)
        )
        priority = self._priority_for(error_rate)
        share = f"{error_rate:.1%} of submissions"

        if group.category is FeedbackCategory.MISSING_FIELD:
            if name is None:
                return None
            if template_field is None:
                return ImprovementProposal(
                    type=ProposalType.FIELD_ADDITION,
                    priority=priority,
                    description=f'Add field "{label}" to the template',
                    reasoning=f"{share} were rejected because {label} was missing",
                    suggested_change={
                        "action": "add_field",
                        "field": {"name": name, "label": label, "type": "text", "required": False},
                    },
                    affected_field=name,
                    supporting_data=supporting,
                )
            return ImprovementProposal(
                type=ProposalType.INSTRUCTION_CLARIFICATION,
                priority=priority,
                description=f'Field "{label}" is frequently missing',
                reasoning=f"{share} were rejected because {label} was missing",
                suggested_change={
                    "action": "add_instruction",
                    "field": name,
                    "instruction": f"Please ensure you always provide the {label}.",
                },
                affected_field=name,
                supporting_data=supporting,
            )

        if group.category is FeedbackCategory.WRONG_CATEGORY:
            return ImprovementProposal(
                type=ProposalType.INSTRUCTION_CLARIFICATION,
                priority=priority,
                description="Products are frequently assigned to the wrong category",
                reasoning=f"{share} were rejected for a wrong category",
                suggested_change={
                    "action": "add_instruction",
                    "field": name,
                    "instruction": (
                        "State the product category explicitly and match it to the catalog "
                        "category list."
                    ),
                },
                affected_field=name,
                supporting_data=supporting,
            )

        if group.category is FeedbackCategory.INVALID_FORMAT:
            return ImprovementProposal(
                type=ProposalType.EXAMPLE_UPDATE,
                priority=priority,
                description=f'Field "{label}" has frequent format errors',
                reasoning=f"{share} had an invalid format for {label}",
                suggested_change={
                    "action": "add_format_example",
                    "field": name,
                    "example": f"Format example for {label}: {_format_hint(template_field)}",
                },
                affected_field=name,
                supporting_data=supporting,
            )

        if group.category in (FeedbackCategory.OUT_OF_RANGE, FeedbackCategory.INCORRECT_VALUE):
            current = (
                template_field.validation.model_dump(exclude_none=True)
                if template_field is not None and template_field.validation is not None
                else None
            )
            return ImprovementProposal(
                type=ProposalType.VALIDATION_ADJUSTMENT,
                priority=priority,
                description=f'Validation for "{label}" needs review',
                reasoning=(
                    f"{share} were rejected for "
                    f"{group.category.value.replace('_', ' ')} on {label}"
                ),
                suggested_change={
                    "action": "adjust_validation",
                    "field": name,
                    "current_validation": current,
                    "suggestion": "Review the bounds and guidance for this field",
                },
                affected_field=name,
                supporting_data=supporting,
            )

        if group.category is FeedbackCategory.EXTRANEOUS_FIELD:
            if name is None:
                return None
            if template_field is not None:
                return ImprovementProposal(
                    type=ProposalType.FIELD_REMOVAL,
                    priority=priority,
                    description=f'Remove field "{label}" from the template',
                    reasoning=f"{share} were rejected for carrying {label}",
                    suggested_change={"action": "remove_field", "field": name},
                    affected_field=name,
                    supporting_data=supporting,
                )
            return ImprovementProposal(
                type=ProposalType.INSTRUCTION_CLARIFICATION,
                priority=priority,
                description=f'Extractions include an unexpected "{label}" value',
                reasoning=f"{share} were rejected for carrying {label}",
                suggested_change={
                    "action": "add_instruction",
                    "field": name,
                    "instruction": f"Do not include {label} in the product details.",
                },
                affected_field=name,
                supporting_data=supporting,
            )
        return None

    def _validation_proposals(
        self,
        config: TemplateConfig,
        entries: Sequence[ProcessingLogEntry],
    ) -> list[ImprovementProposal]:
        latest: dict[str, ProcessingLogEntry] = {}
        for entry in entries:
            latest[entry.submission_id] = entry
        if not latest:
            return []

        failures: dict[str, set[str]] = defaultdict(set)
        samples: dict[str, list[str]] = defaultdict(list)
        for submission_id, entry in latest.items():
            for error in (entry.stage_metadata or {}).get("field_errors") or []:
                name = error.get("field") if isinstance(error, dict) else None
                if not name:
                    continue
                failures[name].add(submission_id)
                message = error.get("message")
                if message and len(samples[name]) < self.thresholds.sample_error_limit:
                    samples[name].append(str(message))

        proposals: list[ImprovementProposal] = []
        extracted = len(latest)
        for template_field in config.fields:
            if template_field.validation is None:
                continue
            failed = len(failures.get(template_field.name, ()))
            failure_rate = failed / extracted
            if failure_rate <= self.thresholds.validation_failure_rate:
                continue
            proposals.append(
                ImprovementProposal(
                    type=ProposalType.VALIDATION_ADJUSTMENT,
                    priority=self._priority_for(failure_rate),
                    description=f'Validation for "{template_field.display_name}" fails frequently',
                    reasoning=(
                        f"{failure_rate:.1%} of extractions reported errors for this field"
                    ),
                    suggested_change={
                        "action": "adjust_validation",
                        "field": template_field.name,
                        "current_validation": template_field.validation.model_dump(
                            exclude_none=True
                        ),
                        "suggestion": (
                            "Consider relaxing validation rules or improving field instructions"
                        ),
                    },
                    affected_field=template_field.name,
                    supporting_data=SupportingData(
                        error_count=failed,
                        error_rate=failure_rate,
                        sample_errors=samples.get(template_field.name, []),
                    ),
                )
            )
        return proposals

    def _usage_proposals(
        self,
        config: TemplateConfig,
        submissions: Sequence[Submission],
    ) -> list[ImprovementProposal]:
        extracted = [item.extracted_data for item in submissions if item.extracted_data is not None]
        if len(extracted) < self.thresholds.min_sample_size:
            return []

        proposals: list[ImprovementProposal] = []
        for template_field in config.fields:
            if template_field.required:
                continue
            provided = sum(
                1 for data in extracted if data.get(template_field.name) not in (None, "")
            )
            usage_rate = provided / len(extracted)
            if usage_rate >= self.thresholds.rare_field_usage_rate:
                continue
            proposals.append(
                ImprovementProposal(
                    type=ProposalType.FIELD_REMOVAL,
                    priority=ProposalPriority.LOW,
                    description=f'Optional field "{template_field.display_name}" is rarely used',
                    reasoning=f"Only {usage_rate:.1%} of extractions include this field",
                    suggested_change={"action": "remove_field", "field": template_field.name},
                    affected_field=template_field.name,
                    supporting_data=SupportingData(
                        sample_errors=[f"Present in {provided} of {len(extracted)} extractions"]
                    ),
                )
            )
        return proposals


def _format_hint(template_field: TemplateField | None) -> str:
    if template_field is None:
        return "provide the value exactly as it should appear in the catalog"
    if template_field.type == "number":
        return "digits only with a dot for decimals, e.g. 1299.00"
    if template_field.options:
        return "one of " + ", ".join(template_field.options)
    if template_field.validation is not None and template_field.validation.pattern:
        return f"must match {template_field.validation.pattern}"
    return "provide the value exactly as it should appear in the catalog"


def _field_name(change: dict[str, Any], proposal: ImprovementProposal) -> str:
    raw = change.get("field", proposal.affected_field)
    if isinstance(raw, dict):
        raw = raw.get("name")
    if not isinstance(raw, str) or not raw.strip():
        raise ImprovementNotApplicableError("Proposal does not name the affected field")
    return raw.strip()


def _require_action(change: dict[str, Any], *expected: str) -> None:
    action = change.get("action")
    if action not in expected:
        raise ImprovementNotApplicableError(
            f"Unsupported action '{action}'; expected one of: {', '.join(expected)}"
        )


def _apply_to_config(config: TemplateConfig, proposal: ImprovementProposal) -> TemplateConfig:
    """Return the configuration with ``proposal`` applied; ``config`` is not modified."""

    change = dict(proposal.suggested_change)
    fields = [item.model_copy(deep=True) for item in config.fields]

    if proposal.type is ProposalType.FIELD_ADDITION:
        _require_action(change, "add_field")
        definition = change.get("field")
        if isinstance(definition, str):
            definition = {"name": definition}
        if not isinstance(definition, dict):
            raise ImprovementNotApplicableError("add_field requires a field definition")
        try:
            new_field = TemplateField.model_validate(definition)
        except PydanticValidationError as exc:
            raise ImprovementNotApplicableError(f"Invalid field definition: {exc}") from exc
        if config.field_named(new_field.name) is not None:
            raise ImprovementNotApplicableError(f"Field '{new_field.name}' already exists")
        fields.append(new_field)
        return config.model_copy(update={"fields": fields})

    if proposal.type is ProposalType.FIELD_REMOVAL:
        _require_action(change, "remove_field")
        name = _field_name(change, proposal)
        if config.field_named(name) is None:
            raise ImprovementNotApplicableError(f"Field '{name}' is not part of the template")
        return config.model_copy(update={"fields": [item for item in fields if item.name != name]})

    if proposal.type is ProposalType.INSTRUCTION_CLARIFICATION:
        _require_action(change, "add_instruction")
        instruction = str(change.get("instruction") or "").strip()
        if not instruction:
            raise ImprovementNotApplicableError("add_instruction requires instruction text")
        if instruction in config.instructions:
            raise ImprovementNotApplicableError("Instruction is already present")
        instructions = (
            f"{config.instructions}\n\n{instruction}" if config.instructions else instruction
        )
        return config.model_copy(update={"instructions": instructions})

    if proposal.type is ProposalType.EXAMPLE_UPDATE:
        _require_action(change, "add_format_example")
        example = str(change.get("example") or "").strip()
        if not example:
            raise ImprovementNotApplicableError("add_format_example requires example text")
        if example in config.examples:
            raise ImprovementNotApplicableError("Example is already present")
        return config.model_copy(update={"examples": [*config.examples, example]})

    if proposal.type is ProposalType.VALIDATION_ADJUSTMENT:
        _require_action(change, "adjust_validation")
        name = _field_name(change, proposal)
        if "validation" not in change:
            raise ImprovementNotApplicableError(
                f"Validation adjustment for '{name}' has no replacement rules; review it manually"
            )
        target = next((item for item in fields if item.name == name), None)
        if target is None:
            raise ImprovementNotApplicableError(f"Field '{name}' is not part of the template")
        rules = change["validation"]
        try:
            target.validation = FieldValidation.model_validate(rules) if rules else None
        except PydanticValidationError as exc:
            raise ImprovementNotApplicableError(f"Invalid validation rules: {exc}") from exc
        return config.model_copy(update={"fields": fields})

    raise ImprovementNotApplicableError(f"Unsupported proposal type '{proposal.type.value}'")
