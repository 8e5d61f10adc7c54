"""Template analysis and improvement endpoints."""

from __future__ import annotations

from datetime import timedelta
from typing import Annotated

from fastapi import APIRouter, Query

from ...analysis.templates import TemplateAnalysisEngine
from ...models.base import session_scope
from ...models.repository import TemplateRepository
from ...schemas.analysis import (
    ApplyImprovementRequest,
    TemplateAnalysisResult,
    TemplateConfig,
)

router = APIRouter(prefix="/templates")

WindowDays = Annotated[int | None, Query(ge=1, le=365)]


def _window(window_days: int | None) -> timedelta | None:
    return timedelta(days=window_days) if window_days else None


@router.get("/analysis", response_model=list[TemplateAnalysisResult])
def analyze_templates(
    window_days: WindowDays = None,
    attention_only: bool = False,
) -> list[TemplateAnalysisResult]:
    """Analyze every active template; ``attention_only`` ranks the ones worth fixing."""

    engine = TemplateAnalysisEngine()
    results = engine.analyze_all(_window(window_days))
    if attention_only:
        return engine.needs_attention(results)
    return results


@router.get("/{template_id}", response_model=TemplateConfig)
def get_template(template_id: str) -> TemplateConfig:
    with session_scope() as session:
        return TemplateConfig.from_model(TemplateRepository(session).require(template_id))


@router.get("/{template_id}/analysis", response_model=TemplateAnalysisResult)
def analyze_template(template_id: str, window_days: WindowDays = None) -> TemplateAnalysisResult:
    return TemplateAnalysisEngine().analyze(template_id, _window(window_days))


@router.post("/{template_id}/improvements", response_model=TemplateConfig)
def apply_improvement(template_id: str, request: ApplyImprovementRequest) -> TemplateConfig:
    """Apply one improvement proposal to the template configuration."""

    return TemplateAnalysisEngine().apply_improvement(
        template_id, request.proposal, applied_by=request.applied_by
    )
