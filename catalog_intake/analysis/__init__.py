"""Template health analysis and supplier performance metrics."""

from .suppliers import recompute_all, recompute_supplier_metrics
from .templates import TemplateAnalysisEngine, classify_health, rank_proposals

__all__ = [
    "TemplateAnalysisEngine",
    "classify_health",
    "rank_proposals",
    "recompute_all",
    "recompute_supplier_metrics",
]
