"""Submission ingestion and extraction stage orchestration."""

from .boundaries import (
    Extractor,
    InventoryGateway,
    get_extractor,
    get_inventory_gateway,
    set_extractor,
    set_inventory_gateway,
)
from .extraction import (
    ExtractionStageRunner,
    StageOutcome,
    normalize_extraction,
    release_abandoned_claims,
)
from .ingestion import ingest
from .policies import StageRetryPolicy

__all__ = [
    "ExtractionStageRunner",
    "Extractor",
    "InventoryGateway",
    "StageOutcome",
    "StageRetryPolicy",
    "get_extractor",
    "get_inventory_gateway",
    "ingest",
    "normalize_extraction",
    "release_abandoned_claims",
    "set_extractor",
    "set_inventory_gateway",
]
