"""Celery task package exposing the configured app and processing tasks."""

from __future__ import annotations

from .celery_app import celery_app as app
from .processing import (
    analyze_templates_task,
    process_pending_sweep,
    process_submission_task,
    recompute_suppliers_task,
    retry_failed_sweep,
    run_extraction,
    stale_processing_sweep,
    stale_validation_check,
)

__all__ = [
    "app",
    "analyze_templates_task",
    "process_pending_sweep",
    "process_submission_task",
    "recompute_suppliers_task",
    "retry_failed_sweep",
    "run_extraction",
    "stale_processing_sweep",
    "stale_validation_check",
]
