"""Celery application configuration for catalog_intake."""

from __future__ import annotations

from celery import Celery

from ..utils.config import get_settings


def _resolve_redis_url() -> str:
    """Return the Redis URL configured for the application."""

    settings = get_settings()
    return settings.redis_url or "redis://localhost:6379/0"


celery_app = Celery(
    "catalog_intake",
    broker=_resolve_redis_url(),
    backend=_resolve_redis_url(),
)

celery_app.conf.update(
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    timezone="UTC",
    enable_utc=True,
    worker_hijack_root_logger=False,
    beat_schedule={
        "process-pending-submissions": {
            "task": "catalog_intake.process_pending_sweep",
            "schedule": 30.0,
        },
        "retry-failed-submissions": {
            "task": "catalog_intake.retry_failed_sweep",
            "schedule": 300.0,
        },
        "release-stale-claims": {
            "task": "catalog_intake.stale_processing_sweep",
            "schedule": 600.0,
        },
        "check-stale-validations": {
            "task": "catalog_intake.stale_validation_check",
            "schedule": 3600.0,
        },
        "analyze-templates": {
            "task": "catalog_intake.analyze_templates",
            "schedule": 6 * 3600.0,
        },
        "recompute-supplier-metrics": {
            "task": "catalog_intake.recompute_suppliers",
            "schedule": 24 * 3600.0,
        },
    },
)

celery_app.autodiscover_tasks(["catalog_intake.tasks"])
