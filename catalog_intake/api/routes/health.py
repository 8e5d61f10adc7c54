"""Health check endpoint."""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError

from ...models.base import session_scope
from ...utils.logging import setup_logger

logger = setup_logger(__name__, context={"component": "HealthAPI"})
router = APIRouter()


def database_status() -> dict[str, Any]:
    """Run a trivial query against the configured database."""

    try:
        with session_scope() as session:
            session.execute(text("SELECT 1"))
    except SQLAlchemyError as exc:
        logger.error("Database health check failed: %s", exc, extra={"status": "error"})
        return {"status": "error", "error": str(exc)}
    return {"status": "ok"}


@router.get("/health")
def health_check() -> dict[str, Any]:
    """Health check endpoint including database connectivity status."""

    database = database_status()
    return {
        "status": "healthy" if database["status"] == "ok" else "unhealthy",
        "service": "catalog_intake",
        "database": database,
    }
