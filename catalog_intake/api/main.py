"""FastAPI application for the catalog intake service."""

from contextlib import asynccontextmanager

from fastapi import FastAPI, Request, status
from fastapi.responses import JSONResponse

from ..exceptions import (
    CatalogIntakeError,
    ImprovementNotApplicableError,
    InvalidSubmissionError,
    InventoryCommitError,
    MalformedFeedbackError,
    ProcessingConflictError,
    SubmissionNotFoundError,
    SupplierNotFoundError,
    TemplateNotFoundError,
    ValidationConflictError,
)
from ..utils.config import ensure_runtime_configuration, get_settings
from ..utils.logging import setup_logger

logger = setup_logger(__name__, context={"component": "FastAPI"})

_STATUS_BY_ERROR: tuple[tuple[type[CatalogIntakeError], int], ...] = (
    (SubmissionNotFoundError, status.HTTP_404_NOT_FOUND),
    (SupplierNotFoundError, status.HTTP_404_NOT_FOUND),
    (TemplateNotFoundError, status.HTTP_404_NOT_FOUND),
    (ProcessingConflictError, status.HTTP_409_CONFLICT),
    (ValidationConflictError, status.HTTP_409_CONFLICT),
    (InvalidSubmissionError, status.HTTP_422_UNPROCESSABLE_ENTITY),
    (MalformedFeedbackError, status.HTTP_422_UNPROCESSABLE_ENTITY),
    (ImprovementNotApplicableError, status.HTTP_422_UNPROCESSABLE_ENTITY),
    (InventoryCommitError, status.HTTP_502_BAD_GATEWAY),
)


def status_for(exc: CatalogIntakeError) -> int:
    for error_type, status_code in _STATUS_BY_ERROR:
        if isinstance(exc, error_type):
            return status_code
    return status.HTTP_500_INTERNAL_SERVER_ERROR


@asynccontextmanager
async def lifespan(app: FastAPI):  # type: ignore
    """Application lifespan context manager for startup/shutdown."""
    ensure_runtime_configuration(get_settings())
    logger.info("Catalog intake API starting up...")
    yield
    logger.info("Catalog intake API shutting down...")


app = FastAPI(
    title="Catalog Intake API",
    description="Supplier product intake, review, and template improvement service",
    version="0.1.0",
    lifespan=lifespan,
)


@app.exception_handler(CatalogIntakeError)
async def intake_exception_handler(request: Request, exc: CatalogIntakeError) -> JSONResponse:
    """Translate domain errors into HTTP responses."""
    status_code = status_for(exc)
    log_method = logger.error if status_code >= 500 else logger.warning
    log_method(
        "%s: %s",
        exc.__class__.__name__,
        exc,
        extra={"path": request.url.path, "status": "error"},
    )
    return JSONResponse(
        status_code=status_code,
        content={"status": "error", "message": str(exc), "error_type": exc.__class__.__name__},
    )


# Import routers
from .routes import health, metrics, submissions, templates, validation  # noqa: E402

app.include_router(health.router, tags=["health"])
app.include_router(submissions.router, prefix="/api/v1", tags=["submissions"])
app.include_router(validation.router, prefix="/api/v1", tags=["validation"])
app.include_router(templates.router, prefix="/api/v1", tags=["templates"])
app.include_router(metrics.router, tags=["monitoring"])
