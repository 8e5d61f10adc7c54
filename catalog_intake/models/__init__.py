"""Persistence models and session helpers."""

from .base import Base, get_engine, get_session, reset_engine, session_scope
from .feedback import FeedbackRecord
from .submission import ImmutableRecordError, ProcessingLogEntry, Submission, Supplier
from .template import ExtractionTemplate, TemplateChange, TemplateHealthSnapshot

__all__ = [
    "Base",
    "ExtractionTemplate",
    "FeedbackRecord",
    "ImmutableRecordError",
    "ProcessingLogEntry",
    "Submission",
    "Supplier",
    "TemplateChange",
    "TemplateHealthSnapshot",
    "get_engine",
    "get_session",
    "reset_engine",
    "session_scope",
]
