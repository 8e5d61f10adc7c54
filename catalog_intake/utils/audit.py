"""Audit logging for review decisions and template changes."""

from __future__ import annotations

import re
from datetime import datetime, timezone
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field

from .logging import setup_logger

# Separate audit logger so audit entries can be routed independently.
audit_logger = setup_logger("catalog_intake.audit", context={"component": "audit"})


class AuditAction(str, Enum):
    """Enumeration of auditable actions."""

    SUBMISSION_INGESTED = "submission.ingested"
    SUBMISSION_APPROVED = "submission.approved"
    SUBMISSION_AUTO_APPROVED = "submission.auto_approved"
    SUBMISSION_REJECTED = "submission.rejected"
    INVENTORY_COMMIT_FAILED = "inventory.commit.failed"
    TEMPLATE_ANALYZED = "template.analyzed"
    TEMPLATE_IMPROVEMENT_APPLIED = "template.improvement.applied"
    SUPPLIER_METRICS_RECOMPUTED = "supplier.metrics.recomputed"


class AuditOutcome(str, Enum):
    """Audit event outcome."""

    SUCCESS = "success"
    FAILURE = "failure"


class AuditEvent(BaseModel):
    """Structured audit event."""

    timestamp: str = Field(
        default_factory=lambda: datetime.now(timezone.utc).isoformat(),
        description="ISO 8601 timestamp of the event",
    )
    action: AuditAction = Field(..., description="Action being audited")
    outcome: AuditOutcome = Field(..., description="Outcome of the action")
    actor: str = Field(..., description="Reviewer, operator, or service performing the action")
    resource: str | None = Field(default=None, description="Identifier of the affected resource")
    resource_type: str | None = Field(
        default=None, description="Type of resource (submission, template, supplier)"
    )
    details: dict[str, Any] = Field(
        default_factory=dict, description="Additional context-specific details"
    )
    error_message: str | None = Field(
        default=None, description="Error message if outcome is failure"
    )


class ContactRedactor:
    """Masks supplier contact details (phone numbers, emails) in audit payloads."""

    PHONE_PATTERN = re.compile(r"\+?\d[\d\s\-]{7,}\d")
    EMAIL_PATTERN = re.compile(r"\b[A-Za-z0-9._%+-]+@[A-Za-z0-9.-]+\.[A-Za-z]{2,}\b")

    @classmethod
    def redact_string(cls, text: str) -> str:
        redacted = cls.EMAIL_PATTERN.sub(
            lambda m: f"{m.group().split('@')[0][:2]}***@{m.group().split('@')[1]}",
            text,
        )
        return cls.PHONE_PATTERN.sub(lambda m: f"***{m.group()[-4:]}", redacted)

    @classmethod
    def redact(cls, value: Any, max_depth: int = 10) -> Any:
        """Recursively redact strings nested in dicts and lists."""
        if max_depth <= 0:
            return value
        if isinstance(value, str):
            return cls.redact_string(value)
        if isinstance(value, dict):
            return {key: cls.redact(item, max_depth - 1) for key, item in value.items()}
        if isinstance(value, list):
            return [cls.redact(item, max_depth - 1) for item in value]
        return value


class AuditLogger:
    """Audit logger with automatic contact redaction."""

    def __init__(self, redact_contacts: bool = True):
        self.redact_contacts = redact_contacts

    def log_event(self, event: AuditEvent) -> None:
        """Log an audit event as structured data."""
        event_dict = event.model_dump(mode="json", exclude_none=True)
        if self.redact_contacts:
            event_dict["details"] = ContactRedactor.redact(event_dict.get("details", {}))

        audit_logger.info(
            f"AUDIT: {event.action.value}",
            extra={
                "audit_event": event_dict,
                "actor": event.actor,
                "action": event.action.value,
                "outcome": event.outcome.value,
                "resource": event.resource,
                "status": event.outcome.value,
            },
        )

    def log_decision(
        self,
        action: AuditAction,
        submission_id: str,
        actor: str | None,
        outcome: AuditOutcome = AuditOutcome.SUCCESS,
        error_message: str | None = None,
        **details: Any,
    ) -> None:
        """Log an approve/reject decision on a submission."""
        self.log_event(
            AuditEvent(
                action=action,
                outcome=outcome,
                actor=actor or "system",
                resource=submission_id,
                resource_type="submission",
                error_message=error_message,
                details=details,
            )
        )

    def log_template_change(
        self,
        template_id: str,
        actor: str | None,
        before: dict[str, Any],
        after: dict[str, Any],
        **details: Any,
    ) -> None:
        """Log an applied template improvement with before/after values."""
        self.log_event(
            AuditEvent(
                action=AuditAction.TEMPLATE_IMPROVEMENT_APPLIED,
                outcome=AuditOutcome.SUCCESS,
                actor=actor or "system",
                resource=template_id,
                resource_type="template",
                details={"before": before, "after": after, **details},
            )
        )

    def log_system_event(
        self,
        action: AuditAction,
        resource: str | None = None,
        resource_type: str | None = None,
        **details: Any,
    ) -> None:
        """Log a service-initiated event (ingestion, analysis, metric recomputation)."""
        self.log_event(
            AuditEvent(
                action=action,
                outcome=AuditOutcome.SUCCESS,
                actor="system",
                resource=resource,
                resource_type=resource_type,
                details=details,
            )
        )


# Global audit logger instance
_audit_logger: AuditLogger | None = None


def get_audit_logger() -> AuditLogger:
    """Get or create the global audit logger instance."""
    global _audit_logger
    if _audit_logger is None:
        _audit_logger = AuditLogger(redact_contacts=True)
    return _audit_logger
