"""Validation queue and review decision endpoints."""

from __future__ import annotations

from typing import Annotated

from fastapi import APIRouter, Depends, Query

from ...review.decisions import ReviewDecisionHandler
from ...review.queue import ValidationQueueManager
from ...review.taxonomy import feedback_categories
from ...schemas.submission import FeedbackView
from ...schemas.validation import (
    ApprovalResult,
    ApproveRequest,
    BulkApproveRequest,
    BulkRejectRequest,
    BulkResult,
    FeedbackCategoryInfo,
    QueueFilters,
    QueuePage,
    RejectRequest,
)

router = APIRouter(prefix="/validation")


def get_queue_manager() -> ValidationQueueManager:
    return ValidationQueueManager()


def get_decision_handler() -> ReviewDecisionHandler:
    return ReviewDecisionHandler()


QueueManager = Annotated[ValidationQueueManager, Depends(get_queue_manager)]
DecisionHandler = Annotated[ReviewDecisionHandler, Depends(get_decision_handler)]


@router.get("/queue", response_model=QueuePage)
def list_queue(filters: Annotated[QueueFilters, Query()], manager: QueueManager) -> QueuePage:
    """Completed submissions awaiting review, highest priority first."""

    return manager.list_queue(filters)


@router.get("/feedback-categories", response_model=list[FeedbackCategoryInfo])
def list_feedback_categories() -> list[FeedbackCategoryInfo]:
    return feedback_categories()


@router.post("/bulk-approve", response_model=BulkResult)
def bulk_approve(request: BulkApproveRequest, handler: DecisionHandler) -> BulkResult:
    return handler.bulk_approve(
        request.submission_ids, notes=request.notes, reviewer=request.reviewer
    )


@router.post("/bulk-reject", response_model=BulkResult)
def bulk_reject(request: BulkRejectRequest, handler: DecisionHandler) -> BulkResult:
    return handler.bulk_reject(
        request.submission_ids,
        request.feedback,
        notes=request.notes,
        reviewer=request.reviewer,
    )


@router.post("/{submission_id}/approve", response_model=ApprovalResult)
def approve_submission(
    submission_id: str, request: ApproveRequest, handler: DecisionHandler
) -> ApprovalResult:
    """Approve a submission, merging reviewer edits and committing it to inventory."""

    return handler.approve(
        submission_id,
        edits=request.edits,
        notes=request.notes,
        reviewer=request.reviewer,
    )


@router.post("/{submission_id}/reject", response_model=FeedbackView)
def reject_submission(
    submission_id: str, request: RejectRequest, handler: DecisionHandler
) -> FeedbackView:
    """Reject a submission with structured feedback."""

    record = handler.reject(
        submission_id,
        request.feedback,
        notes=request.notes,
        reviewer=request.reviewer,
    )
    return FeedbackView.from_record(record)
