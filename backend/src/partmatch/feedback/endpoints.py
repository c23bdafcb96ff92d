"""Feedback API endpoints for review decisions and training data import

This module provides API endpoints that write back into the training data:
- POST /feedback/approvals - Record an approved match (training example + alias)
- POST /feedback/rejections - Record a rejected candidate (audit only)
- POST /feedback/training-import - Bulk import approvals from a CSV body
"""

from typing import Dict, Literal, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Request, Response, status
from pydantic import BaseModel, Field
from starlette.concurrency import run_in_threadpool

from ..dependencies import get_org_id, get_recorder
from ..observability.logging_config import get_logger
from ..observability.metrics import feedback_failures_total
from ..workers.approval_worker import enqueue_approval
from .services import (
    FeedbackError,
    PersistenceError,
    TrainingFeedbackRecorder,
    UnknownProductError,
)

logger = get_logger(__name__)


# Request/Response schemas
class ApprovalRequest(BaseModel):
    """Request to record an approved match"""
    query_text: str = Field(min_length=1)
    product_id: UUID
    signal_scores: Dict[str, float] = Field(default_factory=dict)
    quality: Literal["excellent", "good", "fair", "poor"] = "good"
    confidence: Optional[float] = Field(default=None, ge=0.0, le=1.0)
    weight: Optional[float] = Field(default=None, ge=0.0)
    approved_by: Optional[str] = None


class ApprovalResponse(BaseModel):
    """Acknowledgement of a recorded or queued approval"""
    training_example_id: Optional[UUID] = None
    created: bool
    queued: bool = False
    alias_id: Optional[UUID] = None
    quality: str
    confidence: Optional[float] = None


class RejectionRequest(BaseModel):
    """Request to record a rejected candidate"""
    query_text: str = Field(min_length=1)
    product_id: UUID
    reason: Optional[str] = None
    actor: Optional[str] = None


# Router
router = APIRouter(prefix="/api/v1/feedback", tags=["feedback"])


@router.post("/approvals", response_model=ApprovalResponse)
def approve_match(
    request: ApprovalRequest,
    response: Response,
    org_id: UUID = Depends(get_org_id),
    recorder: TrainingFeedbackRecorder = Depends(get_recorder),
):
    """Record an approved match as a training example.

    Re-approving the same text for the same product updates the existing
    example. When the database stays unavailable after the recorder's
    retries, the approval is queued for a background worker and
    acknowledged with 202 and queued=true.
    """
    try:
        result = recorder.record_approval(
            org_id,
            request.query_text,
            request.product_id,
            signal_scores=request.signal_scores,
            quality=request.quality,
            confidence=request.confidence,
            weight=request.weight,
            approved_by=request.approved_by,
        )
    except UnknownProductError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))
    except PersistenceError:
        return _queue_approval(request, response, org_id)
    except FeedbackError as e:
        raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=str(e))

    return ApprovalResponse(
        training_example_id=result.training_example_id,
        created=result.created,
        alias_id=result.alias_id,
        quality=result.quality,
        confidence=result.confidence,
    )


def _queue_approval(request: ApprovalRequest, response: Response, org_id: UUID) -> ApprovalResponse:
    try:
        enqueue_approval(
            org_id,
            request.query_text,
            request.product_id,
            signal_scores=request.signal_scores,
            quality=request.quality,
            confidence=request.confidence,
            weight=request.weight,
            approved_by=request.approved_by,
        )
    except Exception as e:
        # Database and broker both down: nothing can hold the approval
        feedback_failures_total.labels(operation="approval_queue").inc()
        logger.error(
            f"Approval could not be queued: {e}",
            extra={"org_id": str(org_id), "product_id": str(request.product_id)},
            exc_info=True,
        )
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Approval could not be saved or queued. The approval is idempotent and can be retried.",
        )

    response.status_code = status.HTTP_202_ACCEPTED
    return ApprovalResponse(
        training_example_id=None,
        created=False,
        queued=True,
        quality=request.quality,
        confidence=request.confidence,
    )


@router.post("/rejections")
def reject_match(
    request: RejectionRequest,
    org_id: UUID = Depends(get_org_id),
    recorder: TrainingFeedbackRecorder = Depends(get_recorder),
):
    """Record a rejected candidate.

    Creates a MATCH_REJECTED feedback event; training data is unchanged.
    """
    try:
        event_id = recorder.record_rejection(
            org_id,
            request.query_text,
            request.product_id,
            reason=request.reason,
            actor=request.actor,
        )
    except PersistenceError as e:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(e))

    return {
        "product_id": str(request.product_id),
        "status": "REJECTED",
        "feedback_event_id": str(event_id),
    }


@router.post("/training-import")
async def import_training_data(
    request: Request,
    org_id: UUID = Depends(get_org_id),
    recorder: TrainingFeedbackRecorder = Depends(get_recorder),
):
    """Import historical approvals from a CSV request body.

    Expected columns: query_text, sku and/or catalog_name, optional quality
    and confidence.

    Returns:
        Counts of created, updated and skipped rows with per-row errors
    """
    body = await request.body()
    try:
        csv_text = body.decode("utf-8-sig")
    except UnicodeDecodeError:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="CSV body must be UTF-8")

    try:
        result = await run_in_threadpool(recorder.import_training_csv, org_id, csv_text)
    except FeedbackError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))

    return result.to_dict()
