"""Approval Worker - persist approvals the request path could not save.

When the database rejects an approval after the recorder's own retries, the
API hands it to this task and acknowledges the reviewer immediately. The task
retries with backoff until the write lands; re-running it is safe because the
recorder upserts on (org, normalized text, product).
"""

from typing import Any, Dict, Optional
from uuid import UUID

from ..feedback.services import FeedbackError, PersistenceError, TrainingFeedbackRecorder
from ..observability.logging_config import get_logger
from ..observability.metrics import approvals_total
from .base import BaseTask, celery_app, get_scoped_session, validate_org_id

logger = get_logger(__name__)


class RecordApprovalTask(BaseTask):
    """Tenant-validated task that retries while the database is unavailable.

    Validation errors (unknown product, empty text) are permanent and not
    retried.
    """
    autoretry_for = (PersistenceError,)
    retry_kwargs = {"max_retries": 8, "countdown": 10}
    retry_backoff = True
    retry_backoff_max = 900
    retry_jitter = True


@celery_app.task(base=RecordApprovalTask, ignore_result=True)
def record_approval_task(
    query_text: str,
    product_id: str,
    org_id: str,
    signal_scores: Optional[Dict[str, float]] = None,
    quality: str = "good",
    confidence: Optional[float] = None,
    weight: Optional[float] = None,
    approved_by: Optional[str] = None,
) -> Dict[str, Any]:
    """Record one approval as a training example.

    Args:
        query_text: Line item text as reviewed
        product_id: UUID string of the approved product
        org_id: UUID string of organization (multi-tenant isolation)
        signal_scores: Scores observed at review time
        quality: excellent | good | fair | poor
        confidence: Reviewer confidence, or None to derive it from the scores
        weight: Manual tuning weight
        approved_by: Reviewer identifier

    Returns:
        Dict with org_id, product_id, status (recorded|rejected) and the
        training_example_id when recorded

    Raises:
        ValueError: If org_id or product_id is invalid
        PersistenceError: If the write failed again (retried)
    """
    org_uuid = validate_org_id(org_id)
    product_uuid = UUID(str(product_id))

    session = get_scoped_session(org_uuid)
    try:
        result = TrainingFeedbackRecorder(session).record_approval(
            org_uuid,
            query_text,
            product_uuid,
            signal_scores=signal_scores,
            quality=quality,
            confidence=confidence,
            weight=weight,
            approved_by=approved_by,
        )
    except PersistenceError:
        raise
    except FeedbackError as e:
        logger.warning(
            f"Queued approval rejected: {e}",
            extra={"org_id": org_id, "product_id": product_id},
        )
        return {"org_id": org_id, "product_id": product_id, "status": "rejected", "error": str(e)}
    finally:
        session.close()

    return {
        "org_id": org_id,
        "product_id": product_id,
        "status": "recorded",
        "training_example_id": str(result.training_example_id),
        "created": result.created,
    }


def enqueue_approval(
    org_id: UUID,
    query_text: str,
    product_id: UUID,
    signal_scores: Optional[Dict[str, float]] = None,
    quality: str = "good",
    confidence: Optional[float] = None,
    weight: Optional[float] = None,
    approved_by: Optional[str] = None,
) -> None:
    """Hand an approval to the worker.

    Raises whatever the broker raises; the caller decides how to answer.
    """
    record_approval_task.delay(
        query_text=query_text,
        product_id=str(product_id),
        org_id=str(org_id),
        signal_scores=dict(signal_scores or {}),
        quality=quality,
        confidence=confidence,
        weight=weight,
        approved_by=approved_by,
    )
    approvals_total.labels(quality=quality, outcome="queued").inc()
    logger.info(
        "Approval queued for background persistence",
        extra={"org_id": str(org_id), "product_id": str(product_id)},
    )
