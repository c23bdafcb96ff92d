"""Reference Worker - bump usage counters of training examples.

The matcher reports which training examples produced its results. Counting
happens here, off the request path, so a slow or failing write never delays
or fails a match.
"""

from typing import Any, Dict, List, Sequence
from uuid import UUID

from ..feedback.services import TrainingFeedbackRecorder
from ..observability.logging_config import get_logger
from .base import BaseTask, celery_app, get_scoped_session, validate_org_id

logger = get_logger(__name__)


@celery_app.task(base=BaseTask, ignore_result=True)
def touch_training_references(example_ids: List[str], org_id: str) -> Dict[str, Any]:
    """Increment times_referenced for the given training examples.

    Best-effort: failures are logged and counted by the recorder, never retried.

    Args:
        example_ids: Training example UUID strings
        org_id: UUID string of organization (multi-tenant isolation)

    Returns:
        Dict with org_id, requested and updated counts

    Example:
        >>> touch_training_references.delay(
        ...     example_ids=[str(example.id)],
        ...     org_id=str(example.org_id),
        ... )
    """
    org_uuid = validate_org_id(org_id)
    ids = []
    for value in example_ids:
        try:
            ids.append(UUID(str(value)))
        except ValueError:
            logger.warning(f"Ignoring invalid training example id '{value}'", extra={"org_id": org_id})

    session = get_scoped_session(org_uuid)
    try:
        updated = TrainingFeedbackRecorder(session).touch_references(org_uuid, ids)
    finally:
        session.close()

    return {"org_id": org_id, "requested": len(ids), "updated": updated}


def enqueue_reference_touch(org_id: UUID, example_ids: Sequence[UUID]) -> None:
    """Reference sink for TieredMatcher: enqueue a counter update.

    Raises whatever the broker raises; the matcher logs and swallows it.
    """
    touch_training_references.delay(
        example_ids=[str(example_id) for example_id in example_ids],
        org_id=str(org_id),
    )
