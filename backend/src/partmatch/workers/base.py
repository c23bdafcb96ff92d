"""Celery application and tenant helpers for background tasks.

All background tasks MUST:
1. Accept org_id as explicit parameter (UUID string, JSON serializable)
2. Validate org_id before processing
3. Filter every query by org_id
4. Close their session in a finally block

Tasks are best-effort companions of the request path: the matcher enqueues
reference-count updates and never waits for them.
"""

from uuid import UUID

from celery import Celery, Task
from sqlalchemy.orm import Session

from ..config import get_settings
from ..database import SessionLocal

settings = get_settings()

celery_app = Celery(
    "partmatch",
    broker=settings.CELERY_BROKER_URL,
    backend=settings.CELERY_RESULT_BACKEND,
    include=[
        "partmatch.workers.reference_worker",
        "partmatch.workers.embedding_worker",
        "partmatch.workers.approval_worker",
    ],
)

celery_app.conf.update(
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    timezone="UTC",
    enable_utc=True,
    task_always_eager=settings.CELERY_TASK_ALWAYS_EAGER,
    # Enqueueing from the match path must fail fast when the broker is down
    task_publish_retry=False,
    broker_connection_timeout=2,
)


def validate_org_id(org_id: str) -> UUID:
    """Validate that org_id is a valid UUID.

    This function MUST be called at the start of every multi-tenant Celery task.

    Args:
        org_id: Organization UUID as string (from task parameters)

    Returns:
        UUID: Validated organization UUID

    Raises:
        ValueError: If org_id is not a valid UUID

    Example:
        @celery_app.task
        def touch_training_references(org_id: str, example_ids: list):
            org_uuid = validate_org_id(org_id)  # REQUIRED
            ...
    """
    try:
        return UUID(str(org_id))
    except (ValueError, AttributeError, TypeError) as e:
        raise ValueError(f"Invalid org_id format '{org_id}': {str(e)}")


def get_scoped_session(org_id: UUID) -> Session:
    """Create a database session for a worker task.

    The org_id is attached to session.info for log context; queries must
    still filter by org_id explicitly.

    Args:
        org_id: Organization UUID (validated)

    Returns:
        Session: SQLAlchemy session
    """
    session = SessionLocal()
    session.info["org_id"] = org_id
    return session


class BaseTask(Task):
    """Base Celery task class with tenant validation.

    Tasks using this base class must receive org_id as a keyword argument.

    Usage:
        @celery_app.task(base=BaseTask)
        def my_task(resource_id: str, org_id: str):
            # org_id already validated by BaseTask
            ...
    """

    def __call__(self, *args, **kwargs):
        """Validate org_id before running task.

        Raises:
            ValueError: If org_id parameter is missing or invalid
        """
        org_id = kwargs.get("org_id")
        if not org_id:
            raise ValueError(
                "org_id parameter is required for all multi-tenant tasks. "
                "Ensure you pass org_id=str(org_uuid) when enqueuing the task."
            )

        validate_org_id(org_id)
        return super().__call__(*args, **kwargs)
