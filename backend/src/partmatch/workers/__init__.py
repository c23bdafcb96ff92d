"""Background workers module for async task processing.

Celery tasks for best-effort training reference counting, deferred approval
persistence and product embedding generation, with explicit org_id scoping.
"""

from .base import (
    BaseTask,
    celery_app,
    get_scoped_session,
    validate_org_id,
)

__all__ = [
    "BaseTask",
    "celery_app",
    "get_scoped_session",
    "validate_org_id",
]
