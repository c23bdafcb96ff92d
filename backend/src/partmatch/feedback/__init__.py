"""Review feedback: audit events and training data write path."""

from .models import FeedbackEvent, FeedbackEventType
from .services import (
    ApprovalResult,
    FeedbackError,
    FeedbackService,
    ImportResult,
    KeyedLock,
    PersistenceError,
    TrainingFeedbackRecorder,
    UnknownProductError,
)

__all__ = [
    "ApprovalResult",
    "FeedbackError",
    "FeedbackEvent",
    "FeedbackEventType",
    "FeedbackService",
    "ImportResult",
    "KeyedLock",
    "PersistenceError",
    "TrainingFeedbackRecorder",
    "UnknownProductError",
]
