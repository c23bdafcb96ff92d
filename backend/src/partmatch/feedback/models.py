"""Feedback event SQLAlchemy model"""

from uuid import uuid4

from sqlalchemy import Column, DateTime, Index, Text, Uuid, func

from ..models.base import Base, PortableJSONB, utcnow


class FeedbackEventType:
    """Review decisions recorded in the audit trail."""
    MATCH_APPROVED = "MATCH_APPROVED"
    MATCH_REJECTED = "MATCH_REJECTED"


class FeedbackEvent(Base):
    """FeedbackEvent captures reviewer decisions on match candidates.

    Stores before/after snapshots of the training state touched by a decision
    so approvals and rejections remain auditable after the training example
    itself has been updated by later approvals.
    """
    __tablename__ = "feedback_event"

    id = Column(Uuid, primary_key=True, default=uuid4)
    org_id = Column(Uuid, nullable=False)
    actor = Column(Text, nullable=True)

    event_type = Column(Text, nullable=False)

    product_id = Column(Uuid, nullable=True)
    training_example_id = Column(Uuid, nullable=True)
    query_text = Column(Text, nullable=True)

    before_json = Column(PortableJSONB, nullable=True)
    after_json = Column(PortableJSONB, nullable=True)

    # Scores, quality, reason
    meta_json = Column(PortableJSONB, nullable=False, default=dict)

    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow, server_default=func.now())

    def to_dict(self):
        """Convert feedback event to dictionary representation"""
        return {
            "id": str(self.id),
            "org_id": str(self.org_id),
            "actor": self.actor,
            "event_type": self.event_type,
            "product_id": str(self.product_id) if self.product_id else None,
            "training_example_id": str(self.training_example_id) if self.training_example_id else None,
            "query_text": self.query_text,
            "before_json": self.before_json,
            "after_json": self.after_json,
            "meta_json": self.meta_json,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }


Index("idx_feedback_event_org_created", FeedbackEvent.org_id, FeedbackEvent.created_at.desc())
Index("idx_feedback_event_org_type_created", FeedbackEvent.org_id, FeedbackEvent.event_type, FeedbackEvent.created_at.desc())
