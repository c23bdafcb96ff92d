"""Match training example SQLAlchemy model.

A training example is a human-approved (query text -> product) pair. Examples
feed tiers 1 and 2 of the matcher and the learned-similarity signal.
"""

from uuid import uuid4

from sqlalchemy import (
    Column,
    DateTime,
    Float,
    ForeignKey,
    Index,
    Integer,
    Text,
    UniqueConstraint,
    Uuid,
    func,
)

from .base import Base, utcnow


class TrainingQuality:
    """Quality buckets assigned by reviewers."""
    EXCELLENT = "excellent"
    GOOD = "good"
    FAIR = "fair"
    POOR = "poor"

    ALL = (EXCELLENT, GOOD, FAIR, POOR)


class TrainingSource:
    """How a training example was created."""
    APPROVAL = "APPROVAL"
    IMPORT = "IMPORT"


class TrainingExample(Base):
    """Persisted approval used to bias and accelerate future matching.

    Examples are never deleted by the engine; old ones decay in the learned
    signal and drop out of the training tiers once outside the recency window.

    Attributes:
        query_text: Literal text as approved
        query_norm: Normalized query_text (upsert key together with product_id)
        product_sku, product_name: Catalog snapshot at approval time
        trigram_score..final_score: Signal scores observed at approval
        quality: excellent | good | fair | poor
        confidence: Reviewer/observed confidence 0.0-1.0
        weight: Manual tuning weight (default 1.0)
        times_referenced: Incremented whenever the example contributes to a match
    """
    __tablename__ = "match_training_example"
    __table_args__ = (
        UniqueConstraint("org_id", "query_norm", "product_id", name="uq_training_org_norm_product"),
        Index("ix_training_org_id", "org_id"),
        Index("ix_training_org_product", "org_id", "product_id"),
    )

    id = Column(Uuid, primary_key=True, default=uuid4)
    org_id = Column(Uuid, nullable=False)
    product_id = Column(Uuid, ForeignKey("product.id", ondelete="CASCADE"), nullable=False)

    query_text = Column(Text, nullable=False)
    query_norm = Column(Text, nullable=False)
    product_sku = Column(Text, nullable=True)
    product_name = Column(Text, nullable=True)

    # Scores observed at approval time
    trigram_score = Column(Float, nullable=False, default=0.0)
    fuzzy_score = Column(Float, nullable=False, default=0.0)
    alias_score = Column(Float, nullable=False, default=0.0)
    vector_score = Column(Float, nullable=False, default=0.0)
    final_score = Column(Float, nullable=False, default=0.0)

    quality = Column(Text, nullable=False, default=TrainingQuality.GOOD)
    confidence = Column(Float, nullable=False, default=0.8)
    weight = Column(Float, nullable=False, default=1.0)
    times_referenced = Column(Integer, nullable=False, default=0, server_default="0")
    source = Column(Text, nullable=False, default=TrainingSource.APPROVAL)
    approved_by = Column(Text, nullable=True)

    approved_at = Column(DateTime(timezone=True), nullable=False, default=utcnow, server_default=func.now())
    last_referenced_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow, server_default=func.now())
    updated_at = Column(DateTime(timezone=True), nullable=False, default=utcnow, server_default=func.now())

    def __repr__(self) -> str:
        return (
            f"<TrainingExample(id={self.id}, norm={self.query_norm!r}, "
            f"product_id={self.product_id}, quality={self.quality})>"
        )
