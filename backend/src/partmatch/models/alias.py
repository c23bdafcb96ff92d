"""Product alias SQLAlchemy model."""

from uuid import uuid4

from sqlalchemy import Column, DateTime, Float, ForeignKey, Index, Text, UniqueConstraint, Uuid, func

from .base import Base, utcnow


class AliasSource:
    """Where an alias came from."""
    MANUAL = "MANUAL"
    LEARNED = "LEARNED"


class ProductAlias(Base):
    """Mapping of an externally seen name/SKU string to a catalog product.

    Aliases are created by manual curation or learned from high-quality
    approvals. The alias signal compares the query against alias_name_norm
    and alias_sku and weights the similarity by confidence.

    Attributes:
        alias_name: Raw external text as seen on a vendor document
        alias_name_norm: Normalized alias_name (unique per product)
        alias_sku: Optional competitor/vendor SKU
        confidence: Trust in the alias, 0.0-1.0
        source: MANUAL or LEARNED
    """
    __tablename__ = "product_alias"
    __table_args__ = (
        UniqueConstraint("org_id", "product_id", "alias_name_norm", name="uq_product_alias_org_product_norm"),
        Index("ix_product_alias_org_id", "org_id"),
    )

    id = Column(Uuid, primary_key=True, default=uuid4)
    org_id = Column(Uuid, nullable=False)
    product_id = Column(Uuid, ForeignKey("product.id", ondelete="CASCADE"), nullable=False, index=True)
    alias_name = Column(Text, nullable=False)
    alias_name_norm = Column(Text, nullable=False)
    alias_sku = Column(Text, nullable=True)
    confidence = Column(Float, nullable=False, default=1.0)
    source = Column(Text, nullable=False, default=AliasSource.MANUAL)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow, server_default=func.now())
    updated_at = Column(DateTime(timezone=True), nullable=False, default=utcnow, server_default=func.now())

    def __repr__(self) -> str:
        return f"<ProductAlias(product_id={self.product_id}, alias={self.alias_name_norm!r})>"
