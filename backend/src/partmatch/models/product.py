"""Product SQLAlchemy model"""

from uuid import uuid4

from sqlalchemy import Boolean, Column, DateTime, Index, Text, UniqueConstraint, Uuid, func

from .base import Base, utcnow


class Product(Base):
    """Catalog entry the matching engine reads.

    Products are owned by external catalog management; partmatch never
    writes them outside of tests and seed scripts. Each product belongs to
    one organization and has a unique SKU within it.
    """
    __tablename__ = "product"
    __table_args__ = (
        UniqueConstraint("org_id", "sku", name="uq_product_org_sku"),
        Index("ix_product_org_id", "org_id"),
    )

    id = Column(Uuid, primary_key=True, default=uuid4)
    org_id = Column(Uuid, nullable=False)
    sku = Column(Text, nullable=False)
    name = Column(Text, nullable=False)
    manufacturer = Column(Text, nullable=True)
    category = Column(Text, nullable=True)
    description = Column(Text, nullable=True)
    active = Column(Boolean, nullable=False, default=True, server_default="true")
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow, server_default=func.now())
    updated_at = Column(DateTime(timezone=True), nullable=False, default=utcnow, server_default=func.now())

    def to_dict(self):
        """Convert product to dictionary representation"""
        return {
            "id": str(self.id),
            "org_id": str(self.org_id),
            "sku": self.sku,
            "name": self.name,
            "manufacturer": self.manufacturer,
            "category": self.category,
            "description": self.description,
            "active": self.active,
        }

    def __repr__(self) -> str:
        return f"<Product(id={self.id}, sku={self.sku!r})>"
