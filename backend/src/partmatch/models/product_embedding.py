"""ProductEmbedding Model - vector embeddings for the optional vector signal."""

from uuid import uuid4

from pgvector.sqlalchemy import Vector
from sqlalchemy import Column, DateTime, ForeignKey, Index, Integer, String, Uuid, func

from .base import Base, utcnow

EMBEDDING_DIM = 1536


class ProductEmbedding(Base):
    """Product embedding vector used by the vector signal.

    Vectors are written by the embed_product worker from the product's
    canonical text; the engine only reads them and compares them in-process
    against a query embedding from the provider.

    Attributes:
        embedding_model: Model that produced the vector (e.g. 'text-embedding-3-small')
        embedding_dim: Vector dimension
        embedding: pgvector VECTOR column
        text_hash: SHA256 of the canonical text the vector was built from

    Indexes:
        - UNIQUE(org_id, product_id, embedding_model): one embedding per product per model
    """

    __tablename__ = "product_embedding"

    id = Column(Uuid, primary_key=True, default=uuid4)
    org_id = Column(Uuid, nullable=False, index=True)
    product_id = Column(Uuid, ForeignKey("product.id", ondelete="CASCADE"), nullable=False, index=True)

    embedding_model = Column(String(100), nullable=False)
    embedding_dim = Column(Integer, nullable=False, default=EMBEDDING_DIM)
    embedding = Column(Vector(EMBEDDING_DIM), nullable=False)
    text_hash = Column(String(64), nullable=False)

    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow, server_default=func.now())
    updated_at = Column(DateTime(timezone=True), nullable=False, default=utcnow, server_default=func.now())

    __table_args__ = (
        Index(
            "idx_product_embedding_unique",
            "org_id",
            "product_id",
            "embedding_model",
            unique=True,
        ),
    )

    def __repr__(self) -> str:
        return (
            f"<ProductEmbedding(id={self.id}, product_id={self.product_id}, "
            f"model={self.embedding_model}, dim={self.embedding_dim})>"
        )
