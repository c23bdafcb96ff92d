"""Read-side repository for everything the matcher consumes.

All queries are scoped by org_id. The matcher never writes through this
repository.
"""

from dataclasses import dataclass
from datetime import datetime
from typing import List, Optional, Sequence, Tuple
from uuid import UUID

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from ...models.alias import ProductAlias
from ...models.product import Product
from ...models.product_embedding import ProductEmbedding
from ...models.training_example import TrainingExample

TableVersion = Tuple[int, Optional[datetime]]


@dataclass(frozen=True)
class SnapshotVersion:
    """Change marker for one organization's matching data.

    Row count plus latest updated_at per table. Inserts, deletes and
    updates that bump updated_at all change the version; reference counter
    touches do not.
    """
    products: TableVersion
    aliases: TableVersion
    training: TableVersion
    embeddings: TableVersion = (0, None)

    def token(self) -> str:
        """Compact string form, used in cache keys and logs."""
        parts = []
        for count, updated in (self.products, self.aliases, self.training, self.embeddings):
            parts.append(f"{count}@{updated.isoformat() if updated else '-'}")
        return "|".join(parts)


class MatchDataRepository:
    """Repository for catalog, alias, training and embedding reads."""

    def __init__(self, db: Session):
        """Initialize repository with database session.

        Args:
            db: SQLAlchemy database session
        """
        self.db = db

    def _table_version(self, model, org_id: UUID, *criteria) -> TableVersion:
        stmt = select(func.count(model.id), func.max(model.updated_at)).where(
            model.org_id == org_id, *criteria
        )
        count, updated = self.db.execute(stmt).one()
        return int(count or 0), updated

    def get_version(self, org_id: UUID, embedding_model: Optional[str] = None) -> SnapshotVersion:
        """Compute the current snapshot version for an organization.

        Args:
            org_id: Organization ID (multi-tenant isolation)
            embedding_model: Include embeddings of this model when set

        Returns:
            SnapshotVersion
        """
        embeddings: TableVersion = (0, None)
        if embedding_model:
            embeddings = self._table_version(
                ProductEmbedding, org_id, ProductEmbedding.embedding_model == embedding_model
            )

        return SnapshotVersion(
            products=self._table_version(Product, org_id),
            aliases=self._table_version(ProductAlias, org_id),
            training=self._table_version(TrainingExample, org_id),
            embeddings=embeddings,
        )

    def list_active_products(self, org_id: UUID) -> List[Product]:
        """Get all active catalog products of an organization."""
        stmt = select(Product).where(
            Product.org_id == org_id,
            Product.active.is_(True),
        )
        return list(self.db.scalars(stmt).all())

    def list_aliases(self, org_id: UUID) -> List[ProductAlias]:
        """Get all aliases of an organization."""
        stmt = select(ProductAlias).where(ProductAlias.org_id == org_id)
        return list(self.db.scalars(stmt).all())

    def list_training_examples(
        self,
        org_id: UUID,
        qualities: Sequence[str],
        approved_since: datetime,
    ) -> List[TrainingExample]:
        """Get training examples usable for matching.

        Args:
            org_id: Organization ID (multi-tenant isolation)
            qualities: Accepted quality buckets (e.g. excellent, good)
            approved_since: Oldest approved_at to include

        Returns:
            Examples ordered by confidence desc, approved_at desc
        """
        stmt = (
            select(TrainingExample)
            .where(
                TrainingExample.org_id == org_id,
                TrainingExample.quality.in_(list(qualities)),
                TrainingExample.approved_at >= approved_since,
            )
            .order_by(TrainingExample.confidence.desc(), TrainingExample.approved_at.desc())
        )
        return list(self.db.scalars(stmt).all())

    def list_embeddings(self, org_id: UUID, embedding_model: str) -> List[ProductEmbedding]:
        """Get product embeddings of one model for an organization."""
        stmt = select(ProductEmbedding).where(
            ProductEmbedding.org_id == org_id,
            ProductEmbedding.embedding_model == embedding_model,
        )
        return list(self.db.scalars(stmt).all())
