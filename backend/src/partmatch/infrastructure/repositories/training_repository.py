"""Write-side repository for training examples and learned aliases.

Used by the feedback recorder and the CSV import. All queries are scoped by
org_id.
"""

from datetime import datetime
from typing import Optional, Sequence
from uuid import UUID

from sqlalchemy import func, select, update
from sqlalchemy.orm import Session

from ...matching.normalizer import normalize
from ...models.alias import ProductAlias
from ...models.product import Product
from ...models.training_example import TrainingExample


class TrainingRepository:
    """Repository for training example and alias persistence."""

    def __init__(self, db: Session):
        """Initialize repository with database session.

        Args:
            db: SQLAlchemy database session
        """
        self.db = db

    def get_product(self, org_id: UUID, product_id: UUID) -> Optional[Product]:
        """Get a product by ID within an organization."""
        stmt = select(Product).where(Product.org_id == org_id, Product.id == product_id)
        return self.db.scalars(stmt).first()

    def find_product_by_sku(self, org_id: UUID, sku: str) -> Optional[Product]:
        """Find an active product by exact SKU, then case-insensitive SKU."""
        sku = (sku or "").strip()
        if not sku:
            return None

        stmt = select(Product).where(
            Product.org_id == org_id,
            Product.active.is_(True),
            Product.sku == sku,
        )
        product = self.db.scalars(stmt).first()
        if product is not None:
            return product

        stmt = (
            select(Product)
            .where(
                Product.org_id == org_id,
                Product.active.is_(True),
                func.lower(Product.sku) == sku.lower(),
            )
            .order_by(Product.sku)
        )
        return self.db.scalars(stmt).first()

    def find_product_by_name(self, org_id: UUID, name: str) -> Optional[Product]:
        """Find an active product by name.

        Tries a case-insensitive comparison in SQL first, then compares
        normalized names so abbreviations ("HX HD") still resolve.

        Args:
            org_id: Organization ID (multi-tenant isolation)
            name: Catalog name as written in the import file

        Returns:
            Product or None (ties resolved by SKU ascending)
        """
        name = (name or "").strip()
        if not name:
            return None

        stmt = (
            select(Product)
            .where(
                Product.org_id == org_id,
                Product.active.is_(True),
                func.lower(Product.name) == name.lower(),
            )
            .order_by(Product.sku)
        )
        product = self.db.scalars(stmt).first()
        if product is not None:
            return product

        target = normalize(name)
        stmt = (
            select(Product)
            .where(Product.org_id == org_id, Product.active.is_(True))
            .order_by(Product.sku)
        )
        for candidate in self.db.scalars(stmt):
            if normalize(candidate.name) == target:
                return candidate
        return None

    def get_example(self, org_id: UUID, query_norm: str, product_id: UUID) -> Optional[TrainingExample]:
        """Get the training example for a (normalized text, product) pair."""
        stmt = select(TrainingExample).where(
            TrainingExample.org_id == org_id,
            TrainingExample.query_norm == query_norm,
            TrainingExample.product_id == product_id,
        )
        return self.db.scalars(stmt).first()

    def get_alias(self, org_id: UUID, product_id: UUID, alias_name_norm: str) -> Optional[ProductAlias]:
        """Get the alias of a product by normalized alias name."""
        stmt = select(ProductAlias).where(
            ProductAlias.org_id == org_id,
            ProductAlias.product_id == product_id,
            ProductAlias.alias_name_norm == alias_name_norm,
        )
        return self.db.scalars(stmt).first()

    def increment_references(self, org_id: UUID, example_ids: Sequence[UUID], now: datetime) -> int:
        """Bump times_referenced and last_referenced_at for examples.

        updated_at is left alone so the snapshot version does not change.

        Args:
            org_id: Organization ID (multi-tenant isolation)
            example_ids: Training example IDs
            now: Reference timestamp

        Returns:
            Number of rows updated
        """
        if not example_ids:
            return 0

        stmt = (
            update(TrainingExample)
            .where(
                TrainingExample.org_id == org_id,
                TrainingExample.id.in_(list(example_ids)),
            )
            .values(
                times_referenced=TrainingExample.times_referenced + 1,
                last_referenced_at=now,
            )
            .execution_options(synchronize_session=False)
        )
        result = self.db.execute(stmt)
        return result.rowcount or 0
