"""Immutable in-memory snapshot of one organization's matching data.

A MatchSnapshot holds the active catalog, aliases, recent training examples
and (optionally) product embeddings, together with trigram indexes over
them. Match calls read only from a snapshot, which lets batch elements run
on worker threads without touching the database session. SnapshotLoader
rebuilds a snapshot only when the organization's SnapshotVersion changes.
"""

import threading
from dataclasses import dataclass
from datetime import datetime, timedelta
from types import MappingProxyType
from typing import Callable, Dict, FrozenSet, List, Mapping, Optional, Tuple
from uuid import UUID

import numpy as np
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ..config import MatchingConfig
from ..infrastructure.repositories.match_data_repository import MatchDataRepository, SnapshotVersion
from ..locking import KeyedLock
from ..models.base import as_utc, utcnow
from ..observability.logging_config import get_logger
from ..observability.metrics import snapshot_loads_total
from .normalizer import collapse, normalize
from .ports import CatalogUnavailableError
from .similarity import trigrams
from .trigram_index import TrigramIndex

logger = get_logger(__name__)


@dataclass(frozen=True)
class CatalogItem:
    """Read-only catalog row with precomputed comparison forms."""
    index: int
    product_id: UUID
    sku: str
    name: str
    manufacturer: Optional[str]
    name_norm: str
    sku_norm: str
    manufacturer_norm: str
    name_trigrams: FrozenSet[str]
    sku_trigrams: FrozenSet[str]
    manufacturer_trigrams: FrozenSet[str]


@dataclass(frozen=True)
class AliasEntry:
    """Read-only alias row."""
    alias_id: UUID
    product_id: UUID
    alias_name: str
    name_norm: str
    alias_sku: Optional[str]
    confidence: float
    name_trigrams: FrozenSet[str]
    sku_trigrams: FrozenSet[str]


@dataclass(frozen=True)
class TrainingEntry:
    """Read-only training example row."""
    example_id: UUID
    product_id: UUID
    query_text: str
    query_norm: str
    query_lower: str
    quality: str
    confidence: float
    weight: float
    approved_at: datetime
    norm_trigrams: FrozenSet[str]
    lower_trigrams: FrozenSet[str]

    def age_days(self, now: datetime) -> float:
        return (now - self.approved_at).total_seconds() / 86400.0


@dataclass(frozen=True, eq=False)
class MatchSnapshot:
    """Everything a match call reads, frozen at one SnapshotVersion."""
    org_id: UUID
    version: SnapshotVersion
    loaded_at: datetime
    items: Tuple[CatalogItem, ...]
    items_by_product: Mapping[UUID, CatalogItem]
    aliases: Tuple[AliasEntry, ...]
    aliases_by_product: Mapping[UUID, Tuple[AliasEntry, ...]]
    aliases_by_norm: Mapping[str, Tuple[AliasEntry, ...]]
    training: Tuple[TrainingEntry, ...]
    training_by_product: Mapping[UUID, Tuple[TrainingEntry, ...]]
    name_index: TrigramIndex
    code_index: TrigramIndex
    alias_name_index: TrigramIndex
    alias_sku_index: TrigramIndex
    training_index: TrigramIndex
    embedding_matrix: Optional[np.ndarray] = None
    embedding_rows: Tuple[int, ...] = ()
    degraded: bool = False

    @property
    def has_embeddings(self) -> bool:
        return self.embedding_matrix is not None and len(self.embedding_rows) > 0


def _group(entries, key) -> Mapping:
    grouped: Dict = {}
    for entry in entries:
        grouped.setdefault(key(entry), []).append(entry)
    return MappingProxyType({k: tuple(v) for k, v in grouped.items()})


def build_snapshot(
    org_id: UUID,
    version: SnapshotVersion,
    products,
    aliases,
    training_examples,
    embeddings=(),
    loaded_at: Optional[datetime] = None,
    degraded: bool = False,
) -> MatchSnapshot:
    """Build a snapshot from ORM rows (or any objects with the same attributes).

    Aliases, training examples and embeddings referring to products outside
    the active catalog are dropped.

    Args:
        org_id: Organization the rows belong to
        version: Version the rows were read at
        products: Active Product rows
        aliases: ProductAlias rows
        training_examples: TrainingExample rows
        embeddings: ProductEmbedding rows of a single model
        loaded_at: Build time (defaults to now)
        degraded: True when some optional data set failed to load

    Returns:
        MatchSnapshot
    """
    items: List[CatalogItem] = []
    name_index = TrigramIndex()
    code_index = TrigramIndex()
    for position, product in enumerate(sorted(products, key=lambda p: (p.name, p.sku, str(p.id)))):
        sku_norm = collapse(product.sku)
        manufacturer_norm = collapse(product.manufacturer)
        item = CatalogItem(
            index=position,
            product_id=product.id,
            sku=product.sku,
            name=product.name,
            manufacturer=product.manufacturer,
            name_norm=normalize(product.name),
            sku_norm=sku_norm,
            manufacturer_norm=manufacturer_norm,
            name_trigrams=trigrams(normalize(product.name)),
            sku_trigrams=trigrams(sku_norm),
            manufacturer_trigrams=trigrams(manufacturer_norm),
        )
        items.append(item)
        name_index.add(position, item.name_trigrams)
        code_index.add(position, item.sku_trigrams)
        code_index.add(position, item.manufacturer_trigrams)

    items_by_product = {item.product_id: item for item in items}

    alias_entries: List[AliasEntry] = []
    alias_name_index = TrigramIndex()
    alias_sku_index = TrigramIndex()
    for alias in aliases:
        if alias.product_id not in items_by_product:
            continue
        name_norm = alias.alias_name_norm or normalize(alias.alias_name)
        entry = AliasEntry(
            alias_id=alias.id,
            product_id=alias.product_id,
            alias_name=alias.alias_name,
            name_norm=name_norm,
            alias_sku=alias.alias_sku,
            confidence=max(0.0, min(1.0, float(alias.confidence or 0.0))),
            name_trigrams=trigrams(name_norm),
            sku_trigrams=trigrams(collapse(alias.alias_sku)),
        )
        alias_name_index.add(len(alias_entries), entry.name_trigrams)
        alias_sku_index.add(len(alias_entries), entry.sku_trigrams)
        alias_entries.append(entry)

    training_entries: List[TrainingEntry] = []
    training_index = TrigramIndex()
    ordered_examples = sorted(
        training_examples,
        key=lambda e: (-float(e.confidence or 0.0), -as_utc(e.approved_at).timestamp(), str(e.id)),
    )
    for example in ordered_examples:
        if example.product_id not in items_by_product:
            continue
        query_lower = collapse(example.query_text)
        query_norm = example.query_norm or normalize(example.query_text)
        entry = TrainingEntry(
            example_id=example.id,
            product_id=example.product_id,
            query_text=example.query_text,
            query_norm=query_norm,
            query_lower=query_lower,
            quality=example.quality,
            confidence=float(example.confidence if example.confidence is not None else 0.0),
            weight=float(example.weight if example.weight is not None else 1.0),
            approved_at=as_utc(example.approved_at),
            norm_trigrams=trigrams(query_norm),
            lower_trigrams=trigrams(query_lower),
        )
        training_index.add(len(training_entries), entry.norm_trigrams)
        training_entries.append(entry)

    matrix, rows = _embedding_matrix(embeddings, items_by_product)

    return MatchSnapshot(
        org_id=org_id,
        version=version,
        loaded_at=loaded_at or utcnow(),
        items=tuple(items),
        items_by_product=MappingProxyType(items_by_product),
        aliases=tuple(alias_entries),
        aliases_by_product=_group(alias_entries, lambda a: a.product_id),
        aliases_by_norm=_group(alias_entries, lambda a: a.name_norm),
        training=tuple(training_entries),
        training_by_product=_group(training_entries, lambda t: t.product_id),
        name_index=name_index,
        code_index=code_index,
        alias_name_index=alias_name_index,
        alias_sku_index=alias_sku_index,
        training_index=training_index,
        embedding_matrix=matrix,
        embedding_rows=rows,
        degraded=degraded,
    )


def _embedding_matrix(embeddings, items_by_product) -> Tuple[Optional[np.ndarray], Tuple[int, ...]]:
    """Stack product embeddings into an L2-normalized matrix."""
    vectors = []
    rows = []
    dimension = None
    for embedding in embeddings:
        item = items_by_product.get(embedding.product_id)
        if item is None or embedding.embedding is None:
            continue
        vector = np.asarray(embedding.embedding, dtype=np.float32)
        if dimension is None:
            dimension = vector.shape[0]
        if vector.ndim != 1 or vector.shape[0] != dimension:
            logger.warning(
                f"Skipping embedding with unexpected shape {vector.shape} for product {embedding.product_id}"
            )
            continue
        norm = float(np.linalg.norm(vector))
        if norm == 0.0:
            continue
        vectors.append(vector / norm)
        rows.append(item.index)

    if not vectors:
        return None, ()
    return np.vstack(vectors), tuple(rows)


class SnapshotLoader:
    """Per-organization snapshot cache keyed by SnapshotVersion.

    get() computes the current version with a few aggregate queries and
    returns the cached snapshot when it is still current. Reloads are
    serialized per organization only. Snapshots built while an optional data
    set was unavailable are served but not cached.
    """

    def __init__(
        self,
        config: MatchingConfig,
        embedding_model: Optional[str] = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        """Initialize loader.

        Args:
            config: Matching configuration (training windows, qualities)
            embedding_model: Load product embeddings of this model; None disables
            clock: Source of the current time
        """
        self.config = config
        self.embedding_model = embedding_model
        self.clock = clock
        self._lock = threading.Lock()
        self._load_locks = KeyedLock()
        self._snapshots: Dict[UUID, MatchSnapshot] = {}

    def get(self, db: Session, org_id: UUID) -> MatchSnapshot:
        """Return the current snapshot for an organization.

        Args:
            db: Database session
            org_id: Organization UUID

        Returns:
            MatchSnapshot matching the current data version

        Raises:
            CatalogUnavailableError: If the catalog cannot be read
        """
        repo = MatchDataRepository(db)
        try:
            version = repo.get_version(org_id, self.embedding_model)
        except SQLAlchemyError as e:
            db.rollback()
            snapshot_loads_total.labels(status="error").inc()
            logger.error(f"Catalog version check failed: {e}", extra={"org_id": str(org_id)})
            raise CatalogUnavailableError(f"Catalog unavailable for org {org_id}") from e

        cached = self._cached(org_id, version)
        if cached is not None:
            return cached

        # Loads for one organization never block lookups for another
        with self._load_locks.hold(org_id):
            cached = self._cached(org_id, version)
            if cached is not None:
                return cached

            snapshot = self._load(db, repo, org_id, version)
            if not snapshot.degraded:
                with self._lock:
                    self._snapshots[org_id] = snapshot
            return snapshot

    def _cached(self, org_id: UUID, version: SnapshotVersion) -> Optional[MatchSnapshot]:
        with self._lock:
            cached = self._snapshots.get(org_id)
        if cached is not None and cached.version == version:
            return cached
        return None

    def invalidate(self, org_id: Optional[UUID] = None) -> None:
        """Drop cached snapshots (one organization or all)."""
        with self._lock:
            if org_id is None:
                self._snapshots.clear()
            else:
                self._snapshots.pop(org_id, None)

    def _load(self, db: Session, repo: MatchDataRepository, org_id: UUID, version: SnapshotVersion) -> MatchSnapshot:
        try:
            products = repo.list_active_products(org_id)
        except SQLAlchemyError as e:
            db.rollback()
            snapshot_loads_total.labels(status="error").inc()
            logger.error(f"Catalog load failed: {e}", extra={"org_id": str(org_id)})
            raise CatalogUnavailableError(f"Catalog unavailable for org {org_id}") from e

        degraded = False

        try:
            aliases = repo.list_aliases(org_id)
        except SQLAlchemyError as e:
            db.rollback()
            degraded = True
            aliases = []
            logger.warning(f"Alias load failed, alias signal disabled: {e}", extra={"org_id": str(org_id), "signal": "alias"})

        window_days = max(self.config.training_window_days, self.config.learned_window_days)
        try:
            training = repo.list_training_examples(
                org_id,
                self.config.training_qualities,
                self.clock() - timedelta(days=window_days),
            )
        except SQLAlchemyError as e:
            db.rollback()
            degraded = True
            training = []
            logger.warning(
                f"Training data load failed, training tiers disabled: {e}",
                extra={"org_id": str(org_id), "signal": "learned"},
            )

        embeddings = []
        if self.embedding_model:
            try:
                embeddings = repo.list_embeddings(org_id, self.embedding_model)
            except SQLAlchemyError as e:
                db.rollback()
                degraded = True
                logger.warning(
                    f"Embedding load failed, vector signal disabled: {e}",
                    extra={"org_id": str(org_id), "signal": "vector"},
                )

        snapshot = build_snapshot(
            org_id,
            version,
            products,
            aliases,
            training,
            embeddings,
            loaded_at=self.clock(),
            degraded=degraded,
        )
        snapshot_loads_total.labels(status="degraded" if degraded else "success").inc()
        logger.info(
            f"Loaded match snapshot: {len(snapshot.items)} products, {len(snapshot.aliases)} aliases, "
            f"{len(snapshot.training)} training examples",
            extra={"org_id": str(org_id), "candidate_count": len(snapshot.items)},
        )
        return snapshot
