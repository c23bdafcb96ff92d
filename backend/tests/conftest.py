"""Pytest fixtures for partmatch.

Provides reusable test fixtures for:
- In-memory SQLite database session (tables created and dropped per test)
- Organization scope and catalog/alias/training factories
- A TieredMatcher wired to the test session
- A FastAPI TestClient with database and matcher overrides

Usage:
    def test_match_endpoint(client, org_id, make_product):
        make_product("56X212C8", "Hex Head Cap Screw Grade 8 5/16-18 x 2-1/2")
        response = client.post("/api/v1/matching/match", json={"query": "hex cap screw"},
                               headers={"X-Org-ID": str(org_id)})
        assert response.status_code == 200
"""

import os
import sys
from pathlib import Path

# Set environment variables BEFORE any imports to ensure they take effect
os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("LOG_JSON", "false")
os.environ.setdefault("LOG_LEVEL", "WARNING")
os.environ.setdefault("CELERY_TASK_ALWAYS_EAGER", "true")
os.environ.pop("OPENAI_API_KEY", None)

backend_src = Path(__file__).parent.parent / "src"
sys.path.insert(0, str(backend_src))

from datetime import datetime  # noqa: E402
from types import SimpleNamespace  # noqa: E402
from typing import Generator, Optional  # noqa: E402
from uuid import UUID, uuid4  # noqa: E402

import pytest  # noqa: E402
from fastapi.testclient import TestClient  # noqa: E402
from sqlalchemy import create_engine  # noqa: E402
from sqlalchemy.orm import Session, sessionmaker  # noqa: E402
from sqlalchemy.pool import StaticPool  # noqa: E402

from partmatch.config import MatchingConfig  # noqa: E402
from partmatch.database import get_db as database_get_db  # noqa: E402
from partmatch.dependencies import get_matcher  # noqa: E402
from partmatch.feedback.models import FeedbackEvent  # noqa: E402,F401
from partmatch.feedback.services import TrainingFeedbackRecorder  # noqa: E402
from partmatch.matching.cache import MatchResultCache  # noqa: E402
from partmatch.matching.normalizer import normalize  # noqa: E402
from partmatch.infrastructure.repositories.match_data_repository import SnapshotVersion  # noqa: E402
from partmatch.matching.snapshot import SnapshotLoader, build_snapshot  # noqa: E402
from partmatch.matching.tiered_matcher import TieredMatcher  # noqa: E402
from partmatch.models import (  # noqa: E402
    AliasSource,
    Base,
    Product,
    ProductAlias,
    TrainingExample,
    TrainingQuality,
)
from partmatch.models.base import utcnow  # noqa: E402

# One shared in-memory database per test run; tables are recreated per test
test_engine = create_engine(
    "sqlite://",
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
)

TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=test_engine)


@pytest.fixture(scope="function")
def db_session() -> Generator[Session, None, None]:
    """Create a fresh database session for each test.

    Creates all tables before the test and drops them after.
    Each test gets a clean database state.
    """
    Base.metadata.create_all(bind=test_engine)

    session = TestingSessionLocal()

    try:
        yield session
    finally:
        session.close()
        Base.metadata.drop_all(bind=test_engine)


@pytest.fixture(scope="function")
def org_id() -> UUID:
    """Organization scope used by a test."""
    return uuid4()


@pytest.fixture(scope="function")
def other_org_id() -> UUID:
    """A second organization for isolation tests."""
    return uuid4()


@pytest.fixture(scope="function")
def make_product(db_session: Session, org_id: UUID):
    """Factory creating catalog products.

    Usage:
        product = make_product("56X212C8", "Hex Head Cap Screw", manufacturer="Fastenal")
    """
    def _make(
        sku: str,
        name: str,
        manufacturer: Optional[str] = None,
        active: bool = True,
        org: Optional[UUID] = None,
    ) -> Product:
        product = Product(
            org_id=org or org_id,
            sku=sku,
            name=name,
            manufacturer=manufacturer,
            active=active,
        )
        db_session.add(product)
        db_session.commit()
        db_session.refresh(product)
        return product

    return _make


@pytest.fixture(scope="function")
def make_alias(db_session: Session, org_id: UUID):
    """Factory creating product aliases."""
    def _make(
        product: Product,
        alias_name: str,
        confidence: float = 1.0,
        alias_sku: Optional[str] = None,
        source: str = AliasSource.MANUAL,
    ) -> ProductAlias:
        alias = ProductAlias(
            org_id=product.org_id,
            product_id=product.id,
            alias_name=alias_name,
            alias_name_norm=normalize(alias_name),
            alias_sku=alias_sku,
            confidence=confidence,
            source=source,
        )
        db_session.add(alias)
        db_session.commit()
        db_session.refresh(alias)
        return alias

    return _make


@pytest.fixture(scope="function")
def make_training_example(db_session: Session):
    """Factory creating approved training examples."""
    def _make(
        product: Product,
        query_text: str,
        quality: str = TrainingQuality.EXCELLENT,
        confidence: float = 1.0,
        weight: float = 1.0,
        approved_at: Optional[datetime] = None,
    ) -> TrainingExample:
        now = approved_at or utcnow()
        example = TrainingExample(
            org_id=product.org_id,
            product_id=product.id,
            query_text=query_text,
            query_norm=normalize(query_text),
            product_sku=product.sku,
            product_name=product.name,
            quality=quality,
            confidence=confidence,
            weight=weight,
            approved_at=now,
            created_at=now,
            updated_at=now,
        )
        db_session.add(example)
        db_session.commit()
        db_session.refresh(example)
        return example

    return _make


@pytest.fixture(scope="function")
def matching_config() -> MatchingConfig:
    """Default matching configuration."""
    return MatchingConfig()


@pytest.fixture(scope="function")
def recorder(db_session: Session) -> TrainingFeedbackRecorder:
    """Feedback recorder bound to the test session (no retry delay)."""
    return TrainingFeedbackRecorder(db_session, sleep=lambda seconds: None)


@pytest.fixture(scope="function")
def matcher(db_session: Session, matching_config: MatchingConfig, recorder: TrainingFeedbackRecorder) -> TieredMatcher:
    """TieredMatcher on the test session with a fresh loader and cache.

    Contributing training examples are counted synchronously through the
    recorder instead of a Celery task.
    """
    return TieredMatcher(
        db_session,
        matching_config,
        SnapshotLoader(matching_config),
        cache=MatchResultCache(ttl_seconds=600, max_entries=1000),
        reference_sink=recorder.touch_references,
    )


@pytest.fixture(scope="function")
def client(db_session: Session, matcher: TieredMatcher):
    """Create a test client bound to the test database.

    Returns a FastAPI TestClient; pass X-Org-ID per request.
    """
    from partmatch.main import app

    def override_get_db():
        try:
            yield db_session
        finally:
            pass

    app.dependency_overrides[database_get_db] = override_get_db
    app.dependency_overrides[get_matcher] = lambda: matcher

    try:
        yield TestClient(app)
    finally:
        app.dependency_overrides.clear()


class SnapshotBuilder:
    """Builds MatchSnapshots from plain rows, without a database.

    Usage:
        builder = SnapshotBuilder()
        screw = builder.product("56X212C8", "Hex Head Cap Screw")
        builder.training(screw, "HX HD CAP SCR")
        snapshot = builder.build()
    """

    def __init__(self, org_id: Optional[UUID] = None):
        self.org_id = org_id or uuid4()
        self.products = []
        self.aliases = []
        self.examples = []
        self.embeddings = []

    def product(self, sku: str, name: str, manufacturer: Optional[str] = None) -> SimpleNamespace:
        row = SimpleNamespace(id=uuid4(), org_id=self.org_id, sku=sku, name=name, manufacturer=manufacturer)
        self.products.append(row)
        return row

    def alias(self, product, alias_name: str, confidence: float = 1.0, alias_sku: Optional[str] = None) -> SimpleNamespace:
        row = SimpleNamespace(
            id=uuid4(),
            product_id=product.id,
            alias_name=alias_name,
            alias_name_norm=normalize(alias_name),
            alias_sku=alias_sku,
            confidence=confidence,
        )
        self.aliases.append(row)
        return row

    def training(
        self,
        product,
        query_text: str,
        quality: str = TrainingQuality.EXCELLENT,
        confidence: float = 1.0,
        weight: float = 1.0,
        approved_at: Optional[datetime] = None,
    ) -> SimpleNamespace:
        row = SimpleNamespace(
            id=uuid4(),
            product_id=product.id,
            query_text=query_text,
            query_norm=normalize(query_text),
            quality=quality,
            confidence=confidence,
            weight=weight,
            approved_at=approved_at or utcnow(),
        )
        self.examples.append(row)
        return row

    def embedding(self, product, vector) -> SimpleNamespace:
        row = SimpleNamespace(product_id=product.id, embedding=list(vector))
        self.embeddings.append(row)
        return row

    def build(self):
        version = SnapshotVersion(
            products=(len(self.products), None),
            aliases=(len(self.aliases), None),
            training=(len(self.examples), None),
            embeddings=(len(self.embeddings), None),
        )
        return build_snapshot(
            self.org_id,
            version,
            self.products,
            self.aliases,
            self.examples,
            self.embeddings,
        )


@pytest.fixture(scope="function")
def catalog() -> SnapshotBuilder:
    """In-memory snapshot builder for unit tests."""
    return SnapshotBuilder()


@pytest.fixture(scope="function")
def offline_matcher(matching_config: MatchingConfig) -> TieredMatcher:
    """TieredMatcher for evaluate() on prebuilt snapshots (no database)."""
    return TieredMatcher(None, matching_config, SnapshotLoader(matching_config))
