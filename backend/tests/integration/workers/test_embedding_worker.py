"""Integration tests for the product embedding worker

Tests cover:
- Canonical product text and hashing
- Create, skip and force-recompute paths
- Disabled provider and tenant scoping
"""

import hashlib

import pytest
from sqlalchemy import func, select

from partmatch.domain.ai.ports import EmbeddingProviderPort, EmbeddingResult
from partmatch.models.product_embedding import EMBEDDING_DIM, ProductEmbedding
from partmatch.workers import embedding_worker
from partmatch.workers.embedding_worker import (
    batch_embed_products,
    calculate_text_hash,
    embed_product,
    product_embedding_text,
)

pytestmark = pytest.mark.integration


class FakeEmbeddingProvider(EmbeddingProviderPort):
    """Returns a constant vector and records the embedded texts."""

    def __init__(self):
        self.texts = []

    @property
    def model(self) -> str:
        return "fake-embedding-1"

    def embed_text(self, text: str) -> EmbeddingResult:
        self.texts.append(text)
        return EmbeddingResult(
            embedding=[0.5] * EMBEDDING_DIM,
            model=self.model,
            dimension=EMBEDDING_DIM,
            tokens=12,
        )


@pytest.fixture
def provider(db_session, monkeypatch):
    fake = FakeEmbeddingProvider()
    monkeypatch.setattr(embedding_worker, "build_embedding_provider", lambda settings: fake)
    monkeypatch.setattr(embedding_worker, "get_scoped_session", lambda org_id: db_session)
    return fake


@pytest.fixture
def screw(make_product):
    return make_product("56X212C8", "Hex Head Cap Screw Grade 8", manufacturer="Fastenal")


def _embedding_count(db_session) -> int:
    return db_session.scalar(select(func.count()).select_from(ProductEmbedding))


class TestProductText:
    """Test the canonical embedded text"""

    def test_includes_present_fields_only(self, screw):
        assert product_embedding_text(screw) == (
            "SKU: 56X212C8\nName: Hex Head Cap Screw Grade 8\nManufacturer: Fastenal"
        )

    def test_text_hash(self):
        assert calculate_text_hash("abc") == hashlib.sha256(b"abc").hexdigest()


class TestEmbedProduct:
    """Test the embed_product task"""

    def test_creates_embedding(self, provider, db_session, org_id, screw):
        expected_hash = calculate_text_hash(product_embedding_text(screw))

        result = embed_product(product_id=str(screw.id), org_id=str(org_id))

        assert result["status"] == "created"
        assert result["text_hash"] == expected_hash
        assert len(provider.texts) == 1
        assert _embedding_count(db_session) == 1

    def test_unchanged_product_skipped(self, provider, db_session, org_id, screw):
        product_id = str(screw.id)
        embed_product(product_id=product_id, org_id=str(org_id))

        result = embed_product(product_id=product_id, org_id=str(org_id))

        assert result["status"] == "skipped"
        assert len(provider.texts) == 1

    def test_force_recompute_updates(self, provider, db_session, org_id, screw):
        product_id = str(screw.id)
        embed_product(product_id=product_id, org_id=str(org_id))

        result = embed_product(product_id=product_id, org_id=str(org_id), force_recompute=True)

        assert result["status"] == "updated"
        assert len(provider.texts) == 2
        assert _embedding_count(db_session) == 1

    def test_product_of_other_organization(self, provider, other_org_id, screw):
        with pytest.raises(ValueError, match="not found"):
            embed_product(product_id=str(screw.id), org_id=str(other_org_id))

    def test_disabled_without_provider(self, db_session, org_id, screw, monkeypatch):
        monkeypatch.setattr(embedding_worker, "build_embedding_provider", lambda settings: None)

        result = embed_product(product_id=str(screw.id), org_id=str(org_id))

        assert result["status"] == "disabled"
        assert _embedding_count(db_session) == 0


class TestBatchEmbedProducts:
    """Test fan-out of embedding tasks"""

    def test_enqueues_each_product(self, org_id, monkeypatch):
        calls = []
        monkeypatch.setattr(embed_product, "delay", lambda **kwargs: calls.append(kwargs))

        result = batch_embed_products(["p-1", "p-2"], str(org_id))

        assert result == {"org_id": str(org_id), "enqueued": 2}
        assert [call["product_id"] for call in calls] == ["p-1", "p-2"]
        assert all(call["force_recompute"] is False for call in calls)

    def test_invalid_org(self):
        with pytest.raises(ValueError):
            batch_embed_products(["p-1"], "not-a-uuid")
