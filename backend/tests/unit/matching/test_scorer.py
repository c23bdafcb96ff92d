"""Unit tests for MatchScorer

Tests cover:
- Weighted combination with default and custom weights
- Dominant signal selection
- Per-signal failure isolation (failed signal scores 0, others survive)
- Query embedding lookup through the provider port
"""

import pytest
from prometheus_client import REGISTRY

from partmatch.config import MatchingConfig
from partmatch.domain.ai.ports import EmbeddingProviderPort, EmbeddingResult, EmbeddingServiceError
from partmatch.matching import scorer as scorer_module
from partmatch.matching.ports import SignalScores
from partmatch.matching.scorer import MatchScorer
from partmatch.matching.signals import PreparedQuery
from partmatch.models.base import utcnow


def _failures(signal: str) -> float:
    return REGISTRY.get_sample_value("partmatch_signal_failures_total", {"signal": signal}) or 0.0


class FakeEmbeddingProvider(EmbeddingProviderPort):
    """Returns a fixed vector, or raises the given error."""

    def __init__(self, vector=None, error=None):
        self.vector = vector
        self.error = error
        self.calls = []

    @property
    def model(self) -> str:
        return "fake-embedding"

    def embed_text(self, text: str) -> EmbeddingResult:
        self.calls.append(text)
        if self.error is not None:
            raise self.error
        return EmbeddingResult(embedding=self.vector, model=self.model, dimension=len(self.vector), tokens=1)


class TestCombine:
    """Test weighted combination"""

    def test_default_weights(self, matching_config):
        scorer = MatchScorer(matching_config)
        assert scorer.combine(SignalScores(trigram=1.0, fuzzy=1.0)) == pytest.approx(0.65)

    def test_all_signals_max(self, matching_config):
        scorer = MatchScorer(matching_config)
        assert scorer.combine(SignalScores(1.0, 1.0, 1.0, 1.0, 1.0)) == pytest.approx(1.0)

    def test_custom_weights(self):
        config = MatchingConfig(
            trigram_weight=0.3,
            fuzzy_weight=0.2,
            alias_weight=0.2,
            learned_weight=0.1,
            vector_weight=0.2,
        )
        scorer = MatchScorer(config)

        assert scorer.combine(SignalScores(vector=1.0)) == pytest.approx(0.2)


class TestDominantSignal:
    """Test dominant signal selection"""

    @pytest.mark.parametrize("signals,expected", [
        (SignalScores(trigram=0.9, learned=0.7), "learned"),
        (SignalScores(trigram=0.9, alias=0.8), "alias"),
        (SignalScores(trigram=0.9, alias=0.7), "trigram"),
        (SignalScores(trigram=0.4, fuzzy=0.5), "fuzzy"),
        (SignalScores(trigram=0.5, fuzzy=0.5), "trigram"),
        (SignalScores(trigram=0.5, vector=1.0), "trigram"),
    ])
    def test_default_weights(self, matching_config, signals, expected):
        assert MatchScorer(matching_config).dominant_signal(signals) == expected

    def test_weighted_vector(self):
        config = MatchingConfig(
            trigram_weight=0.3,
            fuzzy_weight=0.2,
            alias_weight=0.2,
            learned_weight=0.1,
            vector_weight=0.2,
        )
        signals = SignalScores(trigram=0.5, vector=1.0)

        assert MatchScorer(config).dominant_signal(signals) == "vector"


class TestGuarded:
    """Test per-signal failure isolation"""

    def test_failure_returns_default_and_counts(self, matching_config):
        scorer = MatchScorer(matching_config)
        before = _failures("fuzzy")

        def boom():
            raise ValueError("bad input")

        assert scorer.guarded("fuzzy", boom, default=0.0) == 0.0
        assert _failures("fuzzy") == before + 1

    def test_success_passes_through(self, matching_config):
        scorer = MatchScorer(matching_config)
        assert scorer.guarded("trigram", lambda a, b: a + b, 0.25, 0.5, default=0.0) == 0.75

    def test_failed_signal_does_not_affect_others(self, catalog, matching_config, monkeypatch):
        """Alias raises; trigram and fuzzy still score"""
        screw = catalog.product("56X212C8", "Hex Head Cap Screw")
        catalog.alias(screw, "HHCS", confidence=1.0)
        snapshot = catalog.build()
        before = _failures("alias")

        def broken_alias(*args):
            raise RuntimeError("alias index corrupted")

        monkeypatch.setattr(scorer_module, "alias_signal", broken_alias)

        scored = MatchScorer(matching_config).score(
            snapshot,
            PreparedQuery.from_text("hex head cap screw"),
            snapshot.items_by_product[screw.id],
            utcnow(),
        )

        assert scored.signals.alias == 0.0
        assert scored.signals.trigram == 1.0
        assert scored.signals.fuzzy == 1.0
        assert scored.final_score == pytest.approx(0.65)
        assert _failures("alias") == before + 1


class TestScore:
    """Test single-item scoring"""

    def test_learned_examples_reported(self, catalog, matching_config):
        screw = catalog.product("56X212C8", "Hex Head Cap Screw")
        example = catalog.training(screw, "hex cap screw")
        snapshot = catalog.build()

        scored = MatchScorer(matching_config).score(
            snapshot,
            PreparedQuery.from_text("hex cap screw"),
            snapshot.items_by_product[screw.id],
            utcnow(),
        )

        assert scored.signals.learned > 0.0
        assert scored.example_ids == (example.id,)

    def test_precomputed_vector_score_used(self, catalog, matching_config):
        screw = catalog.product("56X212C8", "Hex Head Cap Screw")
        snapshot = catalog.build()
        item = snapshot.items_by_product[screw.id]

        scored = MatchScorer(matching_config).score(
            snapshot, PreparedQuery.from_text("hex"), item, utcnow(), {item.index: 0.8}
        )

        assert scored.signals.vector == pytest.approx(0.8)

    def test_final_score_bounded(self, catalog, matching_config):
        screw = catalog.product("56X212C8", "Hex Head Cap Screw")
        catalog.alias(screw, "hex head cap screw", confidence=1.0)
        for i in range(5):
            catalog.training(screw, f"hex head cap screw {i}", weight=3.0)
        snapshot = catalog.build()

        scored = MatchScorer(matching_config).score(
            snapshot,
            PreparedQuery.from_text("hex head cap screw"),
            snapshot.items_by_product[screw.id],
            utcnow(),
        )

        assert 0.0 <= scored.final_score <= 1.0
        for value in scored.signals.as_dict().values():
            assert 0.0 <= value <= 1.0


class TestQueryVectorScores:
    """Test query embedding lookup"""

    def test_without_provider(self, catalog, matching_config):
        alpha = catalog.product("A-1", "Alpha Bracket")
        catalog.embedding(alpha, [1.0, 0.0])
        snapshot = catalog.build()

        assert MatchScorer(matching_config).query_vector_scores(snapshot, PreparedQuery.from_text("alpha")) == {}

    def test_embeds_normalized_query(self, catalog, matching_config):
        alpha = catalog.product("A-1", "Alpha Bracket")
        catalog.embedding(alpha, [1.0, 0.0])
        snapshot = catalog.build()
        provider = FakeEmbeddingProvider(vector=[1.0, 0.0])

        scores = MatchScorer(matching_config, provider).query_vector_scores(
            snapshot, PreparedQuery.from_text("HX Bracket")
        )

        assert scores == pytest.approx({0: 1.0})
        assert provider.calls == ["hex bracket"]

    def test_provider_failure_degrades_to_empty(self, catalog, matching_config):
        alpha = catalog.product("A-1", "Alpha Bracket")
        catalog.embedding(alpha, [1.0, 0.0])
        snapshot = catalog.build()
        provider = FakeEmbeddingProvider(error=EmbeddingServiceError("provider down"))
        before = _failures("vector")

        scores = MatchScorer(matching_config, provider).query_vector_scores(
            snapshot, PreparedQuery.from_text("alpha")
        )

        assert scores == {}
        assert _failures("vector") == before + 1

    def test_snapshot_without_embeddings_skips_provider(self, catalog, matching_config):
        catalog.product("A-1", "Alpha Bracket")
        snapshot = catalog.build()
        provider = FakeEmbeddingProvider(vector=[1.0, 0.0])

        MatchScorer(matching_config, provider).query_vector_scores(snapshot, PreparedQuery.from_text("alpha"))

        assert provider.calls == []
