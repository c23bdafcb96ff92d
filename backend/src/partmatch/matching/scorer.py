"""Per-candidate scoring with per-signal failure isolation.

Every signal runs behind its own boundary: an exception inside one signal
is logged, counted in partmatch_signal_failures_total and replaced by the
signal's zero value, while the remaining signals still score.
"""

from dataclasses import dataclass
from datetime import datetime
from typing import Callable, Dict, Optional, Tuple, TypeVar
from uuid import UUID

from ..config import MatchingConfig
from ..domain.ai.ports import EmbeddingProviderPort
from ..observability.logging_config import get_logger
from ..observability.metrics import signal_failures_total
from .ports import SignalScores
from .signals import (
    LearnedScore,
    PreparedQuery,
    alias_signal,
    clamp,
    fuzzy_signal,
    learned_signal,
    trigram_signal,
    vector_scores,
)
from .snapshot import CatalogItem, MatchSnapshot

logger = get_logger(__name__)

T = TypeVar("T")

LEARNED_DOMINANCE = 0.6
ALIAS_DOMINANCE = 0.7


@dataclass(frozen=True)
class ScoredItem:
    """Catalog item with its signal breakdown and combined score."""
    item: CatalogItem
    signals: SignalScores
    final_score: float
    dominant_signal: str
    example_ids: Tuple[UUID, ...] = ()


class MatchScorer:
    """Compute and combine signal scores for retrieved candidates.

    The combination is a weighted sum with sum-to-one weights from
    MatchingConfig, so the final score stays within [0, 1].
    """

    def __init__(
        self,
        config: MatchingConfig,
        embedding_provider: Optional[EmbeddingProviderPort] = None,
    ):
        """Initialize scorer.

        Args:
            config: Matching configuration (weights, signal floors)
            embedding_provider: Optional query embedding provider
        """
        self.config = config
        self.embedding_provider = embedding_provider

    def guarded(self, signal: str, fn: Callable[..., T], *args, default: T) -> T:
        """Run one signal computation, degrading to default on failure."""
        try:
            return fn(*args)
        except Exception as e:
            signal_failures_total.labels(signal=signal).inc()
            logger.warning(
                f"Signal {signal} failed, scoring as 0: {e}",
                extra={"signal": signal},
            )
            return default

    def query_vector_scores(self, snapshot: MatchSnapshot, query: PreparedQuery) -> Dict[int, float]:
        """Vector similarity for every embedded catalog item.

        Returns an empty mapping when no provider is configured, the
        snapshot has no embeddings, or the provider fails.
        """
        if self.embedding_provider is None or not snapshot.has_embeddings:
            return {}

        def _compute() -> Dict[int, float]:
            result = self.embedding_provider.embed_text(query.norm)
            return vector_scores(snapshot, result.embedding)

        return self.guarded("vector", _compute, default={})

    def score(
        self,
        snapshot: MatchSnapshot,
        query: PreparedQuery,
        item: CatalogItem,
        now: datetime,
        vector_by_item: Optional[Dict[int, float]] = None,
    ) -> ScoredItem:
        """Score a single catalog item.

        Args:
            snapshot: Snapshot the item belongs to
            query: Prepared query
            item: Candidate catalog item
            now: Current time for the learned signal's recency rules
            vector_by_item: Precomputed vector scores by item index

        Returns:
            ScoredItem with all five signals and the weighted final score
        """
        config = self.config

        trigram = self.guarded("trigram", trigram_signal, query, item, default=0.0)
        fuzzy = self.guarded("fuzzy", fuzzy_signal, query, item, config.fuzzy_max_distance, default=0.0)
        alias = self.guarded(
            "alias",
            alias_signal,
            query,
            snapshot.aliases_by_product.get(item.product_id, ()),
            config.alias_floor,
            default=0.0,
        )
        learned: LearnedScore = self.guarded(
            "learned",
            learned_signal,
            query,
            snapshot.training_by_product.get(item.product_id, ()),
            config,
            now,
            default=LearnedScore(),
        )
        vector = clamp((vector_by_item or {}).get(item.index, 0.0))

        signals = SignalScores(
            trigram=clamp(trigram),
            fuzzy=clamp(fuzzy),
            alias=clamp(alias),
            learned=clamp(learned.score),
            vector=vector,
        )
        return ScoredItem(
            item=item,
            signals=signals,
            final_score=self.combine(signals),
            dominant_signal=self.dominant_signal(signals),
            example_ids=learned.example_ids,
        )

    def combine(self, signals: SignalScores) -> float:
        """Weighted sum of the signals, clamped to [0, 1]."""
        weights = self.config.weights
        total = sum(weights[name] * value for name, value in signals.as_dict().items())
        return clamp(total)

    def dominant_signal(self, signals: SignalScores) -> str:
        """Name the signal that best explains a combined score.

        Strong learned or alias evidence wins outright; otherwise vector wins
        when its weighted contribution is the largest, then fuzzy vs trigram.
        """
        if signals.learned > LEARNED_DOMINANCE:
            return "learned"
        if signals.alias > ALIAS_DOMINANCE:
            return "alias"

        weights = self.config.weights
        contributions = {name: weights[name] * value for name, value in signals.as_dict().items()}
        if contributions["vector"] > 0 and contributions["vector"] >= max(
            value for name, value in contributions.items() if name != "vector"
        ):
            return "vector"
        if signals.fuzzy > signals.trigram:
            return "fuzzy"
        return "trigram"
