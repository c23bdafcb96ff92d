"""Matching ports, value objects and errors.

MatchQuery is the input value object, MatchCandidate the ephemeral per-query
result. Candidates are never persisted; they are rebuilt on every call.
"""

from abc import ABC, abstractmethod
from dataclasses import asdict, dataclass, field
from typing import List, Optional, Sequence, Tuple
from uuid import UUID


class MatchedVia:
    """Provenance tags, one per tier."""
    TRAINING_EXACT = "training_exact"
    TRAINING_GOOD = "training_good"
    ALGORITHMIC = "algorithmic"
    FALLBACK_FUZZY = "fallback_fuzzy"


SIGNAL_NAMES = ("trigram", "fuzzy", "alias", "learned", "vector")


@dataclass(frozen=True)
class MatchQuery:
    """Input value object for a single match call.

    Attributes:
        text: Free-text line item description
        limit: Maximum number of results (clamped to [1, 100]; None = default)
        threshold: Minimum final score (clamped to [0, 1]; None = default)
    """
    text: Optional[str]
    limit: Optional[int] = None
    threshold: Optional[float] = None


@dataclass(frozen=True)
class SignalScores:
    """One score per signal, each in [0, 1]."""
    trigram: float = 0.0
    fuzzy: float = 0.0
    alias: float = 0.0
    learned: float = 0.0
    vector: float = 0.0

    def as_dict(self) -> dict:
        return asdict(self)


@dataclass(frozen=True)
class MatchCandidate:
    """Single ranked product candidate with per-signal breakdown.

    Attributes:
        product_id: Product UUID
        sku: Product SKU
        name: Product name
        manufacturer: Product manufacturer (may be None)
        trigram_score..vector_score: Individual signal scores (0.0-1.0)
        final_score: Combined score used for ranking (0.0-1.0)
        matched_via: Tier tag (training_exact, training_good, algorithmic, fallback_fuzzy)
        tier: Tier number 1-4
        reasoning: Human-readable explanation for reviewers
        dominant_signal: Signal that drove an algorithmic/fallback match
        training_example_ids: Training examples that contributed to this candidate
    """
    product_id: UUID
    sku: str
    name: str
    manufacturer: Optional[str]
    trigram_score: float
    fuzzy_score: float
    alias_score: float
    learned_score: float
    vector_score: float
    final_score: float
    matched_via: str
    tier: int
    reasoning: str
    dominant_signal: Optional[str] = None
    training_example_ids: Tuple[UUID, ...] = field(default=(), compare=False)

    def to_dict(self) -> dict:
        """Convert candidate to its public dictionary representation."""
        return {
            "product_id": str(self.product_id),
            "sku": self.sku,
            "name": self.name,
            "manufacturer": self.manufacturer,
            "vector_score": self.vector_score,
            "trigram_score": self.trigram_score,
            "fuzzy_score": self.fuzzy_score,
            "alias_score": self.alias_score,
            "learned_score": self.learned_score,
            "final_score": self.final_score,
            "matched_via": self.matched_via,
            "tier": self.tier,
            "dominant_signal": self.dominant_signal,
            "reasoning": self.reasoning,
        }


@dataclass(frozen=True)
class BatchMatchRow:
    """One candidate of a batch call, tagged with the originating query."""
    query_index: int
    query_text: str
    candidate: MatchCandidate

    def to_dict(self) -> dict:
        data = {"query_index": self.query_index, "query_text": self.query_text}
        data.update(self.candidate.to_dict())
        return data


class MatcherPort(ABC):
    """Port interface for the tiered matching engine."""

    @abstractmethod
    def match(
        self,
        org_id: UUID,
        query_text: Optional[str],
        limit: Optional[int] = None,
        threshold: Optional[float] = None,
    ) -> List[MatchCandidate]:
        """Match free text against the organization's catalog.

        Args:
            org_id: Organization UUID (tenant scope)
            query_text: Line item text; empty or None yields []
            limit: Maximum number of results
            threshold: Minimum final score

        Returns:
            Ranked candidates, at most limit entries

        Raises:
            CatalogUnavailableError: If the catalog cannot be read
        """

    @abstractmethod
    def match_batch(
        self,
        org_id: UUID,
        query_texts: Sequence[Optional[str]],
        limit: Optional[int] = None,
        threshold: Optional[float] = None,
    ) -> List[BatchMatchRow]:
        """Match each text independently.

        Returns:
            Rows for every candidate of every query, grouped by query_index

        Raises:
            CatalogUnavailableError: If the catalog cannot be read
        """


class MatcherError(Exception):
    """Exception raised for matching errors."""
    pass


class CatalogUnavailableError(MatcherError):
    """The catalog could not be loaded; no matching is possible."""
    pass


class SignalComputationError(MatcherError):
    """A single signal failed; the signal degrades to 0."""

    def __init__(self, signal: str, message: str):
        super().__init__(f"{signal}: {message}")
        self.signal = signal
