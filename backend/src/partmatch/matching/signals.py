"""Independent similarity signals.

Each signal is a pure function of a prepared query and snapshot data and
returns a score in [0, 1]. Failure handling lives in MatchScorer, which
wraps every call so one failing signal degrades to 0 on its own.
"""

import math
import re
from dataclasses import dataclass
from datetime import datetime
from typing import Dict, FrozenSet, Iterable, Optional, Sequence, Tuple
from uuid import UUID

import numpy as np

from ..config import MatchingConfig
from .normalizer import collapse, normalize
from .ports import SignalComputationError
from .similarity import composite_fuzzy, edit_similarity, set_similarity, trigrams
from .snapshot import AliasEntry, CatalogItem, MatchSnapshot, TrainingEntry

# Thread size such as 5/16-18 and length such as x 2-1/2 (normalized text)
_THREAD_SPEC = re.compile(r"\d+/\d+-\d+")
_LENGTH_SPEC = re.compile(r"(?<![a-z])x\s*(\d+(?:-\d+/\d+|/\d+|\.\d+)?)")

THREAD_BONUS = 0.3
LENGTH_BONUS = 0.2
HIGH_CONFIDENCE = 0.8
HIGH_CONFIDENCE_MULTIPLIER = 1.1
DECAY_GRACE_DAYS = 90
MIN_LEARNED_QUERY_LENGTH = 3


@dataclass(frozen=True)
class PreparedQuery:
    """Query text in every form the signals compare against."""
    raw: str
    lower: str
    norm: str
    norm_trigrams: FrozenSet[str]
    lower_trigrams: FrozenSet[str]

    @classmethod
    def from_text(cls, text: Optional[str]) -> "PreparedQuery":
        lower = collapse(text)
        norm = normalize(text)
        return cls(
            raw=text or "",
            lower=lower,
            norm=norm,
            norm_trigrams=trigrams(norm),
            lower_trigrams=trigrams(lower),
        )

    @property
    def is_empty(self) -> bool:
        return not self.norm


@dataclass(frozen=True)
class LearnedScore:
    """Learned-similarity result plus the examples that produced it."""
    score: float = 0.0
    example_ids: Tuple[UUID, ...] = ()


def clamp(value: float) -> float:
    """Clamp to [0, 1], mapping NaN to 0."""
    if value != value:
        return 0.0
    return max(0.0, min(1.0, value))


def trigram_signal(query: PreparedQuery, item: CatalogItem) -> float:
    """Best trigram similarity across name, SKU and manufacturer."""
    return clamp(max(
        set_similarity(query.norm_trigrams, item.name_trigrams),
        set_similarity(query.lower_trigrams, item.sku_trigrams),
        set_similarity(query.lower_trigrams, item.manufacturer_trigrams),
    ))


def fuzzy_signal(query: PreparedQuery, item: CatalogItem, max_distance: int) -> float:
    """Best cutoff-bounded edit similarity across name, SKU and manufacturer."""
    return clamp(max(
        edit_similarity(query.norm, item.name_norm, max_distance),
        edit_similarity(query.lower, item.sku_norm, max_distance),
        edit_similarity(query.lower, item.manufacturer_norm, max_distance),
    ))


def alias_similarity(query: PreparedQuery, alias: AliasEntry) -> float:
    """Similarity of the query to one alias (1.0 on normalized equality)."""
    if alias.name_norm and alias.name_norm == query.norm:
        return 1.0
    return max(
        set_similarity(query.norm_trigrams, alias.name_trigrams),
        set_similarity(query.lower_trigrams, alias.sku_trigrams),
    )


def alias_signal(query: PreparedQuery, aliases: Iterable[AliasEntry], floor: float) -> float:
    """Best confidence x similarity over the product's qualifying aliases.

    Args:
        query: Prepared query
        aliases: Aliases of one product
        floor: Minimum alias similarity to count

    Returns:
        Alias score in [0, 1]; 0 when no alias qualifies
    """
    best = 0.0
    for alias in aliases:
        similarity = alias_similarity(query, alias)
        if similarity >= floor:
            best = max(best, alias.confidence * similarity)
    return clamp(best)


def training_similarity(query: PreparedQuery, example: TrainingEntry) -> float:
    """Blended text similarity between the query and a training example.

    Max of trigram similarity on the normalized forms, trigram similarity on
    the literal lowercase forms, and the composite fuzzy score. Identical
    normalized text always yields 1.0.
    """
    return clamp(max(
        set_similarity(query.norm_trigrams, example.norm_trigrams),
        set_similarity(query.lower_trigrams, example.lower_trigrams),
        composite_fuzzy(query.norm, example.query_norm),
    ))


def dimension_bonus(query_norm: str, example_norm: str) -> float:
    """Bonus for identical thread and length specs in both texts."""
    bonus = 0.0

    query_thread = _THREAD_SPEC.search(query_norm)
    example_thread = _THREAD_SPEC.search(example_norm)
    if query_thread and example_thread and query_thread.group(0) == example_thread.group(0):
        bonus += THREAD_BONUS

    query_length = _LENGTH_SPEC.search(query_norm)
    example_length = _LENGTH_SPEC.search(example_norm)
    if query_length and example_length and query_length.group(1) == example_length.group(1):
        bonus += LENGTH_BONUS

    return bonus


def learned_signal(
    query: PreparedQuery,
    examples: Sequence[TrainingEntry],
    config: MatchingConfig,
    now: datetime,
) -> LearnedScore:
    """Score a product from its historical approved examples.

    Only examples with an accepted quality approved within the learned window
    are considered, at most learned_max_examples of them in confidence order.
    An example counts when its text similarity clears learned_floor; its
    weighted score is then

        (similarity + dimension bonus)
        x quality multiplier
        x 1.1 when the original confidence exceeded 0.8
        x linear age decay after 90 days
        x manual weight

    The result blends the best example (80%) with the mean (20%), is damped
    by 1 - exp(-n / 3) for n qualifying examples and capped at learned_cap.

    Args:
        query: Prepared query
        examples: Training examples of one product, confidence desc
        config: Matching configuration
        now: Current time for recency checks

    Returns:
        LearnedScore with the score and contributing example ids
    """
    if len(query.norm) < MIN_LEARNED_QUERY_LENGTH:
        return LearnedScore()

    weighted_scores = []
    contributing = []
    considered = 0
    for example in examples:
        if example.quality not in config.training_qualities:
            continue
        age_days = example.age_days(now)
        if age_days > config.learned_window_days:
            continue
        considered += 1
        if considered > config.learned_max_examples:
            break

        similarity = training_similarity(query, example)
        if similarity < config.learned_floor:
            continue

        weighted = similarity + dimension_bonus(query.norm, example.query_norm)
        weighted *= config.quality_multipliers.get(example.quality, 1.0)
        if example.confidence > HIGH_CONFIDENCE:
            weighted *= HIGH_CONFIDENCE_MULTIPLIER
        if age_days > DECAY_GRACE_DAYS:
            weighted *= max(0.0, 1.0 - (age_days - DECAY_GRACE_DAYS) / 365.0)
        weighted *= example.weight

        weighted_scores.append(weighted)
        contributing.append(example.example_id)

    if not weighted_scores:
        return LearnedScore()

    count = len(weighted_scores)
    best = max(weighted_scores)
    mean = sum(weighted_scores) / count
    score = (best * 0.8 + mean * 0.2) * (1.0 - math.exp(-count / 3.0))
    score = max(0.0, min(config.learned_cap, score))
    return LearnedScore(score=score, example_ids=tuple(contributing))


def vector_scores(snapshot: MatchSnapshot, query_vector: Sequence[float]) -> Dict[int, float]:
    """Cosine similarity of the query vector against every product embedding.

    Args:
        snapshot: Snapshot holding the normalized embedding matrix
        query_vector: Raw query embedding

    Returns:
        Mapping catalog item index -> cosine similarity clamped to [0, 1]

    Raises:
        SignalComputationError: On dimension mismatch or a zero vector
    """
    if not snapshot.has_embeddings:
        return {}

    vector = np.asarray(query_vector, dtype=np.float32)
    matrix = snapshot.embedding_matrix
    if vector.ndim != 1 or vector.shape[0] != matrix.shape[1]:
        raise SignalComputationError(
            "vector", f"query dimension {vector.shape} does not match catalog dimension {matrix.shape[1]}"
        )
    norm = float(np.linalg.norm(vector))
    if norm == 0.0:
        raise SignalComputationError("vector", "query embedding is a zero vector")

    similarities = matrix @ (vector / norm)
    return {
        row: clamp(float(similarity))
        for row, similarity in zip(snapshot.embedding_rows, similarities)
    }
