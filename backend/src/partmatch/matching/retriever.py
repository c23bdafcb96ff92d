"""Candidate retrieval: narrow the catalog to a bounded working set.

Retrieval runs before any per-candidate scoring. The trigram prefilter is
served by inverted indexes, so its cost depends on the postings touched by
the query rather than on catalog size, and the prefiltered set is capped at
max_candidates.
"""

from typing import Dict, List, Optional, Set

from ..config import MatchingConfig
from ..observability.logging_config import get_logger
from .signals import PreparedQuery, alias_similarity, training_similarity
from .snapshot import CatalogItem, MatchSnapshot

logger = get_logger(__name__)


class CandidateRetriever:
    """Select candidate catalog items for one query.

    The working set is the union of:
    - items whose name/SKU/manufacturer trigram similarity clears the floor,
      best max_candidates of them
    - items with a qualifying alias, regardless of name similarity
    - items with a training example similar enough to feed the learned signal
    - the vector_top_k nearest items when vector scores are available
    """

    def __init__(self, config: MatchingConfig):
        self.config = config

    def retrieve(
        self,
        snapshot: MatchSnapshot,
        query: PreparedQuery,
        floor: float,
        vector_by_item: Optional[Dict[int, float]] = None,
    ) -> List[CatalogItem]:
        """Retrieve candidates for a prepared query.

        Args:
            snapshot: Snapshot to search
            query: Prepared query
            floor: Trigram prefilter floor
            vector_by_item: Vector scores by item index (optional)

        Returns:
            Candidate items in catalog order (deterministic)
        """
        selected: Set[int] = set(self._prefilter(snapshot, query, floor))
        selected.update(self._alias_items(snapshot, query))
        selected.update(self._training_items(snapshot, query))
        if vector_by_item:
            selected.update(self._vector_items(vector_by_item))

        return [snapshot.items[index] for index in sorted(selected)]

    def _prefilter(self, snapshot: MatchSnapshot, query: PreparedQuery, floor: float) -> List[int]:
        scores: Dict[int, float] = dict(snapshot.name_index.search(query.norm_trigrams, floor))
        for index, score in snapshot.code_index.search(query.lower_trigrams, floor).items():
            if score > scores.get(index, -1.0):
                scores[index] = score

        ranked = sorted(scores.items(), key=lambda kv: (-kv[1], kv[0]))
        if len(ranked) > self.config.max_candidates:
            logger.debug(
                f"Prefilter capped {len(ranked)} candidates at {self.config.max_candidates}",
                extra={"candidate_count": len(ranked)},
            )
        return [index for index, _ in ranked[: self.config.max_candidates]]

    def _alias_items(self, snapshot: MatchSnapshot, query: PreparedQuery) -> Set[int]:
        floor = self.config.alias_floor
        positions = set(snapshot.alias_name_index.search(query.norm_trigrams, floor))
        positions.update(snapshot.alias_sku_index.search(query.lower_trigrams, floor))

        found: Set[int] = set()
        for alias in snapshot.aliases_by_norm.get(query.norm, ()):
            found.add(snapshot.items_by_product[alias.product_id].index)
        for position in positions:
            alias = snapshot.aliases[position]
            if alias_similarity(query, alias) >= floor:
                found.add(snapshot.items_by_product[alias.product_id].index)
        return found

    def _training_items(self, snapshot: MatchSnapshot, query: PreparedQuery) -> Set[int]:
        found: Set[int] = set()
        for position in snapshot.training_index.search(query.norm_trigrams, self.config.prefilter_floor):
            example = snapshot.training[position]
            if training_similarity(query, example) >= self.config.learned_floor:
                found.add(snapshot.items_by_product[example.product_id].index)
        return found

    def _vector_items(self, vector_by_item: Dict[int, float]) -> List[int]:
        ranked = sorted(
            ((index, score) for index, score in vector_by_item.items() if score > 0.0),
            key=lambda kv: (-kv[1], kv[0]),
        )
        return [index for index, _ in ranked[: self.config.vector_top_k]]
