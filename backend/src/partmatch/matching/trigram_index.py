"""Inverted trigram index for cheap candidate prefiltering."""

from collections import defaultdict
from typing import Dict, FrozenSet, Hashable, List, Tuple


class TrigramIndex:
    """Postings list from trigram to indexed documents.

    Each document carries an owner key (catalog row, alias, training
    example). Several documents may share a key; search() reports the best
    document per key. The Jaccard similarity is derived from shared-trigram
    counts, so only documents sharing at least one trigram with the query
    are ever touched.

    Build once, then treat as read-only; concurrent searches are safe.
    """

    def __init__(self):
        self._postings: Dict[str, List[int]] = defaultdict(list)
        self._docs: List[Tuple[Hashable, int]] = []

    def add(self, key: Hashable, grams: FrozenSet[str]) -> None:
        """Index one document under key. Empty trigram sets are ignored."""
        if not grams:
            return
        doc_id = len(self._docs)
        self._docs.append((key, len(grams)))
        for gram in grams:
            self._postings[gram].append(doc_id)

    def search(self, grams: FrozenSet[str], floor: float = 0.0) -> Dict[Hashable, float]:
        """Find keys whose documents resemble the query trigrams.

        Args:
            grams: Query trigram set
            floor: Minimum similarity to report (documents sharing no
                trigram are never reported, even with floor 0)

        Returns:
            Mapping key -> best trigram similarity (>= floor)
        """
        if not grams:
            return {}

        shared: Dict[int, int] = defaultdict(int)
        for gram in grams:
            for doc_id in self._postings.get(gram, ()):
                shared[doc_id] += 1

        query_size = len(grams)
        best: Dict[Hashable, float] = {}
        for doc_id, count in shared.items():
            key, doc_size = self._docs[doc_id]
            score = count / (query_size + doc_size - count)
            if score >= floor and score > best.get(key, -1.0):
                best[key] = score
        return best

    def __len__(self) -> int:
        return len(self._docs)
