"""String similarity primitives shared by the signals and the retriever.

Trigram similarity follows pg_trgm semantics: the text is split into
alphanumeric words, each word is padded with two leading spaces and one
trailing space, and the similarity is the Jaccard overlap of the resulting
trigram sets, so in-process scores agree with similarity() in PostgreSQL.
"""

import re
from typing import FrozenSet, Optional

from rapidfuzz.distance import Levenshtein

_WORD = re.compile(r"[^\W_]+")

EMPTY_TRIGRAMS: FrozenSet[str] = frozenset()


def trigrams(text: Optional[str]) -> FrozenSet[str]:
    """Return the pg_trgm-style trigram set of text.

    Args:
        text: Any text; case is folded

    Returns:
        Frozen set of 3-character shingles (empty for None/blank)
    """
    if not text:
        return EMPTY_TRIGRAMS

    grams = set()
    for word in _WORD.findall(text.lower()):
        padded = f"  {word} "
        for i in range(len(padded) - 2):
            grams.add(padded[i:i + 3])
    return frozenset(grams)


def set_similarity(a: FrozenSet[str], b: FrozenSet[str]) -> float:
    """Jaccard similarity of two precomputed trigram sets."""
    if not a or not b:
        return 0.0
    shared = len(a & b)
    if shared == 0:
        return 0.0
    return shared / (len(a) + len(b) - shared)


def trigram_similarity(a: Optional[str], b: Optional[str]) -> float:
    """Trigram similarity of two strings in [0, 1]."""
    return set_similarity(trigrams(a), trigrams(b))


def edit_similarity(a: Optional[str], b: Optional[str], max_distance: int) -> float:
    """Normalized Levenshtein similarity with a hard distance cutoff.

    Returns 1 - distance / max(len(a), len(b)), or 0.0 when the distance
    exceeds max_distance.

    Args:
        a: First string
        b: Second string
        max_distance: Largest edit distance that still scores

    Returns:
        Similarity in [0, 1]
    """
    if not a or not b:
        return 0.0
    if a == b:
        return 1.0

    distance = Levenshtein.distance(a, b, score_cutoff=max_distance)
    if distance > max_distance:
        return 0.0
    return max(0.0, 1.0 - distance / max(len(a), len(b)))


def _substring_score(a: str, b: str) -> float:
    longer, shorter = (a, b) if len(a) >= len(b) else (b, a)
    if shorter in longer:
        return len(shorter) / len(longer)

    if len(shorter) < 3:
        return 0.0

    # Longest shared chunk, searched from 10 characters down to 3
    for length in range(min(len(shorter), 10), 2, -1):
        for start in range(len(shorter) - length + 1):
            if shorter[start:start + length] in longer:
                return length / len(longer)
    return 0.0


def composite_fuzzy(a: Optional[str], b: Optional[str]) -> float:
    """Blended fuzzy similarity of two normalized strings.

    Combines Levenshtein similarity (50%), word overlap (30%) and substring
    containment (20%). Used by the training tiers and the learned signal,
    where whole-phrase resemblance matters more than a strict edit cutoff.

    Args:
        a: Normalized text
        b: Normalized text

    Returns:
        Similarity in [0, 1]; 1.0 for identical non-empty input
    """
    if not a or not b:
        return 0.0
    if a == b:
        return 1.0

    levenshtein_score = max(0.0, 1.0 - Levenshtein.distance(a, b) / max(len(a), len(b)))

    words_a = a.split()
    words_b = b.split()
    total_words = max(len(words_a), len(words_b))
    if total_words == 0:
        word_overlap = 1.0
    else:
        vocabulary = set(words_b)
        common = sum(1 for word in words_a if word in vocabulary)
        word_overlap = min(1.0, common / total_words)

    substring = _substring_score(a, b)

    score = levenshtein_score * 0.5 + word_overlap * 0.3 + substring * 0.2
    return max(0.0, min(1.0, score))
