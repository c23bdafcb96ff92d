"""Unit tests for string similarity primitives and the trigram index

Tests cover:
- pg_trgm-compatible trigram extraction and similarity
- Cutoff-bounded edit similarity
- Composite fuzzy similarity
- TrigramIndex search (best document per key, floors, empty queries)
"""

import pytest

from partmatch.matching.similarity import (
    composite_fuzzy,
    edit_similarity,
    set_similarity,
    trigram_similarity,
    trigrams,
)
from partmatch.matching.trigram_index import TrigramIndex


class TestTrigrams:
    """Test trigram extraction"""

    def test_word_padding(self):
        """Words get two leading spaces and one trailing space"""
        assert trigrams("ab") == {"  a", " ab", "ab "}

    def test_words_split_on_non_alphanumerics(self):
        """Punctuation separates words and is never part of a trigram"""
        assert trigrams("a-b") == trigrams("a b")

    def test_case_folded(self):
        assert trigrams("HEX") == trigrams("hex")

    @pytest.mark.parametrize("value", [None, "", "   ", "---"])
    def test_empty(self, value):
        assert trigrams(value) == frozenset()


class TestTrigramSimilarity:
    """Test trigram similarity"""

    def test_identical(self):
        assert trigram_similarity("hex cap screw", "hex cap screw") == 1.0

    def test_matches_pg_trgm(self):
        """similarity('word', 'words') is 4/7 in PostgreSQL"""
        assert trigram_similarity("word", "words") == pytest.approx(4 / 7)

    def test_disjoint(self):
        assert trigram_similarity("washer", "hex") == 0.0

    def test_empty_side(self):
        assert trigram_similarity("", "hex") == 0.0
        assert set_similarity(frozenset(), trigrams("hex")) == 0.0

    def test_symmetric(self):
        a, b = "safety goggles clear", "safety goggles clear lens"
        assert trigram_similarity(a, b) == trigram_similarity(b, a)


class TestEditSimilarity:
    """Test cutoff-bounded Levenshtein similarity"""

    def test_classic_distance(self):
        """kitten -> sitting is 3 edits over 7 characters"""
        assert edit_similarity("kitten", "sitting", 8) == pytest.approx(1 - 3 / 7)

    def test_identical(self):
        assert edit_similarity("56x212c8", "56x212c8", 8) == 1.0

    def test_beyond_cutoff_scores_zero(self):
        """Strings further apart than max_distance do not score"""
        assert edit_similarity("abcdefghijkl", "zyxwvutsrqpo", 8) == 0.0

    def test_at_cutoff_still_scores(self):
        assert edit_similarity("aaaaaaaa", "aaaabbbb", 4) == pytest.approx(0.5)
        assert edit_similarity("aaaaaaaa", "aaaabbbb", 3) == 0.0

    def test_empty(self):
        assert edit_similarity("", "hex", 8) == 0.0
        assert edit_similarity(None, "hex", 8) == 0.0


class TestCompositeFuzzy:
    """Test the blended fuzzy score"""

    def test_identical(self):
        assert composite_fuzzy("hex cap screw", "hex cap screw") == 1.0

    def test_prefix_phrase(self):
        """Levenshtein 0.8, word overlap 0.75, containment 0.8"""
        score = composite_fuzzy("safety goggles clear", "safety goggles clear lens")
        assert score == pytest.approx(0.8 * 0.5 + 0.75 * 0.3 + 0.8 * 0.2)

    def test_related_beats_unrelated(self):
        related = composite_fuzzy("hex cap screw", "hex head cap screw")
        unrelated = composite_fuzzy("hex cap screw", "nitrile glove")
        assert 0.0 <= unrelated < related <= 1.0

    def test_empty(self):
        assert composite_fuzzy("", "hex") == 0.0


class TestTrigramIndex:
    """Test the inverted trigram index"""

    def test_best_document_per_key(self):
        """A key with several documents reports its best one"""
        index = TrigramIndex()
        index.add("bolt", trigrams("hex bolt"))
        index.add("bolt", trigrams("hex"))
        index.add("washer", trigrams("washer"))

        assert index.search(trigrams("hex")) == {"bolt": 1.0}

    def test_scores_equal_jaccard(self):
        index = TrigramIndex()
        index.add(0, trigrams("hex head cap screw"))

        result = index.search(trigrams("hex cap screw"))

        assert result[0] == pytest.approx(trigram_similarity("hex head cap screw", "hex cap screw"))

    def test_floor(self):
        index = TrigramIndex()
        index.add(0, trigrams("hex head cap screw grade 8"))
        index.add(1, trigrams("hex"))

        result = index.search(trigrams("hex"), floor=0.5)

        assert set(result) == {1}

    def test_no_shared_trigram_never_reported(self):
        """Even with floor 0, unrelated documents are not returned"""
        index = TrigramIndex()
        index.add(0, trigrams("washer"))

        assert index.search(trigrams("hex"), floor=0.0) == {}

    def test_empty_documents_ignored(self):
        index = TrigramIndex()
        index.add(0, frozenset())
        index.add(1, trigrams("hex"))

        assert len(index) == 1
        assert index.search(frozenset()) == {}
