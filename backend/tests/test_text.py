"""Tests for text normalization and Jaccard similarity (utils/text.py)."""
import pytest

from incidentfusion.utils.text import jaccard_similarity, normalize_text, tokenize


class TestNormalizeText:
    def test_lowercase_and_punctuation(self):
        assert normalize_text("A1 Road-Closed!!  (J65)") == "a1 road closed j65"

    def test_transliterates_accents(self):
        assert normalize_text("Café Crème") == "cafe creme"

    def test_empty_and_none(self):
        assert normalize_text("") == ""
        assert normalize_text(None) == ""
        assert normalize_text("   ...  ") == ""


class TestTokenize:
    def test_drops_short_tokens(self):
        assert tokenize("a1 road closed on the a19") == frozenset({"road", "closed", "the", "a19"})

    def test_empty(self):
        assert tokenize("") == frozenset()


class TestJaccard:
    def test_identical_sets_score_one(self):
        s = {"road", "closed"}
        assert jaccard_similarity(s, set(s)) == 1.0

    def test_symmetric_and_bounded(self):
        a = {"accident", "durham", "road"}
        b = {"accident", "durham", "road", "blocked"}
        score = jaccard_similarity(a, b)
        assert score == jaccard_similarity(b, a)
        assert 0.0 <= score <= 1.0
        assert score == pytest.approx(0.75)

    def test_disjoint(self):
        assert jaccard_similarity({"a1x"}, {"closed"}) == 0.0

    def test_both_empty_is_zero(self):
        assert jaccard_similarity(set(), set()) == 0.0
