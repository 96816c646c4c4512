"""
Unit tests for the shared scoring formulas.
"""

import pytest

from selector_brain.knowledge.scoring import (
    estimated_success_rate, historical_reliability, jaccard, levenshtein_similarity
)


class TestLevenshteinSimilarity:
    """Test edit-distance similarity used for clustering."""

    def test_identical(self):
        assert levenshtein_similarity("#checkout", "#checkout") == 1.0

    def test_both_empty(self):
        assert levenshtein_similarity("", "") == 1.0

    def test_suffix_edit(self):
        # four inserted characters over a 13 character selector
        assert levenshtein_similarity("#checkout", "#checkout-btn") == pytest.approx(1 - 4 / 13)

    def test_substitution(self):
        assert levenshtein_similarity("#pay", "#pey") == pytest.approx(0.75)

    def test_nothing_shared(self):
        assert levenshtein_similarity("abc", "xyz") == 0.0


class TestFormulas:

    def test_estimated_success_rate(self):
        assert estimated_success_rate([0.5, 0.5]) == pytest.approx(0.75)
        assert estimated_success_rate([]) == 0.0

    def test_historical_reliability(self):
        assert historical_reliability(1, 0) == pytest.approx(0.6)
        assert historical_reliability(50, 0) == 1.0

    def test_jaccard(self):
        assert jaccard({"a", "b"}, {"b", "c"}) == pytest.approx(1 / 3)
        assert jaccard(set(), set()) == 0.0
