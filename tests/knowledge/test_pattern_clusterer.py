"""
Unit tests for PatternClusterer.
"""

import pytest

from selector_brain.knowledge.experience_store import Pattern
from selector_brain.knowledge.pattern_clusterer import PatternClusterer
from selector_brain.knowledge.selector_kinds import SelectorKind


def make_pattern(selector, kind=SelectorKind.ID, domains=("shop.example",), success_rate=1.0,
                 occurrences=5, effectiveness=1.0, task_type="checkout"):
    return Pattern(
        id=f"{task_type}:{selector}:{'/'.join(domains)}",
        kind=kind,
        textual_form=selector,
        task_type=task_type,
        success_rate=success_rate,
        occurrence_count=occurrences,
        domains=set(domains),
        effectiveness=effectiveness,
    )


@pytest.fixture
def clusterer():
    return PatternClusterer()


class TestSimilarity:
    """Test the pairwise similarity function."""

    def test_same_selector_different_domains(self, clusterer):
        """Test that domain overlap only contributes a small share."""
        a = make_pattern("#checkout-btn", domains=("shop.example",))
        b = make_pattern("#checkout-btn", domains=("store.example",))

        assert clusterer.similarity(a, b) >= 0.9

    def test_identical_patterns(self, clusterer):
        """Test that identical patterns are fully similar."""
        a = make_pattern("#checkout-btn")
        assert clusterer.similarity(a, a) == pytest.approx(1.0)

    def test_unrelated_patterns(self, clusterer):
        """Test that different kinds and text score low."""
        a = make_pattern("#checkout-btn", success_rate=1.0)
        b = make_pattern("//footer//a[3]", kind=SelectorKind.XPATH, domains=("news.example",), success_rate=0.0)

        assert clusterer.similarity(a, b) < 0.4

    def test_similarity_is_symmetric(self, clusterer):
        a = make_pattern("#checkout", success_rate=0.8)
        b = make_pattern(".checkout-button", kind=SelectorKind.CLASS, success_rate=0.4)
        assert clusterer.similarity(a, b) == pytest.approx(clusterer.similarity(b, a))


class TestClustering:
    """Test greedy clustering."""

    def test_empty_input(self, clusterer):
        """Test that no patterns give no clusters."""
        result = clusterer.cluster([])
        assert result.clusters == []
        assert result.quality_score == 0.0

    def test_groups_similar_patterns(self, clusterer):
        """Test that near-identical selectors share a cluster."""
        patterns = [
            make_pattern("#checkout-btn", domains=("shop.example",)),
            make_pattern("//footer//a[3]", kind=SelectorKind.XPATH, success_rate=0.0, domains=("news.example",)),
            make_pattern("#checkout-btn", domains=("store.example",), effectiveness=3.0),
        ]
        result = clusterer.cluster(patterns)

        assert result.total_patterns == 3
        assert len(result.clusters) == 2
        first = result.clusters[0]
        assert len(first.patterns) == 2
        assert first.representative.effectiveness == 3.0
        assert first.centroid.kinds == ["id"]
        assert 0.0 <= result.quality_score <= 1.0

    def test_every_pattern_assigned_once(self, clusterer):
        """Test that clusters partition the input."""
        patterns = [make_pattern(f"#item-{i}", domains=(f"site{i % 3}.example",)) for i in range(8)]
        result = clusterer.cluster(patterns, min_similarity=0.8)

        ids = [p.id for c in result.clusters for p in c.patterns]
        assert sorted(ids) == sorted(p.id for p in patterns)

    def test_cluster_to_dict(self, clusterer):
        result = clusterer.cluster([make_pattern("#checkout-btn")])
        data = result.clusters[0].to_dict()

        assert data["size"] == 1
        assert data["representative"] == "#checkout-btn"


class TestFeatures:
    """Test feature extraction."""

    def test_features(self, clusterer):
        """Test kind, keyword, success and usage features."""
        pattern = make_pattern("#checkout-btn", success_rate=0.9, occurrences=11)
        features = clusterer.features(pattern)

        assert "type:id" in features
        assert "keyword:checkout" in features
        assert "keyword:btn" in features
        assert "high_success" in features
        assert "frequently_used" in features

    def test_low_success_feature(self, clusterer):
        pattern = make_pattern(".promo", kind=SelectorKind.CLASS, success_rate=0.1)
        assert "low_success" in clusterer.features(pattern)

    def test_common_features_threshold(self, clusterer):
        """Test that common features appear in at least half the patterns."""
        patterns = [
            make_pattern("#checkout-btn"),
            make_pattern("#checkout-link"),
            make_pattern("#cart"),
        ]
        common = clusterer.common_features(patterns)

        assert "type:id" in common
        assert "keyword:checkout" in common
        assert "keyword:cart" not in common


class TestRecommendations:
    """Test domain-scoped cluster recommendations."""

    def test_unknown_domain(self, clusterer):
        """Test that a domain without patterns gets nothing."""
        patterns = [make_pattern("#checkout-btn")]
        assert clusterer.recommended_clusters(patterns, "unknown.example") == []

    def test_only_clusters_touching_domain(self, clusterer):
        """Test that recommendations are limited to the domain and ordered."""
        patterns = [
            make_pattern("#checkout-btn", domains=("shop.example",), effectiveness=1.0),
            make_pattern("//footer//a[3]", kind=SelectorKind.XPATH, success_rate=0.0,
                         domains=("news.example",), effectiveness=5.0),
            make_pattern("[data-testid=\"search\"]", kind=SelectorKind.DATA_ATTRIBUTE,
                         domains=("shop.example",), effectiveness=2.0),
        ]
        clusters = clusterer.recommended_clusters(patterns, "shop.example")

        assert len(clusters) == 2
        assert clusters[0].representative.textual_form == "[data-testid=\"search\"]"
        for cluster in clusters:
            assert any("shop.example" in p.domains for p in cluster.patterns)
