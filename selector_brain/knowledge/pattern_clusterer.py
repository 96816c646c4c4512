"""
Pattern Clusterer

Groups similar patterns so that what worked on one site or task can be
suggested on another.

The algorithm is a single greedy pass in input order: each unassigned
pattern seeds a cluster and absorbs every later unassigned pattern whose
similarity to the seed reaches the threshold. Assignments are never
revisited, so the result depends on input order.
"""

import logging
import math
import re
from collections import Counter
from dataclasses import dataclass, field
from typing import Dict, List, Optional

from .experience_store import Pattern
from .scoring import jaccard, levenshtein_similarity

logger = logging.getLogger(__name__)

KEYWORD_RE = re.compile(r"[a-zA-Z]+")


@dataclass
class ClusterCentroid:
    avg_success_rate: float = 0.0
    avg_occurrences: float = 0.0
    avg_effectiveness: float = 0.0
    kinds: List[str] = field(default_factory=list)


@dataclass
class PatternCluster:
    id: str
    name: str
    patterns: List[Pattern]
    centroid: ClusterCentroid
    common_features: List[str]
    representative: Pattern
    similarity: float = 1.0

    def to_dict(self) -> Dict:
        return {
            "id": self.id,
            "name": self.name,
            "pattern_ids": [p.id for p in self.patterns],
            "size": len(self.patterns),
            "centroid": {
                "avg_success_rate": self.centroid.avg_success_rate,
                "avg_occurrences": self.centroid.avg_occurrences,
                "avg_effectiveness": self.centroid.avg_effectiveness,
                "kinds": self.centroid.kinds,
            },
            "common_features": self.common_features,
            "representative": self.representative.textual_form,
            "similarity": self.similarity,
        }


@dataclass
class ClusteringResult:
    clusters: List[PatternCluster]
    total_patterns: int
    quality_score: float


class PatternClusterer:
    """Greedy single-pass similarity clustering over the pattern table"""

    DEFAULT_MIN_SIMILARITY = 0.7
    RECOMMENDATION_MIN_SIMILARITY = 0.6

    # Similarity component weights
    KIND_WEIGHT = 0.3
    TEXT_WEIGHT = 0.4
    SUCCESS_WEIGHT = 0.2
    DOMAIN_WEIGHT = 0.1

    def similarity(self, a: Pattern, b: Pattern) -> float:
        score = 0.0
        if a.kind == b.kind:
            score += self.KIND_WEIGHT
        score += self.TEXT_WEIGHT * levenshtein_similarity(a.textual_form, b.textual_form)
        score += self.SUCCESS_WEIGHT * max(0.0, 1.0 - abs(a.success_rate - b.success_rate))
        score += self.DOMAIN_WEIGHT * jaccard(set(a.domains), set(b.domains))
        return min(1.0, score)

    def cluster(self, patterns: List[Pattern], min_similarity: float = DEFAULT_MIN_SIMILARITY) -> ClusteringResult:
        if not patterns:
            return ClusteringResult(clusters=[], total_patterns=0, quality_score=0.0)

        clusters: List[PatternCluster] = []
        assigned = set()

        for i, seed in enumerate(patterns):
            if seed.id in assigned:
                continue
            assigned.add(seed.id)
            members = [seed]
            similarities = []

            for other in patterns[i + 1:]:
                if other.id in assigned:
                    continue
                sim = self.similarity(seed, other)
                if sim >= min_similarity:
                    members.append(other)
                    similarities.append(sim)
                    assigned.add(other.id)

            clusters.append(PatternCluster(
                id=f"cluster_{len(clusters)}",
                name=f"{seed.kind.value} - {seed.textual_form[:20]}",
                patterns=members,
                centroid=self.centroid(members),
                common_features=self.common_features(members),
                representative=max(members, key=lambda p: p.effectiveness),
                similarity=sum(similarities) / len(similarities) if similarities else 1.0,
            ))

        quality = self.quality(clusters, len(patterns))
        logger.info(f"[CLUSTER] {len(clusters)} clusters from {len(patterns)} patterns, quality {quality:.2f}")
        return ClusteringResult(clusters=clusters, total_patterns=len(patterns), quality_score=quality)

    def centroid(self, patterns: List[Pattern]) -> ClusterCentroid:
        if not patterns:
            return ClusterCentroid()
        n = len(patterns)
        kinds = []
        for p in patterns:
            if p.kind.value not in kinds:
                kinds.append(p.kind.value)
        return ClusterCentroid(
            avg_success_rate=sum(p.success_rate for p in patterns) / n,
            avg_occurrences=sum(p.occurrence_count for p in patterns) / n,
            avg_effectiveness=sum(p.effectiveness for p in patterns) / n,
            kinds=kinds,
        )

    def features(self, pattern: Pattern) -> List[str]:
        features = [f"type:{pattern.kind.value}"]
        features.extend(f"keyword:{k}" for k in KEYWORD_RE.findall(pattern.textual_form))
        if pattern.success_rate > 0.8:
            features.append("high_success")
        elif pattern.success_rate < 0.3:
            features.append("low_success")
        if pattern.occurrence_count > 10:
            features.append("frequently_used")
        return features

    def common_features(self, patterns: List[Pattern]) -> List[str]:
        """Features present in at least half of the patterns"""
        if not patterns:
            return []
        counts: Counter = Counter()
        for p in patterns:
            counts.update(set(self.features(p)))
        threshold = len(patterns) / 2
        return [feature for feature, count in counts.items() if count >= threshold]

    def quality(self, clusters: List[PatternCluster], total_patterns: int) -> float:
        if not clusters or total_patterns == 0:
            return 0.0

        balance = 1 - abs(len(clusters) - math.sqrt(total_patterns)) / total_patterns

        total = 0.0
        comparisons = 0
        for c in clusters:
            for i in range(len(c.patterns)):
                for j in range(i + 1, len(c.patterns)):
                    total += self.similarity(c.patterns[i], c.patterns[j])
                    comparisons += 1
        intra = total / comparisons if comparisons else 0.0

        return min(1.0, balance * 0.3 + intra * 0.7)

    def recommended_clusters(
        self,
        patterns: List[Pattern],
        domain: str,
        limit: int = 5,
        min_similarity: Optional[float] = None
    ) -> List[PatternCluster]:
        """Clusters touching a domain, best representative effectiveness first"""
        if not any(domain in p.domains for p in patterns):
            return []
        threshold = self.RECOMMENDATION_MIN_SIMILARITY if min_similarity is None else min_similarity
        result = self.cluster(patterns, threshold)
        relevant = [c for c in result.clusters if any(domain in p.domains for p in c.patterns)]
        relevant.sort(key=lambda c: c.representative.effectiveness, reverse=True)
        return relevant[:limit]
