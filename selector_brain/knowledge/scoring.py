"""
Scoring Formulas

Every probability, reliability and similarity formula used by the brain
lives here so that the selector, clusterer and tracker agree on them.
"""

import math
from typing import Iterable, Set

import Levenshtein

DEFAULT_SUCCESS_RATE = 0.5
LEARNED_CONFIDENCE_BOOST = 1.2


def clamp(value: float, low: float, high: float) -> float:
    return max(low, min(high, value))


def adaptive_score(base_score: float, weight: float, success_rate: float, confidence: float) -> float:
    """base × kind weight × kind success rate × confidence"""
    return base_score * weight * success_rate * confidence


def ema_update(current: float, target: float, learning_rate: float,
               low: float = 0.1, high: float = 1.0) -> float:
    """Move current toward target by learning_rate, clamped to [low, high]"""
    return clamp(current + (target - current) * learning_rate, low, high)


def estimated_success_rate(probabilities: Iterable[float]) -> float:
    """Probability that at least one of several independent attempts succeeds"""
    failure = 1.0
    for p in probabilities:
        failure *= 1.0 - clamp(p, 0.0, 1.0)
    return 1.0 - failure


def historical_reliability(successes: int, failures: int) -> float:
    """Laplace-style reliability, boosted for learned selectors and capped at 1"""
    raw = successes / (successes + failures + 1)
    return min(1.0, raw * LEARNED_CONFIDENCE_BOOST)


def running_mean(current: float, count: int, value: float) -> float:
    """Mean after adding value to a series that already has count items"""
    return (current * count + value) / (count + 1)


def effectiveness(success_rate: float, occurrences: int) -> float:
    return success_rate * math.log(occurrences + 1)


def levenshtein_similarity(a: str, b: str) -> float:
    """1 - edit distance / length of the longer string; two empty strings are identical"""
    longest = max(len(a), len(b))
    if longest == 0:
        return 1.0
    return 1.0 - Levenshtein.distance(a, b) / longest


def jaccard(a: Set[str], b: Set[str]) -> float:
    union = a | b
    if not union:
        return 0.0
    return len(a & b) / len(union)
