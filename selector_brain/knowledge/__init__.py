"""
Knowledge Base System

Stores every selector attempt, derives patterns from them and turns
outcomes into per-domain selector weights.
"""

from .selector_kinds import SelectorKind, BASELINE_WEIGHTS, classify_selector
from .experience_store import Experience, ExperienceFilter, ExperienceStore, Pattern
from .weight_model import AdaptiveWeightModel, DomainWeights
from .pattern_clusterer import PatternClusterer, PatternCluster, ClusteringResult
from .persistence import PersistenceBackend, InMemoryBackend, JsonFileBackend, ResilientPersistence
from .learning_engine import LearningEngine

__all__ = [
    "SelectorKind",
    "BASELINE_WEIGHTS",
    "classify_selector",
    "Experience",
    "ExperienceFilter",
    "ExperienceStore",
    "Pattern",
    "AdaptiveWeightModel",
    "DomainWeights",
    "PatternClusterer",
    "PatternCluster",
    "ClusteringResult",
    "PersistenceBackend",
    "InMemoryBackend",
    "JsonFileBackend",
    "ResilientPersistence",
    "LearningEngine",
]
