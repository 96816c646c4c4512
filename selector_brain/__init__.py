"""
Selector Brain - adaptive element resolution for browser automation.

Records every selector attempt, learns per-domain selector weights from
the outcomes, and resolves element descriptions through a ranked,
timed execution plan with error-driven recovery.
"""

from .config import BrainConfig, ExecutionMode, OrchestratorConfig, WeightModelConfig, setup_logging
from .errors import ErrorKind, SelectorBrainError, InvalidExperience, PersistenceDegraded
from .knowledge import Experience, ExperienceStore, AdaptiveWeightModel, PatternClusterer, SelectorKind
from .brain import PerformanceTracker, PerformanceMetrics, EventEmitter, EventType
from .core import SelectorBrain, PlaywrightDriver, AutomationDriver, ExecutionResult

__version__ = "0.1.0"

__all__ = [
    "BrainConfig",
    "ExecutionMode",
    "OrchestratorConfig",
    "WeightModelConfig",
    "setup_logging",
    "ErrorKind",
    "SelectorBrainError",
    "InvalidExperience",
    "PersistenceDegraded",
    "Experience",
    "ExperienceStore",
    "AdaptiveWeightModel",
    "PatternClusterer",
    "SelectorKind",
    "PerformanceTracker",
    "PerformanceMetrics",
    "EventEmitter",
    "EventType",
    "SelectorBrain",
    "PlaywrightDriver",
    "AutomationDriver",
    "ExecutionResult",
]
