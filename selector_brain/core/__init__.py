"""
Core resolution components.

- Strategy Selector: ranked candidate selectors
- Orchestrator: plan execution with probing, recovery and retry budget
- Recovery Handler: failure classification and alternative selectors
- Driver: the page operations the orchestrator needs
- SelectorBrain: the service object wiring everything together
"""

from .driver import AutomationDriver, BoundingBox, PlaywrightDriver
from .tasks import LoginTask, ScrapeTask, TestTask, CustomTask, ResolutionTarget, to_target
from .strategy_selector import StrategySelector, SelectorCandidate, SelectionResult
from .recovery_handler import ErrorRecovery, RecoveryAttempt, RecoveryContext, RecoveryStrategyType
from .orchestrator import (
    Orchestrator, OrchestratorState, ExecutionPlan, PlanStep, StepType,
    ProbeOutcome, ExecutionResult, ResolutionRequest
)
from .brain import SelectorBrain

__all__ = [
    "AutomationDriver",
    "BoundingBox",
    "PlaywrightDriver",
    "LoginTask",
    "ScrapeTask",
    "TestTask",
    "CustomTask",
    "ResolutionTarget",
    "to_target",
    "StrategySelector",
    "SelectorCandidate",
    "SelectionResult",
    "ErrorRecovery",
    "RecoveryAttempt",
    "RecoveryContext",
    "RecoveryStrategyType",
    "Orchestrator",
    "OrchestratorState",
    "ExecutionPlan",
    "PlanStep",
    "StepType",
    "ProbeOutcome",
    "ExecutionResult",
    "ResolutionRequest",
    "SelectorBrain",
]
