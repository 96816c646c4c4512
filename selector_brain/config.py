"""
Selector Brain Configuration

Dataclass configs for every component, loadable from the environment
(SELECTOR_BRAIN_* variables, optionally read from a .env file).
"""

import logging
import os
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv

logger = logging.getLogger(__name__)

ENV_PREFIX = "SELECTOR_BRAIN_"


class ExecutionMode(Enum):
    """How the orchestrator probes the steps of a tier"""
    PARALLEL = "parallel"
    SEQUENTIAL = "sequential"


@dataclass
class WeightModelConfig:
    """Adaptive weight model tuning"""
    learning_rate: float = 0.15
    min_training_samples: int = 20
    decay_factor: float = 0.995
    convergence_threshold: float = 0.02
    recalibration_interval: int = 10
    window_size: int = 100


@dataclass
class StoreConfig:
    max_experiences: int = 10000
    max_patterns: int = 5000


@dataclass
class SelectorConfig:
    primary_count: int = 3
    max_candidates: int = 8
    learned_candidate_limit: int = 5


@dataclass
class OrchestratorConfig:
    """Plan execution limits. All durations are milliseconds."""
    max_retries: int = 5  # total probe attempts across probing and recovery
    execution_mode: ExecutionMode = ExecutionMode.PARALLEL
    max_parallel_probes: int = 8
    parallel_probe_timeout_ms: int = 1000
    sequential_threshold: float = 0.3
    primary_timeout_ms: int = 5000
    fallback_timeout_ms: int = 8000
    fallback_wait_ms: int = 500
    base_retry_delay_ms: int = 500
    max_retry_delay_ms: int = 5000
    max_total_timeout_ms: int = 60000
    enable_recovery: bool = True
    max_recovery_strategies: int = 3
    probe_grace_ms: int = 250


@dataclass
class BrainConfig:
    """Top-level configuration passed to SelectorBrain"""
    data_dir: Optional[str] = None
    weights: WeightModelConfig = field(default_factory=WeightModelConfig)
    store: StoreConfig = field(default_factory=StoreConfig)
    selector: SelectorConfig = field(default_factory=SelectorConfig)
    orchestrator: OrchestratorConfig = field(default_factory=OrchestratorConfig)
    trend_history_size: int = 1000
    log_level: str = "INFO"

    @classmethod
    def from_env(cls, env_file: Optional[str] = None) -> "BrainConfig":
        """
        Build a config from SELECTOR_BRAIN_* environment variables.

        Args:
            env_file: Optional path to a .env file loaded before reading

        Returns:
            BrainConfig with defaults for anything not set
        """
        if env_file:
            load_dotenv(Path(env_file))
        else:
            load_dotenv()

        config = cls()
        config.data_dir = _env("DATA_DIR") or None
        config.log_level = _env("LOG_LEVEL", config.log_level).upper()
        config.trend_history_size = _env_int("TREND_HISTORY_SIZE", config.trend_history_size)

        w = config.weights
        w.learning_rate = _env_float("LEARNING_RATE", w.learning_rate)
        w.min_training_samples = _env_int("MIN_TRAINING_SAMPLES", w.min_training_samples)
        w.decay_factor = _env_float("DECAY_FACTOR", w.decay_factor)
        w.convergence_threshold = _env_float("CONVERGENCE_THRESHOLD", w.convergence_threshold)

        config.store.max_experiences = _env_int("MAX_EXPERIENCES", config.store.max_experiences)

        o = config.orchestrator
        o.max_retries = _env_int("MAX_RETRIES", o.max_retries)
        o.max_total_timeout_ms = _env_int("MAX_TOTAL_TIMEOUT_MS", o.max_total_timeout_ms)
        o.max_parallel_probes = _env_int("MAX_PARALLEL_PROBES", o.max_parallel_probes)
        mode = _env("EXECUTION_MODE")
        if mode:
            try:
                o.execution_mode = ExecutionMode(mode.lower())
            except ValueError:
                logger.warning(f"[CONFIG] Unknown execution mode '{mode}', keeping {o.execution_mode.value}")

        return config


def _env(name: str, default: str = "") -> str:
    return os.getenv(ENV_PREFIX + name, default)


def _env_int(name: str, default: int) -> int:
    raw = _env(name)
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError:
        logger.warning(f"[CONFIG] {ENV_PREFIX}{name}={raw!r} is not an integer, using {default}")
        return default


def _env_float(name: str, default: float) -> float:
    raw = _env(name)
    if not raw:
        return default
    try:
        return float(raw)
    except ValueError:
        logger.warning(f"[CONFIG] {ENV_PREFIX}{name}={raw!r} is not a number, using {default}")
        return default


def setup_logging(level: str = "INFO"):
    """Configure root logging once for scripts and the HTTP adapter"""
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
