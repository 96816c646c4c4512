"""
Adaptive Weight Model

Turns raw attempt outcomes into per-domain selector-kind weights.

Each domain keeps a rolling window of its most recent outcomes. Every
N outcomes the window is used to recalibrate: observed kinds move toward
their window success rate by an exponential moving average, unobserved
kinds slowly decay. All weights stay within [0.1, 1.0].
"""

import copy
import logging
import threading
from collections import deque, defaultdict
from dataclasses import dataclass, field
from typing import Dict, List, Any, Optional, Tuple

from ..brain.events import EventType
from ..config import WeightModelConfig
from .experience_store import Experience, now_ms
from .scoring import adaptive_score, clamp, ema_update, DEFAULT_SUCCESS_RATE
from .selector_kinds import SelectorKind, BASELINE_WEIGHTS, MIN_WEIGHT, MAX_WEIGHT

logger = logging.getLogger(__name__)


@dataclass
class DomainWeights:
    domain: str
    weights: Dict[SelectorKind, float] = field(default_factory=lambda: dict(BASELINE_WEIGHTS))
    success_rates: Dict[SelectorKind, float] = field(default_factory=dict)
    training_sample_count: int = 0
    last_updated_ms: int = field(default_factory=now_ms)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "domain": self.domain,
            "weights": {k.value: v for k, v in self.weights.items()},
            "success_rates": {k.value: v for k, v in self.success_rates.items()},
            "training_sample_count": self.training_sample_count,
            "last_updated_ms": self.last_updated_ms,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "DomainWeights":
        weights = dict(BASELINE_WEIGHTS)
        for key, value in (data.get("weights") or {}).items():
            try:
                weights[SelectorKind(key)] = clamp(float(value), MIN_WEIGHT, MAX_WEIGHT)
            except ValueError:
                logger.warning(f"[WEIGHTS] Ignoring unknown selector kind '{key}'")
        rates = {}
        for key, value in (data.get("success_rates") or {}).items():
            try:
                rates[SelectorKind(key)] = clamp(float(value), 0.0, 1.0)
            except ValueError:
                logger.warning(f"[WEIGHTS] Ignoring unknown selector kind '{key}'")
        return cls(
            domain=data["domain"],
            weights=weights,
            success_rates=rates,
            training_sample_count=int(data.get("training_sample_count", 0)),
            last_updated_ms=int(data.get("last_updated_ms") or now_ms()),
        )


@dataclass
class _Outcome:
    kind: SelectorKind
    success: bool


class AdaptiveWeightModel:
    """
    Per-domain weight table updated from a rolling outcome window.

    The model is the only writer of DomainWeights; weights_for() hands out
    copies.
    """

    def __init__(self, config: Optional[WeightModelConfig] = None, events=None):
        self.config = config or WeightModelConfig()
        self.events = events
        self._domains: Dict[str, DomainWeights] = {}
        self._windows: Dict[str, deque] = {}
        self._counters: Dict[str, int] = defaultdict(int)
        self._lock = threading.RLock()

    def _domain(self, domain: str) -> DomainWeights:
        weights = self._domains.get(domain)
        if weights is None:
            weights = DomainWeights(domain=domain)
            self._domains[domain] = weights
        return weights

    def _window(self, domain: str) -> deque:
        window = self._windows.get(domain)
        if window is None:
            window = deque(maxlen=self.config.window_size)
            self._windows[domain] = window
        return window

    def has_domain(self, domain: str) -> bool:
        with self._lock:
            return domain in self._domains

    def domains(self) -> List[str]:
        with self._lock:
            return sorted(self._domains)

    def record_outcome(
        self,
        domain: str,
        selector_kind: SelectorKind,
        success: bool,
        execution_time_ms: float = 0.0,
        confidence: float = 0.0
    ) -> bool:
        """
        Record one outcome for a domain.

        Returns:
            True if this outcome triggered a recalibration
        """
        with self._lock:
            weights = self._domain(domain)
            window = self._window(domain)
            window.append(_Outcome(kind=selector_kind, success=success))
            weights.training_sample_count += 1
            self._counters[domain] += 1

            if self._counters[domain] % self.config.recalibration_interval != 0:
                return False
            if len(window) < self.config.min_training_samples:
                return False
            self._recalibrate(weights, window)
            return True

    def _recalibrate(self, weights: DomainWeights, window: deque):
        totals: Dict[SelectorKind, List[int]] = defaultdict(lambda: [0, 0])
        for outcome in window:
            bucket = totals[outcome.kind]
            bucket[0] += 1 if outcome.success else 0
            bucket[1] += 1

        changes = []
        for kind in SelectorKind:
            old = weights.weights.get(kind, BASELINE_WEIGHTS[kind])
            if kind in totals:
                successes, attempts = totals[kind]
                rate = successes / attempts
                weights.success_rates[kind] = rate
                new = ema_update(old, rate, self.config.learning_rate, MIN_WEIGHT, MAX_WEIGHT)
            else:
                new = clamp(old * self.config.decay_factor, MIN_WEIGHT, MAX_WEIGHT)
            weights.weights[kind] = new
            if abs(new - old) > self.config.convergence_threshold:
                changes.append((kind, old, new))

        weights.last_updated_ms = now_ms()

        if changes:
            summary = ", ".join(f"{k.value}: {o:.3f}->{n:.3f}" for k, o, n in changes)
            logger.info(f"[WEIGHTS] Significant weight changes for {weights.domain}: {summary}")
            if self.events is not None:
                self.events.emit(EventType.WEIGHTS_RECALIBRATED, domain=weights.domain, data={
                    "changes": {k.value: {"old": o, "new": n} for k, o, n in changes},
                })
        else:
            logger.debug(f"[WEIGHTS] Recalibrated {weights.domain}, weights converged")

    def weights_for(self, domain: str) -> DomainWeights:
        """Copy of the domain's weights, seeded from the baseline if unseen"""
        with self._lock:
            return copy.deepcopy(self._domain(domain))

    def weight(self, domain: str, kind: SelectorKind) -> float:
        with self._lock:
            weights = self._domains.get(domain)
            if weights is None:
                return BASELINE_WEIGHTS[kind]
            return weights.weights.get(kind, BASELINE_WEIGHTS[kind])

    def success_rate(self, domain: str, kind: SelectorKind) -> float:
        with self._lock:
            weights = self._domains.get(domain)
            if weights is None:
                return DEFAULT_SUCCESS_RATE
            return weights.success_rates.get(kind, DEFAULT_SUCCESS_RATE)

    def score(self, domain: str, kind: SelectorKind, base_score: float, confidence: float) -> float:
        return adaptive_score(base_score, self.weight(domain, kind), self.success_rate(domain, kind), confidence)

    def domain_stats(self, domain: str) -> Dict[str, Any]:
        """Best and worst kinds by current weight"""
        weights = self.weights_for(domain)
        ranked: List[Tuple[SelectorKind, float]] = sorted(
            weights.weights.items(), key=lambda kv: kv[1], reverse=True
        )
        return {
            "domain": domain,
            "training_samples": weights.training_sample_count,
            "best_kind": ranked[0][0].value if ranked else None,
            "worst_kind": ranked[-1][0].value if ranked else None,
            "weights": {k.value: round(v, 4) for k, v in ranked},
            "calibrated_kinds": sorted(k.value for k in weights.success_rates),
        }

    def restore(self, weights: DomainWeights):
        """Install persisted weights for a domain"""
        with self._lock:
            self._domains[weights.domain] = copy.deepcopy(weights)

    def reset_domain(self, domain: str):
        with self._lock:
            self._domains.pop(domain, None)
            self._windows.pop(domain, None)
            self._counters.pop(domain, None)
        logger.info(f"[WEIGHTS] Reset weights for {domain}")

    def rebuild_windows(self, experiences: List[Experience]):
        """Seed outcome windows from history without recalibrating"""
        with self._lock:
            for exp in sorted(experiences, key=lambda e: e.timestamp_ms):
                self._window(exp.domain).append(_Outcome(kind=exp.selector_kind, success=exp.success))
                self._counters[exp.domain] += 1
                self._domain(exp.domain)

    def export_state(self) -> Dict[str, Dict[str, Any]]:
        with self._lock:
            return {domain: w.to_dict() for domain, w in self._domains.items()}

    def import_state(self, state: Dict[str, Dict[str, Any]]) -> int:
        imported = 0
        for domain, data in (state or {}).items():
            data = dict(data)
            data.setdefault("domain", domain)
            self.restore(DomainWeights.from_dict(data))
            imported += 1
        return imported
