"""
Experience Store

Append-only, capped log of every selector attempt plus the derived
Pattern table. This is the single source of truth that the weight model,
selector, clusterer and tracker read from.

Storage:
- experiences: bounded deque, oldest evicted first
- patterns: keyed by "<task_type>:<selector>", least recently used evicted
"""

import logging
import threading
import time
import uuid
from collections import OrderedDict, deque
from dataclasses import dataclass, field, asdict
from typing import Dict, List, Any, Optional, Set

from ..errors import InvalidExperience
from .scoring import effectiveness, running_mean
from .selector_kinds import SelectorKind, classify_selector

logger = logging.getLogger(__name__)


def now_ms() -> int:
    return int(time.time() * 1000)


@dataclass(frozen=True)
class Experience:
    """A single recorded selector attempt. Never mutated after creation."""
    domain: str
    selector: str
    selector_kind: SelectorKind
    success: bool
    execution_time_ms: float = 0.0
    confidence_at_attempt: float = 0.0
    error_message: Optional[str] = None
    task_type: Optional[str] = None
    element_kind: Optional[str] = None
    retry_count: int = 0
    error_kind: Optional[str] = None
    recovery: bool = False
    timestamp_ms: int = field(default_factory=now_ms)
    id: str = field(default_factory=lambda: uuid.uuid4().hex)

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["selector_kind"] = self.selector_kind.value
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Experience":
        kind = data.get("selector_kind")
        try:
            selector_kind = SelectorKind(kind) if kind else classify_selector(data.get("selector", ""))
        except ValueError as e:
            raise InvalidExperience(f"Unknown selector kind: {kind!r}") from e
        return cls(
            id=data.get("id") or uuid.uuid4().hex,
            domain=data.get("domain", ""),
            selector=data.get("selector", ""),
            selector_kind=selector_kind,
            success=bool(data.get("success", False)),
            timestamp_ms=int(data.get("timestamp_ms") or now_ms()),
            execution_time_ms=float(data.get("execution_time_ms") or 0.0),
            confidence_at_attempt=float(data.get("confidence_at_attempt") or 0.0),
            error_message=data.get("error_message"),
            task_type=data.get("task_type"),
            element_kind=data.get("element_kind"),
            retry_count=int(data.get("retry_count") or 0),
            error_kind=data.get("error_kind"),
            recovery=bool(data.get("recovery", False)),
        )


@dataclass
class ExperienceFilter:
    """Query filter. Unset fields match everything."""
    domain: Optional[str] = None
    selector_kind: Optional[SelectorKind] = None
    success_only: bool = False
    task_type: Optional[str] = None
    element_kind: Optional[str] = None
    limit: Optional[int] = None

    def matches(self, exp: Experience) -> bool:
        if self.domain is not None and exp.domain != self.domain:
            return False
        if self.selector_kind is not None and exp.selector_kind != self.selector_kind:
            return False
        if self.success_only and not exp.success:
            return False
        if self.task_type is not None and exp.task_type != self.task_type:
            return False
        if self.element_kind is not None and exp.element_kind != self.element_kind:
            return False
        return True


@dataclass
class Pattern:
    """Aggregated statistics for one selector used for one task type"""
    id: str
    kind: SelectorKind
    textual_form: str
    task_type: str
    success_rate: float = 0.0
    occurrence_count: int = 0
    domains: Set[str] = field(default_factory=set)
    effectiveness: float = 0.0
    last_used_ms: int = 0


@dataclass
class SelectorStats:
    """Per-selector aggregate used to propose learned candidates"""
    selector: str
    selector_kind: SelectorKind
    successes: int = 0
    failures: int = 0
    total_time_ms: float = 0.0
    timed_attempts: int = 0
    last_seen_ms: int = 0

    @property
    def attempts(self) -> int:
        return self.successes + self.failures

    @property
    def average_time_ms(self) -> float:
        if self.timed_attempts == 0:
            return 0.0
        return self.total_time_ms / self.timed_attempts


class ExperienceStore:
    """
    Capped experience log with an incrementally maintained Pattern table.

    Writes go through record(); everything else is a read. A re-entrant
    lock serialises access so real threads cannot observe partial updates.
    """

    DEFAULT_TASK_TYPE = "general"

    def __init__(self, max_experiences: int = 10000, max_patterns: int = 5000):
        if max_experiences < 1:
            raise ValueError("max_experiences must be positive")
        self.max_experiences = max_experiences
        self.max_patterns = max_patterns
        self._experiences: deque = deque()
        self._ids: Set[str] = set()
        self._patterns: "OrderedDict[str, Pattern]" = OrderedDict()
        self._evicted = 0
        self._lock = threading.RLock()

    def __len__(self) -> int:
        with self._lock:
            return len(self._experiences)

    # ==================== Writes ====================

    def validate(self, exp: Experience):
        if not isinstance(exp, Experience):
            raise InvalidExperience(f"Expected Experience, got {type(exp).__name__}")
        if not exp.domain or not exp.domain.strip():
            raise InvalidExperience("Experience is missing a domain")
        if not exp.selector or not exp.selector.strip():
            raise InvalidExperience("Experience is missing a selector")
        if not isinstance(exp.selector_kind, SelectorKind):
            raise InvalidExperience(f"Invalid selector kind: {exp.selector_kind!r}")
        if exp.execution_time_ms is not None and exp.execution_time_ms < 0:
            raise InvalidExperience("Execution time cannot be negative")

    def record(self, exp: Experience) -> Experience:
        """
        Append an experience and update its pattern.

        Raises:
            InvalidExperience: if the experience is malformed; the store is unchanged
        """
        self.validate(exp)
        with self._lock:
            self._experiences.append(exp)
            self._ids.add(exp.id)
            while len(self._experiences) > self.max_experiences:
                self._ids.discard(self._experiences.popleft().id)
                self._evicted += 1
            self._update_pattern(exp)
        return exp

    def import_experiences(self, experiences: List[Experience]) -> List[Experience]:
        """
        Replay a batch of experiences in timestamp order.

        Invalid entries and experiences whose id is already stored are skipped.

        Returns:
            The experiences actually appended
        """
        accepted = []
        duplicates = 0
        for exp in sorted(experiences, key=lambda e: e.timestamp_ms):
            with self._lock:
                if exp.id in self._ids:
                    duplicates += 1
                    continue
                try:
                    self.record(exp)
                except InvalidExperience as e:
                    logger.warning(f"[STORE] Skipping invalid imported experience: {e}")
                    continue
            accepted.append(exp)
        if duplicates:
            logger.info(f"[STORE] Skipped {duplicates} already stored experiences")
        return accepted

    def clear(self):
        with self._lock:
            self._experiences.clear()
            self._ids.clear()
            self._patterns.clear()
            self._evicted = 0

    def _update_pattern(self, exp: Experience):
        task_type = exp.task_type or self.DEFAULT_TASK_TYPE
        key = f"{task_type}:{exp.selector}"
        pattern = self._patterns.get(key)
        if pattern is None:
            pattern = Pattern(id=key, kind=exp.selector_kind, textual_form=exp.selector, task_type=task_type)
            self._patterns[key] = pattern
        else:
            self._patterns.move_to_end(key)

        outcome = 1.0 if exp.success else 0.0
        pattern.success_rate = running_mean(pattern.success_rate, pattern.occurrence_count, outcome)
        pattern.occurrence_count += 1
        pattern.domains.add(exp.domain)
        pattern.effectiveness = effectiveness(pattern.success_rate, pattern.occurrence_count)
        pattern.last_used_ms = max(pattern.last_used_ms, exp.timestamp_ms)

        while len(self._patterns) > self.max_patterns:
            evicted_key, _ = self._patterns.popitem(last=False)
            logger.debug(f"[STORE] Pattern table full, evicted {evicted_key}")

    # ==================== Reads ====================

    def query(self, flt: Optional[ExperienceFilter] = None) -> List[Experience]:
        """Matching experiences, oldest first. A limit keeps the newest matches."""
        flt = flt or ExperienceFilter()
        with self._lock:
            matches = [e for e in self._experiences if flt.matches(e)]
        if flt.limit is not None:
            matches = matches[-flt.limit:] if flt.limit > 0 else []
        return matches

    def all(self) -> List[Experience]:
        with self._lock:
            return list(self._experiences)

    def recent(self, domain: Optional[str] = None, n: int = 100) -> List[Experience]:
        return self.query(ExperienceFilter(domain=domain, limit=n))

    def selector_stats(
        self,
        domain: str,
        task_type: Optional[str] = None,
        element_kind: Optional[str] = None
    ) -> List[SelectorStats]:
        """
        Aggregate attempts per selector on a domain.

        Experiences without task/element information still count when the
        caller asks for a specific task type, so that history recorded by
        plain callers is not lost.
        """
        stats: Dict[str, SelectorStats] = {}
        with self._lock:
            for exp in self._experiences:
                if exp.domain != domain:
                    continue
                if task_type and exp.task_type and exp.task_type != task_type:
                    continue
                if element_kind and exp.element_kind and exp.element_kind != element_kind:
                    continue
                entry = stats.get(exp.selector)
                if entry is None:
                    entry = SelectorStats(selector=exp.selector, selector_kind=exp.selector_kind)
                    stats[exp.selector] = entry
                if exp.success:
                    entry.successes += 1
                else:
                    entry.failures += 1
                if exp.execution_time_ms and exp.execution_time_ms > 0:
                    entry.total_time_ms += exp.execution_time_ms
                    entry.timed_attempts += 1
                entry.last_seen_ms = max(entry.last_seen_ms, exp.timestamp_ms)
        return list(stats.values())

    def patterns(self) -> List[Pattern]:
        with self._lock:
            return list(self._patterns.values())

    def get_pattern(self, pattern_id: str) -> Optional[Pattern]:
        with self._lock:
            return self._patterns.get(pattern_id)

    def domains(self) -> List[str]:
        with self._lock:
            return sorted({e.domain for e in self._experiences})

    def get_stats(self) -> Dict[str, Any]:
        with self._lock:
            total = len(self._experiences)
            successes = sum(1 for e in self._experiences if e.success)
            return {
                "total_experiences": total,
                "successful": successes,
                "failed": total - successes,
                "patterns": len(self._patterns),
                "domains": len({e.domain for e in self._experiences}),
                "evicted": self._evicted,
                "capacity": self.max_experiences,
            }
