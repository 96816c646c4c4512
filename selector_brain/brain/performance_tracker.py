"""
Performance Tracker
===================

Aggregates the experience log into success, latency and error metrics.

compute_metrics() is a pure function of the experience sequence: calling
it twice on the same input gives identical results. The tracker itself
only keeps a bounded history of trend points.
"""

import logging
import threading
from collections import Counter, OrderedDict, deque
from dataclasses import dataclass, field, asdict
from typing import Dict, List, Any, Optional, Sequence

from ..knowledge.experience_store import Experience

logger = logging.getLogger(__name__)

UNKNOWN_ERROR = "Unknown Error"
RECENT_WINDOW = 100
DOMAIN_TREND_WINDOW = 10
TOP_ERRORS = 5


@dataclass
class DomainMetrics:
    domain: str
    total_attempts: int
    successful_attempts: int
    success_rate: float
    average_execution_time_ms: float
    common_selectors: List[str]
    top_errors: List[str]
    trending_improvement: float
    last_activity_ms: int


@dataclass
class TaskTypeMetrics:
    task_type: str
    total_attempts: int
    successful_attempts: int
    success_rate: float
    average_execution_time_ms: float
    average_retry_count: float
    top_failing_domains: List[Dict[str, Any]]
    improvement: float


@dataclass
class ErrorMetric:
    error: str
    count: int
    success_rate_when_error_occurs: float
    last_occurred_ms: int
    affected_domains: List[str]
    affected_task_types: List[str]


@dataclass
class PerformanceMetrics:
    total_experiences: int = 0
    successful_experiences: int = 0
    failed_experiences: int = 0
    overall_success_rate: float = 0.0
    average_execution_time_ms: float = 0.0
    average_retry_count: float = 0.0
    domain_metrics: Dict[str, DomainMetrics] = field(default_factory=dict)
    task_type_metrics: Dict[str, TaskTypeMetrics] = field(default_factory=dict)
    error_frequency: Dict[str, ErrorMetric] = field(default_factory=dict)
    top_errors: List[ErrorMetric] = field(default_factory=list)
    learning_velocity: float = 0.0
    recent_success_rate: float = 0.0
    last_updated_ms: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class PerformanceTrend:
    timestamp_ms: int
    success_rate: float
    average_execution_time_ms: float
    error_count: int


@dataclass
class PerformanceReport:
    summary: str
    highlights: List[str]
    concerns: List[str]
    recommendations: List[str]
    metrics: Optional[PerformanceMetrics] = None


def _average(values: Sequence[float]) -> float:
    return sum(values) / len(values) if values else 0.0


def _rate(experiences: Sequence[Experience]) -> float:
    if not experiences:
        return 0.0
    return sum(1 for e in experiences if e.success) / len(experiences)


def _relative_gain(new: float, base: float) -> float:
    """Percentage gain of new over base, 0 when there is no gain"""
    if new <= base:
        return 0.0
    if base == 0:
        return new * 100
    return (new - base) / base * 100


def _positive_times(experiences: Sequence[Experience]) -> List[float]:
    return [e.execution_time_ms for e in experiences if e.execution_time_ms and e.execution_time_ms > 0]


def _group(experiences: Sequence[Experience], key) -> "OrderedDict[str, List[Experience]]":
    groups: "OrderedDict[str, List[Experience]]" = OrderedDict()
    for exp in experiences:
        groups.setdefault(key(exp), []).append(exp)
    return groups


def _domain_metrics(domain: str, exps: List[Experience]) -> DomainMetrics:
    successful = sum(1 for e in exps if e.success)
    rate = successful / len(exps)
    selectors = Counter(e.selector for e in exps if e.success)
    errors = Counter(e.error_message for e in exps if not e.success and e.error_message)
    return DomainMetrics(
        domain=domain,
        total_attempts=len(exps),
        successful_attempts=successful,
        success_rate=rate,
        average_execution_time_ms=_average(_positive_times(exps)),
        common_selectors=[s for s, _ in selectors.most_common(5)],
        top_errors=[e for e, _ in errors.most_common(3)],
        trending_improvement=_relative_gain(_rate(exps[-DOMAIN_TREND_WINDOW:]), rate),
        last_activity_ms=exps[-1].timestamp_ms,
    )


def _task_type_metrics(task_type: str, exps: List[Experience]) -> TaskTypeMetrics:
    successful = sum(1 for e in exps if e.success)
    failures = Counter(e.domain for e in exps if not e.success)
    half = len(exps) // 2
    return TaskTypeMetrics(
        task_type=task_type,
        total_attempts=len(exps),
        successful_attempts=successful,
        success_rate=successful / len(exps),
        average_execution_time_ms=_average(_positive_times(exps)),
        average_retry_count=_average([e.retry_count for e in exps]),
        top_failing_domains=[{"domain": d, "failures": n} for d, n in failures.most_common(3)],
        improvement=_relative_gain(_rate(exps[half:]), _rate(exps[:half])),
    )


def compute_metrics(experiences: Sequence[Experience], recent_window: int = RECENT_WINDOW,
                    top_n: int = TOP_ERRORS) -> PerformanceMetrics:
    """
    Aggregate metrics over an experience sequence (oldest first).

    Returns:
        PerformanceMetrics; zeroed when the sequence is empty
    """
    experiences = list(experiences)
    if not experiences:
        return PerformanceMetrics()

    total = len(experiences)
    successful = sum(1 for e in experiences if e.success)
    overall = successful / total

    domain_metrics = {
        domain: _domain_metrics(domain, exps)
        for domain, exps in _group(experiences, lambda e: e.domain).items()
    }
    task_type_metrics = {
        task_type: _task_type_metrics(task_type, exps)
        for task_type, exps in _group(experiences, lambda e: e.task_type or "general").items()
    }

    error_frequency: Dict[str, ErrorMetric] = {}
    failed = [e for e in experiences if not e.success]
    for error, exps in _group(failed, lambda e: e.error_message or UNKNOWN_ERROR).items():
        if error == UNKNOWN_ERROR:
            associated = [e for e in experiences if not e.error_message and not e.success]
        else:
            associated = [e for e in experiences if e.error_message == error]
        error_frequency[error] = ErrorMetric(
            error=error,
            count=len(exps),
            success_rate_when_error_occurs=_rate(associated),
            last_occurred_ms=exps[-1].timestamp_ms,
            affected_domains=sorted({e.domain for e in exps}),
            affected_task_types=sorted({e.task_type or "general" for e in exps}),
        )
    top_errors = sorted(error_frequency.values(), key=lambda m: m.count, reverse=True)[:top_n]

    recent = experiences[-recent_window:]
    recent_rate = _rate(recent)
    velocity = 0.0
    if len(recent) == recent_window and overall > 0:
        velocity = (recent_rate - overall) / overall * 100

    return PerformanceMetrics(
        total_experiences=total,
        successful_experiences=successful,
        failed_experiences=total - successful,
        overall_success_rate=overall,
        average_execution_time_ms=_average(_positive_times(experiences)),
        average_retry_count=_average([e.retry_count for e in experiences]),
        domain_metrics=domain_metrics,
        task_type_metrics=task_type_metrics,
        error_frequency=error_frequency,
        top_errors=top_errors,
        learning_velocity=velocity,
        recent_success_rate=recent_rate,
        last_updated_ms=max(e.timestamp_ms for e in experiences),
    )


class PerformanceTracker:
    """
    Computes metrics on demand and keeps a bounded trend history.

    Responsibilities:
    - Metrics over any experience sequence
    - Trend points for monitoring dashboards
    - Human-readable reports
    - Timeout suggestions for self-tuning
    """

    def __init__(self, max_trends: int = 1000, recent_window: int = RECENT_WINDOW):
        self.trends: deque = deque(maxlen=max_trends)
        self.recent_window = recent_window
        self.last_metrics: Optional[PerformanceMetrics] = None
        self._lock = threading.Lock()

    def compute_metrics(self, experiences: Sequence[Experience]) -> PerformanceMetrics:
        return compute_metrics(experiences, self.recent_window)

    def track(self, experiences: Sequence[Experience]) -> PerformanceMetrics:
        """Compute metrics and append a trend point"""
        metrics = self.compute_metrics(experiences)
        trend = PerformanceTrend(
            timestamp_ms=metrics.last_updated_ms,
            success_rate=metrics.overall_success_rate,
            average_execution_time_ms=metrics.average_execution_time_ms,
            error_count=sum(e.count for e in metrics.top_errors),
        )
        with self._lock:
            self.trends.append(trend)
            self.last_metrics = metrics
        return metrics

    def get_trends(self, limit: int = 100) -> List[PerformanceTrend]:
        with self._lock:
            trends = list(self.trends)
        return trends[-limit:] if limit > 0 else []

    def generate_report(self, metrics: Optional[PerformanceMetrics] = None) -> PerformanceReport:
        metrics = metrics or self.last_metrics
        if metrics is None or metrics.total_experiences == 0:
            return PerformanceReport(
                summary="No experiences recorded yet",
                highlights=[],
                concerns=[],
                recommendations=["Run some resolutions to start collecting metrics"],
                metrics=metrics,
            )

        highlights = []
        concerns = []
        recommendations = []
        rate = metrics.overall_success_rate

        if rate >= 0.9:
            highlights.append(f"Excellent success rate: {rate * 100:.1f}%")
        elif rate >= 0.7:
            highlights.append(f"Good success rate: {rate * 100:.1f}%")
        else:
            concerns.append(f"Low success rate: {rate * 100:.1f}%")
            recommendations.append("Review failed resolutions and improve selector strategies")

        if metrics.learning_velocity > 10:
            highlights.append(f"Strong learning velocity: +{metrics.learning_velocity:.1f}%")
        elif metrics.learning_velocity < -5:
            concerns.append(f"Declining performance: {metrics.learning_velocity:.1f}%")
            recommendations.append("Performance is declining; reset weights for the worst domains")

        if metrics.top_errors:
            top = metrics.top_errors[0]
            concerns.append(f"Most common error: \"{top.error}\" ({top.count} occurrences)")
            recommendations.append(f"Focus on resolving: {top.error}")

        if metrics.domain_metrics:
            ranked = sorted(metrics.domain_metrics.values(), key=lambda d: d.success_rate, reverse=True)
            best, worst = ranked[0], ranked[-1]
            highlights.append(f"Best performing domain: {best.domain} ({best.success_rate * 100:.1f}%)")
            if worst.success_rate < 0.5:
                concerns.append(f"Struggling with: {worst.domain} ({worst.success_rate * 100:.1f}%)")
                recommendations.append(f"Improve selectors for: {worst.domain}")

        avg_seconds = metrics.average_execution_time_ms / 1000
        if avg_seconds > 30:
            concerns.append(f"Slow execution: {avg_seconds:.1f}s average")
            recommendations.append("Lower probe timeouts or prefer parallel probing")
        elif 0 < avg_seconds < 5:
            highlights.append(f"Fast execution: {avg_seconds:.1f}s average")

        summary = (f"{metrics.total_experiences} experiences, {rate * 100:.1f}% success, "
                   f"{len(metrics.domain_metrics)} domain(s)")
        return PerformanceReport(
            summary=summary,
            highlights=highlights,
            concerns=concerns,
            recommendations=recommendations,
            metrics=metrics,
        )

    def recommended_timeout_ms(self, metrics: PerformanceMetrics, domain: str,
                               default_ms: int = 5000, floor_ms: int = 1000, ceiling_ms: int = 30000) -> int:
        """Suggest a probe timeout from a domain's observed latency (3x the mean)"""
        domain_metrics = metrics.domain_metrics.get(domain)
        if domain_metrics is None or domain_metrics.average_execution_time_ms <= 0:
            return default_ms
        suggested = int(domain_metrics.average_execution_time_ms * 3)
        return max(floor_ms, min(ceiling_ms, suggested))
