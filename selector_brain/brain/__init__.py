"""
Brain - monitoring side of the selector brain.

- Events: structured notifications emitted while resolving and learning
- Performance Tracker: aggregate metrics, trends and reports
"""

from .events import EventEmitter, EventType, BrainEvent
from .performance_tracker import (
    PerformanceTracker, PerformanceMetrics, DomainMetrics, TaskTypeMetrics,
    ErrorMetric, PerformanceTrend, PerformanceReport, compute_metrics
)

__all__ = [
    "EventEmitter",
    "EventType",
    "BrainEvent",
    "PerformanceTracker",
    "PerformanceMetrics",
    "DomainMetrics",
    "TaskTypeMetrics",
    "ErrorMetric",
    "PerformanceTrend",
    "PerformanceReport",
    "compute_metrics",
]
