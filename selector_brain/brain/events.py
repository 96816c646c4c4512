"""
Brain Events
============

Structured events emitted while the brain resolves, learns and persists.
Subscribers are plain callables; a failing subscriber is logged and never
interrupts the emitter.
"""

import logging
import threading
import time
from collections import deque
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Dict, List, Optional

logger = logging.getLogger(__name__)


class EventType(Enum):
    """Types of brain events"""
    EXPERIENCE_RECORDED = "experience_recorded"
    EXPERIENCE_REJECTED = "experience_rejected"
    WEIGHTS_RECALIBRATED = "weights_recalibrated"
    PROBE_FAILED = "probe_failed"
    RECOVERY_STARTED = "recovery_started"
    RECOVERY_SUCCEEDED = "recovery_succeeded"
    RESOLUTION_COMPLETED = "resolution_completed"
    PERSISTENCE_DEGRADED = "persistence_degraded"


@dataclass
class BrainEvent:
    event_type: EventType
    domain: Optional[str] = None
    timestamp: float = field(default_factory=time.time)
    data: Dict[str, Any] = field(default_factory=dict)


Subscriber = Callable[[BrainEvent], None]


class EventEmitter:
    """Fan-out of brain events with a bounded history"""

    def __init__(self, history_size: int = 1000):
        self.history: deque = deque(maxlen=history_size)
        self._subscribers: Dict[Optional[EventType], List[Subscriber]] = {}
        self._lock = threading.Lock()

    def subscribe(self, callback: Subscriber, event_type: Optional[EventType] = None):
        """Register a callback for one event type, or for all events when None"""
        with self._lock:
            self._subscribers.setdefault(event_type, []).append(callback)

    def unsubscribe(self, callback: Subscriber, event_type: Optional[EventType] = None):
        with self._lock:
            callbacks = self._subscribers.get(event_type, [])
            if callback in callbacks:
                callbacks.remove(callback)

    def emit(self, event_type: EventType, domain: Optional[str] = None,
             data: Optional[Dict[str, Any]] = None) -> BrainEvent:
        event = BrainEvent(event_type=event_type, domain=domain, data=data or {})
        with self._lock:
            self.history.append(event)
            callbacks = list(self._subscribers.get(event_type, [])) + list(self._subscribers.get(None, []))

        logger.debug(f"[EVENTS] {event_type.value} domain={domain}")
        for callback in callbacks:
            try:
                callback(event)
            except Exception as e:
                logger.warning(f"[EVENTS] Subscriber failed on {event_type.value}: {e}")
        return event

    def recent(self, event_type: Optional[EventType] = None, limit: int = 50) -> List[BrainEvent]:
        with self._lock:
            events = [e for e in self.history if event_type is None or e.event_type == event_type]
        return events[-limit:]
