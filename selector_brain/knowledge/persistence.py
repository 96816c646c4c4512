"""
Persistence Backends

Storage for experiences and learned weights. The brain never depends on
a backend being available: ResilientPersistence turns every backend
failure into a logged degradation and the brain keeps working in memory.

Layout of JsonFileBackend under data_dir:
    experiences/<domain>.jsonl   one experience per line, append only
    weights/<domain>.json        latest DomainWeights snapshot
"""

import asyncio
import json
import logging
import re
import threading
from pathlib import Path
from typing import Dict, List, Optional

from ..brain.events import EventType
from ..errors import PersistenceDegraded, InvalidExperience
from .experience_store import Experience, ExperienceFilter
from .weight_model import DomainWeights

logger = logging.getLogger(__name__)


class PersistenceBackend:
    """Storage contract. Subclasses implement all four operations."""

    async def load_experiences(self, flt: Optional[ExperienceFilter] = None,
                               limit: Optional[int] = None) -> List[Experience]:
        raise NotImplementedError

    async def save_experience(self, exp: Experience):
        raise NotImplementedError

    async def load_weights(self, domain: str) -> Optional[DomainWeights]:
        raise NotImplementedError

    async def save_weights(self, weights: DomainWeights):
        raise NotImplementedError


def _apply_filter(experiences: List[Experience], flt: Optional[ExperienceFilter],
                  limit: Optional[int]) -> List[Experience]:
    flt = flt or ExperienceFilter()
    matches = sorted((e for e in experiences if flt.matches(e)), key=lambda e: e.timestamp_ms)
    cap = limit if limit is not None else flt.limit
    if cap is not None:
        matches = matches[-cap:] if cap > 0 else []
    return matches


class InMemoryBackend(PersistenceBackend):
    """Process-local backend for tests and demo mode"""

    def __init__(self):
        self.experiences: List[Experience] = []
        self.weights: Dict[str, DomainWeights] = {}

    async def load_experiences(self, flt=None, limit=None) -> List[Experience]:
        return _apply_filter(self.experiences, flt, limit)

    async def save_experience(self, exp: Experience):
        self.experiences.append(exp)

    async def load_weights(self, domain: str) -> Optional[DomainWeights]:
        return self.weights.get(domain)

    async def save_weights(self, weights: DomainWeights):
        self.weights[weights.domain] = weights


class JsonFileBackend(PersistenceBackend):
    """JSON files under a data directory. File IO runs in a worker thread."""

    def __init__(self, data_dir: str = "data/selector_brain"):
        self.data_dir = Path(data_dir)
        self.experiences_dir = self.data_dir / "experiences"
        self.weights_dir = self.data_dir / "weights"
        self.experiences_dir.mkdir(parents=True, exist_ok=True)
        self.weights_dir.mkdir(parents=True, exist_ok=True)
        self._lock = threading.Lock()

    @staticmethod
    def _safe_name(domain: str) -> str:
        return re.sub(r"[^\w.-]", "_", domain) or "_"

    def _read_experiences(self, flt: Optional[ExperienceFilter], limit: Optional[int]) -> List[Experience]:
        if flt is not None and flt.domain is not None:
            files = [self.experiences_dir / f"{self._safe_name(flt.domain)}.jsonl"]
        else:
            files = sorted(self.experiences_dir.glob("*.jsonl"))

        experiences = []
        for path in files:
            if not path.exists():
                continue
            for line_no, line in enumerate(path.read_text(encoding="utf-8").splitlines(), 1):
                if not line.strip():
                    continue
                try:
                    experiences.append(Experience.from_dict(json.loads(line)))
                except (json.JSONDecodeError, InvalidExperience, KeyError, TypeError, ValueError) as e:
                    logger.warning(f"[PERSISTENCE] Skipping corrupt line {path.name}:{line_no}: {e}")
        return _apply_filter(experiences, flt, limit)

    def _append_experience(self, exp: Experience):
        path = self.experiences_dir / f"{self._safe_name(exp.domain)}.jsonl"
        with self._lock:
            with open(path, "a", encoding="utf-8") as f:
                f.write(json.dumps(exp.to_dict()) + "\n")

    def _read_weights(self, domain: str) -> Optional[DomainWeights]:
        path = self.weights_dir / f"{self._safe_name(domain)}.json"
        if not path.exists():
            return None
        return DomainWeights.from_dict(json.loads(path.read_text(encoding="utf-8")))

    def _write_weights(self, weights: DomainWeights):
        path = self.weights_dir / f"{self._safe_name(weights.domain)}.json"
        with self._lock:
            # Write atomically
            temp_file = path.with_suffix(".tmp")
            temp_file.write_text(json.dumps(weights.to_dict(), indent=2), encoding="utf-8")
            temp_file.replace(path)

    async def load_experiences(self, flt=None, limit=None) -> List[Experience]:
        return await asyncio.to_thread(self._read_experiences, flt, limit)

    async def save_experience(self, exp: Experience):
        await asyncio.to_thread(self._append_experience, exp)

    async def load_weights(self, domain: str) -> Optional[DomainWeights]:
        return await asyncio.to_thread(self._read_weights, domain)

    async def save_weights(self, weights: DomainWeights):
        await asyncio.to_thread(self._write_weights, weights)


class ResilientPersistence:
    """
    Wraps a backend so that failures never propagate.

    A failed operation logs a PersistenceDegraded warning, emits an event,
    marks the wrapper degraded and returns an empty result. A later
    successful operation clears the flag.
    """

    def __init__(self, backend: Optional[PersistenceBackend] = None, events=None):
        self.backend = backend
        self.events = events
        self.degraded = False
        self.last_error: Optional[PersistenceDegraded] = None

    @property
    def enabled(self) -> bool:
        return self.backend is not None

    def _degrade(self, operation: str, cause: Exception):
        error = PersistenceDegraded(operation, cause)
        self.last_error = error
        if not self.degraded:
            logger.warning(f"[PERSISTENCE] Degraded to in-memory mode: {error}")
        else:
            logger.debug(f"[PERSISTENCE] Still degraded: {error}")
        self.degraded = True
        if self.events is not None:
            self.events.emit(EventType.PERSISTENCE_DEGRADED, data={
                "operation": operation,
                "error": str(cause),
            })

    def _recovered(self):
        if self.degraded:
            logger.info("[PERSISTENCE] Backend available again")
        self.degraded = False

    async def load_experiences(self, flt=None, limit=None) -> List[Experience]:
        if self.backend is None:
            return []
        try:
            result = await self.backend.load_experiences(flt, limit)
        except Exception as e:
            self._degrade("load_experiences", e)
            return []
        self._recovered()
        return result

    async def save_experience(self, exp: Experience) -> bool:
        if self.backend is None:
            return False
        try:
            await self.backend.save_experience(exp)
        except Exception as e:
            self._degrade("save_experience", e)
            return False
        self._recovered()
        return True

    async def load_weights(self, domain: str) -> Optional[DomainWeights]:
        if self.backend is None:
            return None
        try:
            result = await self.backend.load_weights(domain)
        except Exception as e:
            self._degrade("load_weights", e)
            return None
        self._recovered()
        return result

    async def save_weights(self, weights: DomainWeights) -> bool:
        if self.backend is None:
            return False
        try:
            await self.backend.save_weights(weights)
        except Exception as e:
            self._degrade("save_weights", e)
            return False
        self._recovered()
        return True
