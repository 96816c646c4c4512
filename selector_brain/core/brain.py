"""
Selector Brain

Service object that wires the store, weight model, selector, recovery,
orchestrator and tracker together. Construct one per process and pass
it to whatever needs to resolve elements; nothing here is a global.
"""

import logging
import time
from typing import Dict, List, Any, Optional

from ..brain.events import EventEmitter
from ..brain.performance_tracker import PerformanceMetrics, PerformanceReport, PerformanceTracker
from ..config import BrainConfig
from ..errors import ErrorKind
from ..knowledge.experience_store import ExperienceFilter, ExperienceStore
from ..knowledge.learning_engine import LearningEngine
from ..knowledge.pattern_clusterer import ClusteringResult, PatternCluster, PatternClusterer
from ..knowledge.persistence import JsonFileBackend, PersistenceBackend, ResilientPersistence
from ..knowledge.weight_model import AdaptiveWeightModel
from ..training.import_export import export_state, import_state
from .driver import AutomationDriver
from .orchestrator import ExecutionResult, Orchestrator, OrchestratorState, ResolutionRequest
from .recovery_handler import ErrorRecovery
from .strategy_selector import SelectionResult, StrategySelector
from .tasks import Task, to_target

logger = logging.getLogger(__name__)


class SelectorBrain:
    """
    Adaptive element resolution for one process.

    Usage:
        brain = SelectorBrain(driver=PlaywrightDriver(page), config=BrainConfig.from_env())
        await brain.initialize()
        result = await brain.resolve("shop.example", "checkout", "button", "Checkout")
    """

    def __init__(
        self,
        driver: Optional[AutomationDriver] = None,
        config: Optional[BrainConfig] = None,
        backend: Optional[PersistenceBackend] = None,
        events: Optional[EventEmitter] = None
    ):
        self.config = config or BrainConfig()
        self.events = events or EventEmitter()

        if backend is None and self.config.data_dir:
            backend = JsonFileBackend(self.config.data_dir)

        self.store = ExperienceStore(
            max_experiences=self.config.store.max_experiences,
            max_patterns=self.config.store.max_patterns,
        )
        self.weight_model = AdaptiveWeightModel(self.config.weights, events=self.events)
        self.persistence = ResilientPersistence(backend, events=self.events)
        self.learning = LearningEngine(self.store, self.weight_model, self.persistence, events=self.events)
        self.selector = StrategySelector(self.store, self.weight_model, self.config.selector)
        self.recovery = ErrorRecovery()
        self.clusterer = PatternClusterer()
        self.tracker = PerformanceTracker(max_trends=self.config.trend_history_size)

        self.orchestrator: Optional[Orchestrator] = None
        if driver is not None:
            self.set_driver(driver)

        self._loaded_domains = set()
        self._initialized = False

    def set_driver(self, driver: AutomationDriver):
        """Attach (or replace) the automation driver, e.g. after opening a new page"""
        self.orchestrator = Orchestrator(
            driver=driver,
            selector=self.selector,
            recovery=self.recovery,
            learning=self.learning,
            config=self.config.orchestrator,
            events=self.events,
        )

    async def initialize(self, limit: Optional[int] = None) -> int:
        """
        Load persisted experiences into memory.

        Returns:
            Number of experiences loaded
        """
        cap = limit or self.config.store.max_experiences
        experiences = await self.persistence.load_experiences(None, cap)
        loaded = self.learning.import_history(experiences) if experiences else 0
        self._initialized = True
        logger.info(f"[BRAIN] Initialized with {loaded} experiences"
                    f"{' (persistence degraded)' if self.persistence.degraded else ''}")
        return loaded

    async def _ensure_domain(self, domain: str):
        """Load persisted weights the first time a domain is seen"""
        if domain in self._loaded_domains:
            return
        self._loaded_domains.add(domain)
        weights = await self.persistence.load_weights(domain)
        if weights is not None:
            self.weight_model.restore(weights)
            logger.debug(f"[BRAIN] Restored weights for {domain}")

    # ==================== Resolution ====================

    def select_candidates(self, domain: str, task_type: str, element_kind: str,
                          element_text: Optional[str] = None) -> SelectionResult:
        return self.selector.select_candidates(domain, task_type, element_kind, element_text)

    async def resolve(
        self,
        domain: str,
        task_type: str,
        element_kind: str,
        element_text: Optional[str] = None
    ) -> ExecutionResult:
        """
        Resolve an element description to a working selector.

        Never raises: failures come back as ExecutionResult(success=False)
        with learnings explaining what to do next.
        """
        started = time.monotonic()
        if not domain or not task_type:
            return self._failed_result(started, ErrorKind.UNEXPECTED_ERROR,
                                       ["A domain and a task type are required to resolve an element"])
        if self.orchestrator is None:
            return self._failed_result(started, ErrorKind.UNEXPECTED_ERROR,
                                       ["No automation driver attached; call set_driver() first"])
        try:
            await self._ensure_domain(domain)
            request = ResolutionRequest(
                domain=domain,
                task_type=task_type,
                element_kind=element_kind,
                element_text=element_text,
            )
            return await self.orchestrator.execute(request)
        except Exception as e:
            logger.exception(f"[BRAIN] Unexpected error resolving {task_type}/{element_kind} on {domain}")
            return self._failed_result(started, ErrorKind.UNEXPECTED_ERROR, [
                f"Resolution stopped by an unexpected error: {type(e).__name__}: {e}",
                "Check the driver connection and page state, then retry",
            ])

    async def resolve_task(self, domain: str, task: Task) -> ExecutionResult:
        try:
            target = to_target(task)
        except TypeError as e:
            return self._failed_result(time.monotonic(), ErrorKind.UNEXPECTED_ERROR, [str(e)])
        return await self.resolve(domain, target.task_type, target.element_kind, target.element_text)

    @staticmethod
    def _failed_result(started: float, error_kind: ErrorKind, learnings: List[str]) -> ExecutionResult:
        return ExecutionResult(
            success=False,
            selector_used=None,
            execution_time_ms=(time.monotonic() - started) * 1000,
            attempts_used=0,
            recovery_used=False,
            error_kind=error_kind,
            learnings=learnings,
            state=OrchestratorState.EXHAUSTED,
        )

    # ==================== Monitoring ====================

    def get_performance_report(self, domain: Optional[str] = None) -> PerformanceMetrics:
        return self.tracker.track(self.store.query(ExperienceFilter(domain=domain)))

    def generate_report(self, domain: Optional[str] = None) -> PerformanceReport:
        return self.tracker.generate_report(self.get_performance_report(domain))

    def get_learning_summary(self, domain: Optional[str] = None) -> Dict[str, Any]:
        return self.learning.get_learning_summary(domain)

    def analyze_failures(self, domain: str) -> Dict[str, Any]:
        return self.learning.analyze_failures(domain)

    # ==================== Patterns ====================

    def cluster_patterns(self, min_similarity: float = PatternClusterer.DEFAULT_MIN_SIMILARITY) -> ClusteringResult:
        return self.clusterer.cluster(self.store.patterns(), min_similarity)

    def recommended_clusters(self, domain: str, limit: int = 5) -> List[PatternCluster]:
        return self.clusterer.recommended_clusters(self.store.patterns(), domain, limit)

    # ==================== State ====================

    def export_learned_state(self, domain: Optional[str] = None) -> Dict[str, Any]:
        return export_state(self.store, self.weight_model, domain)

    def import_learned_state(self, blob: Dict[str, Any], replace: bool = False) -> Dict[str, int]:
        stats = import_state(blob, self.learning, replace=replace)
        self._loaded_domains.update(self.weight_model.domains())
        return stats

    def reset_domain(self, domain: str):
        self.weight_model.reset_domain(domain)
        # Keep persisted weights from being reloaded over the reset
        self._loaded_domains.add(domain)

    @property
    def persistence_degraded(self) -> bool:
        return self.persistence.degraded
