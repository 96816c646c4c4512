"""
Pytest configuration and shared fixtures for Selector Brain tests.
"""

import asyncio
import pytest
from unittest.mock import Mock, AsyncMock
from typing import Any, Dict, Optional, Set

from selector_brain.config import BrainConfig, ExecutionMode, OrchestratorConfig, WeightModelConfig
from selector_brain.core.brain import SelectorBrain
from selector_brain.core.driver import AutomationDriver, BoundingBox
from selector_brain.errors import DriverExecutionError
from selector_brain.knowledge.experience_store import Experience, ExperienceStore
from selector_brain.knowledge.learning_engine import LearningEngine
from selector_brain.knowledge.persistence import InMemoryBackend, ResilientPersistence
from selector_brain.knowledge.selector_kinds import classify_selector
from selector_brain.knowledge.weight_model import AdaptiveWeightModel
from selector_brain.brain.events import EventEmitter


# ==================== Mock Page Fixture ====================

@pytest.fixture
def mock_page():
    """Create a mock Playwright page object."""
    page = AsyncMock()

    page.url = "https://shop.example/cart"
    page.evaluate = AsyncMock(return_value={})

    mock_locator = AsyncMock()
    mock_locator.wait_for = AsyncMock()
    mock_locator.is_visible = AsyncMock(return_value=True)
    mock_locator.bounding_box = AsyncMock(return_value={"x": 10, "y": 20, "width": 120, "height": 32})
    mock_locator.first = mock_locator

    page.locator = Mock(return_value=mock_locator)
    page.wait_for_load_state = AsyncMock()

    return page


# ==================== Scripted Driver ====================

class ScriptedDriver(AutomationDriver):
    """
    Driver whose page is a fixed set of selectors.

    visible: selectors that locate a visible, non-empty element
    hidden: selectors that locate an element with no size
    broken: selectors whose lookup raises DriverExecutionError
    slow: selectors whose lookup sleeps slow_delay_s before answering
    """

    def __init__(self, visible: Optional[Set[str]] = None, hidden: Optional[Set[str]] = None,
                 broken: Optional[Set[str]] = None, slow: Optional[Set[str]] = None,
                 slow_delay_s: float = 10.0):
        self.visible = set(visible or ())
        self.hidden = set(hidden or ())
        self.broken = set(broken or ())
        self.slow = set(slow or ())
        self.slow_delay_s = slow_delay_s
        self.located = []
        self.stable_waits = 0

    async def locate(self, selector: str, timeout_ms: int) -> Optional[Any]:
        self.located.append(selector)
        if selector in self.broken:
            raise DriverExecutionError(f"invalid selector: {selector}")
        if selector in self.slow:
            await asyncio.sleep(self.slow_delay_s)
        if selector in self.visible or selector in self.hidden:
            return selector
        return None

    async def bounding_box(self, handle: Any, timeout_ms: int) -> Optional[BoundingBox]:
        if handle in self.hidden:
            return BoundingBox(x=0, y=0, width=0, height=0)
        return BoundingBox(x=10, y=10, width=100, height=30)

    async def is_visible(self, handle: Any, timeout_ms: int) -> bool:
        return True

    async def evaluate_in_page(self, script: str, arg: Any = None, timeout_ms: int = 5000) -> Any:
        return None

    async def wait_for_stable(self, timeout_ms: int) -> bool:
        self.stable_waits += 1
        return True


@pytest.fixture
def scripted_driver():
    return ScriptedDriver


# ==================== Config Fixtures ====================

def fast_orchestrator_config(**overrides) -> OrchestratorConfig:
    values: Dict[str, Any] = dict(
        execution_mode=ExecutionMode.SEQUENTIAL,
        primary_timeout_ms=100,
        fallback_timeout_ms=100,
        fallback_wait_ms=0,
        base_retry_delay_ms=0,
        max_retry_delay_ms=0,
        parallel_probe_timeout_ms=100,
        probe_grace_ms=50,
        max_total_timeout_ms=5000,
    )
    values.update(overrides)
    return OrchestratorConfig(**values)


@pytest.fixture
def orchestrator_config():
    return fast_orchestrator_config


@pytest.fixture
def fast_config():
    """BrainConfig with no backoff delays and short probe timeouts"""
    return BrainConfig(orchestrator=fast_orchestrator_config())


# ==================== Component Fixtures ====================

@pytest.fixture
def store():
    return ExperienceStore(max_experiences=1000, max_patterns=500)


@pytest.fixture
def weight_model():
    return AdaptiveWeightModel(WeightModelConfig())


@pytest.fixture
def events():
    return EventEmitter()


@pytest.fixture
def backend():
    return InMemoryBackend()


@pytest.fixture
def learning(store, weight_model, backend, events):
    return LearningEngine(store, weight_model, ResilientPersistence(backend, events=events), events=events)


@pytest.fixture
def brain(fast_config, backend, events):
    """SelectorBrain over an empty page; tests attach their own driver"""
    return SelectorBrain(driver=ScriptedDriver(), config=fast_config, backend=backend, events=events)


# ==================== Sample Data ====================

def make_experience(domain: str = "shop.example", selector: str = "#checkout-btn", success: bool = True,
                    **kwargs) -> Experience:
    kwargs.setdefault("selector_kind", classify_selector(selector))
    return Experience(domain=domain, selector=selector, success=success, **kwargs)


@pytest.fixture
def experience_factory():
    return make_experience
