"""
Automation Driver

The narrow set of page operations the orchestrator needs. Any backend
(Playwright page, another headless engine, a scripted mock in tests) can
implement it.

All durations are milliseconds.
"""

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Optional

from playwright.async_api import Error as PlaywrightError
from playwright.async_api import TimeoutError as PlaywrightTimeoutError

from ..errors import DriverExecutionError

logger = logging.getLogger(__name__)


@dataclass
class BoundingBox:
    x: float
    y: float
    width: float
    height: float

    @property
    def is_empty(self) -> bool:
        return self.width <= 0 or self.height <= 0


class AutomationDriver:
    """
    Capability interface used by the orchestrator.

    locate() returns an opaque handle or None when nothing matches within
    the timeout. Errors other than "not found" are raised as
    DriverExecutionError.
    """

    async def locate(self, selector: str, timeout_ms: int) -> Optional[Any]:
        raise NotImplementedError

    async def bounding_box(self, handle: Any, timeout_ms: int) -> Optional[BoundingBox]:
        raise NotImplementedError

    async def is_visible(self, handle: Any, timeout_ms: int) -> bool:
        raise NotImplementedError

    async def evaluate_in_page(self, script: str, arg: Any = None, timeout_ms: int = 5000) -> Any:
        raise NotImplementedError

    async def wait_for_stable(self, timeout_ms: int) -> bool:
        raise NotImplementedError


class PlaywrightDriver(AutomationDriver):
    """AutomationDriver backed by a Playwright async Page"""

    def __init__(self, page):
        self.page = page

    def _get_locator(self, selector: str):
        """Playwright locator for CSS, xpath= / //, and text= selectors"""
        if selector.startswith("//") or selector.startswith("(//"):
            return self.page.locator(f"xpath={selector}")
        return self.page.locator(selector)

    async def locate(self, selector: str, timeout_ms: int) -> Optional[Any]:
        locator = self._get_locator(selector).first
        try:
            await locator.wait_for(state="attached", timeout=timeout_ms)
        except PlaywrightTimeoutError:
            return None
        except PlaywrightError as e:
            raise DriverExecutionError(f"locate({selector!r}) failed: {e}") from e
        return locator

    async def bounding_box(self, handle: Any, timeout_ms: int) -> Optional[BoundingBox]:
        try:
            box = await handle.bounding_box(timeout=timeout_ms)
        except PlaywrightTimeoutError:
            return None
        except PlaywrightError as e:
            raise DriverExecutionError(f"bounding_box failed: {e}") from e
        if not box:
            return None
        return BoundingBox(x=box["x"], y=box["y"], width=box["width"], height=box["height"])

    async def is_visible(self, handle: Any, timeout_ms: int) -> bool:
        # Locator.is_visible does not wait, so the bound is applied here
        try:
            return bool(await asyncio.wait_for(handle.is_visible(), timeout=timeout_ms / 1000))
        except asyncio.TimeoutError:
            logger.debug(f"[DRIVER] Visibility check exceeded {timeout_ms}ms")
            return False
        except PlaywrightError as e:
            raise DriverExecutionError(f"is_visible failed: {e}") from e

    async def evaluate_in_page(self, script: str, arg: Any = None, timeout_ms: int = 5000) -> Any:
        try:
            return await asyncio.wait_for(self.page.evaluate(script, arg), timeout=timeout_ms / 1000)
        except asyncio.TimeoutError as e:
            raise DriverExecutionError(f"evaluate exceeded {timeout_ms}ms") from e
        except PlaywrightError as e:
            raise DriverExecutionError(f"evaluate failed: {e}") from e

    async def wait_for_stable(self, timeout_ms: int) -> bool:
        try:
            await self.page.wait_for_load_state("domcontentloaded", timeout=timeout_ms)
            return True
        except PlaywrightTimeoutError:
            logger.debug(f"[DRIVER] Page not stable after {timeout_ms}ms")
            return False
