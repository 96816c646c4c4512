"""
Unit tests for PlaywrightDriver.

Tests the driver against a mocked Playwright page.
"""

import asyncio

import pytest
from unittest.mock import AsyncMock

from playwright.async_api import Error as PlaywrightError
from playwright.async_api import TimeoutError as PlaywrightTimeoutError

from selector_brain.core.driver import AutomationDriver, BoundingBox, PlaywrightDriver
from selector_brain.errors import DriverExecutionError


class TestLocate:
    """Test element lookup."""

    @pytest.mark.asyncio
    async def test_locate_css(self, mock_page):
        driver = PlaywrightDriver(mock_page)
        handle = await driver.locate("#checkout", 500)

        assert handle is not None
        mock_page.locator.assert_called_with("#checkout")
        handle.wait_for.assert_awaited_with(state="attached", timeout=500)

    @pytest.mark.asyncio
    async def test_locate_xpath(self, mock_page):
        """Test that bare xpath selectors get the xpath engine prefix."""
        driver = PlaywrightDriver(mock_page)
        await driver.locate("//button[contains(@id, 'pay')]", 500)

        mock_page.locator.assert_called_with("xpath=//button[contains(@id, 'pay')]")

    @pytest.mark.asyncio
    async def test_locate_timeout_returns_none(self, mock_page):
        """Test that a lookup timeout means not found."""
        mock_page.locator.return_value.wait_for.side_effect = PlaywrightTimeoutError("Timeout 500ms exceeded")
        driver = PlaywrightDriver(mock_page)

        assert await driver.locate("#missing", 500) is None

    @pytest.mark.asyncio
    async def test_locate_error_raises(self, mock_page):
        mock_page.locator.return_value.wait_for.side_effect = PlaywrightError("Unexpected token")
        driver = PlaywrightDriver(mock_page)

        with pytest.raises(DriverExecutionError):
            await driver.locate("#bad[", 500)


class TestElementState:
    """Test visibility and geometry."""

    @pytest.mark.asyncio
    async def test_bounding_box(self, mock_page):
        driver = PlaywrightDriver(mock_page)
        handle = await driver.locate("#checkout", 500)
        box = await driver.bounding_box(handle, 500)

        assert box == BoundingBox(x=10, y=20, width=120, height=32)
        assert not box.is_empty

    @pytest.mark.asyncio
    async def test_missing_bounding_box(self, mock_page):
        mock_page.locator.return_value.bounding_box = AsyncMock(return_value=None)
        driver = PlaywrightDriver(mock_page)
        handle = await driver.locate("#checkout", 500)

        assert await driver.bounding_box(handle, 500) is None

    @pytest.mark.asyncio
    async def test_is_visible(self, mock_page):
        driver = PlaywrightDriver(mock_page)
        handle = await driver.locate("#checkout", 500)

        assert await driver.is_visible(handle, 500) is True

    @pytest.mark.asyncio
    async def test_slow_visibility_check_is_bounded(self, mock_page):
        """Test that a visibility check that never answers counts as not visible."""
        async def hang():
            await asyncio.sleep(5)
            return True

        mock_page.locator.return_value.is_visible = AsyncMock(side_effect=hang)
        driver = PlaywrightDriver(mock_page)
        handle = await driver.locate("#checkout", 500)

        assert await driver.is_visible(handle, 20) is False

    def test_empty_box(self):
        assert BoundingBox(x=0, y=0, width=0, height=10).is_empty


class TestPage:
    """Test page-level operations."""

    @pytest.mark.asyncio
    async def test_evaluate(self, mock_page):
        mock_page.evaluate = AsyncMock(return_value=3)
        driver = PlaywrightDriver(mock_page)

        assert await driver.evaluate_in_page("() => 1 + 2") == 3

    @pytest.mark.asyncio
    async def test_slow_evaluate_is_bounded(self, mock_page):
        """Test that a script running past its timeout raises a driver error."""
        async def hang(script, arg):
            await asyncio.sleep(5)

        mock_page.evaluate = AsyncMock(side_effect=hang)
        driver = PlaywrightDriver(mock_page)

        with pytest.raises(DriverExecutionError, match="exceeded 20ms"):
            await driver.evaluate_in_page("() => new Promise(() => {})", timeout_ms=20)

    @pytest.mark.asyncio
    async def test_wait_for_stable(self, mock_page):
        driver = PlaywrightDriver(mock_page)

        assert await driver.wait_for_stable(1000) is True
        mock_page.wait_for_load_state.assert_awaited_with("domcontentloaded", timeout=1000)

    @pytest.mark.asyncio
    async def test_wait_for_stable_timeout(self, mock_page):
        mock_page.wait_for_load_state.side_effect = PlaywrightTimeoutError("Timeout 1000ms exceeded")
        driver = PlaywrightDriver(mock_page)

        assert await driver.wait_for_stable(1000) is False

    @pytest.mark.asyncio
    async def test_base_driver_is_abstract(self):
        with pytest.raises(NotImplementedError):
            await AutomationDriver().locate("#checkout", 100)
