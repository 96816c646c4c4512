"""
Unit tests for task variants.
"""

import pytest

from selector_brain.core import tasks
from selector_brain.core.tasks import CustomTask, LoginTask, ScrapeTask, to_target


class TestToTarget:
    """Test mapping task variants to resolution targets."""

    def test_login_submit(self):
        target = to_target(LoginTask())

        assert target.task_type == "login_submit"
        assert target.element_kind == "button"
        assert target.element_text == "login"

    def test_login_username(self):
        target = to_target(LoginTask(field="username"))

        assert target.element_kind == "input"
        assert target.element_text == "username"

    def test_login_label_overrides(self):
        assert to_target(LoginTask(field="submit", label="Sign in")).element_text == "Sign in"

    def test_scrape(self):
        target = to_target(ScrapeTask(target="price"))

        assert target.task_type == "scrape_price"
        assert target.element_kind == "text"
        assert target.element_text == "price"

    def test_test_step(self):
        target = to_target(tasks.TestTask(action="click", element_kind="link", label="Docs"))

        assert target.task_type == "click"
        assert target.element_kind == "link"
        assert target.element_text == "Docs"

    def test_custom(self):
        target = to_target(CustomTask(task_type="checkout", element_kind="button", element_text="Checkout"))
        assert (target.task_type, target.element_kind, target.element_text) == ("checkout", "button", "Checkout")

    def test_unsupported(self):
        with pytest.raises(TypeError):
            to_target({"task_type": "checkout"})
