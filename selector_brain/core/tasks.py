"""
Task Variants

Typed descriptions of what the caller wants to resolve. Each variant
carries only the fields its task needs; to_target() turns any of them
into the (task_type, element_kind, element_text) triple the selector
works with.
"""

from dataclasses import dataclass, field
from typing import Dict, Optional, Union


@dataclass
class LoginTask:
    """Resolve one field of a login form"""
    field: str = "submit"  # username, password, submit
    label: Optional[str] = None


@dataclass
class ScrapeTask:
    target: str
    element_kind: str = "text"
    label: Optional[str] = None


@dataclass
class TestTask:
    """Resolve the element a test step acts on"""
    action: str  # click, fill, assert, ...
    element_kind: str
    label: Optional[str] = None

    __test__ = False  # keep pytest from collecting this class


@dataclass
class CustomTask:
    task_type: str
    element_kind: str
    element_text: Optional[str] = None
    metadata: Dict[str, str] = field(default_factory=dict)


Task = Union[LoginTask, ScrapeTask, TestTask, CustomTask]


@dataclass
class ResolutionTarget:
    task_type: str
    element_kind: str
    element_text: Optional[str] = None


_LOGIN_ELEMENTS = {
    "username": ("input", "username"),
    "email": ("input", "email"),
    "password": ("input", "password"),
    "submit": ("button", "login"),
}


def to_target(task: Task) -> ResolutionTarget:
    """
    Map a task variant to a resolution target.

    Raises:
        TypeError: for anything that is not one of the task variants
    """
    if isinstance(task, LoginTask):
        element_kind, default_text = _LOGIN_ELEMENTS.get(task.field, ("input", task.field))
        return ResolutionTarget(
            task_type=f"login_{task.field}",
            element_kind=element_kind,
            element_text=task.label or default_text,
        )
    elif isinstance(task, ScrapeTask):
        return ResolutionTarget(
            task_type=f"scrape_{task.target}",
            element_kind=task.element_kind,
            element_text=task.label or task.target,
        )
    elif isinstance(task, TestTask):
        return ResolutionTarget(
            task_type=task.action,
            element_kind=task.element_kind,
            element_text=task.label,
        )
    elif isinstance(task, CustomTask):
        return ResolutionTarget(
            task_type=task.task_type,
            element_kind=task.element_kind,
            element_text=task.element_text,
        )
    raise TypeError(f"Unsupported task type: {type(task).__name__}")
