"""
Selector Kinds

Categories of selectors, their baseline weights, and a classifier that
derives the kind from the selector text.
"""

import re
from enum import Enum
from typing import Dict


class SelectorKind(Enum):
    ID = "id"
    CLASS = "class"
    DATA_ATTRIBUTE = "data-attribute"
    ARIA_LABEL = "aria-label"
    ATTRIBUTE = "attribute"
    XPATH = "xpath"
    TEXT = "text"
    HYBRID = "hybrid"


# Starting weight per kind for a domain with no history
BASELINE_WEIGHTS: Dict[SelectorKind, float] = {
    SelectorKind.ID: 0.95,
    SelectorKind.DATA_ATTRIBUTE: 0.90,
    SelectorKind.ARIA_LABEL: 0.85,
    SelectorKind.ATTRIBUTE: 0.80,
    SelectorKind.CLASS: 0.75,
    SelectorKind.HYBRID: 0.70,
    SelectorKind.XPATH: 0.65,
    SelectorKind.TEXT: 0.50,
}

MIN_WEIGHT = 0.1
MAX_WEIGHT = 1.0

_SIMPLE_ID = re.compile(r"^[a-zA-Z]*#[\w-]+$")
_SIMPLE_CLASS = re.compile(r"^[a-zA-Z]*(\.[\w-]+)+$")
_STRUCTURAL = re.compile(r"[\s>+~]|:nth|:has|:not")
_QUOTED = re.compile(r"'[^']*'|\"[^\"]*\"")


def _strip_quoted(selector: str) -> str:
    return _QUOTED.sub('""', selector)


def classify_selector(selector: str) -> SelectorKind:
    """
    Infer the kind of a selector from its text.

    Compound selectors mixing several strategies (descendant combinators,
    pseudo-classes) are classified as hybrid.
    """
    s = selector.strip()
    if s.startswith("//") or s.startswith("(//") or s.startswith("xpath="):
        return SelectorKind.XPATH
    if s.startswith("text=") or s.startswith("text/") or s.startswith(":has-text("):
        return SelectorKind.TEXT
    # A tag or attribute scoped by text mixes two strategies
    if ":has-text(" in s:
        return SelectorKind.HYBRID
    if _SIMPLE_ID.match(s) or re.match(r'^\[id=["\'][^"\']+["\']\]$', s):
        return SelectorKind.ID
    if _STRUCTURAL.search(_strip_quoted(s)):
        return SelectorKind.HYBRID
    if "aria-label" in s:
        return SelectorKind.ARIA_LABEL
    if "[data-" in s:
        return SelectorKind.DATA_ATTRIBUTE
    if "[" in s:
        return SelectorKind.ATTRIBUTE
    if _SIMPLE_CLASS.match(s):
        return SelectorKind.CLASS
    return SelectorKind.HYBRID


def structural_complexity(selector: str) -> int:
    """Count structural operators (combinators, pseudo-classes, attribute clauses)"""
    s = _strip_quoted(selector.strip())
    if s.startswith("text="):
        return 0
    combinators = len(re.findall(r"\s*[>+~]\s*|\s+", s))
    pseudo = s.count(":") - 2 * s.count("::")
    attributes = s.count("[")
    xpath_steps = s.count("/") if s.lstrip("(").startswith("/") else 0
    return combinators + max(pseudo, 0) + attributes + xpath_steps
