"""
Recovery Handler

Classifies why a resolution failed and proposes alternative selectors.
Strategies that fixed a failure before on the same domain are tried first.
"""

import asyncio
import logging
import re
import threading
from collections import Counter, defaultdict
from dataclasses import dataclass
from enum import Enum
from typing import Dict, List, Any, Optional

from playwright.async_api import TimeoutError as PlaywrightTimeoutError

from ..errors import ErrorKind, SelectorBrainError
from .strategy_selector import ELEMENT_TAGS, humanize, normalize_text, slugify

logger = logging.getLogger(__name__)


class RecoveryStrategyType(Enum):
    """Families of alternative selector generation"""
    RELAXED_TEXT = "relaxed_text"
    ATTRIBUTE_VARIANT = "attribute_variant"
    NEAREST_ANCESTOR = "nearest_ancestor"
    SELECTOR_VARIATION = "selector_variation"
    ATTRIBUTE_BASED = "attribute_based"
    XPATH = "xpath"
    HYBRID = "hybrid"
    RETRY_WITH_WAIT = "retry_with_wait"


@dataclass
class RecoveryContext:
    """What failed, passed to strategy generation"""
    original_selector: str
    error_kind: ErrorKind
    domain: str
    task_type: str = ""
    element_kind: str = ""
    element_text: Optional[str] = None
    error_message: Optional[str] = None
    retry_count: int = 0


@dataclass
class RecoveryAttempt:
    """One proposed recovery strategy"""
    id: str
    strategy_type: RecoveryStrategyType
    description: str
    selectors: List[str]
    delay_ms: int
    timeout_ms: int
    confidence: float
    priority: float
    remembered: bool = False


@dataclass
class RecoveryPlan:
    attempts: List[RecoveryAttempt]
    error_kind: ErrorKind
    reasoning: str
    estimated_success_rate: float = 0.0
    total_timeout_ms: int = 0


class ErrorRecovery:
    """
    Handles recovery when every planned selector failed.

    Features:
    - Failure classification from exceptions, messages and probe outcomes
    - Strategy generation scoped to the element being resolved
    - Error-kind aware prioritisation
    - Learning from successful recoveries
    """

    # Boost applied to strategy families that suit an error kind.
    # Lower priority values run first, so a boost divides the priority.
    ERROR_KIND_BOOSTS = {
        ErrorKind.TIMEOUT: {RecoveryStrategyType.RETRY_WITH_WAIT: 1.5},
        ErrorKind.EXECUTION_ERROR: {RecoveryStrategyType.RETRY_WITH_WAIT: 1.3},
        ErrorKind.NOT_FOUND: {
            RecoveryStrategyType.ATTRIBUTE_BASED: 1.3,
            RecoveryStrategyType.RELAXED_TEXT: 1.3,
        },
    }

    RETRY_WAITS_MS = [1000, 2000, 5000, 10000]

    # Error message fragments, checked in order
    MESSAGE_PATTERNS = [
        (ErrorKind.TIMEOUT, ["timeout", "timed out", "exceeded"]),
        (ErrorKind.NOT_FOUND, ["not found", "no element", "no node", "not visible",
                               "did not match", "unable to locate", "zero-size"]),
        (ErrorKind.EXECUTION_ERROR, ["detached", "intercept", "not attached", "execution context",
                                     "evaluation failed", "invalid selector", "syntax"]),
    ]

    # Tie-break order when several kinds are equally common
    KIND_PRECEDENCE = [ErrorKind.TIMEOUT, ErrorKind.EXECUTION_ERROR, ErrorKind.NOT_FOUND,
                       ErrorKind.UNEXPECTED_ERROR]

    def __init__(self):
        self._successful_recoveries: Dict[str, List[RecoveryStrategyType]] = defaultdict(list)
        self._error_counts: Counter = Counter()
        self._lock = threading.Lock()
        self.stats = {"plans": 0, "recoveries": 0, "failed_recoveries": 0}

    # ==================== Classification ====================

    def classify_exception(self, error: BaseException) -> ErrorKind:
        if isinstance(error, SelectorBrainError):
            return error.error_kind
        if isinstance(error, (asyncio.TimeoutError, TimeoutError, PlaywrightTimeoutError)):
            return ErrorKind.TIMEOUT
        return self.classify_message(str(error), default=ErrorKind.UNEXPECTED_ERROR)

    def classify_message(self, message: Optional[str], default: ErrorKind = ErrorKind.NOT_FOUND) -> ErrorKind:
        lowered = (message or "").lower()
        for kind, fragments in self.MESSAGE_PATTERNS:
            if any(fragment in lowered for fragment in fragments):
                return kind
        return default

    def classify_failure(self, outcomes: List[Any]) -> ErrorKind:
        """
        Dominant error kind across failed probe outcomes.

        Args:
            outcomes: objects with an error_kind attribute (ProbeOutcome)
        """
        kinds = [o.error_kind for o in outcomes if getattr(o, "error_kind", None) is not None]
        if not kinds:
            return ErrorKind.NOT_FOUND if outcomes else ErrorKind.UNEXPECTED_ERROR
        counts = Counter(kinds)
        top = max(counts.values())
        for kind in self.KIND_PRECEDENCE:
            if counts.get(kind) == top:
                return kind
        return kinds[0]

    # ==================== Strategy generation ====================

    def propose(self, context: RecoveryContext) -> RecoveryPlan:
        """Generate, prioritise and explain recovery strategies for a failure"""
        with self._lock:
            self._error_counts[context.error_kind] += 1
            self.stats["plans"] += 1

        attempts: List[RecoveryAttempt] = []
        attempts.extend(self._relaxed_text(context))
        attempts.extend(self._attribute_variants(context))
        attempts.extend(self._nearest_ancestor(context))
        attempts.extend(self._selector_variations(context))
        attempts.extend(self._attribute_based(context))
        if context.element_kind:
            attempts.extend(self._xpath(context))
        attempts.extend(self._hybrid(context))
        attempts.extend(self._retry_with_wait(context))

        attempts = self._dedupe(attempts, context.original_selector)
        attempts = self.prioritize(attempts, context)

        plan = RecoveryPlan(
            attempts=attempts,
            error_kind=context.error_kind,
            reasoning=self._reasoning(context, attempts),
            estimated_success_rate=attempts[0].confidence if attempts else 0.0,
            total_timeout_ms=sum(a.timeout_ms for a in attempts),
        )
        logger.info(f"[RECOVERY] {context.error_kind.value} on {context.domain}: "
                    f"{len(attempts)} strategies, first: {attempts[0].id if attempts else 'none'}")
        return plan

    def prioritize(self, attempts: List[RecoveryAttempt], context: RecoveryContext) -> List[RecoveryAttempt]:
        boosts = self.ERROR_KIND_BOOSTS.get(context.error_kind, {})
        with self._lock:
            remembered = list(self._successful_recoveries.get(self._memory_key(context), []))

        for attempt in attempts:
            boost = boosts.get(attempt.strategy_type, 1.0)
            attempt.priority = attempt.priority / boost
            if attempt.strategy_type in remembered:
                attempt.remembered = True

        def sort_key(a: RecoveryAttempt):
            rank = remembered.index(a.strategy_type) if a.remembered else len(remembered)
            return (rank, a.priority, -a.confidence)

        return sorted(attempts, key=sort_key)

    @staticmethod
    def extract_keyword(selector: str) -> str:
        """Last word-like token of a selector"""
        matches = re.findall(r"[\w-]+", selector)
        return matches[-1] if matches else "element"

    def _keyword(self, context: RecoveryContext) -> str:
        if context.element_text:
            slug = slugify(context.element_text)
            if slug:
                return slug
        return self.extract_keyword(context.original_selector)

    def _relaxed_text(self, context: RecoveryContext) -> List[RecoveryAttempt]:
        source = context.element_text or (humanize(context.task_type) if context.task_type else "")
        text = normalize_text(source)
        if not text:
            return []
        selectors = [f"text={text}"]
        words = text.split(" ")
        if len(words) > 1:
            selectors.append(f"text={max(words, key=len)}")
        return [RecoveryAttempt(
            id="relaxed_text",
            strategy_type=RecoveryStrategyType.RELAXED_TEXT,
            description=f"Case-insensitive partial text match for '{text}'",
            selectors=selectors,
            delay_ms=100,
            timeout_ms=5000,
            confidence=0.8 if context.element_text else 0.6,
            priority=1 if context.element_text else 3,
        )]

    def _attribute_variants(self, context: RecoveryContext) -> List[RecoveryAttempt]:
        original = context.original_selector
        selectors = []
        match = re.match(r'^([a-zA-Z]*)\[([\w-]+)=["\']([^"\']+)["\']\]$', original)
        if match:
            tag, attr, value = match.groups()
            normalized = slugify(value) or value.lower()
            selectors.extend([
                f'{tag}[{attr}="{value}" i]',
                f'{tag}[{attr}*="{normalized}" i]',
            ])
        elif original.startswith("#"):
            selectors.append(f'[id*="{slugify(original[1:]) or original[1:]}" i]')
        elif original.startswith("."):
            selectors.append(f'[class*="{slugify(original[1:]) or original[1:]}" i]')
        if not selectors:
            return []
        return [RecoveryAttempt(
            id="attribute_variant",
            strategy_type=RecoveryStrategyType.ATTRIBUTE_VARIANT,
            description=f"Normalized attribute variants of {original}",
            selectors=selectors,
            delay_ms=150,
            timeout_ms=6000,
            confidence=0.7,
            priority=2,
        )]

    def _nearest_ancestor(self, context: RecoveryContext) -> List[RecoveryAttempt]:
        tag = ELEMENT_TAGS.get((context.element_kind or "").lower())
        if not tag:
            return []
        keyword = self._keyword(context)
        selectors = [
            f'{tag}:has([data-testid*="{keyword}"])',
            f'[data-testid*="{keyword}"] {tag}',
            f'{tag}:near([id*="{keyword}"])',
        ]
        return [RecoveryAttempt(
            id="nearest_ancestor",
            strategy_type=RecoveryStrategyType.NEAREST_ANCESTOR,
            description=f"Nearest {tag} around elements matching '{keyword}'",
            selectors=selectors,
            delay_ms=200,
            timeout_ms=8000,
            confidence=0.6,
            priority=3,
        )]

    def _selector_variations(self, context: RecoveryContext) -> List[RecoveryAttempt]:
        attempts = []
        original = context.original_selector

        if "." in original and not original.startswith("."):
            simplified = original.split(".")[0]
            if simplified and not simplified.startswith("text="):
                attempts.append(RecoveryAttempt(
                    id="variation_simplified",
                    strategy_type=RecoveryStrategyType.SELECTOR_VARIATION,
                    description=f"Simplify {original} to {simplified}",
                    selectors=[simplified],
                    delay_ms=100,
                    timeout_ms=5000,
                    confidence=0.65,
                    priority=3,
                ))

        if original.startswith("#"):
            element_id = original[1:]
            attempts.append(RecoveryAttempt(
                id="variation_with_type",
                strategy_type=RecoveryStrategyType.SELECTOR_VARIATION,
                description=f"Qualify {original} with element types",
                selectors=[f"input{original}", f"button{original}", f"div{original}", f'[id="{element_id}"]'],
                delay_ms=200,
                timeout_ms=8000,
                confidence=0.75,
                priority=2,
            ))

        if "[" in original and "=" in original:
            attempts.append(RecoveryAttempt(
                id="variation_wildcard",
                strategy_type=RecoveryStrategyType.SELECTOR_VARIATION,
                description=f"Wildcard attribute match for {original}",
                selectors=[
                    re.sub(r'=(["\'])([^"\']+)\1', r'*=\1\2\1', original, count=1),
                    re.sub(r'=(["\'])([^"\']+)\1', r'~=\1\2\1', original, count=1),
                ],
                delay_ms=300,
                timeout_ms=10000,
                confidence=0.6,
                priority=4,
            ))

        if ">" not in original and not original.startswith(("//", "text=")):
            attempts.append(RecoveryAttempt(
                id="variation_parent",
                strategy_type=RecoveryStrategyType.SELECTOR_VARIATION,
                description=f"Scope {original} under common containers",
                selectors=[f"* > {original}", f"body {original}", f"main {original}"],
                delay_ms=400,
                timeout_ms=12000,
                confidence=0.5,
                priority=5,
            ))
        return attempts

    def _attribute_based(self, context: RecoveryContext) -> List[RecoveryAttempt]:
        keyword = self._keyword(context)
        selectors = [f'[data-testid*="{keyword}"]', f'[data-test*="{keyword}"]', f'[name*="{keyword}"]']
        if context.element_text:
            selectors.insert(1, f'[aria-label*="{context.element_text.strip()}" i]')
        role = {"button": "button", "link": "link", "checkbox": "checkbox"}.get((context.element_kind or "").lower())
        if role:
            selectors.append(f'[role="{role}"][aria-label*="{keyword}" i]')
        return [RecoveryAttempt(
            id="attribute_based",
            strategy_type=RecoveryStrategyType.ATTRIBUTE_BASED,
            description=f"Attribute search for '{keyword}'",
            selectors=selectors,
            delay_ms=200,
            timeout_ms=6000,
            confidence=0.8,
            priority=1.5,
        )]

    def _xpath(self, context: RecoveryContext) -> List[RecoveryAttempt]:
        tag = ELEMENT_TAGS.get(context.element_kind.lower(), "*")
        keyword = self._keyword(context)
        attempts = [RecoveryAttempt(
            id="xpath_by_type",
            strategy_type=RecoveryStrategyType.XPATH,
            description=f"XPath on {tag} by id or class containing '{keyword}'",
            selectors=[
                f'//{tag}[contains(@class, "{keyword}")]',
                f'//{tag}[contains(@id, "{keyword}")]',
            ],
            delay_ms=400,
            timeout_ms=12000,
            confidence=0.65,
            priority=3,
        )]
        if tag in ("button", "a") and context.element_text:
            text = context.element_text.strip()
            attempts.append(RecoveryAttempt(
                id="xpath_by_text",
                strategy_type=RecoveryStrategyType.XPATH,
                description=f"XPath on {tag} by text '{text}'",
                selectors=[f'//{tag}[contains(normalize-space(.), "{text}")]'],
                delay_ms=500,
                timeout_ms=15000,
                confidence=0.55,
                priority=4,
            ))
        return attempts

    def _hybrid(self, context: RecoveryContext) -> List[RecoveryAttempt]:
        original = context.original_selector
        if original.startswith(("//", "text=")):
            return []
        return [RecoveryAttempt(
            id="hybrid_parent_child",
            strategy_type=RecoveryStrategyType.HYBRID,
            description=f"Search {original} inside forms and dialogs",
            selectors=[f"form {original}", f"div.modal {original}", f".container > {original}"],
            delay_ms=400,
            timeout_ms=14000,
            confidence=0.68,
            priority=3,
        )]

    def _retry_with_wait(self, context: RecoveryContext) -> List[RecoveryAttempt]:
        attempts = []
        for wait in self.RETRY_WAITS_MS:
            attempts.append(RecoveryAttempt(
                id=f"retry_wait_{wait}",
                strategy_type=RecoveryStrategyType.RETRY_WITH_WAIT,
                description=f"Wait {wait}ms and retry {context.original_selector}",
                selectors=[context.original_selector],
                delay_ms=wait,
                timeout_ms=wait + 5000,
                confidence=0.7 - wait / 20000,
                priority=6 - wait // 3000,
            ))
        return attempts

    @staticmethod
    def _dedupe(attempts: List[RecoveryAttempt], original: str) -> List[RecoveryAttempt]:
        """Drop selectors already proposed by an earlier strategy"""
        seen = set()
        kept = []
        for attempt in attempts:
            selectors = []
            for s in attempt.selectors:
                if s in seen:
                    continue
                if s == original and attempt.strategy_type != RecoveryStrategyType.RETRY_WITH_WAIT:
                    continue
                if attempt.strategy_type != RecoveryStrategyType.RETRY_WITH_WAIT:
                    seen.add(s)
                selectors.append(s)
            if selectors:
                attempt.selectors = selectors
                kept.append(attempt)
        return kept

    def _reasoning(self, context: RecoveryContext, attempts: List[RecoveryAttempt]) -> str:
        if not attempts:
            return f"No recovery strategies available for {context.error_kind.value}"
        first = attempts[0]
        text = f"Chose '{first.description}' for error kind {context.error_kind.value}. "
        if first.remembered:
            text += "It fixed this kind of failure on this domain before. "
        text += f"Confidence {first.confidence * 100:.0f}%."
        return text

    # ==================== Learning ====================

    @staticmethod
    def _memory_key(context: RecoveryContext) -> str:
        return f"{context.domain}:{context.error_kind.value}"

    def record_recovery(self, context: RecoveryContext, attempt: RecoveryAttempt, success: bool):
        """Remember which strategy family fixed a failure, most recent first"""
        with self._lock:
            if success:
                self.stats["recoveries"] += 1
                history = self._successful_recoveries[self._memory_key(context)]
                if attempt.strategy_type in history:
                    history.remove(attempt.strategy_type)
                history.insert(0, attempt.strategy_type)
            else:
                self.stats["failed_recoveries"] += 1

    def get_common_errors(self) -> List[Dict[str, Any]]:
        with self._lock:
            return [{"error_kind": kind.value, "count": count}
                    for kind, count in self._error_counts.most_common()]

    def clear_history(self):
        with self._lock:
            self._successful_recoveries.clear()
            self._error_counts.clear()
