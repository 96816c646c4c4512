"""
Strategy Selector

Given a description of the element to resolve, produces a ranked list of
candidate selectors with a fused confidence score.

Candidate sources:
1. Learned - selectors already tried on this domain for the same task
2. Generated - deterministic rules from the element text and kind

Both are scored with the domain's adaptive weights and sorted by score,
with structurally simpler selectors winning ties.
"""

import logging
import re
from dataclasses import dataclass, field
from typing import Dict, List, Any, Optional, Tuple

from ..config import SelectorConfig
from ..knowledge.experience_store import ExperienceStore
from ..knowledge.scoring import clamp, estimated_success_rate, historical_reliability
from ..knowledge.selector_kinds import SelectorKind, structural_complexity
from ..knowledge.weight_model import AdaptiveWeightModel

logger = logging.getLogger(__name__)


def normalize_text(text: str) -> str:
    """Normalize text for comparison - lowercase, remove extra spaces, handle variations"""
    text = text.lower().strip()
    text = re.sub(r'[-_]', ' ', text)
    text = re.sub(r'\s+', ' ', text)
    return text


def slugify(text: str) -> str:
    words = re.findall(r"[a-z0-9]+", normalize_text(text))
    return "-".join(words)


def humanize(text: str) -> str:
    """'add_to_cart' -> 'Add to cart'"""
    words = normalize_text(text).split(" ")
    phrase = " ".join(w for w in words if w)
    return phrase[:1].upper() + phrase[1:]


@dataclass
class SelectorCandidate:
    selector: str
    selector_kind: SelectorKind
    confidence: float
    estimated_wait_ms: int
    score: float = 0.0
    metadata: Dict[str, Any] = field(default_factory=dict)

    @property
    def probability(self) -> float:
        """Predicted chance that this candidate locates the element"""
        return clamp(self.score, 0.0, 1.0)


@dataclass
class SelectionResult:
    candidates: List[SelectorCandidate]
    primary: List[SelectorCandidate]
    fallbacks: List[SelectorCandidate]
    estimated_success_rate: float
    plan_ready: bool
    recommendations: List[str] = field(default_factory=list)


# (base score, prior confidence, estimated wait ms) per rule family
RULE_PRIORS: Dict[SelectorKind, Tuple[float, float, int]] = {
    SelectorKind.ID: (0.98, 0.95, 200),
    SelectorKind.DATA_ATTRIBUTE: (0.95, 0.90, 250),
    SelectorKind.ARIA_LABEL: (0.90, 0.85, 300),
    SelectorKind.ATTRIBUTE: (0.85, 0.80, 300),
    SelectorKind.TEXT: (0.80, 0.75, 400),
    SelectorKind.CLASS: (0.55, 0.60, 300),
    SelectorKind.XPATH: (0.60, 0.60, 500),
    SelectorKind.HYBRID: (0.60, 0.65, 450),
}

ELEMENT_TAGS = {
    "button": "button",
    "input": "input",
    "field": "input",
    "textbox": "input",
    "link": "a",
    "select": "select",
    "dropdown": "select",
    "checkbox": "input",
    "textarea": "textarea",
    "form": "form",
    "image": "img",
    "heading": "h1",
}

ELEMENT_ROLES = {
    "button": "button",
    "link": "link",
    "input": "textbox",
    "field": "textbox",
    "textbox": "textbox",
    "checkbox": "checkbox",
    "select": "combobox",
    "dropdown": "combobox",
}


class StrategySelector:
    """Ranks candidate selectors for one resolution request"""

    def __init__(
        self,
        store: ExperienceStore,
        weight_model: AdaptiveWeightModel,
        config: Optional[SelectorConfig] = None
    ):
        self.store = store
        self.weight_model = weight_model
        self.config = config or SelectorConfig()

    def select_candidates(
        self,
        domain: str,
        task_type: str,
        element_kind: str,
        element_text: Optional[str] = None
    ) -> SelectionResult:
        learned = self._learned_candidates(domain, task_type, element_kind)
        generated = self._generated_candidates(task_type, element_kind, element_text)

        # Learned statistics win over a generated rule for the same selector
        merged: Dict[str, SelectorCandidate] = {}
        for candidate in learned + generated:
            if candidate.selector not in merged:
                merged[candidate.selector] = candidate

        candidates = list(merged.values())
        for candidate in candidates:
            candidate.score = self.weight_model.score(
                domain,
                candidate.selector_kind,
                candidate.metadata["base_score"],
                candidate.confidence,
            )
            candidate.metadata["weight"] = self.weight_model.weight(domain, candidate.selector_kind)
            candidate.metadata["success_rate"] = self.weight_model.success_rate(domain, candidate.selector_kind)

        candidates.sort(key=self._rank_key)

        planned = candidates[:self.config.max_candidates]
        primary = planned[:self.config.primary_count]
        fallbacks = planned[self.config.primary_count:]
        rate = estimated_success_rate(c.probability for c in planned)

        result = SelectionResult(
            candidates=candidates,
            primary=primary,
            fallbacks=fallbacks,
            estimated_success_rate=rate,
            plan_ready=bool(primary),
            recommendations=self._recommendations(rate, learned, fallbacks),
        )
        logger.debug(
            f"[SELECTOR] {domain}/{task_type}/{element_kind}: {len(candidates)} candidates, "
            f"{len(learned)} learned, estimated success {rate:.2f}"
        )
        return result

    @staticmethod
    def _rank_key(candidate: SelectorCandidate):
        return (
            -candidate.score,
            structural_complexity(candidate.selector),
            len(candidate.selector),
            candidate.selector,
        )

    def _learned_candidates(self, domain: str, task_type: str, element_kind: str) -> List[SelectorCandidate]:
        candidates = []
        for stats in self.store.selector_stats(domain, task_type, element_kind):
            base, _, default_wait = RULE_PRIORS[stats.selector_kind]
            wait = int(stats.average_time_ms) if stats.average_time_ms > 0 else default_wait
            candidates.append(SelectorCandidate(
                selector=stats.selector,
                selector_kind=stats.selector_kind,
                confidence=historical_reliability(stats.successes, stats.failures),
                estimated_wait_ms=wait,
                metadata={
                    "base_score": base,
                    "source": "learned",
                    "rule": "history",
                    "successes": stats.successes,
                    "failures": stats.failures,
                },
            ))
        # Most reliable history first; the rest is left to the generated rules
        candidates.sort(key=lambda c: (-c.confidence, -c.metadata["successes"], c.selector))
        return candidates[:self.config.learned_candidate_limit]

    def _generated_candidates(
        self,
        task_type: str,
        element_kind: str,
        element_text: Optional[str]
    ) -> List[SelectorCandidate]:
        text = element_text or task_type or element_kind
        slug = slugify(text)
        label = element_text.strip() if element_text else humanize(text)
        kind = (element_kind or "").lower()
        tag = ELEMENT_TAGS.get(kind, "")
        role = ELEMENT_ROLES.get(kind)

        if not slug:
            return []

        rules: List[Tuple[str, str, SelectorKind]] = [
            ("id", f"#{slug}", SelectorKind.ID),
        ]
        if kind == "button":
            rules.append(("id_btn", f"#{slug}-btn", SelectorKind.ID))
        elif kind:
            rules.append(("id_kind", f"#{slug}-{slugify(kind)}", SelectorKind.ID))
        rules.extend([
            ("test_id", f'[data-testid="{slug}"]', SelectorKind.DATA_ATTRIBUTE),
            ("data_test", f'[data-test="{slug}"]', SelectorKind.DATA_ATTRIBUTE),
            ("aria_label", f'[aria-label="{label}"]', SelectorKind.ARIA_LABEL),
        ])
        if tag:
            rules.append(("name", f'{tag}[name="{slug}"]', SelectorKind.ATTRIBUTE))
        if tag in ("input", "textarea"):
            rules.append(("placeholder", f'{tag}[placeholder="{label}"]', SelectorKind.ATTRIBUTE))
        rules.append(("text", f'text="{label}"', SelectorKind.TEXT))
        rules.append(("class", f".{slug}", SelectorKind.CLASS))
        if kind == "button":
            rules.append(("class_btn", f".btn-{slug}", SelectorKind.CLASS))
        rules.append(("xpath_id", f'//{tag or "*"}[contains(@id, "{slug}")]', SelectorKind.XPATH))
        if role:
            rules.append(("role_text", f'[role="{role}"]:has-text("{label}")', SelectorKind.HYBRID))

        candidates = []
        for rule, selector, selector_kind in rules:
            base, confidence, wait = RULE_PRIORS[selector_kind]
            candidates.append(SelectorCandidate(
                selector=selector,
                selector_kind=selector_kind,
                confidence=confidence,
                estimated_wait_ms=wait,
                metadata={"base_score": base, "source": "generated", "rule": rule},
            ))
        return candidates

    def _recommendations(
        self,
        rate: float,
        learned: List[SelectorCandidate],
        fallbacks: List[SelectorCandidate]
    ) -> List[str]:
        recommendations = []
        if not learned:
            recommendations.append("No history for this element yet; ranking uses baseline weights only")
        if rate < 0.5:
            recommendations.append("Low estimated success rate; add a stable id or data-testid to the element")
        if len(fallbacks) < 2:
            recommendations.append("Few fallback selectors available; recovery is likely to be needed on failure")
        return recommendations
