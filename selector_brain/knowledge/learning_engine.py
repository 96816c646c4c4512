"""
Learning Engine

Single write path for everything the brain learns. Each attempt becomes an
Experience that is appended to the store, fed to the weight model and
persisted, in that order.

Learning Sources:
1. Probe results - every selector the orchestrator tried
2. Final resolution outcomes - which selector finally worked and how
3. Imported history - replayed without re-running calibration
"""

import logging
from collections import Counter
from typing import Dict, List, Any, Optional

from ..brain.events import EventType
from ..errors import InvalidExperience
from .experience_store import Experience, ExperienceStore, ExperienceFilter
from .persistence import ResilientPersistence
from .selector_kinds import SelectorKind, classify_selector
from .weight_model import AdaptiveWeightModel

logger = logging.getLogger(__name__)


class LearningEngine:
    """
    Records attempts and keeps the store, weights and backend in step.

    Malformed attempts are rejected by the store; the engine logs them and
    returns None instead of failing the resolution that produced them.
    """

    # Error message fragments mapped to a suggested fix
    ERROR_SOLUTIONS = {
        "not found": "Try alternative selectors or wait for the page to finish loading",
        "timeout": "Increase wait times or check the page's loading speed",
        "invalid selector": "Update the selector to match the current page structure",
        "not visible": "The element may be hidden behind an overlay or rendered lazily",
        "captcha": "Switch to a different strategy; captchas cannot be resolved by selectors",
    }

    def __init__(
        self,
        store: ExperienceStore,
        weight_model: AdaptiveWeightModel,
        persistence: Optional[ResilientPersistence] = None,
        events=None
    ):
        self.store = store
        self.weight_model = weight_model
        self.persistence = persistence or ResilientPersistence()
        self.events = events
        self.stats = {"recorded": 0, "rejected": 0, "recalibrations": 0}

    async def record_attempt(
        self,
        domain: str,
        selector: str,
        success: bool,
        selector_kind: Optional[SelectorKind] = None,
        execution_time_ms: float = 0.0,
        confidence: float = 0.0,
        error_message: Optional[str] = None,
        task_type: Optional[str] = None,
        element_kind: Optional[str] = None,
        retry_count: int = 0,
        error_kind: Optional[str] = None,
        recovery: bool = False
    ) -> Optional[Experience]:
        """
        Record the result of trying a selector.

        Args:
            domain: Website domain
            selector: The selector that was tried
            success: Whether it located a visible element
            selector_kind: Kind of selector, inferred from the text when omitted
            execution_time_ms: How long the probe took
            confidence: Candidate confidence at the time of the attempt
            error_message: Driver error, if any
            task_type: Task the element was resolved for
            element_kind: Kind of element being resolved (button, input, ...)
            retry_count: Attempt index inside the resolution
            error_kind: Classified error kind value
            recovery: Whether the selector came from error recovery

        Returns:
            The recorded Experience, or None if it was rejected
        """
        try:
            exp = Experience(
                domain=domain,
                selector=selector,
                selector_kind=selector_kind or classify_selector(selector or ""),
                success=success,
                execution_time_ms=execution_time_ms,
                confidence_at_attempt=confidence,
                error_message=error_message,
                task_type=task_type,
                element_kind=element_kind,
                retry_count=retry_count,
                error_kind=error_kind,
                recovery=recovery,
            )
        except (TypeError, ValueError) as e:
            return self._reject(domain, selector, e)
        return await self.learn(exp)

    async def learn(self, exp: Experience) -> Optional[Experience]:
        """Append a prebuilt experience and propagate it"""
        try:
            self.store.record(exp)
        except InvalidExperience as e:
            return self._reject(getattr(exp, "domain", None), getattr(exp, "selector", None), e)

        self.stats["recorded"] += 1
        recalibrated = self.weight_model.record_outcome(
            exp.domain,
            exp.selector_kind,
            exp.success,
            exp.execution_time_ms,
            exp.confidence_at_attempt,
        )

        await self.persistence.save_experience(exp)
        if recalibrated:
            self.stats["recalibrations"] += 1
            await self.persistence.save_weights(self.weight_model.weights_for(exp.domain))

        if self.events is not None:
            self.events.emit(EventType.EXPERIENCE_RECORDED, domain=exp.domain, data={
                "selector": exp.selector,
                "success": exp.success,
                "recalibrated": recalibrated,
            })
        return exp

    def _reject(self, domain, selector, error: Exception) -> None:
        self.stats["rejected"] += 1
        logger.warning(f"[LEARNING] Rejected experience for {domain or '?'} ({selector!r}): {error}")
        if self.events is not None:
            self.events.emit(EventType.EXPERIENCE_REJECTED, domain=domain, data={"error": str(error)})
        return None

    def import_history(self, experiences: List[Experience]) -> int:
        """Replay experiences into the store and seed weight windows without recalibrating"""
        accepted = self.store.import_experiences(experiences)
        self.weight_model.rebuild_windows(accepted)
        logger.info(f"[LEARNING] Imported {len(accepted)}/{len(experiences)} experiences")
        return len(accepted)

    def suggest_solution(self, error: str) -> str:
        lowered = error.lower()
        for fragment, solution in self.ERROR_SOLUTIONS.items():
            if fragment in lowered:
                return solution
        return "Investigate the root cause and retry"

    def analyze_failures(self, domain: str) -> Dict[str, Any]:
        """
        Summarize why resolutions fail on a domain.

        Returns:
            {"common_errors": [{"error", "count", "solution"}], "recommendations": [...]}
        """
        failures = [e for e in self.store.query(ExperienceFilter(domain=domain)) if not e.success]

        counts = Counter(e.error_message for e in failures if e.error_message)
        common_errors = [
            {"error": error, "count": count, "solution": self.suggest_solution(error)}
            for error, count in counts.most_common(5)
        ]

        recommendations = []
        if len(failures) > 10:
            recommendations.append("High failure count - review the selector strategy for this domain")
        if any("timeout" in e["error"].lower() for e in common_errors):
            recommendations.append("Increase wait times or wait for dynamic content")
        if any("selector" in e["error"].lower() for e in common_errors):
            recommendations.append("Refresh selectors or prefer stable id/data-testid attributes")
        if failures:
            avg_retries = sum(e.retry_count for e in failures) / len(failures)
            if avg_retries > 2:
                recommendations.append("High retry count - consider tuning retry limits")

        return {"common_errors": common_errors, "recommendations": recommendations}

    def get_learning_summary(self, domain: Optional[str] = None) -> Dict[str, Any]:
        """
        Get summary of learnings.

        Args:
            domain: Optional domain to filter by

        Returns:
            Summary statistics
        """
        store_stats = self.store.get_stats()
        patterns = self.store.patterns()
        if domain:
            patterns = [p for p in patterns if domain in p.domains]

        summary = {
            "total_experiences": store_stats["total_experiences"],
            "patterns_learned": len(patterns),
            "domains": self.store.domains(),
            "recorded": self.stats["recorded"],
            "rejected": self.stats["rejected"],
            "recalibrations": self.stats["recalibrations"],
            "persistence_degraded": self.persistence.degraded,
        }
        if domain:
            summary["weights"] = self.weight_model.domain_stats(domain)
        if patterns:
            best = max(patterns, key=lambda p: p.effectiveness)
            summary["most_effective_pattern"] = {
                "selector": best.textual_form,
                "task_type": best.task_type,
                "success_rate": round(best.success_rate, 3),
                "occurrences": best.occurrence_count,
            }
        return summary
