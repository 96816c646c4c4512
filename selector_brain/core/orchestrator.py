"""
Resolution Orchestrator

Turns ranked candidates into a timed execution plan and runs it against
the automation driver.

States:
    PLANNING -> PROBING -> SUCCESS
                        -> RECOVERING -> SUCCESS | EXHAUSTED

Retry budget: max_retries bounds the total number of probe attempts
across probing and recovery. Probes run in rounds (the primary tier, the
fallback tier, then one round per recovery strategy); a parallel round is
cut down to the attempts still left. Before every round after the first
the orchestrator sleeps base_retry_delay_ms * attempts_used, capped at
max_retry_delay_ms. Once max_total_timeout_ms has elapsed no new probe
or strategy is started.
"""

import asyncio
import logging
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, List, Any, Optional, Set

from ..brain.events import EventType
from ..config import OrchestratorConfig, ExecutionMode
from ..errors import ErrorKind, ElementNotFound, ProbeTimeout, RecoveryExhausted, SelectorBrainError
from ..knowledge.learning_engine import LearningEngine
from ..knowledge.scoring import estimated_success_rate
from ..knowledge.selector_kinds import SelectorKind, classify_selector
from .driver import AutomationDriver, BoundingBox
from .recovery_handler import ErrorRecovery, RecoveryAttempt, RecoveryContext
from .strategy_selector import SelectionResult, StrategySelector, slugify

logger = logging.getLogger(__name__)


class OrchestratorState(Enum):
    PLANNING = "planning"
    PROBING = "probing"
    RECOVERING = "recovering"
    SUCCESS = "success"
    EXHAUSTED = "exhausted"


class StepType(Enum):
    PRIMARY = "primary"
    FALLBACK = "fallback"
    RECOVERY = "recovery"


@dataclass
class PlanStep:
    step: int
    selector: str
    selector_kind: SelectorKind
    step_type: StepType
    timeout_ms: int
    wait_before_ms: int
    expected_success_rate: float
    confidence: float = 0.0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "step": self.step,
            "selector": self.selector,
            "selector_kind": self.selector_kind.value,
            "type": self.step_type.value,
            "timeout_ms": self.timeout_ms,
            "wait_before_ms": self.wait_before_ms,
            "expected_success_rate": round(self.expected_success_rate, 4),
        }


@dataclass
class ExecutionPlan:
    steps: List[PlanStep]
    estimated_success_rate: float
    total_timeout_ms: int

    @property
    def primary(self) -> List[PlanStep]:
        return [s for s in self.steps if s.step_type == StepType.PRIMARY]

    @property
    def fallbacks(self) -> List[PlanStep]:
        return [s for s in self.steps if s.step_type == StepType.FALLBACK]


@dataclass
class ProbeOutcome:
    selector: str
    selector_kind: SelectorKind
    step_type: StepType
    success: bool
    execution_time_ms: float
    error_kind: Optional[ErrorKind] = None
    error_message: Optional[str] = None
    box: Optional[BoundingBox] = None


@dataclass
class ResolutionRequest:
    domain: str
    task_type: str
    element_kind: str
    element_text: Optional[str] = None


@dataclass
class ExecutionResult:
    success: bool
    selector_used: Optional[str]
    execution_time_ms: float
    attempts_used: int
    recovery_used: bool
    error_kind: Optional[ErrorKind] = None
    learnings: List[str] = field(default_factory=list)
    state: OrchestratorState = OrchestratorState.EXHAUSTED
    selector_kind: Optional[SelectorKind] = None
    plan: List[PlanStep] = field(default_factory=list)
    probes: List[ProbeOutcome] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "success": self.success,
            "selector_used": self.selector_used,
            "selector_kind": self.selector_kind.value if self.selector_kind else None,
            "execution_time_ms": round(self.execution_time_ms, 2),
            "attempts_used": self.attempts_used,
            "recovery_used": self.recovery_used,
            "error_kind": self.error_kind.value if self.error_kind else None,
            "learnings": self.learnings,
            "state": self.state.value,
            "plan": [s.to_dict() for s in self.plan],
        }


@dataclass
class _Run:
    """Mutable bookkeeping for one resolution"""
    request: ResolutionRequest
    started: float
    deadline: float
    state: OrchestratorState = OrchestratorState.PLANNING
    rounds: int = 0
    attempts: int = 0
    deadline_hit: bool = False
    budget_hit: bool = False
    outcomes: List[ProbeOutcome] = field(default_factory=list)

    def elapsed_ms(self) -> float:
        return (time.monotonic() - self.started) * 1000

    def remaining_ms(self) -> float:
        return max(0.0, (self.deadline - time.monotonic()) * 1000)


class Orchestrator:
    """
    Executes resolution plans with parallel or sequential probing,
    error-driven recovery and a global retry budget.
    """

    def __init__(
        self,
        driver: AutomationDriver,
        selector: StrategySelector,
        recovery: ErrorRecovery,
        learning: LearningEngine,
        config: Optional[OrchestratorConfig] = None,
        events=None
    ):
        self.driver = driver
        self.selector = selector
        self.recovery = recovery
        self.learning = learning
        self.config = config or OrchestratorConfig()
        self.events = events
        # Losing parallel probes keep running here until their own timeout
        self._background_probes: Set[asyncio.Task] = set()

    # ==================== Planning ====================

    def compile_plan(self, selection: SelectionResult) -> ExecutionPlan:
        steps = []
        for candidate in selection.primary:
            steps.append(PlanStep(
                step=len(steps) + 1,
                selector=candidate.selector,
                selector_kind=candidate.selector_kind,
                step_type=StepType.PRIMARY,
                timeout_ms=candidate.estimated_wait_ms + self.config.primary_timeout_ms,
                wait_before_ms=0,
                expected_success_rate=candidate.probability,
                confidence=candidate.confidence,
            ))
        for candidate in selection.fallbacks:
            steps.append(PlanStep(
                step=len(steps) + 1,
                selector=candidate.selector,
                selector_kind=candidate.selector_kind,
                step_type=StepType.FALLBACK,
                timeout_ms=candidate.estimated_wait_ms + self.config.fallback_timeout_ms,
                wait_before_ms=self.config.fallback_wait_ms,
                expected_success_rate=candidate.probability,
                confidence=candidate.confidence,
            ))
        return ExecutionPlan(
            steps=steps,
            estimated_success_rate=estimated_success_rate(s.expected_success_rate for s in steps),
            total_timeout_ms=sum(s.timeout_ms + s.wait_before_ms for s in steps),
        )

    # ==================== Execution ====================

    async def execute(self, request: ResolutionRequest) -> ExecutionResult:
        now = time.monotonic()
        run = _Run(
            request=request,
            started=now,
            deadline=now + self.config.max_total_timeout_ms / 1000,
        )

        selection = self.selector.select_candidates(
            request.domain, request.task_type, request.element_kind, request.element_text
        )
        plan = self.compile_plan(selection)
        logger.info(
            f"[RESOLVER] {request.domain} {request.task_type}/{request.element_kind}: "
            f"{len(plan.primary)} primary, {len(plan.fallbacks)} fallback, "
            f"estimated success {plan.estimated_success_rate:.2f}"
        )

        run.state = OrchestratorState.PROBING
        for tier in (plan.primary, plan.fallbacks):
            if not tier:
                continue
            if not await self._begin_round(run):
                break
            winner = await self._probe_tier(run, tier)
            if winner is not None:
                return await self._succeed(run, plan, winner, recovery_used=False)

        error_kind = self.recovery.classify_failure(run.outcomes)

        if self.config.enable_recovery and not run.deadline_hit and self._attempts_left(run) > 0:
            run.state = OrchestratorState.RECOVERING
            winner = await self._recover(run, plan, error_kind)
            if winner is not None:
                return await self._succeed(run, plan, winner, recovery_used=True)

        return await self._exhaust(run, plan, error_kind)

    def _attempts_left(self, run: _Run) -> int:
        left = self.config.max_retries - run.attempts
        if left <= 0:
            run.budget_hit = True
        return max(0, left)

    async def _begin_round(self, run: _Run) -> bool:
        """Start a round of probes, sleeping the backoff delay first"""
        if self._attempts_left(run) <= 0:
            logger.debug(f"[RESOLVER] Retry budget of {self.config.max_retries} attempts used")
            return False
        if run.remaining_ms() <= 0:
            run.deadline_hit = True
            return False
        if run.rounds > 0:
            delay = min(self.config.base_retry_delay_ms * run.attempts, self.config.max_retry_delay_ms)
            delay = min(delay, run.remaining_ms())
            if delay > 0:
                await asyncio.sleep(delay / 1000)
            if run.remaining_ms() <= 0:
                run.deadline_hit = True
                return False
        run.rounds += 1
        return True

    async def _settle(self, run: _Run, wait_ms: int):
        """Give the DOM time to settle through the driver's stability wait"""
        wait_ms = int(min(wait_ms, run.remaining_ms()))
        if wait_ms <= 0:
            return
        try:
            await asyncio.wait_for(
                self.driver.wait_for_stable(wait_ms),
                timeout=(wait_ms + self.config.probe_grace_ms) / 1000,
            )
        except asyncio.TimeoutError:
            logger.debug(f"[RESOLVER] Stability wait of {wait_ms}ms timed out")
        except Exception as e:
            logger.debug(f"[RESOLVER] Stability wait failed: {e}")

    async def _probe_tier(self, run: _Run, steps: List[PlanStep], recovery: bool = False) -> Optional[ProbeOutcome]:
        wait_before = max((s.wait_before_ms for s in steps), default=0)
        if wait_before:
            await self._settle(run, wait_before)

        if self.config.execution_mode == ExecutionMode.PARALLEL:
            return await self._probe_parallel(run, steps, recovery)
        return await self._probe_sequential(run, steps, recovery)

    async def _probe_sequential(self, run: _Run, steps: List[PlanStep], recovery: bool) -> Optional[ProbeOutcome]:
        for step in steps:
            # Recovery steps and the first plan step are always probed
            if (not recovery and step.step > 1
                    and step.expected_success_rate <= self.config.sequential_threshold):
                logger.debug(f"[RESOLVER] Skipping {step.selector}: expected "
                             f"{step.expected_success_rate:.2f} below threshold")
                continue
            if self._attempts_left(run) <= 0:
                return None
            if run.remaining_ms() <= 0:
                run.deadline_hit = True
                return None
            outcome = await self._probe(run, step, step.timeout_ms, recovery)
            if outcome.success:
                return outcome
        return None

    async def _probe_parallel(self, run: _Run, steps: List[PlanStep], recovery: bool) -> Optional[ProbeOutcome]:
        if run.remaining_ms() <= 0:
            run.deadline_hit = True
            return None
        left = self._attempts_left(run)
        if len(steps) > left:
            logger.debug(f"[RESOLVER] Retry budget leaves {left} of {len(steps)} probes in this round")
            steps = steps[:left]
        if not steps:
            return None

        semaphore = asyncio.Semaphore(self.config.max_parallel_probes)

        async def bounded(step: PlanStep) -> ProbeOutcome:
            async with semaphore:
                timeout_ms = min(step.timeout_ms, self.config.parallel_probe_timeout_ms)
                return await self._probe(run, step, timeout_ms, recovery)

        tasks = {asyncio.ensure_future(bounded(step)): step for step in steps}
        pending = set(tasks)
        winner: Optional[ProbeOutcome] = None

        while pending and winner is None:
            remaining = run.remaining_ms()
            if remaining <= 0:
                run.deadline_hit = True
                break
            done, pending = await asyncio.wait(
                pending, timeout=remaining / 1000, return_when=asyncio.FIRST_COMPLETED
            )
            successes = []
            for task in done:
                outcome = task.result()
                if outcome.success:
                    successes.append((tasks[task].step, outcome))
            if successes:
                successes.sort(key=lambda pair: pair[0])
                winner = successes[0][1]

        # Losers are cancelled logically: not awaited, their failures still get recorded
        for task in pending:
            self._background_probes.add(task)
            task.add_done_callback(self._background_probes.discard)
        return winner

    async def _probe(self, run: _Run, step: PlanStep, timeout_ms: float, recovery: bool) -> ProbeOutcome:
        timeout_ms = int(max(0, min(timeout_ms, run.remaining_ms())))
        run.attempts += 1
        attempt_index = run.attempts
        started = time.monotonic()
        box = None
        error_kind = None
        error_message = None

        try:
            box = await asyncio.wait_for(
                self._locate_visible(step.selector, timeout_ms),
                timeout=(timeout_ms + self.config.probe_grace_ms) / 1000,
            )
        except asyncio.TimeoutError:
            error_kind = ErrorKind.TIMEOUT
            error_message = str(ProbeTimeout(f"Probe for {step.selector} exceeded {timeout_ms}ms"))
        except SelectorBrainError as e:
            error_kind = e.error_kind
            error_message = str(e)
        except Exception as e:
            error_kind = self.recovery.classify_exception(e)
            error_message = f"{type(e).__name__}: {e}"

        elapsed = (time.monotonic() - started) * 1000
        outcome = ProbeOutcome(
            selector=step.selector,
            selector_kind=step.selector_kind,
            step_type=step.step_type,
            success=error_kind is None,
            execution_time_ms=elapsed,
            error_kind=error_kind,
            error_message=error_message,
            box=box,
        )
        run.outcomes.append(outcome)

        if not outcome.success:
            await self._record_failed_probe(run, step, outcome, attempt_index, recovery)
        return outcome

    async def _locate_visible(self, selector: str, timeout_ms: int) -> BoundingBox:
        handle = await self.driver.locate(selector, timeout_ms)
        if handle is None:
            raise ElementNotFound(f"No element matches {selector}")
        if not await self.driver.is_visible(handle, timeout_ms):
            raise ElementNotFound(f"Element for {selector} is not visible")
        box = await self.driver.bounding_box(handle, timeout_ms)
        if box is None or box.is_empty:
            raise ElementNotFound(f"Element for {selector} has a zero-size bounding box")
        return box

    async def _record_failed_probe(self, run: _Run, step: PlanStep, outcome: ProbeOutcome,
                                   attempt_index: int, recovery: bool):
        request = run.request
        await self.learning.record_attempt(
            domain=request.domain,
            selector=step.selector,
            success=False,
            selector_kind=step.selector_kind,
            execution_time_ms=outcome.execution_time_ms,
            confidence=step.confidence,
            error_message=outcome.error_message,
            task_type=request.task_type,
            element_kind=request.element_kind,
            retry_count=attempt_index - 1,
            error_kind=outcome.error_kind.value if outcome.error_kind else None,
            recovery=recovery,
        )
        if self.events is not None:
            self.events.emit(EventType.PROBE_FAILED, domain=request.domain, data={
                "selector": step.selector,
                "error_kind": outcome.error_kind.value if outcome.error_kind else None,
            })

    # ==================== Recovery ====================

    async def _recover(self, run: _Run, plan: ExecutionPlan, error_kind: ErrorKind) -> Optional[ProbeOutcome]:
        request = run.request
        original = plan.steps[0].selector if plan.steps else f"#{slugify(request.element_text or request.task_type)}"
        context = RecoveryContext(
            original_selector=original,
            error_kind=error_kind,
            domain=request.domain,
            task_type=request.task_type,
            element_kind=request.element_kind,
            element_text=request.element_text,
            error_message=next((o.error_message for o in reversed(run.outcomes) if o.error_message), None),
            retry_count=run.attempts,
        )
        recovery_plan = self.recovery.propose(context)
        if self.events is not None:
            self.events.emit(EventType.RECOVERY_STARTED, domain=request.domain, data={
                "error_kind": error_kind.value,
                "strategies": [a.id for a in recovery_plan.attempts[:self.config.max_recovery_strategies]],
            })
        logger.info(f"[RECOVERY] {recovery_plan.reasoning}")

        known = {s.selector for s in plan.steps}
        for attempt in recovery_plan.attempts[:self.config.max_recovery_strategies]:
            steps = self._recovery_steps(attempt, known, len(plan.steps))
            if not steps:
                continue
            if not await self._begin_round(run):
                break
            if attempt.delay_ms:
                await self._delay(run, attempt.delay_ms)
                if run.remaining_ms() <= 0:
                    run.deadline_hit = True
                    break
            winner = await self._probe_tier(run, steps, recovery=True)
            self.recovery.record_recovery(context, attempt, winner is not None)
            if winner is not None:
                logger.info(f"[RECOVERY] {attempt.id} resolved {request.domain} with {winner.selector}")
                if self.events is not None:
                    self.events.emit(EventType.RECOVERY_SUCCEEDED, domain=request.domain, data={
                        "strategy": attempt.id,
                        "selector": winner.selector,
                    })
                return winner
        return None

    def _recovery_steps(self, attempt: RecoveryAttempt, known: Set[str], offset: int) -> List[PlanStep]:
        steps = []
        for selector in attempt.selectors:
            # Plan selectors are only retried by wait-and-retry strategies
            if selector in known and not attempt.id.startswith("retry_wait"):
                continue
            steps.append(PlanStep(
                step=offset + len(steps) + 1,
                selector=selector,
                selector_kind=classify_selector(selector),
                step_type=StepType.RECOVERY,
                timeout_ms=attempt.timeout_ms,
                wait_before_ms=0,
                expected_success_rate=attempt.confidence,
                confidence=attempt.confidence,
            ))
        return steps

    async def _delay(self, run: _Run, delay_ms: int):
        delay_ms = min(delay_ms, run.remaining_ms())
        if delay_ms > 0:
            await asyncio.sleep(delay_ms / 1000)

    # ==================== Terminal states ====================

    async def _succeed(self, run: _Run, plan: ExecutionPlan, winner: ProbeOutcome,
                       recovery_used: bool) -> ExecutionResult:
        run.state = OrchestratorState.SUCCESS
        request = run.request
        step = next((s for s in plan.steps if s.selector == winner.selector), None)
        confidence = step.confidence if step else 0.0

        await self.learning.record_attempt(
            domain=request.domain,
            selector=winner.selector,
            success=True,
            selector_kind=winner.selector_kind,
            execution_time_ms=winner.execution_time_ms,
            confidence=confidence,
            task_type=request.task_type,
            element_kind=request.element_kind,
            retry_count=run.attempts - 1,
            recovery=recovery_used,
        )

        learnings = [f"Resolved with {winner.selector} ({winner.selector_kind.value}) "
                     f"after {run.attempts} attempt(s)"]
        if recovery_used:
            learnings.append(f"Recovery found {winner.selector}; it will be ranked from history next time")
        elif winner.step_type == StepType.FALLBACK:
            learnings.append("Primary selectors failed; a fallback selector was needed")

        result = ExecutionResult(
            success=True,
            selector_used=winner.selector,
            execution_time_ms=run.elapsed_ms(),
            attempts_used=run.attempts,
            recovery_used=recovery_used,
            learnings=learnings,
            state=run.state,
            selector_kind=winner.selector_kind,
            plan=plan.steps,
            probes=list(run.outcomes),
        )
        self._emit_completed(request, result)
        logger.info(f"[RESOLVER] {request.domain} resolved with {winner.selector} "
                    f"in {result.execution_time_ms:.0f}ms ({run.attempts} attempts)")
        return result

    async def _exhaust(self, run: _Run, plan: ExecutionPlan, error_kind: ErrorKind) -> ExecutionResult:
        run.state = OrchestratorState.EXHAUSTED
        request = run.request
        learnings = self.exhausted_learnings(run, error_kind)
        error = RecoveryExhausted(learnings[0], attempts=run.attempts)

        if plan.steps:
            top = plan.steps[0]
            await self.learning.record_attempt(
                domain=request.domain,
                selector=top.selector,
                success=False,
                selector_kind=top.selector_kind,
                execution_time_ms=run.elapsed_ms(),
                confidence=top.confidence,
                error_message=str(error),
                task_type=request.task_type,
                element_kind=request.element_kind,
                retry_count=run.attempts,
                error_kind=error_kind.value,
            )

        result = ExecutionResult(
            success=False,
            selector_used=None,
            execution_time_ms=run.elapsed_ms(),
            attempts_used=run.attempts,
            recovery_used=False,
            error_kind=error_kind,
            learnings=learnings,
            state=run.state,
            plan=plan.steps,
            probes=list(run.outcomes),
        )
        self._emit_completed(request, result)
        logger.warning(f"[RESOLVER] {request.domain} {request.task_type}/{request.element_kind} "
                       f"exhausted after {run.attempts} attempts ({error_kind.value})")
        return result

    def exhausted_learnings(self, run: _Run, error_kind: ErrorKind) -> List[str]:
        learnings = [
            f"Element could not be resolved after {run.attempts} attempt(s) in {run.rounds} round(s)",
            "Element may be hidden or lazily rendered; wait for the page to settle before resolving",
            "Use browser DevTools to find a stable id or data-testid attribute for this element",
        ]
        if error_kind == ErrorKind.TIMEOUT:
            learnings.append("Probes timed out; increase probe timeouts or check page load speed")
        elif error_kind == ErrorKind.EXECUTION_ERROR:
            learnings.append("Driver calls failed; check selector syntax and that the page is still open")
        elif error_kind == ErrorKind.UNEXPECTED_ERROR:
            learnings.append("An unexpected error interrupted probing; check the driver connection")
        if run.deadline_hit:
            learnings.append(f"Overall deadline of {self.config.max_total_timeout_ms}ms reached")
        elif run.budget_hit:
            learnings.append(f"Retry budget of {self.config.max_retries} attempts used")
        return learnings

    def _emit_completed(self, request: ResolutionRequest, result: ExecutionResult):
        if self.events is None:
            return
        self.events.emit(EventType.RESOLUTION_COMPLETED, domain=request.domain, data={
            "success": result.success,
            "selector": result.selector_used,
            "attempts": result.attempts_used,
            "recovery_used": result.recovery_used,
            "error_kind": result.error_kind.value if result.error_kind else None,
        })

    async def drain(self, timeout_ms: int = 2000):
        """Wait for losing parallel probes still running in the background"""
        if not self._background_probes:
            return
        await asyncio.wait(list(self._background_probes), timeout=timeout_ms / 1000)
