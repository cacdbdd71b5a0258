"""Resilient execution of actions: retry with backoff, then strategy escalation."""

from __future__ import annotations

import asyncio
import logging
import time
from typing import Any, Awaitable, Callable, Dict, Iterable, List, Optional, Tuple

from playwright.async_api import Error as PlaywrightError

from ..dsl.models import (
    ActionBase,
    ClickAction,
    NavigateAction,
    OperationPolicy,
    TargetLike,
    Visibility,
    WaitForElementAction,
)
from ..dsl.outcome import AttemptRecord, ExecutorState, OperationOutcome, OutcomeStatus
from ..dsl.registry import registry
from ..dsl.resolution import ResolvedTarget
from ..errors import AutomationError, FailureClass, NotFound, classify_error, first_line
from .candidate_resolver import CandidateResolver
from .context import ExecutionContext
from .navigation import NavigationState, absolute_url, navigation_backoff, navigation_error_class
from .page_stability import stabilize_page
from .strategies import perform, supported_strategies

log = logging.getLogger(__name__)

NAVIGATION_STRATEGY = "goto"


def next_state(
    failure: Optional[FailureClass],
    *,
    attempt: int,
    strategy_index: int,
    strategy_count: int,
    policy: OperationPolicy,
) -> ExecutorState:
    """Decide what follows an attempt. ``attempt`` is 1-based within the strategy."""

    if failure is None:
        return ExecutorState.SUCCEEDED
    if failure is FailureClass.ACTION_REJECTED:
        return ExecutorState.REJECTED
    has_budget = attempt <= policy.max_retries
    has_next_strategy = strategy_index + 1 < strategy_count
    if failure is FailureClass.STRATEGY_REJECTED:
        if has_next_strategy:
            return ExecutorState.ESCALATING
        return ExecutorState.RETRYING if has_budget else ExecutorState.EXHAUSTED
    if failure.transient:
        if has_budget:
            return ExecutorState.RETRYING
        if policy.escalate_on_exhaustion and has_next_strategy:
            return ExecutorState.ESCALATING
        return ExecutorState.EXHAUSTED
    raise ValueError(f"Unhandled failure class {failure!r}")


def _terminal_status(state: ExecutorState, history: List[AttemptRecord]) -> OutcomeStatus:
    if state is ExecutorState.REJECTED:
        return OutcomeStatus.ACTION_REJECTED
    if history and all(record.failure is FailureClass.NOT_FOUND for record in history):
        return OutcomeStatus.NOT_FOUND
    return OutcomeStatus.EXHAUSTED


class Executor:
    """Runs actions against the context's page with the policy's retry budget."""

    def __init__(
        self,
        context: ExecutionContext,
        *,
        resolver_factory: Callable[[Any], CandidateResolver] = CandidateResolver,
        settle_after_navigation: bool = True,
    ) -> None:
        self.context = context
        self.resolver_factory = resolver_factory
        self.settle_after_navigation = settle_after_navigation

    async def resolve(
        self,
        target: TargetLike,
        visibility: Optional[Visibility] = None,
        timeout_ms: Optional[int] = None,
    ) -> ResolvedTarget:
        policy = self.context.policy
        resolver = self.resolver_factory(self.context.page)
        return await resolver.resolve(
            target,
            visibility or policy.visibility,
            timeout_ms if timeout_ms is not None else policy.resolve_timeout_ms,
        )

    async def execute(self, action: ActionBase | Dict[str, Any], policy: Optional[OperationPolicy] = None) -> OperationOutcome:
        action = registry.parse_action(action)
        if isinstance(action, NavigateAction):
            return await self.navigate(action.url, policy)
        policy = policy or self.context.policy
        strategies = tuple(name for name in policy.strategies if name in supported_strategies(action))
        if not strategies:
            raise ValueError(f"Policy strategies {policy.strategies} cannot perform {action.action_name}")
        history: List[AttemptRecord] = []
        details: Dict[str, Any] = {}
        return await self._bounded(
            action.describe(),
            history,
            details,
            policy,
            lambda: self._run_action(action, policy, strategies, history, details),
        )

    async def navigate(self, url: str, policy: Optional[OperationPolicy] = None) -> OperationOutcome:
        policy = policy or self.context.navigation_policy
        full_url = absolute_url(self.context.config.base_url, url)
        history: List[AttemptRecord] = []
        details: Dict[str, Any] = {"url": full_url}
        return await self._bounded(
            f"navigate {full_url!r}",
            history,
            details,
            policy,
            lambda: self._run_navigation(full_url, policy, history, details),
        )

    async def run(self, actions: Iterable[ActionBase | Dict[str, Any]]) -> List[OperationOutcome]:
        """Execute actions in order, stopping at the first failed outcome."""

        outcomes: List[OperationOutcome] = []
        for action in actions:
            outcome = await self.execute(action)
            outcomes.append(outcome)
            if not outcome.ok:
                break
        return outcomes

    async def _bounded(
        self,
        operation: str,
        history: List[AttemptRecord],
        details: Dict[str, Any],
        policy: OperationPolicy,
        run: Callable[[], Awaitable[OperationOutcome]],
    ) -> OperationOutcome:
        """Run the attempt loop inside the scenario deadline, then finish a failure once.

        Capture and failure logging happen after the deadline scope, so an
        expiring budget cannot cut them short or replace a terminal status.
        """

        remaining = self.context.remaining()
        if remaining is None:
            outcome = await run()
        else:
            try:
                async with asyncio.timeout(max(remaining, 0)):
                    outcome = await run()
            except TimeoutError:
                log.error("%s cancelled: scenario budget exhausted", operation)
                last = history[-1] if history else None
                outcome = OperationOutcome(
                    operation=operation,
                    status=OutcomeStatus.TIMEOUT,
                    history=history,
                    strategy=last.strategy if last else None,
                    attempts=last.attempt if last else 0,
                    error="scenario budget exhausted",
                    details=details,
                )
        if outcome.ok:
            return outcome
        return await self._finish_failure(outcome, policy)

    async def _run_action(
        self,
        action: ActionBase,
        policy: OperationPolicy,
        strategies: Tuple[str, ...],
        history: List[AttemptRecord],
        details: Dict[str, Any],
    ) -> OperationOutcome:
        operation = action.describe()
        strategy_index = 0
        attempt = 1
        while True:
            strategy = strategies[strategy_index]
            timeout = policy.timeout_for(attempt - 1)
            started = time.monotonic()
            failure: Optional[FailureClass] = None
            error: Optional[str] = None
            resolved: Optional[ResolvedTarget] = None
            try:
                resolved = await self._resolve_for(action, policy)
                locator = resolved.locator if resolved else None
                details.update(await perform(self.context.page, action, locator, strategy, timeout))
                await self._check_postcondition(action, policy)
            except NotFound as exc:
                failure, error = FailureClass.NOT_FOUND, str(exc)
                details["probes"] = [probe.as_dict() for probe in exc.probes]
            except AutomationError as exc:
                failure, error = exc.failure or FailureClass.STRATEGY_REJECTED, str(exc)
            except PlaywrightError as exc:
                failure, error = classify_error(exc), first_line(exc)

            state = next_state(
                failure,
                attempt=attempt,
                strategy_index=strategy_index,
                strategy_count=len(strategies),
                policy=policy,
            )
            record = AttemptRecord(
                strategy=strategy,
                attempt=attempt,
                state=state,
                failure=failure,
                error=error,
                timeout_ms=timeout,
                candidate_rank=resolved.rank if resolved else None,
                elapsed_ms=(time.monotonic() - started) * 1000,
            )
            history.append(record)

            if state is ExecutorState.SUCCEEDED:
                details.pop("probes", None)
                self._log_attempt(operation, record)
                outcome = OperationOutcome(
                    operation=operation,
                    status=OutcomeStatus.SUCCEEDED,
                    history=history,
                    strategy=strategy,
                    attempts=attempt,
                    resolved=resolved,
                    details=details,
                )
                log.info("%s succeeded with %s strategy (attempt %d)", operation, strategy, attempt)
                self._log_outcome(outcome)
                return outcome
            if state is ExecutorState.RETRYING:
                record.backoff_ms = policy.backoff_for(attempt - 1)
                self._log_attempt(operation, record)
                log.warning(
                    "%s attempt %d with %s strategy failed (%s): %s. Retrying in %dms",
                    operation,
                    attempt,
                    strategy,
                    failure.value,
                    error,
                    record.backoff_ms,
                )
                await self.context.sleep(record.backoff_ms / 1000)
                attempt += 1
            elif state is ExecutorState.ESCALATING:
                self._log_attempt(operation, record)
                log.warning(
                    "%s: %s strategy failed (%s), escalating to %s",
                    operation,
                    strategy,
                    error,
                    strategies[strategy_index + 1],
                )
                strategy_index += 1
                attempt = 1
            elif state in (ExecutorState.REJECTED, ExecutorState.EXHAUSTED):
                self._log_attempt(operation, record)
                outcome = OperationOutcome(
                    operation=operation,
                    status=_terminal_status(state, history),
                    history=history,
                    strategy=strategy,
                    attempts=attempt,
                    error=error,
                    details=details,
                )
                return outcome
            else:
                raise RuntimeError(f"Unexpected executor state {state}")

    async def _run_navigation(
        self,
        url: str,
        policy: OperationPolicy,
        history: List[AttemptRecord],
        details: Dict[str, Any],
    ) -> OperationOutcome:
        operation = f"navigate {url!r}"
        page = self.context.page
        nav = NavigationState(url=url, wait_until=policy.wait_until_for(0), timeout_ms=policy.timeout_for(0))
        while True:
            nav.attempt += 1
            nav.wait_until = policy.wait_until_for(nav.attempt - 1)
            nav.timeout_ms = policy.timeout_for(nav.attempt - 1)
            started = time.monotonic()
            failure: Optional[FailureClass] = None
            error: Optional[str] = None
            try:
                response = await page.goto(url, wait_until=nav.wait_until, timeout=nav.timeout_ms)
                if response is not None:
                    details["status"] = response.status
            except PlaywrightError as exc:
                failure, error = classify_error(exc, navigation=True), first_line(exc)
                nav.last_error_class = navigation_error_class(failure, str(exc))

            state = next_state(failure, attempt=nav.attempt, strategy_index=0, strategy_count=1, policy=policy)
            record = AttemptRecord(
                strategy=NAVIGATION_STRATEGY,
                attempt=nav.attempt,
                state=state,
                failure=failure,
                error=error,
                timeout_ms=nav.timeout_ms,
                wait_until=nav.wait_until,
                elapsed_ms=(time.monotonic() - started) * 1000,
            )
            history.append(record)

            if state is ExecutorState.SUCCEEDED:
                self._log_attempt(operation, record)
                log.info("Successfully navigated to %s (wait_until=%s, attempt %d)", url, nav.wait_until, nav.attempt)
                if self.settle_after_navigation:
                    await stabilize_page(page)
                outcome = OperationOutcome(
                    operation=operation,
                    status=OutcomeStatus.SUCCEEDED,
                    history=history,
                    strategy=NAVIGATION_STRATEGY,
                    attempts=nav.attempt,
                    details=details,
                )
                self._log_outcome(outcome)
                return outcome
            if state is ExecutorState.RETRYING:
                record.backoff_ms = navigation_backoff(policy.backoff_for(nav.attempt - 1), error or "")
                self._log_attempt(operation, record)
                log.warning(
                    "Navigation attempt %d failed (%s, %s): %s. Retrying in %dms",
                    nav.attempt,
                    failure.value,
                    nav.last_error_class,
                    error,
                    record.backoff_ms,
                )
                await self.context.sleep(record.backoff_ms / 1000)
            elif state in (ExecutorState.REJECTED, ExecutorState.EXHAUSTED):
                self._log_attempt(operation, record)
                details["last_error_class"] = nav.last_error_class
                outcome = OperationOutcome(
                    operation=operation,
                    status=_terminal_status(state, history),
                    history=history,
                    strategy=NAVIGATION_STRATEGY,
                    attempts=nav.attempt,
                    error=error,
                    details=details,
                )
                return outcome
            else:
                raise RuntimeError(f"Unexpected navigation state {state}")

    async def _resolve_for(self, action: ActionBase, policy: OperationPolicy) -> Optional[ResolvedTarget]:
        target = action.target_spec
        if target is None:
            return None
        visibility: Visibility = policy.visibility
        if isinstance(action, WaitForElementAction):
            if action.state in ("hidden", "detached"):
                return None
            visibility = "attached" if action.state == "attached" else "visible"
        resolver = self.resolver_factory(self.context.page)
        return await resolver.resolve(target, visibility, policy.resolve_timeout_ms)

    async def _check_postcondition(self, action: ActionBase, policy: OperationPolicy) -> None:
        if isinstance(action, ClickAction) and action.expect is not None:
            resolver = self.resolver_factory(self.context.page)
            await resolver.resolve(action.expect, "visible", policy.resolve_timeout_ms)

    async def _finish_failure(self, outcome: OperationOutcome, policy: OperationPolicy) -> OperationOutcome:
        diagnostics = self.context.diagnostics
        if policy.capture_on_failure and diagnostics is not None:
            try:
                outcome.snapshot = await diagnostics.capture(
                    self.context.page,
                    outcome.operation,
                    summary=outcome.as_dict(),
                )
            except Exception as exc:
                log.warning("Diagnostic capture failed for %s: %s", outcome.operation, exc)
        log.error(outcome.failure_message())
        self._log_outcome(outcome)
        return outcome

    def _log_attempt(self, operation: str, record: AttemptRecord) -> None:
        if self.context.events is None:
            return
        self.context.events.log_event(
            "attempt",
            operation=operation,
            strategy=record.strategy,
            attempt=record.attempt,
            state=record.state.value,
            failure=record.failure.value if record.failure else None,
            error=record.error,
            candidate_rank=record.candidate_rank,
            metadata={
                "timeout_ms": record.timeout_ms,
                "backoff_ms": record.backoff_ms,
                "wait_until": record.wait_until,
            },
        )

    def _log_outcome(self, outcome: OperationOutcome) -> None:
        if self.context.events is None:
            return
        self.context.events.log_event(
            "outcome",
            operation=outcome.operation,
            strategy=outcome.strategy,
            attempt=outcome.attempts,
            state=outcome.status.value,
            error=outcome.error,
            candidate_rank=outcome.resolved.rank if outcome.resolved else None,
            snapshot_path=outcome.snapshot,
            metadata={"total_attempts": outcome.total_attempts, "strategies": outcome.strategies_tried},
        )
