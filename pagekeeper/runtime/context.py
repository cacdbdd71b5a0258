"""Explicit per-scenario context threaded through resolver and executor calls."""

from __future__ import annotations

import asyncio
import logging
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Awaitable, Callable, Optional

from ..dsl.models import OperationPolicy
from .config import RunConfig
from .diagnostics import DiagnosticSink
from .structured_logging import StructuredLogger

log = logging.getLogger(__name__)

Sleep = Callable[[float], Awaitable[Any]]


class ExecutionContext:
    """Page, policies, event log, diagnostic sink and deadline for one scenario."""

    def __init__(
        self,
        page: Any,
        *,
        config: Optional[RunConfig] = None,
        policy: Optional[OperationPolicy] = None,
        navigation_policy: Optional[OperationPolicy] = None,
        events: Optional[StructuredLogger] = None,
        diagnostics: Optional[DiagnosticSink] = None,
        sleep: Sleep = asyncio.sleep,
    ) -> None:
        self.page = page
        self.config = config or RunConfig()
        self.policy = policy or self.config.action_policy()
        self.navigation_policy = navigation_policy or self.config.navigation_policy()
        self.events = events
        self.diagnostics = diagnostics
        self.sleep = sleep
        self.deadline: Optional[float] = None

    def remaining(self) -> Optional[float]:
        if self.deadline is None:
            return None
        return self.deadline - asyncio.get_running_loop().time()


@asynccontextmanager
async def scenario_budget(context: ExecutionContext, seconds: Optional[float] = None) -> AsyncIterator[ExecutionContext]:
    """Bound every executor call inside the block by a wall-clock deadline.

    Calls that cross the deadline are cancelled and return a ``timeout``
    outcome instead of blocking the scenario.
    """

    if seconds is None:
        seconds = context.config.scenario_timeout_ms / 1000
    previous = context.deadline
    deadline = asyncio.get_running_loop().time() + seconds
    context.deadline = deadline if previous is None else min(previous, deadline)
    log.debug("Scenario budget set to %.1fs", seconds)
    try:
        yield context
    finally:
        context.deadline = previous
