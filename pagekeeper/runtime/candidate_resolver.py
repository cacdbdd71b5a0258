"""Ordered candidate resolution against a live page or frame."""

from __future__ import annotations

import asyncio
import logging
import time
from typing import Any, Callable, Optional, Tuple

from playwright.async_api import Error as PlaywrightError, TimeoutError as PlaywrightTimeoutError

from ..dsl.models import Candidate, TargetLike, Visibility, as_target
from ..dsl.resolution import CandidateProbe, ProbeFailure, ResolvedTarget
from ..errors import NotFound, first_line

log = logging.getLogger(__name__)

DEFAULT_CANDIDATE_TIMEOUT = 5_000
ENABLED_POLL_INTERVAL = 0.1


class CandidateResolver:
    """Try candidates strictly in priority order and return the first live match.

    Each candidate gets its own timeout for the visibility requirement. The
    first candidate that satisfies it wins even when a later, more specific
    candidate would also match, so callers must list the most reliable
    candidates first.
    """

    def __init__(self, root: Any, *, clock: Callable[[], float] = time.monotonic) -> None:
        self.root = root
        self._clock = clock

    async def resolve(
        self,
        target: TargetLike,
        visibility: Visibility = "visible",
        timeout_ms: int = DEFAULT_CANDIDATE_TIMEOUT,
    ) -> ResolvedTarget:
        target = as_target(target)
        probes = []
        for rank, candidate in enumerate(target.candidates):
            probe, locator = await self._probe(rank, candidate, visibility, timeout_ms)
            probes.append(probe)
            if probe.matched:
                log.debug("Resolved %r with %s", target.describe(), candidate.label(rank))
                return ResolvedTarget(target=target, rank=rank, locator=locator, probes=probes)
            log.debug("Candidate probe failed: %s", probe.summary())
        raise NotFound(target, probes)

    async def _probe(
        self,
        rank: int,
        candidate: Candidate,
        visibility: Visibility,
        timeout_ms: int,
    ) -> Tuple[CandidateProbe, Optional[Any]]:
        started = self._clock()

        def probe(failure: Optional[ProbeFailure], detail: str = "") -> CandidateProbe:
            elapsed = (self._clock() - started) * 1000
            return CandidateProbe(rank=rank, candidate=candidate, failure=failure, detail=detail, elapsed_ms=elapsed)

        try:
            locator = candidate.locate(self.root)
        except (PlaywrightError, ValueError, TypeError) as exc:
            return probe(ProbeFailure.ERROR, first_line(exc)), None

        state = "attached" if visibility == "attached" else "visible"
        try:
            await locator.wait_for(state=state, timeout=timeout_ms)
        except PlaywrightTimeoutError:
            failure = await self._classify_timeout(locator)
            return probe(failure, f"not {state} within {timeout_ms}ms"), None
        except PlaywrightError as exc:
            return probe(ProbeFailure.ERROR, first_line(exc)), None

        if visibility == "enabled":
            remaining_ms = timeout_ms - (self._clock() - started) * 1000
            if not await self._wait_enabled(locator, remaining_ms):
                return probe(ProbeFailure.DISABLED, "present but disabled"), None

        return probe(None), locator

    async def _classify_timeout(self, locator: Any) -> ProbeFailure:
        try:
            count = await locator.count()
        except PlaywrightError:
            return ProbeFailure.ABSENT
        return ProbeFailure.HIDDEN if count else ProbeFailure.ABSENT

    async def _wait_enabled(self, locator: Any, remaining_ms: float) -> bool:
        deadline = self._clock() + max(remaining_ms, 0) / 1000
        while True:
            try:
                if await locator.is_enabled():
                    return True
            except PlaywrightError as exc:
                log.debug("is_enabled probe failed: %s", exc)
                return False
            if self._clock() >= deadline:
                return False
            await asyncio.sleep(ENABLED_POLL_INTERVAL)
