"""Failure taxonomy shared by the resolver and the executor."""

from __future__ import annotations

import re
from enum import Enum
from typing import TYPE_CHECKING, Any, Dict, List, Optional, Tuple

from playwright.async_api import TimeoutError as PlaywrightTimeoutError

if TYPE_CHECKING:
    from .dsl.models import Target
    from .dsl.outcome import OperationOutcome
    from .dsl.resolution import CandidateProbe


class FailureClass(str, Enum):
    NOT_FOUND = "not_found"
    TIMEOUT = "timeout"
    ACTION_REJECTED = "action_rejected"
    TRANSIENT_NETWORK = "transient_network"
    DETACHED = "detached"
    STRATEGY_REJECTED = "strategy_rejected"

    @property
    def transient(self) -> bool:
        return self in _TRANSIENT


_TRANSIENT = frozenset(
    {
        FailureClass.NOT_FOUND,
        FailureClass.TIMEOUT,
        FailureClass.TRANSIENT_NETWORK,
        FailureClass.DETACHED,
    }
)


class AutomationError(Exception):
    failure: Optional[FailureClass] = None

    def __init__(self, message: str, *, code: str = "AUTOMATION_ERROR", details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.code = code
        self.details = details or {}


class NotFound(AutomationError):
    failure = FailureClass.NOT_FOUND

    def __init__(self, target: "Target", probes: List["CandidateProbe"]):
        tried = "; ".join(probe.summary() for probe in probes)
        super().__init__(
            f"No candidate matched for {target.describe()!r}: {tried}",
            code="NOT_FOUND",
            details={"probes": [probe.as_dict() for probe in probes]},
        )
        self.target = target
        self.probes = probes


class OperationTimeout(AutomationError):
    failure = FailureClass.TIMEOUT

    def __init__(self, message: str, **kwargs: Any):
        kwargs.setdefault("code", "TIMEOUT")
        super().__init__(message, **kwargs)


class ActionRejected(AutomationError):
    failure = FailureClass.ACTION_REJECTED

    def __init__(self, message: str, **kwargs: Any):
        kwargs.setdefault("code", "ACTION_REJECTED")
        super().__init__(message, **kwargs)


class TransientNetwork(AutomationError):
    failure = FailureClass.TRANSIENT_NETWORK

    def __init__(self, message: str, **kwargs: Any):
        kwargs.setdefault("code", "TRANSIENT_NETWORK")
        super().__init__(message, **kwargs)


class DetachedElement(AutomationError):
    failure = FailureClass.DETACHED

    def __init__(self, message: str, **kwargs: Any):
        kwargs.setdefault("code", "DETACHED")
        super().__init__(message, **kwargs)


class StrategyRejected(AutomationError):
    """The current interaction strategy cannot complete; another one might."""

    failure = FailureClass.STRATEGY_REJECTED

    def __init__(self, message: str, **kwargs: Any):
        kwargs.setdefault("code", "STRATEGY_REJECTED")
        super().__init__(message, **kwargs)


class OperationFailed(AutomationError):
    """Raised by ``OperationOutcome.raise_for_status`` for terminal failures."""

    def __init__(self, outcome: "OperationOutcome"):
        super().__init__(outcome.failure_message(), code=outcome.status.value.upper(), details=outcome.as_dict())
        self.outcome = outcome


_NETWORK_MARKERS = (
    "net::",
    "err_connection",
    "err_http2_protocol_error",
    "err_name_not_resolved",
    "err_internet_disconnected",
    "err_network_changed",
    "err_aborted",
    "ns_error_",
)
_DETACHED_MARKERS = (
    "not attached to the dom",
    "element is not attached",
    "detached",
    "execution context was destroyed",
    "frame was detached",
    "element handle is stale",
)
_REJECTED_MARKERS = (
    "element is not enabled",
    "element is disabled",
    "element is not editable",
    "not an <input>",
    "readonly",
    "cannot navigate to invalid url",
    "protocol error (page.navigate): invalid url",
)
_STRATEGY_MARKERS = (
    "intercepts pointer events",
    "element is not visible",
    "outside of the viewport",
    "element is not stable",
    "not receiving pointer events",
)
_ACTIONABILITY_REJECTED = (
    "element is not enabled",
    "element is disabled",
    "element is not editable",
)
_QUOTED_LOCATOR = re.compile(r"""locator\((?:"(?:[^"\\]|\\.)*"|'(?:[^'\\]|\\.)*')\)""")


def _split_message(exc: BaseException) -> Tuple[str, List[str]]:
    """Lowercased error text before Playwright's call log, and the call log lines.

    Quoted locators are blanked so selector text such as ``:not([readonly])``
    never reads as an error marker.
    """

    head, _, call_log = str(exc).lower().partition("call log:")
    head = _QUOTED_LOCATOR.sub("locator()", head)
    lines = [
        _QUOTED_LOCATOR.sub("locator()", line)
        for line in call_log.splitlines()
        if line.strip() and "waiting for" not in line
    ]
    return head, lines


def classify_error(exc: BaseException, *, navigation: bool = False) -> FailureClass:
    """Map an exception raised during an attempt to a failure class.

    The message proper is matched against every marker. The call log only
    contributes the actionability checks Playwright reports there (disabled
    element, covering overlay, unstable or off-screen element).
    """

    if isinstance(exc, AutomationError) and exc.failure is not None:
        return exc.failure
    head, call_log = _split_message(exc)
    if any(marker in head for marker in _REJECTED_MARKERS):
        return FailureClass.ACTION_REJECTED
    if any(marker in head for marker in _NETWORK_MARKERS):
        return FailureClass.TRANSIENT_NETWORK
    if any(marker in head for marker in _DETACHED_MARKERS):
        return FailureClass.DETACHED
    if any(marker in head for marker in _STRATEGY_MARKERS):
        return FailureClass.STRATEGY_REJECTED
    for line in call_log:
        if any(marker in line for marker in _ACTIONABILITY_REJECTED):
            return FailureClass.ACTION_REJECTED
        if any(marker in line for marker in _STRATEGY_MARKERS):
            return FailureClass.STRATEGY_REJECTED
    if isinstance(exc, PlaywrightTimeoutError) or "timeout" in head:
        return FailureClass.TIMEOUT
    if navigation:
        # Any other navigation error is not something a retry can fix.
        return FailureClass.ACTION_REJECTED
    return FailureClass.STRATEGY_REJECTED


def first_line(exc: BaseException) -> str:
    """First line of an exception message; Playwright appends multi-line call logs."""

    text = str(exc).strip()
    return text.splitlines()[0] if text else type(exc).__name__
