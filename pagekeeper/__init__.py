"""Resilient element resolution and action execution on top of Playwright."""

from .dsl import (
    Candidate,
    OperationOutcome,
    OperationPolicy,
    OutcomeStatus,
    Target,
    registry,
)
from .errors import (
    ActionRejected,
    AutomationError,
    DetachedElement,
    FailureClass,
    NotFound,
    OperationFailed,
    OperationTimeout,
    StrategyRejected,
    TransientNetwork,
    classify_error,
)
from .pages import BasePage
from .runtime import (
    CandidateResolver,
    DiagnosticSink,
    ExecutionContext,
    Executor,
    NetworkMonitor,
    RunConfig,
    browser_session,
    load_config,
    scenario_budget,
)

__version__ = "0.1.0"

__all__ = [
    "ActionRejected",
    "AutomationError",
    "BasePage",
    "Candidate",
    "CandidateResolver",
    "DetachedElement",
    "DiagnosticSink",
    "ExecutionContext",
    "Executor",
    "FailureClass",
    "NetworkMonitor",
    "NotFound",
    "OperationFailed",
    "OperationOutcome",
    "OperationPolicy",
    "OperationTimeout",
    "OutcomeStatus",
    "RunConfig",
    "StrategyRejected",
    "Target",
    "TransientNetwork",
    "browser_session",
    "classify_error",
    "load_config",
    "registry",
    "scenario_budget",
]
