"""Typed descriptions of targets, policies, actions and outcomes."""

from .models import (
    ActionBase,
    Candidate,
    ClickAction,
    FillAction,
    HoverAction,
    NavigateAction,
    OperationPolicy,
    PressKeyAction,
    SetFilesAction,
    Target,
    TargetLike,
    WaitForElementAction,
    WaitForLoadStateAction,
    as_target,
)
from .outcome import AttemptRecord, ExecutorState, OperationOutcome, OutcomeStatus
from .registry import ActionRegistry, registry
from .resolution import CandidateProbe, ProbeFailure, ResolvedTarget

__all__ = [
    "ActionBase",
    "ActionRegistry",
    "AttemptRecord",
    "Candidate",
    "CandidateProbe",
    "ClickAction",
    "ExecutorState",
    "FillAction",
    "HoverAction",
    "NavigateAction",
    "OperationOutcome",
    "OperationPolicy",
    "OutcomeStatus",
    "PressKeyAction",
    "ProbeFailure",
    "ResolvedTarget",
    "SetFilesAction",
    "Target",
    "TargetLike",
    "WaitForElementAction",
    "WaitForLoadStateAction",
    "as_target",
    "registry",
]
