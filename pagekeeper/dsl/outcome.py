"""Outcome records returned by the resilient executor."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, Dict, List, Optional

from ..errors import FailureClass, OperationFailed
from .resolution import ResolvedTarget


class ExecutorState(str, Enum):
    ATTEMPTING = "attempting"
    RETRYING = "retrying"
    ESCALATING = "escalating"
    SUCCEEDED = "succeeded"
    REJECTED = "rejected"
    EXHAUSTED = "exhausted"


class OutcomeStatus(str, Enum):
    SUCCEEDED = "succeeded"
    NOT_FOUND = "not_found"
    TIMEOUT = "timeout"
    ACTION_REJECTED = "action_rejected"
    EXHAUSTED = "exhausted"


@dataclass(slots=True)
class AttemptRecord:
    strategy: str
    attempt: int
    state: ExecutorState
    failure: Optional[FailureClass] = None
    error: Optional[str] = None
    timeout_ms: Optional[int] = None
    backoff_ms: int = 0
    wait_until: Optional[str] = None
    candidate_rank: Optional[int] = None
    elapsed_ms: float = 0.0

    def as_dict(self) -> Dict[str, Any]:
        return {
            "strategy": self.strategy,
            "attempt": self.attempt,
            "state": self.state.value,
            "failure": self.failure.value if self.failure else None,
            "error": self.error,
            "timeout_ms": self.timeout_ms,
            "backoff_ms": self.backoff_ms,
            "wait_until": self.wait_until,
            "candidate_rank": self.candidate_rank,
            "elapsed_ms": round(self.elapsed_ms, 1),
        }


@dataclass(slots=True)
class OperationOutcome:
    operation: str
    status: OutcomeStatus
    history: List[AttemptRecord] = field(default_factory=list)
    strategy: Optional[str] = None
    attempts: int = 0
    resolved: Optional[ResolvedTarget] = None
    snapshot: Optional[Path] = None
    error: Optional[str] = None
    details: Dict[str, Any] = field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return self.status is OutcomeStatus.SUCCEEDED

    @property
    def total_attempts(self) -> int:
        return len(self.history)

    @property
    def strategies_tried(self) -> List[str]:
        seen: List[str] = []
        for record in self.history:
            if record.strategy not in seen:
                seen.append(record.strategy)
        return seen

    @property
    def wait_until_history(self) -> List[str]:
        return [record.wait_until for record in self.history if record.wait_until]

    @property
    def candidate_ranks_tried(self) -> List[int]:
        ranks: List[int] = []
        for probe in self.details.get("probes", []):
            if probe["rank"] not in ranks:
                ranks.append(probe["rank"])
        for record in self.history:
            if record.candidate_rank is not None and record.candidate_rank not in ranks:
                ranks.append(record.candidate_rank)
        return sorted(ranks)

    def failure_message(self) -> str:
        if self.ok:
            return f"{self.operation} succeeded"
        parts = [f"{self.operation} failed ({self.status.value}) after {self.total_attempts} attempt(s)"]
        strategies = self.strategies_tried
        if strategies:
            parts.append("strategies tried: " + " -> ".join(strategies))
        ranks = self.candidate_ranks_tried
        if ranks:
            parts.append("candidate ranks tried: " + ", ".join(str(rank) for rank in ranks))
        if self.error:
            parts.append(f"last error: {self.error}")
        if self.snapshot:
            parts.append(f"snapshot: {self.snapshot}")
        return "; ".join(parts)

    def raise_for_status(self) -> "OperationOutcome":
        if not self.ok:
            raise OperationFailed(self)
        return self

    def as_dict(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "operation": self.operation,
            "status": self.status.value,
            "ok": self.ok,
            "strategy": self.strategy,
            "attempts": self.attempts,
            "history": [record.as_dict() for record in self.history],
        }
        if self.resolved is not None:
            payload["resolved"] = self.resolved.as_dict()
        if self.snapshot is not None:
            payload["snapshot"] = str(self.snapshot)
        if self.error:
            payload["error"] = self.error
        if self.details:
            payload["details"] = self.details
        return payload
