"""Data structures for candidate resolution."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional

from .models import Candidate, Target


class ProbeFailure(str, Enum):
    ABSENT = "absent"
    HIDDEN = "hidden"
    DISABLED = "disabled"
    ERROR = "error"


@dataclass(slots=True)
class CandidateProbe:
    """Result of probing a single candidate against the live document."""

    rank: int
    candidate: Candidate
    failure: Optional[ProbeFailure] = None
    detail: str = ""
    elapsed_ms: float = 0.0

    @property
    def matched(self) -> bool:
        return self.failure is None

    def summary(self) -> str:
        label = self.candidate.label(self.rank)
        if self.matched:
            return f"{label}: matched"
        text = f"{label}: {self.failure.value}"
        if self.detail:
            text += f" ({self.detail})"
        return text

    def as_dict(self) -> Dict[str, Any]:
        return {
            "rank": self.rank,
            "query": self.candidate.query,
            "by": self.candidate.by,
            "tag": self.candidate.tag,
            "failure": self.failure.value if self.failure else None,
            "detail": self.detail,
            "elapsed_ms": round(self.elapsed_ms, 1),
        }


@dataclass(slots=True)
class ResolvedTarget:
    """A live locator for the earliest-ranked candidate that matched."""

    target: Target
    rank: int
    locator: Any = field(repr=False)
    probes: List[CandidateProbe] = field(default_factory=list)

    def __post_init__(self) -> None:
        if not 0 <= self.rank < len(self.target.candidates):
            raise ValueError(f"rank {self.rank} is outside the candidate list")

    @property
    def candidate(self) -> Candidate:
        return self.target.candidates[self.rank]

    @property
    def tag(self) -> Optional[str]:
        return self.candidate.tag

    def as_dict(self) -> Dict[str, Any]:
        return {
            "target": self.target.describe(),
            "rank": self.rank,
            "query": self.candidate.query,
            "tag": self.candidate.tag,
            "probes": [probe.as_dict() for probe in self.probes],
        }
