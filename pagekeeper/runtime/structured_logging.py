"""Structured logging utilities for automation runs."""

from __future__ import annotations

import json
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Optional


@dataclass(slots=True)
class LogPaths:
    base: Path
    shots: Path
    events: Path


class StructuredLogger:
    """Writes one JSONL event per attempt and per terminal outcome."""

    def __init__(self, run_id: str, paths: LogPaths) -> None:
        self.run_id = run_id
        self.paths = paths
        self._step = 0
        self._events_file = paths.events.open("a", encoding="utf-8")

    def log_event(
        self,
        event: str,
        *,
        operation: str,
        strategy: Optional[str] = None,
        attempt: Optional[int] = None,
        state: Optional[str] = None,
        failure: Optional[str] = None,
        error: Optional[str] = None,
        candidate_rank: Optional[int] = None,
        snapshot_path: Optional[Path] = None,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> int:
        self._step += 1
        payload = {
            "ts": time.time(),
            "run_id": self.run_id,
            "step": self._step,
            "event": event,
            "operation": operation,
            "strategy": strategy,
            "attempt": attempt,
            "state": state,
            "failure": failure,
            "error": error,
            "candidate_rank": candidate_rank,
            "snapshot_path": str(snapshot_path) if snapshot_path else None,
            "metadata": metadata or {},
        }
        self._events_file.write(json.dumps(payload, ensure_ascii=False) + "\n")
        self._events_file.flush()
        return self._step

    def close(self) -> None:
        if not self._events_file.closed:
            self._events_file.close()


def prepare_log_paths(base_dir: Path) -> LogPaths:
    base_dir.mkdir(parents=True, exist_ok=True)
    shots_dir = base_dir / "shots"
    shots_dir.mkdir(parents=True, exist_ok=True)
    events_file = base_dir / "events.jsonl"
    return LogPaths(base=base_dir, shots=shots_dir, events=events_file)
