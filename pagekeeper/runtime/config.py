"""Configuration loader for the automation runtime."""

from __future__ import annotations

import os
import tomllib
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List

from ..dsl.models import OperationPolicy
from .structured_logging import LogPaths, prepare_log_paths

ENV_PREFIX = "PAGEKEEPER_"

DEFAULTS: Dict[str, Any] = {
    "base_url": "",
    "action_timeout_ms": 10000,
    "navigation_timeout_ms": 120000,
    "resolve_timeout_ms": 5000,
    "max_retries": 2,
    "navigation_retries": 2,
    "retry_backoff_base": 0.5,
    "retry_backoff_max": 5.0,
    "navigation_backoff_step": 2.0,
    "navigation_backoff_max": 10.0,
    "scenario_timeout_ms": 120000,
    "log_root": "runs",
    "headless": True,
    "screenshot_mode": "full",
}


def _as_bool(value: Any) -> bool:
    return str(value).lower() in {"true", "1", "yes"}


@dataclass(slots=True)
class RunConfig:
    base_url: str = DEFAULTS["base_url"]
    action_timeout_ms: int = DEFAULTS["action_timeout_ms"]
    navigation_timeout_ms: int = DEFAULTS["navigation_timeout_ms"]
    resolve_timeout_ms: int = DEFAULTS["resolve_timeout_ms"]
    max_retries: int = DEFAULTS["max_retries"]
    navigation_retries: int = DEFAULTS["navigation_retries"]
    retry_backoff_base: float = DEFAULTS["retry_backoff_base"]
    retry_backoff_max: float = DEFAULTS["retry_backoff_max"]
    navigation_backoff_step: float = DEFAULTS["navigation_backoff_step"]
    navigation_backoff_max: float = DEFAULTS["navigation_backoff_max"]
    scenario_timeout_ms: int = DEFAULTS["scenario_timeout_ms"]
    log_root: Path = field(default_factory=lambda: Path(DEFAULTS["log_root"]))
    headless: bool = DEFAULTS["headless"]
    screenshot_mode: str = DEFAULTS["screenshot_mode"]

    @classmethod
    def from_mapping(cls, mapping: Dict[str, Any]) -> "RunConfig":
        data = dict(DEFAULTS)
        data.update(mapping)
        return cls(
            base_url=str(data["base_url"]),
            action_timeout_ms=int(data["action_timeout_ms"]),
            navigation_timeout_ms=int(data["navigation_timeout_ms"]),
            resolve_timeout_ms=int(data["resolve_timeout_ms"]),
            max_retries=int(data["max_retries"]),
            navigation_retries=int(data["navigation_retries"]),
            retry_backoff_base=float(data["retry_backoff_base"]),
            retry_backoff_max=float(data["retry_backoff_max"]),
            navigation_backoff_step=float(data["navigation_backoff_step"]),
            navigation_backoff_max=float(data["navigation_backoff_max"]),
            scenario_timeout_ms=int(data["scenario_timeout_ms"]),
            log_root=Path(data["log_root"]),
            headless=_as_bool(data["headless"]),
            screenshot_mode=str(data["screenshot_mode"]),
        )

    def action_policy(self, **overrides: Any) -> OperationPolicy:
        """Exponential backoff capped at ``retry_backoff_max`` seconds.

        An explicit ``backoff_ms`` override replaces the computed schedule.
        """

        params: Dict[str, Any] = {
            "timeout_ms": self.action_timeout_ms,
            "resolve_timeout_ms": self.resolve_timeout_ms,
        }
        params.update(overrides)
        max_retries = params.pop("max_retries", self.max_retries)
        if "backoff_ms" in params:
            return OperationPolicy(max_retries=max_retries, **params)
        return OperationPolicy.exponential(
            base_ms=int(self.retry_backoff_base * 1000),
            cap_ms=int(self.retry_backoff_max * 1000),
            max_retries=max_retries,
            **params,
        )

    def navigation_policy(self, **overrides: Any) -> OperationPolicy:
        """Linear backoff (2s, 4s, 6s, ...) with a shrinking per-attempt timeout."""

        retries = overrides.pop("max_retries", self.navigation_retries)
        step_ms = int(self.navigation_backoff_step * 1000)
        cap_ms = int(self.navigation_backoff_max * 1000)
        schedule: List[int] = [min(step_ms * (index + 1), cap_ms) for index in range(max(retries, 1))]
        params: Dict[str, Any] = {
            "max_retries": retries,
            "timeout_ms": self.navigation_timeout_ms,
            "timeout_step_ms": 20000,
            "min_timeout_ms": min(60000, self.navigation_timeout_ms),
            "backoff_ms": tuple(schedule),
            "strategies": ("standard",),
        }
        params.update(overrides)
        return OperationPolicy(**params)


def _load_toml(path: Path) -> Dict[str, Any]:
    if not path.exists():
        return {}
    with path.open("rb") as fh:
        return tomllib.load(fh)


def load_config(config_path: Path | None = None) -> RunConfig:
    """Load configuration from environment, optional TOML file, and defaults."""

    env_map: Dict[str, Any] = {}
    for key, value in os.environ.items():
        if key.startswith(ENV_PREFIX):
            env_map[key[len(ENV_PREFIX):].lower()] = value

    file_map: Dict[str, Any] = {}
    path = config_path or Path("pagekeeper.toml")
    if path.exists():
        file_map = _load_toml(path).get("pagekeeper", {})

    merged = {**file_map, **env_map}
    merged = {key: value for key, value in merged.items() if key in DEFAULTS}
    return RunConfig.from_mapping(merged)


def ensure_run_directories(run_id: str, config: RunConfig) -> LogPaths:
    return prepare_log_paths(config.log_root / run_id)
