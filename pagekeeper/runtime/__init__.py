"""Runtime pieces: resolver, executor, navigation, diagnostics and session."""

from .candidate_resolver import CandidateResolver
from .config import RunConfig, ensure_run_directories, load_config
from .context import ExecutionContext, scenario_budget
from .diagnostics import DiagnosticSink
from .executor import Executor, next_state
from .network_monitor import NetworkMonitor
from .session import BrowserSession, browser_session
from .structured_logging import LogPaths, StructuredLogger, prepare_log_paths

__all__ = [
    "BrowserSession",
    "CandidateResolver",
    "DiagnosticSink",
    "ExecutionContext",
    "Executor",
    "LogPaths",
    "NetworkMonitor",
    "RunConfig",
    "StructuredLogger",
    "browser_session",
    "ensure_run_directories",
    "load_config",
    "next_state",
    "prepare_log_paths",
    "scenario_budget",
]
