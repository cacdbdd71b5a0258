"""Exclusive Chromium session wired to an execution context."""

from __future__ import annotations

import asyncio
import logging
import time
import weakref
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import Any, AsyncIterator, Optional

from playwright.async_api import Error as PlaywrightError, async_playwright

from .config import RunConfig, ensure_run_directories
from .context import ExecutionContext
from .diagnostics import DiagnosticSink
from .structured_logging import StructuredLogger

log = logging.getLogger(__name__)

# HTTP/2 is disabled because the target sites reset multiplexed connections.
CHROMIUM_ARGS = (
    "--disable-http2",
    "--disable-features=IsolateOrigins,site-per-process",
    "--disable-blink-features=AutomationControlled",
)
DEFAULT_VIEWPORT = {"width": 1920, "height": 1080}

_SESSION_LOCKS: "weakref.WeakKeyDictionary[asyncio.AbstractEventLoop, asyncio.Lock]" = weakref.WeakKeyDictionary()


def _session_lock() -> asyncio.Lock:
    loop = asyncio.get_running_loop()
    lock = _SESSION_LOCKS.get(loop)
    if lock is None:
        lock = _SESSION_LOCKS[loop] = asyncio.Lock()
    return lock


@dataclass(slots=True)
class BrowserSession:
    browser: Any
    browser_context: Any
    page: Any
    context: ExecutionContext
    run_id: str


@asynccontextmanager
async def browser_session(config: Optional[RunConfig] = None, *, run_id: Optional[str] = None) -> AsyncIterator[BrowserSession]:
    """Launch Chromium, open one page and hand out its execution context.

    Sessions are serialised: a second caller waits until the first one has
    closed its browser.
    """

    config = config or RunConfig()
    run_id = run_id or time.strftime("run-%Y%m%d-%H%M%S")
    paths = ensure_run_directories(run_id, config)

    async with _session_lock():
        async with async_playwright() as playwright:
            browser = await playwright.chromium.launch(headless=config.headless, args=list(CHROMIUM_ARGS))
            events = StructuredLogger(run_id, paths)
            try:
                browser_context = await browser.new_context(viewport=DEFAULT_VIEWPORT)
                browser_context.set_default_timeout(config.action_timeout_ms)
                browser_context.set_default_navigation_timeout(config.navigation_timeout_ms)
                page = await browser_context.new_page()
                context = ExecutionContext(
                    page,
                    config=config,
                    events=events,
                    diagnostics=DiagnosticSink(paths.shots, full_page=config.screenshot_mode == "full"),
                )
                log.info("Browser session %s started (headless=%s)", run_id, config.headless)
                yield BrowserSession(browser, browser_context, page, context, run_id)
            finally:
                events.close()
                try:
                    await browser.close()
                except PlaywrightError as exc:
                    log.warning("Browser close failed for %s: %s", run_id, exc)
                log.info("Browser session %s closed", run_id)
