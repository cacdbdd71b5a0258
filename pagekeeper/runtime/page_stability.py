"""Best-effort helpers that let dynamic pages settle after navigation."""

from __future__ import annotations

import asyncio
import logging

from playwright.async_api import Error as PlaywrightError, Page

log = logging.getLogger(__name__)

DEFAULT_SETTLE_TIMEOUT = 2_000

_LOADING_SELECTORS = (
    ".loading, .spinner, .loader",
    "[data-testid*='loading'], [data-testid*='spinner']",
    "[aria-busy='true']",
    ".MuiCircularProgress-root, .ant-spin",
)

_DOM_IDLE_SCRIPT = """
    (timeoutMs) => new Promise(resolve => {
        const threshold = 300;
        let last = Date.now();
        const ob = new MutationObserver(() => (last = Date.now()));
        ob.observe(document, {subtree: true, childList: true, attributes: true});
        const start = Date.now();
        (function check() {
            if (Date.now() - last > threshold) {
                ob.disconnect();
                resolve(true);
                return;
            }
            if (Date.now() - start > timeoutMs) {
                ob.disconnect();
                resolve(false);
                return;
            }
            setTimeout(check, 50);
        })();
    })
"""


async def wait_dom_idle(page: Page, timeout_ms: int = DEFAULT_SETTLE_TIMEOUT) -> bool:
    """Wait until DOM mutations have been idle for a short threshold."""

    try:
        return bool(await page.evaluate(_DOM_IDLE_SCRIPT, timeout_ms))
    except PlaywrightError as exc:
        log.debug("DOM idle probe failed: %s", exc)
        return False


async def wait_for_loading_indicators(page: Page, timeout_ms: int = DEFAULT_SETTLE_TIMEOUT) -> None:
    for selector in _LOADING_SELECTORS:
        try:
            await page.wait_for_selector(selector, state="hidden", timeout=timeout_ms)
        except PlaywrightError:
            log.debug("Loading indicator still present: %s", selector)


async def stabilize_page(page: Page, timeout_ms: int = DEFAULT_SETTLE_TIMEOUT) -> None:
    try:
        await page.wait_for_load_state("domcontentloaded", timeout=timeout_ms)
    except PlaywrightError:
        log.debug("domcontentloaded not reached within %sms", timeout_ms)
    try:
        await page.wait_for_load_state("networkidle", timeout=timeout_ms)
    except PlaywrightError:
        log.debug("networkidle not reached within %sms", timeout_ms)
    await wait_dom_idle(page, timeout_ms=timeout_ms)
    await wait_for_loading_indicators(page, timeout_ms=timeout_ms)


async def safe_get_page_content(page: Page, *, max_retries: int = 3, delay_ms: int = 500) -> str:
    """Read the page HTML, retrying while a navigation is in flight."""

    for attempt in range(max_retries):
        try:
            return await page.content()
        except PlaywrightError as exc:
            error_str = str(exc).lower()
            if "navigating and changing" not in error_str and "page is navigating" not in error_str:
                log.warning("Page content retrieval failed: %s", exc)
                return ""
            log.warning("Page content retrieval attempt %d failed due to navigation: %s", attempt + 1, exc)
            if attempt < max_retries - 1:
                await asyncio.sleep(delay_ms / 1000)
    return ""
