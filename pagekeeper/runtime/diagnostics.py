"""Diagnostic snapshots captured when an operation fails for good."""

from __future__ import annotations

import asyncio
import json
import logging
import re
import time
from pathlib import Path
from typing import Any, Dict, Optional

from .page_stability import safe_get_page_content

log = logging.getLogger(__name__)

SCREENSHOT_TIMEOUT = 5_000
STATE_TIMEOUT = 5.0
HTML_EXCERPT_LENGTH = 20_000


def _slug(name: str) -> str:
    cleaned = re.sub(r"[^A-Za-z0-9_-]+", "_", name).strip("_")
    return cleaned[:80] or "snapshot"


class DiagnosticSink:
    """Writes a screenshot plus a JSON state record into ``directory``.

    Capture is read-only with respect to the page and never raises: any
    failure is logged and reported as a missing path.
    """

    def __init__(self, directory: Path, *, full_page: bool = True, state_timeout: float = STATE_TIMEOUT) -> None:
        self.directory = Path(directory)
        self.full_page = full_page
        self.state_timeout = state_timeout

    async def capture(self, page: Any, name: str, *, summary: Optional[Dict[str, Any]] = None) -> Optional[Path]:
        stamp = time.strftime("%Y%m%d-%H%M%S") + f"-{int(time.time() * 1000) % 1000:03d}"
        base = self.directory / f"{_slug(name)}_{stamp}"
        try:
            self.directory.mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            log.warning("Cannot create diagnostics directory %s: %s", self.directory, exc)
            return None

        screenshot_path: Optional[Path] = base.with_suffix(".png")
        try:
            await page.screenshot(path=str(screenshot_path), full_page=self.full_page, timeout=SCREENSHOT_TIMEOUT)
        except Exception as exc:
            log.warning("Screenshot capture failed for %s: %s", name, exc)
            screenshot_path = None

        record: Dict[str, Any] = {
            "name": name,
            "timestamp": time.time(),
            "screenshot": str(screenshot_path) if screenshot_path else None,
            "summary": summary or {},
            "url": getattr(page, "url", None),
        }
        try:
            async with asyncio.timeout(self.state_timeout):
                record["title"] = await page.title()
                record["html_excerpt"] = (await safe_get_page_content(page))[:HTML_EXCERPT_LENGTH]
        except TimeoutError:
            log.warning("Page state capture for %s timed out after %.1fs", name, self.state_timeout)
        except Exception as exc:
            log.warning("Page state capture failed for %s: %s", name, exc)

        state_path = base.with_suffix(".json")
        try:
            with state_path.open("w", encoding="utf-8") as fh:
                json.dump(record, fh, ensure_ascii=False, indent=2, default=str)
        except (OSError, TypeError, ValueError) as exc:
            log.warning("Writing diagnostic record failed for %s: %s", name, exc)
            return screenshot_path

        log.info("Diagnostic snapshot saved: %s", state_path)
        return screenshot_path or state_path
