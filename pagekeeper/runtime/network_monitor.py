"""Record API traffic seen by a page for endpoint discovery."""

from __future__ import annotations

import json
import logging
import re
import time
from typing import Any, Callable, Dict, List, Optional, Pattern, Tuple, Union

from playwright.async_api import Error as PlaywrightError

log = logging.getLogger(__name__)

DEFAULT_API_PATTERN = r"/api/|/v\d+/"


class NetworkMonitor:
    """Attach request/response listeners and keep the entries that match ``pattern``."""

    def __init__(self, page: Any, pattern: Union[str, Pattern[str], None] = DEFAULT_API_PATTERN) -> None:
        self.page = page
        self.pattern = re.compile(pattern) if isinstance(pattern, str) else pattern
        self.entries: List[Dict[str, Any]] = []
        self._listeners: List[Tuple[str, Callable[..., Any]]] = []
        self._started = False

    def __enter__(self) -> "NetworkMonitor":
        self.start()
        return self

    def __exit__(self, *exc: Any) -> None:
        self.stop()

    def start(self) -> None:
        if self._started:
            return
        self._started = True
        self._register("request", self._handle_request)
        self._register_async("response", self._handle_response)

    def stop(self) -> None:
        if not self._started:
            return
        for event, handler in self._listeners:
            try:
                self.page.remove_listener(event, handler)
            except (PlaywrightError, KeyError, ValueError) as exc:
                log.debug("Could not detach %s listener: %s", event, exc)
        self._listeners.clear()
        self._started = False

    def matches(self, url: str) -> bool:
        return self.pattern is None or bool(self.pattern.search(url))

    @property
    def requests(self) -> List[Dict[str, Any]]:
        return [entry for entry in self.entries if entry["type"] == "request"]

    @property
    def responses(self) -> List[Dict[str, Any]]:
        return [entry for entry in self.entries if entry["type"] == "response"]

    def endpoints(self) -> List[str]:
        """Distinct ``METHOD path`` pairs observed, in first-seen order."""

        seen: List[str] = []
        for entry in self.entries:
            key = f"{entry['method']} {entry['url'].split('?', 1)[0]}"
            if key not in seen:
                seen.append(key)
        return seen

    def find(self, method: Optional[str] = None, fragment: str = "") -> List[Dict[str, Any]]:
        wanted = method.upper() if method else None
        return [
            entry
            for entry in self.responses
            if (wanted is None or entry["method"] == wanted) and fragment in entry["url"]
        ]

    def clear(self) -> None:
        self.entries.clear()

    def _register(self, event: str, handler: Callable[..., Any]) -> None:
        self.page.on(event, handler)
        self._listeners.append((event, handler))

    def _register_async(self, event: str, handler: Callable[..., Any]) -> None:
        async def _wrapper(*args: Any, **kwargs: Any) -> None:
            await handler(*args, **kwargs)

        self.page.on(event, _wrapper)
        self._listeners.append((event, _wrapper))

    def _handle_request(self, request: Any) -> None:
        url = request.url
        if not self.matches(url):
            return
        raw = request.post_data_buffer
        self.entries.append(
            {
                "type": "request",
                "method": request.method,
                "url": url,
                "headers": dict(request.headers),
                "body": _decode_body(raw),
                "body_size": len(raw) if raw else 0,
                "timestamp": time.time(),
            }
        )
        log.debug("[NETWORK] %s %s", request.method, url)

    async def _handle_response(self, response: Any) -> None:
        url = response.url
        if not self.matches(url):
            return
        headers = dict(response.headers)
        entry: Dict[str, Any] = {
            "type": "response",
            "method": response.request.method,
            "url": url,
            "status": response.status,
            "headers": headers,
            "body": None,
            "timestamp": time.time(),
        }
        try:
            if "application/json" in headers.get("content-type", ""):
                entry["body"] = await response.json()
            else:
                entry["body"] = await response.text()
        except (PlaywrightError, ValueError) as exc:
            log.debug("Response body unavailable for %s: %s", url, exc)
        self.entries.append(entry)
        log.debug("[NETWORK] %s %s -> %s", entry["method"], url, response.status)


def _decode_body(raw: Optional[bytes]) -> Any:
    """JSON when the body parses, text when it is UTF-8, None for binary uploads."""

    if not raw:
        return None
    try:
        text = raw.decode("utf-8")
    except UnicodeDecodeError:
        return None
    try:
        return json.loads(text)
    except ValueError:
        return text
