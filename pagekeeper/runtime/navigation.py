"""Per-call navigation state and error heuristics."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional
from urllib.parse import urljoin, urlsplit, urlunsplit

from ..errors import FailureClass

HTTP2_EXTRA_PAUSE_MS = 2_000


@dataclass(slots=True)
class NavigationState:
    """Tracks one ``navigate`` call; discarded when the call returns."""

    url: str
    wait_until: str
    timeout_ms: int
    attempt: int = 0
    last_error_class: Optional[str] = None


def navigation_error_class(failure: FailureClass, message: str) -> Optional[str]:
    lowered = message.lower()
    if "err_http2_protocol_error" in lowered or "protocol error" in lowered:
        return "protocol"
    if failure is FailureClass.TIMEOUT:
        return "timeout"
    if failure in (FailureClass.TRANSIENT_NETWORK, FailureClass.DETACHED):
        return "network"
    return None


def navigation_backoff(base_ms: int, message: str) -> int:
    """Connection resets wait twice as long; HTTP/2 errors get an extra pause."""

    lowered = message.lower()
    wait = base_ms
    if "err_connection_reset" in lowered:
        wait *= 2
    if "err_http2_protocol_error" in lowered:
        wait += HTTP2_EXTRA_PAUSE_MS
    return wait


def clean_base_url(base_url: str) -> str:
    """Drop hash routes, query strings and the trailing slash from a base URL."""

    parts = urlsplit(base_url)
    return urlunsplit((parts.scheme, parts.netloc, parts.path, "", "")).rstrip("/")


def absolute_url(base_url: str, url: str) -> str:
    if not base_url or "://" in url or url.startswith(("about:", "data:")):
        return url
    return urljoin(clean_base_url(base_url) + "/", url.lstrip("/"))
