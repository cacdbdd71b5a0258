"""Standard, forced and script-dispatched implementations of each interaction."""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Dict, Optional, Sequence, Tuple

from playwright.async_api import Error as PlaywrightError

from ..dsl.models import (
    ActionBase,
    ClickAction,
    FillAction,
    HoverAction,
    PressKeyAction,
    SetFilesAction,
    WaitForElementAction,
    WaitForLoadStateAction,
)
from ..errors import ActionRejected, OperationTimeout, StrategyRejected

log = logging.getLogger(__name__)

ALL_STRATEGIES: Tuple[str, ...] = ("standard", "forced", "script")
STANDARD_ONLY: Tuple[str, ...] = ("standard",)

_SUPPORTED: Dict[str, Tuple[str, ...]] = {
    "click": ALL_STRATEGIES,
    "fill": ALL_STRATEGIES,
    "set_files": ALL_STRATEGIES,
    "press_key": ALL_STRATEGIES,
    "hover": ALL_STRATEGIES,
    "wait_for_element": STANDARD_ONLY,
    "wait_for_load_state": STANDARD_ONLY,
}

_TEXT_INPUT_SELECTOR = (
    "input:not([type='hidden']):not([disabled]):not([readonly]), "
    "textarea:not([disabled]):not([readonly]), "
    "[contenteditable='true']"
)

_EDITABLE_INPUT_TYPES = frozenset(
    {"", "text", "search", "email", "password", "number", "tel", "url", "date", "datetime-local"}
)

_DESCRIBE_SCRIPT = """
(el) => {
    const tag = el.tagName ? el.tagName.toLowerCase() : '';
    return {
        tag,
        type: (el.type || '').toString().toLowerCase(),
        role: (el.getAttribute('role') || '').toLowerCase(),
        name: el.getAttribute('name') || '',
        id: el.id || '',
        disabled: !!el.disabled,
        readOnly: !!el.readOnly,
        contentEditable: el.isContentEditable ||
            (el.getAttribute('contenteditable') || '').toLowerCase() === 'true'
    };
}
"""

_SCRIPT_CLICK = """
(el, count) => {
    for (let i = 0; i < count; i++) {
        el.click();
    }
}
"""

_SCRIPT_FILL = """
(el, value) => {
    if (el.isContentEditable) {
        el.textContent = value;
    } else {
        const proto = Object.getPrototypeOf(el);
        const descriptor = proto && Object.getOwnPropertyDescriptor(proto, 'value');
        if (descriptor && descriptor.set) {
            descriptor.set.call(el, value);
        } else {
            el.value = value;
        }
    }
    el.dispatchEvent(new Event('input', { bubbles: true }));
    el.dispatchEvent(new Event('change', { bubbles: true }));
}
"""

_SCRIPT_KEY = """
(el, key) => {
    el.focus();
    for (const type of ['keydown', 'keypress', 'keyup']) {
        el.dispatchEvent(new KeyboardEvent(type, { key, bubbles: true, cancelable: true }));
    }
}
"""

_SCRIPT_HOVER = """
el => {
    el.dispatchEvent(new MouseEvent('mouseover', {bubbles: true, cancelable: true}));
    el.dispatchEvent(new MouseEvent('mouseenter', {bubbles: true, cancelable: true}));
}
"""


def supported_strategies(action: ActionBase) -> Tuple[str, ...]:
    return _SUPPORTED.get(action.action_name, STANDARD_ONLY)


async def prepare_locator(locator: Any, timeout: int) -> Any:
    """Run the actionability checks a standard interaction relies on."""

    await locator.wait_for(state="attached", timeout=timeout)
    await locator.scroll_into_view_if_needed(timeout=timeout)
    await locator.wait_for(state="visible", timeout=timeout)
    if not await locator.is_enabled():
        raise ActionRejected("Element is not enabled for interaction")
    return locator


async def perform(page: Any, action: ActionBase, locator: Optional[Any], strategy: str, timeout: int) -> Dict[str, Any]:
    """Carry out ``action`` with one strategy; return details for the outcome."""

    if isinstance(action, ClickAction):
        await click(page, locator, strategy, timeout=timeout, button=action.button, click_count=action.click_count)
        return {"button": action.button, "click_count": action.click_count}
    if isinstance(action, FillAction):
        await fill(page, locator, action.text, strategy, timeout=timeout, verify=action.verify)
        return {"length": len(action.text), "verified": action.verify}
    if isinstance(action, SetFilesAction):
        await set_files(page, locator, action.files, strategy, timeout=timeout)
        return {"files": list(action.files)}
    if isinstance(action, PressKeyAction):
        await press_key(page, locator, action.key, strategy, timeout=timeout)
        return {"key": action.key}
    if isinstance(action, HoverAction):
        await hover(page, locator, strategy, timeout=timeout)
        return {}
    if isinstance(action, WaitForElementAction):
        # visible and attached states are satisfied by resolution itself
        if action.state in ("hidden", "detached"):
            await wait_until_gone(page, action, timeout)
        return {"state": action.state}
    if isinstance(action, WaitForLoadStateAction):
        await page.wait_for_load_state(action.state, timeout=timeout)
        return {"state": action.state}
    raise ValueError(f"Unsupported action {action.action_name}")


async def click(
    page: Any,
    locator: Any,
    strategy: str,
    *,
    timeout: int,
    button: str = "left",
    click_count: int = 1,
) -> None:
    del page
    if strategy == "standard":
        target = await prepare_locator(locator, timeout)
        await target.hover(timeout=timeout)
        await target.click(timeout=timeout, button=button, click_count=click_count)
    elif strategy == "forced":
        await locator.click(timeout=timeout, force=True, button=button, click_count=click_count)
    elif strategy == "script":
        await locator.evaluate(_SCRIPT_CLICK, click_count)
    else:
        raise ValueError(f"Unknown strategy {strategy!r}")


async def fill(page: Any, locator: Any, value: str, strategy: str, *, timeout: int, verify: bool = True) -> Any:
    """Fill a text field and check that the value stuck.

    A non-editable target (a label or wrapper) is redirected to a nearby
    input when one can be found; otherwise the action is rejected.
    """

    target = locator
    info = await _describe_element(target)
    if not _element_is_text_editable(info):
        fallback, reason = await _find_text_input_fallback(page, target)
        if fallback is None:
            raise ActionRejected(f"Target is not text-editable ({_summarize_element(info)})")
        log.info("Redirected fill from %s to nearby input via %s", _summarize_element(info), reason)
        target = fallback
        info = await _describe_element(target)

    if strategy == "standard":
        interactable = await prepare_locator(target, timeout)
        await interactable.click(timeout=timeout)
        await interactable.fill("", timeout=timeout)
        await interactable.fill(value, timeout=timeout)
    elif strategy == "forced":
        await target.fill(value, timeout=timeout, force=True)
    elif strategy == "script":
        await target.evaluate(_SCRIPT_FILL, value)
    else:
        raise ValueError(f"Unknown strategy {strategy!r}")

    if verify:
        if info.get("contentEditable"):
            current = (await target.inner_text(timeout=timeout)).strip()
            expected = value.strip()
        else:
            current = await target.input_value(timeout=timeout)
            expected = value
        if current != expected:
            raise StrategyRejected(f'Input validation failed. Expected: "{expected}", Got: "{current}"')
    return target


async def set_files(page: Any, locator: Any, files: Sequence[str], strategy: str, *, timeout: int) -> None:
    file_list = list(files)
    if strategy == "standard":
        await locator.set_input_files(file_list, timeout=timeout)
    elif strategy == "forced":
        async with page.expect_file_chooser(timeout=timeout) as chooser_info:
            await locator.click(timeout=timeout, force=True)
        chooser = await chooser_info.value
        await chooser.set_files(file_list, timeout=timeout)
    elif strategy == "script":
        # Upload widgets often hide the real input; look inside the target, then page-wide.
        inner = locator.locator("input[type='file']")
        file_input = inner.first if await inner.count() else page.locator("input[type='file']").first
        if not await file_input.count():
            raise StrategyRejected("No file input found inside the target or on the page")
        await file_input.set_input_files(file_list, timeout=timeout)
    else:
        raise ValueError(f"Unknown strategy {strategy!r}")


async def press_key(page: Any, locator: Optional[Any], key: str, strategy: str, *, timeout: int) -> None:
    if locator is None:
        await page.keyboard.press(key)
        return
    if strategy == "standard":
        await locator.press(key, timeout=timeout)
    elif strategy == "forced":
        await locator.focus(timeout=timeout)
        await asyncio.sleep(0.1)
        await page.keyboard.press(key)
    elif strategy == "script":
        await locator.evaluate(_SCRIPT_KEY, key)
    else:
        raise ValueError(f"Unknown strategy {strategy!r}")


async def hover(page: Any, locator: Any, strategy: str, *, timeout: int) -> None:
    del page
    if strategy == "standard":
        target = await prepare_locator(locator, timeout)
        await target.hover(timeout=timeout)
    elif strategy == "forced":
        await locator.hover(timeout=timeout, force=True)
    elif strategy == "script":
        await locator.evaluate(_SCRIPT_HOVER)
    else:
        raise ValueError(f"Unknown strategy {strategy!r}")


async def wait_until_gone(root: Any, action: WaitForElementAction, timeout: int) -> None:
    """Wait for every candidate of the target to reach a hidden/detached state.

    All candidates share one ``timeout`` budget.
    """

    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout / 1000
    for rank, candidate in enumerate(action.target.candidates):
        remaining_ms = int((deadline - loop.time()) * 1000)
        # Playwright reads timeout=0 as "no timeout"
        if remaining_ms <= 0:
            raise OperationTimeout(
                f"{action.target.describe()} not {action.state} within {timeout}ms",
                details={"candidate": candidate.label(rank)},
            )
        await candidate.locate(root).wait_for(state=action.state, timeout=remaining_ms)


async def _describe_element(locator: Any) -> Dict[str, Any]:
    info = await locator.evaluate(_DESCRIBE_SCRIPT)
    if not isinstance(info, dict):
        return {}
    for key in ("tag", "type", "role"):
        info[key] = (info.get(key) or "").lower()
    return info


def _element_is_text_editable(info: Dict[str, Any]) -> bool:
    if not info:
        return False
    if info.get("contentEditable"):
        return True
    if info.get("disabled") or info.get("readOnly"):
        return False
    if info.get("role") in {"textbox", "searchbox", "combobox"}:
        return True
    tag = info.get("tag") or ""
    if tag == "textarea":
        return True
    if tag == "input":
        return (info.get("type") or "") in _EDITABLE_INPUT_TYPES
    return False


async def _find_text_input_fallback(page: Any, locator: Any) -> Tuple[Optional[Any], Optional[str]]:
    queries = [
        ("descendant", lambda: locator.locator(_TEXT_INPUT_SELECTOR)),
        ("sibling", lambda: locator.locator("xpath=following::input[not(@type='hidden') and not(@disabled)][1]")),
        ("sibling", lambda: locator.locator("xpath=following::textarea[not(@disabled)][1]")),
    ]
    try:
        label_for = await locator.get_attribute("for")
    except PlaywrightError:
        label_for = None
    if label_for:
        queries.insert(1, ("label_for", lambda: page.locator(f"[id='{label_for}']")))

    for reason, build in queries:
        try:
            candidate = build().first
            if await candidate.count() and _element_is_text_editable(await _describe_element(candidate)):
                return candidate, reason
        except PlaywrightError as exc:
            log.debug("%s input fallback failed: %s", reason, exc)
    return None, None


def _summarize_element(info: Dict[str, Any]) -> str:
    parts: list[str] = []
    if info.get("tag"):
        parts.append(info["tag"])
    if info.get("type"):
        parts.append(f"type={info['type']}")
    if info.get("disabled"):
        parts.append("disabled=true")
    if info.get("readOnly"):
        parts.append("readOnly=true")
    identifier = info.get("name") or info.get("id")
    if identifier:
        parts.append(f"identifier={identifier.strip()[:40]}")
    return ", ".join(parts) if parts else "unknown element"
