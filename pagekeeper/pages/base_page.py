"""Base class for page objects."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Optional, Sequence

from ..dsl.models import (
    ClickAction,
    FillAction,
    PressKeyAction,
    SetFilesAction,
    TargetLike,
    WaitForElementAction,
)
from ..dsl.outcome import OperationOutcome
from ..errors import NotFound
from ..runtime.context import ExecutionContext
from ..runtime.executor import Executor

log = logging.getLogger(__name__)


class BasePage:
    """Common navigation and interaction helpers shared by page objects.

    Every helper goes through the executor, so it inherits the context's
    retry, escalation and diagnostic behaviour. Terminal failures raise
    ``OperationFailed``; ``is_element_visible`` is the one non-raising probe.
    """

    def __init__(self, context: ExecutionContext, *, executor: Optional[Executor] = None) -> None:
        self.context = context
        self.executor = executor or Executor(context)

    @property
    def page(self):
        return self.context.page

    async def goto(self, url: str) -> OperationOutcome:
        return (await self.executor.navigate(url)).raise_for_status()

    async def wait_for_element(self, target: TargetLike) -> OperationOutcome:
        outcome = await self.executor.execute(WaitForElementAction(target=target, state="visible"))
        return outcome.raise_for_status()

    async def wait_for_element_hidden(self, target: TargetLike) -> OperationOutcome:
        outcome = await self.executor.execute(WaitForElementAction(target=target, state="hidden"))
        return outcome.raise_for_status()

    async def is_element_visible(self, target: TargetLike, timeout_ms: int = 5_000) -> bool:
        try:
            await self.executor.resolve(target, "visible", timeout_ms)
        except NotFound:
            return False
        return True

    async def fill_input(self, target: TargetLike, text: str, *, verify: bool = True) -> OperationOutcome:
        outcome = await self.executor.execute(FillAction(target=target, text=text, verify=verify))
        return outcome.raise_for_status()

    async def click_element(self, target: TargetLike, *, expect: Optional[TargetLike] = None) -> OperationOutcome:
        outcome = await self.executor.execute(ClickAction(target=target, expect=expect))
        return outcome.raise_for_status()

    async def double_click_element(self, target: TargetLike) -> OperationOutcome:
        outcome = await self.executor.execute(ClickAction(target=target, click_count=2))
        return outcome.raise_for_status()

    async def get_text(self, target: TargetLike) -> str:
        resolved = await self.executor.resolve(target)
        return (await resolved.locator.text_content()) or ""

    async def upload_files(self, target: TargetLike, files: Sequence[str | Path]) -> OperationOutcome:
        action = SetFilesAction(target=target, files=tuple(str(path) for path in files))
        return (await self.executor.execute(action)).raise_for_status()

    async def press(self, key: str, target: Optional[TargetLike] = None) -> OperationOutcome:
        return (await self.executor.execute(PressKeyAction(key=key, target=target))).raise_for_status()

    async def take_screenshot(self, name: str) -> Optional[Path]:
        sink = self.context.diagnostics
        directory = sink.directory if sink is not None else self.context.config.log_root / "screenshots"
        directory.mkdir(parents=True, exist_ok=True)
        path = directory / f"{name}.png"
        await self.page.screenshot(path=str(path), full_page=True)
        log.info("Saved screenshot %s", path)
        return path
