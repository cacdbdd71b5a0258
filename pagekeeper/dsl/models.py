"""Typed models describing targets, policies and actions."""

from __future__ import annotations

from typing import Any, ClassVar, Dict, List, Literal, Optional, Sequence, Tuple, Union

from pydantic import (
    AliasChoices,
    BaseModel,
    ConfigDict,
    Field,
    field_validator,
    model_validator,
)

LocateBy = Literal["selector", "text", "role", "label", "placeholder", "test_id", "title"]
Visibility = Literal["attached", "visible", "enabled"]
WaitUntil = Literal["commit", "domcontentloaded", "load", "networkidle"]
StrategyName = Literal["standard", "forced", "script"]
ElementState = Literal["attached", "detached", "visible", "hidden"]
LoadState = Literal["domcontentloaded", "load", "networkidle"]


class Candidate(BaseModel):
    """One prioritized way of locating an element."""

    model_config = ConfigDict(extra="forbid", frozen=True)

    query: str = Field(min_length=1)
    by: LocateBy = "selector"
    name: Optional[str] = None
    exact: bool = False
    index: int = Field(default=0, ge=0)
    tag: Optional[str] = None

    @model_validator(mode="before")
    @classmethod
    def _coerce_from_string(cls, value: Any) -> Any:
        if isinstance(value, str):
            return {"query": value}
        return value

    def locate(self, root: Any) -> Any:
        """Build the Playwright locator for this candidate under ``root``."""

        if self.by == "selector":
            locator = root.locator(self.query)
        elif self.by == "text":
            locator = root.get_by_text(self.query, exact=self.exact)
        elif self.by == "role":
            locator = root.get_by_role(self.query, name=self.name, exact=self.exact)
        elif self.by == "label":
            locator = root.get_by_label(self.query, exact=self.exact)
        elif self.by == "placeholder":
            locator = root.get_by_placeholder(self.query, exact=self.exact)
        elif self.by == "test_id":
            locator = root.get_by_test_id(self.query)
        else:
            locator = root.get_by_title(self.query, exact=self.exact)
        return locator.nth(self.index)

    def label(self, rank: int) -> str:
        shown = self.query if self.by == "selector" else f"{self.by}={self.query}"
        if self.name:
            shown += f"[name={self.name!r}]"
        if self.tag:
            return f"#{rank} {self.tag} ({shown})"
        return f"#{rank} ({shown})"


class Target(BaseModel):
    """Non-empty, ordered list of candidates for one logical element."""

    model_config = ConfigDict(extra="forbid", frozen=True)

    candidates: Tuple[Candidate, ...] = Field(min_length=1)
    description: str = ""

    @model_validator(mode="before")
    @classmethod
    def _coerce(cls, value: Any) -> Any:
        if isinstance(value, (str, Candidate)):
            return {"candidates": (value,)}
        if isinstance(value, (list, tuple)):
            return {"candidates": tuple(value)}
        if isinstance(value, dict) and "candidates" not in value and "query" in value:
            return {"candidates": (value,)}
        return value

    @classmethod
    def of(cls, *candidates: Union[str, Candidate, Dict[str, Any]], description: str = "") -> "Target":
        return cls(candidates=tuple(candidates), description=description)

    def describe(self) -> str:
        if self.description:
            return self.description
        return self.candidates[0].label(0)

    def __len__(self) -> int:
        return len(self.candidates)


TargetLike = Union[Target, Candidate, str, Sequence[Union[str, Candidate]]]


def as_target(value: TargetLike) -> Target:
    if isinstance(value, Target):
        return value
    return Target.model_validate(value)


class OperationPolicy(BaseModel):
    """Retry, backoff and escalation settings for one resilient operation."""

    model_config = ConfigDict(extra="forbid", frozen=True)

    max_retries: int = Field(default=2, ge=0)
    timeout_ms: int = Field(default=10_000, gt=0)
    timeout_step_ms: int = Field(default=0, ge=0)
    min_timeout_ms: int = Field(default=1_000, gt=0)
    backoff_ms: Tuple[int, ...] = (500, 1_000, 2_000)
    strategies: Tuple[StrategyName, ...] = ("standard", "forced", "script")
    visibility: Visibility = "visible"
    resolve_timeout_ms: int = Field(default=5_000, gt=0)
    wait_until: Tuple[WaitUntil, ...] = ("domcontentloaded", "load", "networkidle")
    escalate_on_exhaustion: bool = False
    capture_on_failure: bool = True

    @field_validator("backoff_ms")
    @classmethod
    def _validate_backoff(cls, value: Tuple[int, ...]) -> Tuple[int, ...]:
        previous = 0
        for wait in value:
            if wait < 0:
                raise ValueError("backoff durations must be >= 0")
            if wait < previous:
                raise ValueError("backoff schedule must be non-decreasing")
            previous = wait
        return value

    @field_validator("strategies")
    @classmethod
    def _validate_strategies(cls, value: Tuple[StrategyName, ...]) -> Tuple[StrategyName, ...]:
        if not value:
            raise ValueError("at least one strategy is required")
        if len(set(value)) != len(value):
            raise ValueError("strategies must be unique")
        return value

    @field_validator("wait_until")
    @classmethod
    def _validate_wait_until(cls, value: Tuple[WaitUntil, ...]) -> Tuple[WaitUntil, ...]:
        if not value:
            raise ValueError("at least one wait_until condition is required")
        return value

    @classmethod
    def exponential(
        cls,
        *,
        base_ms: int = 500,
        factor: float = 2.0,
        cap_ms: int = 5_000,
        max_retries: int = 2,
        **overrides: Any,
    ) -> "OperationPolicy":
        schedule: List[int] = []
        wait = float(base_ms)
        for _ in range(max(max_retries, 1)):
            schedule.append(int(min(wait, cap_ms)))
            wait *= factor
        return cls(max_retries=max_retries, backoff_ms=tuple(schedule), **overrides)

    def evolve(self, **changes: Any) -> "OperationPolicy":
        data = self.model_dump()
        data.update(changes)
        return type(self).model_validate(data)

    def backoff_for(self, attempt_index: int) -> int:
        """Wait in milliseconds after the attempt with the given 0-based index."""

        if not self.backoff_ms:
            return 0
        return self.backoff_ms[min(attempt_index, len(self.backoff_ms) - 1)]

    def timeout_for(self, attempt_index: int) -> int:
        shrunk = self.timeout_ms - self.timeout_step_ms * attempt_index
        return max(min(self.min_timeout_ms, self.timeout_ms), shrunk)

    def wait_until_for(self, attempt_index: int) -> WaitUntil:
        return self.wait_until[min(attempt_index, len(self.wait_until) - 1)]


class ActionBase(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="forbid", frozen=True)

    __action_name__: ClassVar[str]
    __version__: ClassVar[int] = 1
    __deprecated__: ClassVar[bool] = False

    def payload(self) -> Dict[str, Any]:
        data = self.model_dump(mode="json", by_alias=True, exclude_none=True)
        data.setdefault("type", self.__action_name__)
        return data

    @property
    def action_name(self) -> str:
        return self.__action_name__

    @property
    def target_spec(self) -> Optional[Target]:
        return getattr(self, "target", None)

    def describe(self) -> str:
        target = self.target_spec
        if target is None:
            return self.action_name
        return f"{self.action_name} {target.describe()!r}"


def _type_field(name: str) -> Any:
    return Field(default=name, alias="type", validation_alias=AliasChoices("type", "action"))


_TARGET_ALIASES = AliasChoices("target", "selector", "candidates")


class NavigateAction(ActionBase):
    __action_name__ = "navigate"

    type: Literal["navigate"] = _type_field("navigate")
    url: str = Field(min_length=1, validation_alias=AliasChoices("url", "target"))

    def describe(self) -> str:
        return f"navigate {self.url!r}"


class ClickAction(ActionBase):
    __action_name__ = "click"

    type: Literal["click"] = _type_field("click")
    target: Target = Field(validation_alias=_TARGET_ALIASES)
    button: Literal["left", "right", "middle"] = "left"
    click_count: int = Field(default=1, ge=1)
    expect: Optional[Target] = None


class FillAction(ActionBase):
    __action_name__ = "fill"

    type: Literal["fill"] = _type_field("fill")
    target: Target = Field(validation_alias=_TARGET_ALIASES)
    text: str = Field(validation_alias=AliasChoices("text", "value"))
    verify: bool = True


class SetFilesAction(ActionBase):
    __action_name__ = "set_files"

    type: Literal["set_files"] = _type_field("set_files")
    target: Target = Field(validation_alias=_TARGET_ALIASES)
    files: Tuple[str, ...] = Field(min_length=1, validation_alias=AliasChoices("files", "file", "value"))

    @field_validator("files", mode="before")
    @classmethod
    def _coerce_files(cls, value: Any) -> Any:
        if isinstance(value, str):
            return (value,)
        return value


class PressKeyAction(ActionBase):
    __action_name__ = "press_key"

    type: Literal["press_key"] = _type_field("press_key")
    key: str = Field(min_length=1)
    target: Optional[Target] = Field(default=None, validation_alias=_TARGET_ALIASES)


class HoverAction(ActionBase):
    __action_name__ = "hover"

    type: Literal["hover"] = _type_field("hover")
    target: Target = Field(validation_alias=_TARGET_ALIASES)


class WaitForElementAction(ActionBase):
    __action_name__ = "wait_for_element"

    type: Literal["wait_for_element"] = _type_field("wait_for_element")
    target: Target = Field(validation_alias=_TARGET_ALIASES)
    state: ElementState = "visible"


class WaitForLoadStateAction(ActionBase):
    __action_name__ = "wait_for_load_state"

    type: Literal["wait_for_load_state"] = _type_field("wait_for_load_state")
    state: LoadState = "load"

    def describe(self) -> str:
        return f"wait_for_load_state {self.state!r}"
