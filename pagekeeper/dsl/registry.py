"""Typed action registry built on top of pydantic models."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, Iterator, List, Optional, Type, TypeVar

from pydantic import TypeAdapter

from .models import (
    ActionBase,
    ClickAction,
    FillAction,
    HoverAction,
    NavigateAction,
    PressKeyAction,
    SetFilesAction,
    WaitForElementAction,
    WaitForLoadStateAction,
)


@dataclass(slots=True)
class ActionSpec:
    name: str
    model: Type[ActionBase]
    version: int = 1
    deprecated: bool = False
    description: str | None = None

    def to_metadata(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "version": self.version,
            "deprecated": self.deprecated,
            "description": self.description or "",
        }


A = TypeVar("A", bound=ActionBase)


class ActionRegistry:
    """Central registry holding strongly typed action definitions."""

    def __init__(self) -> None:
        self._actions: Dict[str, ActionSpec] = {}
        self._adapter: Optional[TypeAdapter[Any]] = None

    def register(
        self,
        model: Type[A],
        *,
        name: Optional[str] = None,
        version: int = 1,
        deprecated: bool = False,
        description: str | None = None,
    ) -> Type[A]:
        if not issubclass(model, ActionBase):
            raise TypeError("model must subclass ActionBase")
        action_name = name or getattr(model, "__action_name__", None) or model.__name__
        model.__action_name__ = action_name
        model.__version__ = version
        model.__deprecated__ = deprecated
        self._actions[action_name] = ActionSpec(
            name=action_name,
            model=model,
            version=version,
            deprecated=deprecated,
            description=description,
        )
        self._adapter = None
        return model

    def get(self, name: str) -> ActionSpec:
        try:
            return self._actions[name]
        except KeyError as exc:
            raise KeyError(f"Unknown action '{name}'") from exc

    def __contains__(self, name: str) -> bool:  # pragma: no cover - trivial
        return name in self._actions

    def __iter__(self) -> Iterator[ActionSpec]:  # pragma: no cover - trivial
        return iter(self._actions.values())

    def _ensure_adapter(self) -> TypeAdapter[Any]:
        if self._adapter is None:
            if not self._actions:
                raise RuntimeError("No actions registered")
            action_types = tuple(spec.model for spec in self._actions.values())
            union = action_types[0]
            for model in action_types[1:]:
                union = union | model  # type: ignore[operator]
            self._adapter = TypeAdapter(union)
        return self._adapter

    def parse_action(self, data: Any) -> ActionBase:
        if isinstance(data, ActionBase):
            return data
        if isinstance(data, dict):
            name = data.get("type") or data.get("action")
            if name is not None:
                return self.get(name).model.model_validate(data)
        adapter = self._ensure_adapter()
        return adapter.validate_python(data)

    def parse_actions(self, items: List[Any]) -> List[ActionBase]:
        return [self.parse_action(item) for item in items]

    def schema(self) -> Dict[str, Any]:
        return {name: spec.to_metadata() for name, spec in self._actions.items()}


registry = ActionRegistry()

registry.register(NavigateAction, description="Open a URL with escalating wait-until conditions")
registry.register(ClickAction, description="Click the first matching candidate")
registry.register(FillAction, description="Fill an input and verify its value")
registry.register(SetFilesAction, description="Attach files to a file input")
registry.register(PressKeyAction, description="Press a key on a target or the page")
registry.register(HoverAction, description="Hover over the first matching candidate")
registry.register(WaitForElementAction, description="Wait for a target to reach an element state")
registry.register(WaitForLoadStateAction, description="Wait for a page load state")
