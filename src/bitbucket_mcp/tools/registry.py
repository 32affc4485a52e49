"""Deterministic tool registration primitives."""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass, field

ToolHandler = Callable[[dict[str, object]], dict[str, object]]


@dataclass(slots=True, frozen=True)
class ToolDispatchError(Exception):
    """Represents deterministic tool dispatch failures."""

    code: str
    message: str


@dataclass(slots=True, frozen=True)
class ToolSpec:
    """Tool metadata advertised to clients plus its handler."""

    name: str
    title: str
    description: str
    input_schema: dict[str, object]
    handler: ToolHandler
    read_only: bool = True

    def describe(self) -> dict[str, object]:
        return {
            "name": self.name,
            "title": self.title,
            "description": self.description,
            "inputSchema": self.input_schema,
        }


@dataclass(slots=True)
class ToolRegistry:
    """In-memory tool registry preserving deterministic insertion order."""

    _specs: dict[str, ToolSpec] = field(default_factory=dict)

    def register(self, spec: ToolSpec) -> None:
        """Register a tool spec under its name."""
        self._specs[spec.name] = spec

    def get(self, name: str) -> ToolSpec | None:
        """Return a tool spec by name."""
        return self._specs.get(name)

    def names(self) -> tuple[str, ...]:
        """Return registered tool names in deterministic order."""
        return tuple(self._specs.keys())

    def describe(self) -> list[dict[str, object]]:
        """Return the tools/list payload."""
        return [spec.describe() for spec in self._specs.values()]

    def dispatch(self, name: str, arguments: dict[str, object]) -> dict[str, object]:
        """Dispatch to a registered tool by name."""
        spec = self.get(name)
        if spec is None:
            raise ToolDispatchError(code="UNKNOWN_TOOL", message=f"Unknown tool: {name}")
        return spec.handler(arguments)
