from __future__ import annotations

import pytest

from bitbucket_mcp.tools import ToolDispatchError, ToolRegistry, ToolSpec


def _spec(name: str, handler=lambda payload: {"payload": payload}) -> ToolSpec:
    return ToolSpec(
        name=name,
        title=name.title(),
        description=f"{name} tool",
        input_schema={"type": "object", "properties": {}},
        handler=handler,
    )


def test_registry_keeps_deterministic_registration_order() -> None:
    registry = ToolRegistry()
    registry.register(_spec("alpha"))
    registry.register(_spec("beta"))

    assert registry.names() == ("alpha", "beta")


def test_registry_dispatches_registered_tool() -> None:
    registry = ToolRegistry()
    registry.register(_spec("echo"))

    result = registry.dispatch("echo", {"k": "v"})

    assert result == {"payload": {"k": "v"}}


def test_registry_describe_uses_mcp_field_names() -> None:
    registry = ToolRegistry()
    registry.register(_spec("echo"))

    assert registry.describe() == [
        {
            "name": "echo",
            "title": "Echo",
            "description": "echo tool",
            "inputSchema": {"type": "object", "properties": {}},
        }
    ]


def test_registry_rejects_unknown_tool() -> None:
    registry = ToolRegistry()

    with pytest.raises(ToolDispatchError) as caught:
        registry.dispatch("missing", {})

    assert caught.value.code == "UNKNOWN_TOOL"
    assert caught.value.message == "Unknown tool: missing"
