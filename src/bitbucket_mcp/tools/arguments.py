"""Validation of tool call arguments."""

from __future__ import annotations

import json
from collections.abc import Collection

from bitbucket_mcp.tools.registry import ToolDispatchError


def invalid_params(message: str) -> ToolDispatchError:
    return ToolDispatchError(code="INVALID_PARAMS", message=message)


def require_string(arguments: dict[str, object], key: str, tool: str) -> str:
    value = arguments.get(key)
    if not isinstance(value, str) or not value.strip():
        raise invalid_params(f"{tool} {key} must be a non-empty string.")
    return value


def optional_string(arguments: dict[str, object], key: str, tool: str) -> str | None:
    value = arguments.get(key)
    if value is None:
        return None
    if not isinstance(value, str):
        raise invalid_params(f"{tool} {key} must be a string.")
    return value or None


def _is_int(value: object) -> bool:
    return isinstance(value, int) and not isinstance(value, bool)


def require_positive_int(arguments: dict[str, object], key: str, tool: str) -> int:
    value = arguments.get(key)
    if not _is_int(value) or value < 1:
        raise invalid_params(f"{tool} {key} must be a positive integer.")
    return value


def optional_int(
    arguments: dict[str, object],
    key: str,
    tool: str,
    default: int | None,
    minimum: int = 0,
) -> int | None:
    value = arguments.get(key)
    if value is None:
        return default
    if not _is_int(value):
        raise invalid_params(f"{tool} {key} must be an integer.")
    if value < minimum:
        raise invalid_params(f"{tool} {key} must be >= {minimum}.")
    return value


def optional_choice(
    arguments: dict[str, object],
    key: str,
    tool: str,
    choices: Collection[str],
) -> str | None:
    value = optional_string(arguments, key, tool)
    if value is not None and value not in choices:
        allowed = ", ".join(f"'{choice}'" for choice in choices)
        raise invalid_params(f"{tool} {key} must be one of {allowed}.")
    return value


def optional_string_list(arguments: dict[str, object], key: str, tool: str) -> list[str] | None:
    value = arguments.get(key)
    if value is None:
        return None
    if not isinstance(value, list) or not all(isinstance(item, str) for item in value):
        raise invalid_params(f"{tool} {key} must be a list of strings.")
    return list(value)


def text_content(text: str) -> dict[str, object]:
    """Wrap text as a single MCP text content block."""
    return {"content": [{"type": "text", "text": text}]}


def json_content(payload: object) -> dict[str, object]:
    return text_content(json.dumps(payload, indent=2))
