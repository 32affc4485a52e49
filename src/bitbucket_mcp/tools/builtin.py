"""Server introspection tools."""

from __future__ import annotations

from collections.abc import Callable

from bitbucket_mcp.config import ServerConfig
from bitbucket_mcp.tools.arguments import optional_int, optional_string
from bitbucket_mcp.tools.registry import ToolHandler, ToolRegistry, ToolSpec

DEFAULT_AUDIT_LIMIT = 50
MAX_AUDIT_LIMIT = 200


def register_builtin_tools(
    registry: ToolRegistry,
    config: ServerConfig,
    read_audit_entries: Callable[[str | None, int], list[dict[str, object]]],
) -> None:
    """Register status and audit tools after the Bitbucket tools."""
    registry.register(
        ToolSpec(
            name="server_status",
            title="Server Status",
            description="Report registered tools and the effective server configuration.",
            input_schema={"type": "object", "properties": {}},
            handler=_status_handler(registry, config),
        )
    )
    registry.register(
        ToolSpec(
            name="audit_log",
            title="Audit Log",
            description="Read recent sanitized tool request events.",
            input_schema={
                "type": "object",
                "properties": {
                    "since": {
                        "type": "string",
                        "description": "ISO-8601 UTC lower bound on event timestamps.",
                    },
                    "limit": {
                        "type": "integer",
                        "description": "Maximum entries to return (default: 50, max: 200).",
                    },
                },
            },
            handler=_audit_log_handler(read_audit_entries),
        )
    )


def _status_handler(registry: ToolRegistry, config: ServerConfig) -> ToolHandler:
    def handler(_: dict[str, object]) -> dict[str, object]:
        return {
            "tools": list(registry.names()),
            "read_only": config.read_only,
            "effective_config": config.to_public_dict(),
        }

    return handler


def _audit_log_handler(
    read_audit_entries: Callable[[str | None, int], list[dict[str, object]]],
) -> ToolHandler:
    def handler(arguments: dict[str, object]) -> dict[str, object]:
        since = optional_string(arguments, "since", "audit_log")
        limit = optional_int(arguments, "limit", "audit_log", default=DEFAULT_AUDIT_LIMIT)
        if limit < 1:
            limit = 1
        if limit > MAX_AUDIT_LIMIT:
            limit = MAX_AUDIT_LIMIT
        return {"entries": read_audit_entries(since, limit)}

    return handler
