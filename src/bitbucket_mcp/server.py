"""STDIO MCP server entrypoint."""

from __future__ import annotations

import argparse
import json
import sys
import time
from collections.abc import Mapping
from dataclasses import dataclass
from pathlib import Path
from typing import TextIO

import httpx
from dotenv import load_dotenv

from bitbucket_mcp.bitbucket import (
    BitbucketApiError,
    BitbucketAuthError,
    BitbucketClient,
    BitbucketInvalidRequestError,
    BitbucketNotFoundError,
    BitbucketUnavailableError,
)
from bitbucket_mcp.config import CliOverrides, ServerConfig, load_effective_config
from bitbucket_mcp.logging import AuditEvent, JsonlAuditLogger, sanitize_arguments, utc_timestamp
from bitbucket_mcp.tools.bitbucket import register_bitbucket_tools
from bitbucket_mcp.tools.builtin import register_builtin_tools
from bitbucket_mcp.tools.registry import ToolDispatchError, ToolRegistry

SERVER_NAME = "bitbucket-server-mcp-server"
SERVER_VERSION = "1.0.0"


@dataclass(slots=True, frozen=True)
class Request:
    """Normalized incoming request."""

    request_id: str
    method: str
    params: dict[str, object]


def build_arg_parser() -> argparse.ArgumentParser:
    """Build argument parser for server startup configuration."""
    parser = argparse.ArgumentParser(prog="bitbucket-mcp")
    parser.add_argument("--config", required=False, default=None)
    parser.add_argument("--data-dir", required=False, default=None)
    parser.add_argument("--default-project", required=False, default=None)
    parser.add_argument("--max-lines-per-file", type=int, required=False, default=None)
    parser.add_argument("--read-only", choices=("true", "false"), required=False, default=None)
    return parser


class StdioServer:
    """Deterministic JSON-lines server routing tool calls to Bitbucket."""

    def __init__(self, config: ServerConfig, client: BitbucketClient) -> None:
        self._config = config
        self._client = client
        self._audit_logger = JsonlAuditLogger(path=config.data_dir / "audit.jsonl")
        self._registry = ToolRegistry()
        register_bitbucket_tools(self._registry, client=client, config=config)
        register_builtin_tools(
            self._registry,
            config=config,
            read_audit_entries=self._audit_logger.read,
        )
        self._fallback_request_counter = 0

    @property
    def registry(self) -> ToolRegistry:
        return self._registry

    def close(self) -> None:
        self._client.close()

    def serve(self, in_stream: TextIO, out_stream: TextIO) -> None:
        """Process JSON-line requests from stdin and write JSON-line responses."""
        for raw_line in in_stream:
            line = raw_line.strip()
            if not line:
                continue
            response = self.handle_json_line(line)
            out_stream.write(f"{json.dumps(response, sort_keys=True)}\n")
            out_stream.flush()

    def handle_json_line(self, raw_line: str) -> dict[str, object]:
        """Handle a single JSON-line request."""
        try:
            payload = json.loads(raw_line)
        except json.JSONDecodeError:
            request_id = self.next_request_id()
            response = self.error_response(
                request_id=request_id,
                code="INVALID_JSON",
                message="Request must be valid JSON.",
            )
            self.log_request(
                request_id=request_id,
                tool_name="invalid_json",
                arguments={"raw_line_length": len(raw_line)},
                response=response,
                started=time.perf_counter(),
            )
            return response
        return self.handle_payload(payload)

    def handle_payload(self, payload: object) -> dict[str, object]:
        """Validate and dispatch a parsed payload."""
        started = time.perf_counter()
        parsed = self.parse_request(payload)
        if isinstance(parsed, dict):
            request_id_value = parsed.get("request_id")
            request_id = (
                request_id_value if isinstance(request_id_value, str) else self.next_request_id()
            )
            self.log_request(
                request_id=request_id,
                tool_name="invalid_request",
                arguments={},
                response=parsed,
                started=started,
            )
            return parsed

        request = parsed
        tool_name, arguments, response = self.route_request(request)
        self.log_request(
            request_id=request.request_id,
            tool_name=tool_name,
            arguments=arguments,
            response=response,
            started=started,
        )
        return response

    def route_request(
        self, request: Request
    ) -> tuple[str, dict[str, object], dict[str, object]]:
        """Return the logged tool name, its arguments and the response envelope."""
        if request.method == "initialize":
            return request.method, {}, self.success_response(
                request_id=request.request_id,
                result={
                    "serverInfo": {"name": SERVER_NAME, "version": SERVER_VERSION},
                    "capabilities": {"tools": {}},
                },
            )
        if request.method == "tools/list":
            return request.method, {}, self.success_response(
                request_id=request.request_id,
                result={"tools": self._registry.describe()},
            )

        tool_name: str
        arguments: dict[str, object]
        if request.method == "tools/call":
            tool_name_value = request.params.get("name")
            arguments_value = request.params.get("arguments", {})
            if not isinstance(tool_name_value, str) or not tool_name_value:
                return "invalid_request", {}, self.error_response(
                    request_id=request.request_id,
                    code="INVALID_PARAMS",
                    message="tools/call params.name must be a non-empty string.",
                )
            if not isinstance(arguments_value, dict):
                return tool_name_value, {}, self.error_response(
                    request_id=request.request_id,
                    code="INVALID_PARAMS",
                    message="tools/call params.arguments must be an object.",
                )
            tool_name = tool_name_value
            arguments = arguments_value
        else:
            tool_name = request.method
            arguments = request.params

        try:
            result = self._registry.dispatch(name=tool_name, arguments=arguments)
        except Exception as error:
            code, message = error_code_for(error)
            return tool_name, arguments, self.error_response(
                request_id=request.request_id,
                code=code,
                message=message,
            )
        return tool_name, arguments, self.success_response(
            request_id=request.request_id, result=result
        )

    def parse_request(self, payload: object) -> Request | dict[str, object]:
        """Validate request payload and return normalized Request."""
        if not isinstance(payload, dict):
            return self.error_response(
                request_id=self.next_request_id(),
                code="INVALID_REQUEST",
                message="Request must be an object.",
            )

        request_id = self.extract_request_id(payload.get("id"))
        method = payload.get("method")
        params = payload.get("params", {})

        if not isinstance(method, str) or not method:
            return self.error_response(
                request_id=request_id,
                code="INVALID_REQUEST",
                message="Request method must be a non-empty string.",
            )
        if not isinstance(params, dict):
            return self.error_response(
                request_id=request_id,
                code="INVALID_PARAMS",
                message="Request params must be an object.",
            )

        return Request(request_id=request_id, method=method, params=params)

    def extract_request_id(self, request_id: object) -> str:
        """Extract request ID from payload or synthesize deterministic fallback."""
        if isinstance(request_id, str) and request_id:
            return request_id
        if isinstance(request_id, int) and not isinstance(request_id, bool):
            return str(request_id)
        return self.next_request_id()

    def next_request_id(self) -> str:
        """Generate deterministic fallback request IDs for invalid/missing IDs."""
        self._fallback_request_counter += 1
        return f"req-{self._fallback_request_counter:06d}"

    @staticmethod
    def success_response(request_id: str, result: dict[str, object]) -> dict[str, object]:
        """Build success envelope."""
        return {
            "request_id": request_id,
            "ok": True,
            "result": result,
            "warnings": [],
        }

    @staticmethod
    def error_response(request_id: str, code: str, message: str) -> dict[str, object]:
        """Build explicit error envelope."""
        return {
            "request_id": request_id,
            "ok": False,
            "result": {},
            "warnings": [],
            "error": {"code": code, "message": message},
        }

    def log_request(
        self,
        request_id: str,
        tool_name: str,
        arguments: dict[str, object],
        response: dict[str, object],
        started: float,
    ) -> None:
        """Log one sanitized request event."""
        error_payload = response.get("error")
        error_code: str | None = None
        if isinstance(error_payload, dict):
            code_value = error_payload.get("code")
            if isinstance(code_value, str):
                error_code = code_value
        event = AuditEvent(
            timestamp=utc_timestamp(),
            request_id=request_id,
            tool=tool_name,
            ok=bool(response.get("ok", False)),
            error_code=error_code,
            duration_ms=int((time.perf_counter() - started) * 1000),
            metadata=sanitize_arguments(arguments),
        )
        self._audit_logger.append(event)


def error_code_for(error: Exception) -> tuple[str, str]:
    """Map a tool failure onto an envelope (code, message) pair."""
    if isinstance(error, ToolDispatchError):
        return error.code, error.message
    if isinstance(error, BitbucketNotFoundError):
        return "NOT_FOUND", error.message
    if isinstance(error, BitbucketAuthError):
        return "UNAUTHORIZED", error.message
    if isinstance(error, BitbucketInvalidRequestError):
        return "INVALID_PARAMS", error.message
    if isinstance(error, BitbucketUnavailableError):
        return "UPSTREAM_UNAVAILABLE", error.message
    if isinstance(error, BitbucketApiError):
        return "UPSTREAM_ERROR", error.message
    return "INTERNAL_ERROR", "Unhandled server error while executing tool."


def create_server(
    environ: Mapping[str, str] | None = None,
    cli_overrides: CliOverrides | None = None,
    transport: httpx.BaseTransport | None = None,
    cwd: Path | None = None,
) -> StdioServer:
    """Create a configured STDIO server instance."""
    config = load_effective_config(environ=environ, overrides=cli_overrides, cwd=cwd)
    return StdioServer(config=config, client=BitbucketClient(config, transport=transport))


def main(argv: list[str] | None = None) -> int:
    """Entrypoint for the Bitbucket MCP server process."""
    load_dotenv()
    parser = build_arg_parser()
    args = parser.parse_args(argv)
    read_only: bool | None = None
    if args.read_only == "true":
        read_only = True
    if args.read_only == "false":
        read_only = False
    overrides = CliOverrides(
        config_path=Path(args.config).resolve() if args.config is not None else None,
        data_dir=Path(args.data_dir).resolve() if args.data_dir is not None else None,
        default_project=args.default_project,
        max_lines_per_file=args.max_lines_per_file,
        read_only=read_only,
    )
    try:
        server = create_server(cli_overrides=overrides)
    except ValueError as error:
        print(f"bitbucket-mcp: {error}", file=sys.stderr)
        return 1
    try:
        server.serve(in_stream=sys.stdin, out_stream=sys.stdout)
    finally:
        server.close()
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
