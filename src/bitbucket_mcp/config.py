"""Configuration loading and deterministic merge order."""

from __future__ import annotations

import os
import tomllib
from collections.abc import Mapping
from dataclasses import dataclass
from pathlib import Path

DEFAULT_TIMEOUT_SECONDS = 30.0
DEFAULT_CONFIG_FILENAME = "bitbucket_mcp.toml"
DEFAULT_DATA_DIRNAME = ".bitbucket_mcp"


@dataclass(slots=True, frozen=True)
class Credentials:
    """Bearer token or basic-auth pair used for every upstream call."""

    token: str | None = None
    username: str | None = None
    password: str | None = None

    @property
    def method(self) -> str:
        if self.token:
            return "token"
        if self.username and self.password:
            return "basic"
        return "none"


@dataclass(slots=True, frozen=True)
class DiffConfig:
    """Diff rendering settings."""

    max_lines_per_file: int | None


@dataclass(slots=True, frozen=True)
class ServerConfig:
    """Fully merged server configuration."""

    base_url: str
    credentials: Credentials
    default_project: str | None
    read_only: bool
    timeout_seconds: float
    data_dir: Path
    diff: DiffConfig

    @property
    def max_lines_per_file(self) -> int | None:
        return self.diff.max_lines_per_file

    def to_public_dict(self) -> dict[str, object]:
        """Return serializable config snapshot without credentials."""
        return {
            "base_url": self.base_url,
            "auth_method": self.credentials.method,
            "default_project": self.default_project,
            "read_only": self.read_only,
            "timeout_seconds": self.timeout_seconds,
            "data_dir": str(self.data_dir),
            "diff": {
                "max_lines_per_file": self.diff.max_lines_per_file,
            },
        }


@dataclass(slots=True, frozen=True)
class CliOverrides:
    """Optional startup overrides applied at highest precedence."""

    config_path: Path | None = None
    data_dir: Path | None = None
    default_project: str | None = None
    max_lines_per_file: int | None = None
    read_only: bool | None = None


@dataclass(slots=True, frozen=True)
class _PartialConfig:
    base_url: str
    default_project: str | None
    read_only: bool
    timeout_seconds: float
    data_dir: Path
    max_lines_per_file: int | None


def default_config(cwd: Path) -> _PartialConfig:
    return _PartialConfig(
        base_url="",
        default_project=None,
        read_only=False,
        timeout_seconds=DEFAULT_TIMEOUT_SECONDS,
        data_dir=cwd.resolve() / DEFAULT_DATA_DIRNAME,
        max_lines_per_file=None,
    )


def load_config_file(path: Path, required: bool = False) -> dict[str, object]:
    """Load an optional bitbucket_mcp.toml file."""
    if not path.exists():
        if required:
            raise ValueError(f"Config file not found: {path}")
        return {}
    with path.open("rb") as handle:
        payload = tomllib.load(handle)
    if not isinstance(payload, dict):
        raise ValueError(f"{path.name} must contain a top-level table.")
    return payload


def _get_table(payload: dict[str, object], key: str) -> dict[str, object]:
    value = payload.get(key, {})
    if not isinstance(value, dict):
        raise ValueError(f"Config section '{key}' must be a table.")
    return value


def merge_file_config(base: _PartialConfig, payload: dict[str, object]) -> _PartialConfig:
    """Apply [server], [http] and [diff] tables from a config file."""
    server_payload = _get_table(payload, "server")
    http_payload = _get_table(payload, "http")
    diff_payload = _get_table(payload, "diff")

    for secret in ("token", "username", "password"):
        if secret in server_payload:
            raise ValueError(
                f"Config field 'server.{secret}' is not supported; "
                "credentials are read from the environment only."
            )

    base_url = base.base_url
    if "base_url" in server_payload:
        base_url = _string(server_payload["base_url"], "server.base_url")
    default_project = base.default_project
    if "default_project" in server_payload:
        default_project = _string(server_payload["default_project"], "server.default_project")
    read_only = base.read_only
    if "read_only" in server_payload:
        raw_read_only = server_payload["read_only"]
        if not isinstance(raw_read_only, bool):
            raise ValueError("Config field 'server.read_only' must be a boolean.")
        read_only = raw_read_only

    timeout_seconds = base.timeout_seconds
    if "timeout_seconds" in http_payload:
        timeout_seconds = _positive_number(http_payload["timeout_seconds"], "http.timeout_seconds")

    max_lines_per_file = base.max_lines_per_file
    if "max_lines_per_file" in diff_payload:
        max_lines_per_file = _non_negative_int(
            diff_payload["max_lines_per_file"], "diff.max_lines_per_file"
        )

    return _PartialConfig(
        base_url=base_url,
        default_project=default_project,
        read_only=read_only,
        timeout_seconds=timeout_seconds,
        data_dir=base.data_dir,
        max_lines_per_file=max_lines_per_file,
    )


def merge_environment(base: _PartialConfig, environ: Mapping[str, str]) -> _PartialConfig:
    """Apply BITBUCKET_* environment variables."""
    base_url = environ.get("BITBUCKET_URL") or base.base_url
    default_project = environ.get("BITBUCKET_DEFAULT_PROJECT") or base.default_project

    read_only = base.read_only
    if "BITBUCKET_READ_ONLY" in environ:
        read_only = environ["BITBUCKET_READ_ONLY"].strip().lower() == "true"

    max_lines_per_file = base.max_lines_per_file
    raw_max_lines = environ.get("BITBUCKET_DIFF_MAX_LINES_PER_FILE", "").strip()
    if raw_max_lines:
        max_lines_per_file = _non_negative_int(
            _parse_int(raw_max_lines, "BITBUCKET_DIFF_MAX_LINES_PER_FILE"),
            "BITBUCKET_DIFF_MAX_LINES_PER_FILE",
        )

    timeout_seconds = base.timeout_seconds
    raw_timeout = environ.get("BITBUCKET_TIMEOUT_SECONDS", "").strip()
    if raw_timeout:
        try:
            parsed_timeout = float(raw_timeout)
        except ValueError as error:
            raise ValueError(
                "Config field 'BITBUCKET_TIMEOUT_SECONDS' must be a positive number."
            ) from error
        timeout_seconds = _positive_number(parsed_timeout, "BITBUCKET_TIMEOUT_SECONDS")

    data_dir = base.data_dir
    raw_data_dir = environ.get("BITBUCKET_MCP_DATA_DIR", "").strip()
    if raw_data_dir:
        data_dir = Path(raw_data_dir)

    return _PartialConfig(
        base_url=base_url,
        default_project=default_project,
        read_only=read_only,
        timeout_seconds=timeout_seconds,
        data_dir=data_dir,
        max_lines_per_file=max_lines_per_file,
    )


def apply_cli_overrides(base: _PartialConfig, overrides: CliOverrides) -> _PartialConfig:
    """Apply startup overrides at highest precedence."""
    max_lines_per_file = base.max_lines_per_file
    if overrides.max_lines_per_file is not None:
        max_lines_per_file = _non_negative_int(
            overrides.max_lines_per_file, "overrides.max_lines_per_file"
        )
    return _PartialConfig(
        base_url=base.base_url,
        default_project=overrides.default_project or base.default_project,
        read_only=overrides.read_only if overrides.read_only is not None else base.read_only,
        timeout_seconds=base.timeout_seconds,
        data_dir=overrides.data_dir or base.data_dir,
        max_lines_per_file=max_lines_per_file,
    )


def read_credentials(environ: Mapping[str, str]) -> Credentials:
    return Credentials(
        token=environ.get("BITBUCKET_TOKEN") or None,
        username=environ.get("BITBUCKET_USERNAME") or None,
        password=environ.get("BITBUCKET_PASSWORD") or None,
    )


def load_effective_config(
    environ: Mapping[str, str] | None = None,
    overrides: CliOverrides | None = None,
    cwd: Path | None = None,
) -> ServerConfig:
    """Load effective config using merge order defaults -> file -> env -> overrides."""
    env = os.environ if environ is None else environ
    cli = overrides or CliOverrides()
    working_dir = cwd or Path.cwd()

    partial = default_config(working_dir)
    if cli.config_path is not None:
        payload = load_config_file(cli.config_path, required=True)
    else:
        payload = load_config_file(working_dir / DEFAULT_CONFIG_FILENAME)
    partial = merge_file_config(partial, payload)
    partial = merge_environment(partial, env)
    partial = apply_cli_overrides(partial, cli)

    if not partial.base_url:
        raise ValueError("BITBUCKET_URL is required")
    credentials = read_credentials(env)
    if credentials.method == "none":
        raise ValueError("Either BITBUCKET_TOKEN or BITBUCKET_USERNAME/PASSWORD is required")

    return ServerConfig(
        base_url=partial.base_url.rstrip("/"),
        credentials=credentials,
        default_project=partial.default_project,
        read_only=partial.read_only,
        timeout_seconds=partial.timeout_seconds,
        data_dir=partial.data_dir.resolve(),
        diff=DiffConfig(max_lines_per_file=partial.max_lines_per_file),
    )


def _string(value: object, name: str) -> str:
    if not isinstance(value, str):
        raise ValueError(f"Config field '{name}' must be a string.")
    return value


def _parse_int(value: str, name: str) -> int:
    try:
        return int(value)
    except ValueError as error:
        raise ValueError(f"Config field '{name}' must be an integer.") from error


def _non_negative_int(value: object, name: str) -> int:
    if isinstance(value, bool) or not isinstance(value, int) or value < 0:
        raise ValueError(f"Config field '{name}' must be a non-negative integer.")
    return value


def _positive_number(value: object, name: str) -> float:
    if isinstance(value, bool) or not isinstance(value, (int, float)) or value <= 0:
        raise ValueError(f"Config field '{name}' must be a positive number.")
    return float(value)
