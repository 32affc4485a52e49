"""Per-request audit trail written as JSON lines under the data directory."""

from __future__ import annotations

import json
from collections.abc import Iterator
from dataclasses import asdict, dataclass
from datetime import UTC, datetime
from pathlib import Path

# Identifiers that are safe to record as-is.
_VERBATIM_STRING_KEYS = frozenset(
    {"project", "repository", "filePath", "path", "branch", "strategy", "type", "since"}
)


@dataclass(slots=True, frozen=True)
class AuditEvent:
    """One handled request: which tool ran, how it ended and how long it took."""

    timestamp: str
    request_id: str
    tool: str
    ok: bool
    error_code: str | None
    duration_ms: int
    metadata: dict[str, object]


def utc_timestamp() -> str:
    """Return an ISO-8601 UTC timestamp with millisecond precision and a ``Z`` suffix."""
    return datetime.now(tz=UTC).isoformat(timespec="milliseconds").replace("+00:00", "Z")


def _summarize(key: str, value: object) -> dict[str, object]:
    if isinstance(value, str):
        if key in _VERBATIM_STRING_KEYS:
            return {key: value}
        # Titles, comment bodies and queries may carry secrets.
        return {f"{key}_present": True, f"{key}_length": len(value)}
    if value is None or isinstance(value, (bool, int, float)):
        return {key: value}
    if isinstance(value, list):
        return {f"{key}_type": "list", f"{key}_length": len(value)}
    if isinstance(value, dict):
        return {f"{key}_type": "dict", f"{key}_keys": sorted(str(k) for k in value)}
    return {f"{key}_type": type(value).__name__}


def sanitize_arguments(arguments: dict[str, object]) -> dict[str, object]:
    """Summarize tool arguments for the audit trail.

    Project, repository, path and branch identifiers are kept along with
    numbers and flags. Every other string is recorded only by length.
    """
    sanitized: dict[str, object] = {}
    for key in sorted(arguments):
        sanitized.update(_summarize(key, arguments[key]))
    return sanitized


class JsonlAuditLogger:
    """Appends audit events to one JSONL file and reads back the newest ones."""

    def __init__(self, path: Path) -> None:
        self._path = path
        self._path.parent.mkdir(parents=True, exist_ok=True)

    @property
    def path(self) -> Path:
        return self._path

    def append(self, event: AuditEvent) -> None:
        with self._path.open("a", encoding="utf-8") as handle:
            handle.write(f"{json.dumps(asdict(event), sort_keys=True)}\n")

    def _records(self) -> Iterator[dict[str, object]]:
        if not self._path.exists():
            return
        with self._path.open("r", encoding="utf-8") as handle:
            for line in handle:
                if not line.strip():
                    continue
                try:
                    record = json.loads(line)
                except json.JSONDecodeError:
                    # A partially written trailing line is skipped.
                    continue
                if isinstance(record, dict):
                    yield record

    def read(self, since: str | None = None, limit: int = 50) -> list[dict[str, object]]:
        """Return up to ``limit`` newest events stamped at or after ``since``."""
        matching = [
            record
            for record in self._records()
            if since is None
            or (isinstance(record.get("timestamp"), str) and record["timestamp"] >= since)
        ]
        return matching[-limit:] if limit > 0 else []
