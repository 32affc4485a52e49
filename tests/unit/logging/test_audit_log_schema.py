from __future__ import annotations

import json
from pathlib import Path

from bitbucket_mcp.logging import AuditEvent, JsonlAuditLogger


def _event(request_id: str, timestamp: str) -> AuditEvent:
    return AuditEvent(
        timestamp=timestamp,
        request_id=request_id,
        tool="get_diff",
        ok=True,
        error_code=None,
        duration_ms=3,
        metadata={"prId": 1},
    )


def test_audit_log_writes_jsonl_schema(server_factory, tmp_path: Path) -> None:
    server = server_factory()
    server.handle_payload({"id": "req-100", "method": "server_status", "params": {}})

    audit_path = tmp_path / ".bitbucket_mcp" / "audit.jsonl"
    assert audit_path.exists()

    event = json.loads(audit_path.read_text(encoding="utf-8").splitlines()[-1])

    assert set(event.keys()) == {
        "duration_ms",
        "error_code",
        "metadata",
        "ok",
        "request_id",
        "timestamp",
        "tool",
    }
    assert event["request_id"] == "req-100"
    assert event["tool"] == "server_status"
    assert event["ok"] is True
    assert event["error_code"] is None
    assert event["timestamp"].endswith("Z")


def test_reader_filters_by_since_and_keeps_most_recent(tmp_path: Path) -> None:
    logger = JsonlAuditLogger(path=tmp_path / "logs" / "audit.jsonl")
    logger.append(_event("a", "2026-01-01T00:00:00.000Z"))
    logger.append(_event("b", "2026-01-02T00:00:00.000Z"))
    logger.append(_event("c", "2026-01-03T00:00:00.000Z"))

    recent = logger.read(since="2026-01-02T00:00:00.000Z", limit=50)
    last = logger.read(limit=1)

    assert [entry["request_id"] for entry in recent] == ["b", "c"]
    assert [entry["request_id"] for entry in last] == ["c"]


def test_reader_skips_corrupt_lines(tmp_path: Path) -> None:
    path = tmp_path / "audit.jsonl"
    logger = JsonlAuditLogger(path=path)
    logger.append(_event("a", "2026-01-01T00:00:00.000Z"))
    with path.open("a", encoding="utf-8") as handle:
        handle.write("{broken\n\n")

    assert [entry["request_id"] for entry in logger.read()] == ["a"]


def test_reader_returns_empty_without_file(tmp_path: Path) -> None:
    assert JsonlAuditLogger(path=tmp_path / "audit.jsonl").read() == []
