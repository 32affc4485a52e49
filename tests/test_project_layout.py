from __future__ import annotations

from pathlib import Path


def test_required_package_paths_exist() -> None:
    root = Path(__file__).resolve().parents[1]
    required = [
        "src/bitbucket_mcp/server.py",
        "src/bitbucket_mcp/config.py",
        "src/bitbucket_mcp/diff/__init__.py",
        "src/bitbucket_mcp/bitbucket/__init__.py",
        "src/bitbucket_mcp/tools/__init__.py",
        "src/bitbucket_mcp/logging/__init__.py",
    ]
    for rel in required:
        assert (root / rel).exists(), rel
