"""Pytest configuration for test discovery and shared fixtures.

This file ensures that:
- `src/` is importable
- Tests never pick up memory-service settings from the developer's shell
"""

from __future__ import annotations

import sys
from pathlib import Path

import pytest

# Ensure src directory is in path for imports
repo_root = Path(__file__).parent.parent
src_path = repo_root / "src"
if str(src_path) not in sys.path:
    sys.path.insert(0, str(src_path))


@pytest.fixture(autouse=True)
def _clear_memory_env(monkeypatch: pytest.MonkeyPatch) -> None:
    for name in ("MEM0_API_KEY", "MEM0_BASE_URL", "MEM0_MODE"):
        monkeypatch.delenv(name, raising=False)


@pytest.fixture
def valid_api_key() -> str:
    """A key matching ``mem0-`` + 52 alphanumerics."""
    return "mem0-" + "aB3" * 17 + "x"
