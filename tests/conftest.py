"""Shared pytest fixtures."""

from __future__ import annotations

import pytest

from agentloop.fs import MemoryFileSystem


@pytest.fixture
def memory_fs() -> MemoryFileSystem:
    return MemoryFileSystem(
        {
            "/README.md": "# Demo\n\nA small workspace.\n",
            "/src/app.py": "def main():\n    print('hello')\n",
            "/src/util.py": "def helper():\n    return 42\n",
            "/docs/guide.md": "Install\nRun\nTODO: write more\n",
        }
    )
