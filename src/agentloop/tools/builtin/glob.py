"""``glob`` tool: simple wildcard matching over the virtual filesystem."""

from __future__ import annotations

import json
import posixpath
import re
import time
from typing import Any, Mapping

from ...fs import FileSystem, FileSystemError, normalize_path
from ...types import ToolResult
from ..schema import ParameterSchema, ToolSchema
from ..types import ApprovalCategory, Tool, ToolApproval

__all__ = ["LIMIT", "create_glob_tool", "glob_to_regex", "search_files"]

LIMIT = 100

_DESCRIPTION = """
Glob
- Fast file pattern matching
- Supports glob patterns like "**/*.py" or "src/**/*.md"
- Returns matching file paths
- Use this tool when you need to find files by name patterns
"""


def glob_to_regex(pattern: str) -> re.Pattern[str]:
    """Translate ``*`` and ``?`` wildcards into a case-insensitive anchored regex.

    ``*`` matches across directory separators, so ``**`` behaves like ``*``.
    """

    parts: list[str] = []
    for char in pattern:
        if char == "*":
            parts.append(".*")
        elif char == "?":
            parts.append(".")
        else:
            parts.append(re.escape(char))
    return re.compile("^" + "".join(parts) + "$", re.IGNORECASE)


def search_files(fs: FileSystem, root: str, pattern: str) -> list[str]:
    regex = glob_to_regex(pattern)
    recursive = "**" in pattern or "/" in pattern
    results: list[str] = []

    def visit(directory: str) -> None:
        try:
            entries = fs.list_dir(directory)
        except FileSystemError:
            return
        for entry in entries:
            full_path = posixpath.join(directory, entry)
            if fs.is_dir(full_path):
                if recursive:
                    visit(full_path)
            elif regex.match(full_path) or regex.match(entry):
                results.append(full_path)

    visit(root)
    return results


def create_glob_tool(fs: FileSystem, *, cwd: str = "/") -> Tool:
    def execute(params: Mapping[str, Any]) -> ToolResult:
        start = time.perf_counter()
        root = normalize_path(params.get("path") or cwd, cwd)
        filenames = search_files(fs, root, params["pattern"])
        truncated = len(filenames) > LIMIT
        limited = filenames[:LIMIT]
        duration_ms = int((time.perf_counter() - start) * 1000)
        message = f"Found {len(limited)} files in {duration_ms}ms"
        message += f", truncating to {LIMIT}." if truncated else "."
        payload = {
            "filenames": limited,
            "duration_ms": duration_ms,
            "num_files": len(limited),
            "truncated": truncated,
        }
        return ToolResult(llm_content=json.dumps(payload, ensure_ascii=False), return_display=message)

    return Tool(
        name="glob",
        description=_DESCRIPTION.strip(),
        handler=execute,
        schema=ToolSchema(
            (
                ParameterSchema("pattern", "string", "The glob pattern to match files against", required=True),
                ParameterSchema("path", "string", "The directory to search in"),
            )
        ),
        approval=ToolApproval(category=ApprovalCategory.READ),
        describe=lambda params: str(params.get("pattern") or "No pattern provided"),
    )
