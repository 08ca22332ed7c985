"""``grep`` tool: literal substring search."""

from __future__ import annotations

import posixpath
from typing import Any, Mapping

from ...fs import FileSystem, FileSystemError, normalize_path
from ...types import ToolResult
from ..schema import ParameterSchema, ToolSchema
from ..types import ApprovalCategory, Tool, ToolApproval

__all__ = ["create_grep_tool", "grep_paths"]


def grep_paths(fs: FileSystem, root: str, pattern: str, *, recursive: bool = False) -> list[str]:
    """Return ``path:line:text`` rows for every line of ``root`` containing ``pattern``."""
    rows: list[str] = []

    def search_file(path: str) -> None:
        try:
            content = fs.read_text(path)
        except FileSystemError:
            return
        for number, line in enumerate(content.split("\n"), start=1):
            if pattern in line:
                rows.append(f"{path}:{number}:{line.strip()}")

    def search_directory(directory: str) -> None:
        try:
            entries = fs.list_dir(directory)
        except FileSystemError:
            return
        for entry in entries:
            full_path = posixpath.join(directory, entry)
            if not fs.is_dir(full_path):
                search_file(full_path)
            elif recursive:
                search_directory(full_path)

    if fs.exists(root):
        if fs.is_dir(root):
            search_directory(root)
        else:
            search_file(root)
    return rows


def create_grep_tool(fs: FileSystem, *, cwd: str = "/") -> Tool:
    def execute(params: Mapping[str, Any]) -> ToolResult:
        pattern = params["pattern"]
        root = normalize_path(params.get("search_path") or cwd, cwd)
        rows = grep_paths(fs, root, pattern, recursive=bool(params.get("recursive")))
        output = "\n".join(rows) if rows else f"No matches found for pattern: {pattern}"
        return ToolResult(llm_content=output, return_display=f'Found {len(rows)} matches for "{pattern}"')

    return Tool(
        name="grep",
        description="Search for a pattern in files or directories.",
        handler=execute,
        schema=ToolSchema(
            (
                ParameterSchema("pattern", "string", "The pattern to search for", required=True),
                ParameterSchema(
                    "search_path",
                    "string",
                    "The path to search in (defaults to current directory)",
                ),
                ParameterSchema(
                    "recursive",
                    "boolean",
                    "Whether to search recursively in subdirectories",
                    default=False,
                ),
            )
        ),
        approval=ToolApproval(category=ApprovalCategory.READ),
        describe=lambda params: f'Search for "{params.get("pattern")}"' if params.get("pattern") else "No pattern provided",
    )
