"""``ls`` tool: breadth-first directory listing rendered as a tree."""

from __future__ import annotations

import posixpath
from typing import Any, Mapping

from ...fs import FileSystem, FileSystemError, normalize_path
from ...types import ToolResult
from ..schema import ParameterSchema, ToolSchema
from ..types import ApprovalCategory, Tool, ToolApproval

__all__ = ["MAX_FILES", "create_ls_tool", "list_directory", "render_tree"]

MAX_FILES = 1000
IGNORED_NAMES = frozenset(
    {
        "node_modules",
        "__pycache__",
        "dist",
        "build",
        "coverage",
        "tmp",
        "temp",
        "venv",
    }
)
IGNORED_SUFFIXES = (".log", ".pyc")
TRUNCATED_MESSAGE = (
    f"There are more than {MAX_FILES} files in the workspace. Use the ls tool (passing a specific "
    f"path) and the other tools to explore nested directories. The first {MAX_FILES} files and "
    "directories are included below:\n\n"
)


def _skipped(name: str) -> bool:
    return name.startswith(".") or name in IGNORED_NAMES or name.endswith(IGNORED_SUFFIXES)


def _relative(cwd: str, path: str) -> str:
    base = cwd.rstrip("/")
    if path.startswith(base + "/"):
        return path[len(base) + 1 :]
    return path


def list_directory(fs: FileSystem, root: str, cwd: str, max_files: int = MAX_FILES) -> list[str]:
    """Return up to ``max_files`` paths below ``root`` relative to ``cwd``.

    Directories carry a trailing ``/``.
    """

    results: list[str] = []
    queue: list[str] = [root]
    while queue and len(results) < max_files:
        current = queue.pop(0)
        try:
            children = fs.list_dir(current)
        except FileSystemError:
            continue
        for child in children:
            if len(results) >= max_files:
                break
            if _skipped(child):
                continue
            child_path = posixpath.join(current, child)
            if fs.is_dir(child_path):
                queue.append(child_path)
                results.append(_relative(cwd, child_path) + "/")
            else:
                results.append(_relative(cwd, child_path))
    return results


def render_tree(cwd: str, paths: list[str]) -> str:
    tree: dict[str, Any] = {}
    for path in sorted(paths):
        node = tree
        parts = [part for part in path.strip("/").split("/") if part]
        for index, part in enumerate(parts):
            is_dir = index < len(parts) - 1 or path.endswith("/")
            entry = node.setdefault(part, {"dir": is_dir, "children": {}})
            entry["dir"] = entry["dir"] or is_dir
            node = entry["children"]

    lines = [f"- {cwd.rstrip('/')}/"]

    def walk(children: dict[str, Any], prefix: str) -> None:
        for name, entry in children.items():
            lines.append(f"{prefix}- {name}{'/' if entry['dir'] else ''}")
            walk(entry["children"], prefix + "  ")

    walk(tree, "  ")
    return "\n".join(lines) + "\n"


def create_ls_tool(fs: FileSystem, *, cwd: str = "/") -> Tool:
    def execute(params: Mapping[str, Any]) -> ToolResult:
        root = normalize_path(params.get("dir_path") or cwd, cwd)
        if not fs.is_dir(root):
            return ToolResult.error(f"Directory {root} does not exist.")
        paths = list_directory(fs, root, cwd)
        tree = render_tree(cwd, paths)
        if len(paths) < MAX_FILES:
            return ToolResult(llm_content=tree, return_display=f"Listed {len(paths)} files/directories")
        return ToolResult(
            llm_content=TRUNCATED_MESSAGE + tree,
            return_display=f"Listed first {MAX_FILES} files/directories (truncated)",
        )

    return Tool(
        name="ls",
        description="Lists files and directories in a given path.",
        handler=execute,
        schema=ToolSchema(
            (
                ParameterSchema(
                    "dir_path",
                    "string",
                    "The directory path to list. Defaults to the current directory if not provided.",
                ),
            )
        ),
        approval=ToolApproval(category=ApprovalCategory.READ),
        describe=lambda params: _relative(cwd, str(params.get("dir_path") or ".")),
    )
