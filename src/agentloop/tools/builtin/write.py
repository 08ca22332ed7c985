"""``write`` and ``edit`` tools."""

from __future__ import annotations

import json
from typing import Any, Mapping

from ...fs import FileSystem, FileSystemError, normalize_path
from ...types import ToolResult
from ..approval import category_needs_approval
from ..schema import ParameterSchema, ToolSchema
from ..types import ApprovalCategory, ApprovalContext, Tool, ToolApproval

__all__ = ["EditError", "apply_edit", "create_edit_tool", "create_write_tool"]

_EDIT_DESCRIPTION = """
Edit files in the workspace filesystem.
Usage:
- Read the file with the read tool before editing it.
- old_string must match the file content exactly, including indentation.
- Only the first occurrence of old_string is replaced.
- An empty old_string replaces the whole file with new_string.
- For larger rewrites or new files, use the write tool.
"""


class EditError(ValueError):
    """Raised when an edit cannot be applied."""


def _needs_write_approval(ctx: ApprovalContext) -> bool:
    return category_needs_approval(ApprovalCategory.WRITE, ctx.approval_mode)


def _write_approval() -> ToolApproval:
    return ToolApproval(category=ApprovalCategory.WRITE, needs_approval=_needs_write_approval)


def _with_trailing_newline(content: str) -> str:
    return content if content.endswith("\n") else content + "\n"


def _describe_path(params: Mapping[str, Any]) -> str:
    return str(params.get("file_path") or "No file path provided")


def create_write_tool(fs: FileSystem, *, cwd: str = "/") -> Tool:
    def execute(params: Mapping[str, Any]) -> ToolResult:
        path = normalize_path(params["file_path"], cwd)
        content = params["content"]
        try:
            existed = fs.exists(path)
            original = fs.read_text(path) if existed else ""
            fs.write_text(path, _with_trailing_newline(content))
        except FileSystemError as exc:
            return ToolResult.error(str(exc))
        display = {
            "type": "diff_viewer",
            "file_path": path,
            "original_content": original,
            "new_content": content,
            "write_type": "replace" if existed else "add",
        }
        return ToolResult(llm_content=f"File successfully written to {path}", return_display=display)

    return Tool(
        name="write",
        description="Write a file to the workspace filesystem",
        handler=execute,
        schema=ToolSchema(
            (
                ParameterSchema("file_path", "string", "The path to the file to write", required=True),
                ParameterSchema("content", "string", "The content to write to the file", required=True),
            )
        ),
        approval=_write_approval(),
        describe=_describe_path,
    )


def apply_edit(fs: FileSystem, path: str, old_string: str, new_string: str) -> str:
    """Return the edited file content.

    Raises:
        EditError: If the edit leaves the file unchanged.
        FileSystemError: If the file cannot be read.
    """

    if old_string == "":
        original = fs.read_text(path) if fs.exists(path) else ""
        updated = new_string
    else:
        original = fs.read_text(path)
        updated = original.replace(old_string, new_string, 1)
    if updated == original:
        details = json.dumps({"file_path": path, "old_string": old_string, "new_string": new_string})
        raise EditError(f"Original and edited file match exactly. Failed to apply edit. {details}")
    return updated


def create_edit_tool(fs: FileSystem, *, cwd: str = "/") -> Tool:
    def execute(params: Mapping[str, Any]) -> ToolResult:
        path = normalize_path(params["file_path"], cwd)
        old_string = params["old_string"]
        new_string = params["new_string"]
        try:
            fs.write_text(path, apply_edit(fs, path, old_string, new_string))
        except (EditError, FileSystemError) as exc:
            return ToolResult.error(str(exc))
        display = {
            "type": "diff_viewer",
            "file_path": path,
            "original_content": old_string,
            "new_content": new_string,
        }
        return ToolResult(llm_content=f"File {path} successfully edited.", return_display=display)

    return Tool(
        name="edit",
        description=_EDIT_DESCRIPTION.strip(),
        handler=execute,
        schema=ToolSchema(
            (
                ParameterSchema("file_path", "string", "The path of the file to modify", required=True),
                ParameterSchema("old_string", "string", "The text to replace", required=True),
                ParameterSchema(
                    "new_string",
                    "string",
                    "The text to replace the old_string with",
                    required=True,
                ),
            )
        ),
        approval=_write_approval(),
        describe=_describe_path,
    )
