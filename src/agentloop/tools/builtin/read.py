"""``read`` tool: text files with offset/limit, images as data URLs."""

from __future__ import annotations

import base64
import json
import posixpath
import re
from typing import Any, Mapping

from ...fs import FileSystem, FileSystemError, normalize_path
from ...types import ToolResult
from ..schema import ParameterSchema, ToolSchema
from ..types import ApprovalCategory, Tool, ToolApproval

__all__ = ["MAX_LINE_LENGTH", "MAX_LINES_TO_READ", "create_read_tool"]

MAX_LINES_TO_READ = 2000
MAX_LINE_LENGTH = 2000
MAX_IMAGE_SIZE = int(3.75 * 1024 * 1024)
IMAGE_MIME_TYPES: Mapping[str, str] = {
    ".jpg": "image/jpeg",
    ".jpeg": "image/jpeg",
    ".png": "image/png",
    ".gif": "image/gif",
    ".bmp": "image/bmp",
    ".webp": "image/webp",
    ".svg": "image/svg+xml",
    ".tiff": "image/tiff",
    ".tif": "image/tiff",
}
_LINE_BREAK = re.compile(r"\r?\n")

_DESCRIPTION = f"""
Reads a file from the workspace filesystem.

Usage:
- By default, it reads up to {MAX_LINES_TO_READ} lines starting from the beginning of the file
- You can optionally specify a line offset and limit (handy for long files); prefer reading the whole file
- Lines longer than {MAX_LINE_LENGTH} characters are truncated
- Image files (PNG, JPG, ...) are returned as base64 data URLs
"""

_SCHEMA = ToolSchema(
    (
        ParameterSchema("file_path", "string", "The absolute path to the file to read", required=True),
        ParameterSchema(
            "offset",
            "integer",
            "The line number to start reading from. Only provide if the file is too large to read at once",
            minimum=1,
        ),
        ParameterSchema(
            "limit",
            "integer",
            "The number of lines to read. Only provide if the file is too large to read at once",
            minimum=1,
        ),
    )
)


def _read_image(fs: FileSystem, path: str, extension: str) -> ToolResult:
    data = fs.read_bytes(path)
    if len(data) > MAX_IMAGE_SIZE:
        message = f"Image file too large: {len(data)} bytes (max: {MAX_IMAGE_SIZE} bytes)"
        return ToolResult.error(json.dumps({"type": "error", "message": message}), return_display=message)
    mime_type = IMAGE_MIME_TYPES[extension]
    encoded = base64.b64encode(data).decode("ascii")
    payload = [{"type": "image", "data": f"data:{mime_type};base64,{encoded}", "mime_type": mime_type}]
    return ToolResult(llm_content=json.dumps(payload), return_display="Read image file successfully.")


def _read_text(fs: FileSystem, path: str, offset: int | None, limit: int | None) -> ToolResult:
    lines = _LINE_BREAK.split(fs.read_text(path))
    total_lines = len(lines)
    start = max(0, (offset or 1) - 1)
    effective_limit = limit or MAX_LINES_TO_READ
    end = min(total_lines, start + effective_limit)
    selected = [
        line[:MAX_LINE_LENGTH] + "..." if len(line) > MAX_LINE_LENGTH else line
        for line in lines[start:end]
    ]
    if offset is not None or limit is not None:
        display = f"Read {len(selected)} lines (from line {start + 1} to {end})."
    else:
        display = f"Read {len(selected)} lines."
    payload = {
        "type": "text",
        "file_path": path,
        "content": "\n".join(selected),
        "total_lines": total_lines,
        "offset": start + 1,
        "limit": effective_limit,
        "actual_lines_read": len(selected),
    }
    return ToolResult(llm_content=json.dumps(payload, ensure_ascii=False), return_display=display)


def create_read_tool(fs: FileSystem, *, cwd: str = "/") -> Tool:
    def execute(params: Mapping[str, Any]) -> ToolResult:
        path = normalize_path(params["file_path"], cwd)
        offset = params.get("offset")
        limit = params.get("limit")
        try:
            if not fs.exists(path):
                return ToolResult.error(f"File {path} does not exist.")
            extension = posixpath.splitext(path)[1].lower()
            if extension in IMAGE_MIME_TYPES:
                return _read_image(fs, path, extension)
            return _read_text(fs, path, offset, limit)
        except FileSystemError as exc:
            return ToolResult.error(str(exc))

    return Tool(
        name="read",
        description=_DESCRIPTION.strip(),
        handler=execute,
        schema=_SCHEMA,
        approval=ToolApproval(category=ApprovalCategory.READ),
        describe=lambda params: str(params.get("file_path") or "No file path provided"),
    )
