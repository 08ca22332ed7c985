"""Session todo list tools (``todo_read`` / ``todo_write``)."""

from __future__ import annotations

import json
import logging
from typing import Any, Mapping

from ...fs import FileSystem, FileSystemError
from ...types import ToolResult
from ..schema import ParameterSchema, ToolSchema
from ..types import ApprovalCategory, Tool, ToolApproval

__all__ = ["TODO_STATUSES", "TODO_PRIORITIES", "create_todo_tools", "load_todos", "save_todos"]

LOGGER = logging.getLogger(__name__)

TODO_STATUSES = ("pending", "in_progress", "completed")
TODO_PRIORITIES = ("low", "medium", "high")

_WRITE_MESSAGE = (
    "Todos have been modified successfully. Ensure that you continue to use the todo list "
    "to track your progress. Please proceed with the current tasks if applicable"
)

_TODO_ITEM = ParameterSchema(
    "todo",
    "object",
    properties=(
        ParameterSchema("id", "string", "Unique identifier of the todo", required=True),
        ParameterSchema("content", "string", "What needs to be done", required=True, min_length=1),
        ParameterSchema("status", "string", "Current status", required=True, enum=TODO_STATUSES),
        ParameterSchema("priority", "string", "Priority of the todo", required=True, enum=TODO_PRIORITIES),
    ),
)


def load_todos(fs: FileSystem, file_path: str) -> list[dict[str, Any]]:
    """Read the stored list; a missing or unreadable file is an empty list."""
    if not fs.exists(file_path):
        return []
    try:
        payload = json.loads(fs.read_text(file_path))
    except (FileSystemError, json.JSONDecodeError) as exc:
        LOGGER.warning("Unable to read todo list %s: %s", file_path, exc)
        return []
    if not isinstance(payload, list):
        LOGGER.warning("Todo list %s is not a JSON array; ignoring it", file_path)
        return []
    return payload


def save_todos(fs: FileSystem, file_path: str, todos: list[dict[str, Any]]) -> None:
    fs.write_text(file_path, json.dumps(todos, indent=2))


def create_todo_tools(fs: FileSystem, file_path: str) -> tuple[Tool, Tool]:
    """Return ``(todo_read, todo_write)`` sharing one JSON file."""

    def read(_params: Mapping[str, Any]) -> ToolResult:
        todos = load_todos(fs, file_path)
        message = "Todo list is empty" if not todos else f"Found {len(todos)} todos"
        return ToolResult(llm_content=message, return_display={"todos": todos})

    def write(params: Mapping[str, Any]) -> ToolResult:
        todos = [dict(item) for item in params["todos"]]
        previous = load_todos(fs, file_path)
        try:
            save_todos(fs, file_path, todos)
        except FileSystemError as exc:
            return ToolResult.error(f"Failed to save todos: {exc}")
        display = {"old_todos": previous, "new_todos": todos}
        if params.get("explanation"):
            display["explanation"] = params["explanation"]
        return ToolResult(llm_content=_WRITE_MESSAGE, return_display=display)

    todo_read = Tool(
        name="todo_read",
        description="Read the current session todo list. Use it often to keep track of the plan.",
        handler=read,
        schema=ToolSchema(),
        approval=ToolApproval(category=ApprovalCategory.READ),
    )
    todo_write = Tool(
        name="todo_write",
        description=(
            "Create and manage a structured task list for the current session. "
            "Pass the complete updated list; it replaces the stored one."
        ),
        handler=write,
        schema=ToolSchema(
            (
                ParameterSchema("todos", "array", "The updated todo list", required=True, items=_TODO_ITEM),
                ParameterSchema("explanation", "string", "Why the list is being changed"),
            )
        ),
        approval=ToolApproval(category=ApprovalCategory.READ),
        describe=lambda params: f"{len(params.get('todos') or [])} todos",
    )
    return todo_read, todo_write
