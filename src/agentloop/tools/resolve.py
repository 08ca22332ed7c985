"""Capability-gated assembly of the session tool set."""

from __future__ import annotations

import logging
from dataclasses import dataclass

import httpx

from ..cache import TTLCache
from ..fs import FileSystem
from .builtin import (
    create_bash_tool,
    create_edit_tool,
    create_fetch_tool,
    create_glob_tool,
    create_grep_tool,
    create_ls_tool,
    create_read_tool,
    create_todo_tools,
    create_write_tool,
)
from .registry import ToolRegistry

__all__ = ["ToolContext", "resolve_tools", "todo_file_path"]

LOGGER = logging.getLogger(__name__)


@dataclass(slots=True, frozen=True)
class ToolContext:
    """Capability flags for one session.

    Attributes:
        cwd: Directory relative paths resolve against.
        product_name: Name shown to the model in tool descriptions and prompts.
        enable_write: Register ``write``, ``edit`` and ``bash``.
        enable_todo: Register the todo tools (needs ``session_id``).
        session_id: Identifies the session's todo file.
    """

    cwd: str = "/"
    product_name: str = "agentloop"
    enable_write: bool = False
    enable_todo: bool = False
    session_id: str | None = None


def todo_file_path(session_id: str) -> str:
    return f"/todos/{session_id}.json"


def resolve_tools(
    context: ToolContext,
    *,
    fs: FileSystem,
    fetch_cache: TTLCache | None = None,
    http_client: httpx.AsyncClient | None = None,
) -> ToolRegistry:
    """Build a registry from ``context``.

    Read tools are always present; write tools and todo tools depend on the
    context flags.
    """

    registry = ToolRegistry()
    for tool in (
        create_read_tool(fs, cwd=context.cwd),
        create_ls_tool(fs, cwd=context.cwd),
        create_glob_tool(fs, cwd=context.cwd),
        create_grep_tool(fs, cwd=context.cwd),
        create_fetch_tool(fetch_cache if fetch_cache is not None else TTLCache(), http_client),
    ):
        registry.register(tool)

    if context.enable_write:
        registry.register(create_write_tool(fs, cwd=context.cwd))
        registry.register(create_edit_tool(fs, cwd=context.cwd))
        registry.register(create_bash_tool(fs, cwd=context.cwd))

    if context.enable_todo and context.session_id:
        for tool in create_todo_tools(fs, todo_file_path(context.session_id)):
            registry.register(tool)
    elif context.enable_todo:
        LOGGER.debug("Todo tools requested without a session id; skipping them")

    LOGGER.debug("Resolved %s tool(s) for %s: %s", len(registry), context.product_name, ", ".join(registry.names()))
    return registry
