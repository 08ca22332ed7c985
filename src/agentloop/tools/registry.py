"""Explicit tool registry.

Tools are registered once per session and resolved by name at call time.
:meth:`ToolRegistry.invoke` validates arguments against the tool's schema
before running it, so a schema violation never reaches the handler.
"""

from __future__ import annotations

import asyncio
import logging
import time
from typing import Any, Iterator, Mapping, Sequence

from ..types import ToolResult
from .prompt import build_tools_prompt
from .schema import SchemaValidationError, ToolSchema
from .types import Tool, ToolApproval, ToolHandler

__all__ = [
    "DuplicateToolError",
    "ToolNotFoundError",
    "ToolRegistry",
]

LOGGER = logging.getLogger(__name__)


# -----------------------------------------------------------------------------
# Exceptions
# -----------------------------------------------------------------------------


class DuplicateToolError(Exception):
    """Raised when attempting to register a tool with a name that already exists."""

    def __init__(self, name: str) -> None:
        self.name = name
        super().__init__(f"Tool '{name}' is already registered")


class ToolNotFoundError(Exception):
    """Raised when a requested tool is not found in the registry."""

    def __init__(self, name: str) -> None:
        self.name = name
        super().__init__(f"Tool '{name}' not found")


# -----------------------------------------------------------------------------
# Registry
# -----------------------------------------------------------------------------


class ToolRegistry:
    """Name-to-descriptor registry with validated invocation.

    Example:
        registry = ToolRegistry()
        registry.register(read_tool)
        tool = registry.resolve("read")
        result = await registry.invoke("read", {"file_path": "/notes.md"})
    """

    def __init__(
        self,
        tools: Sequence[Tool] | None = None,
        *,
        default_timeout: float | None = None,
        log_arguments: bool = False,
    ) -> None:
        self._tools: dict[str, Tool] = {}
        self._default_timeout = default_timeout
        self._log_arguments = log_arguments
        for tool in tools or ():
            self.register(tool)

    def register(self, tool: Tool, *, allow_override: bool = False) -> Tool:
        """Register a tool descriptor.

        Raises:
            DuplicateToolError: If the name is taken and ``allow_override`` is False.
        """
        if tool.name in self._tools and not allow_override:
            raise DuplicateToolError(tool.name)
        self._tools[tool.name] = tool
        LOGGER.debug("Registered tool: %s (%s)", tool.name, tool.category)
        return tool

    def register_function(
        self,
        name: str,
        handler: ToolHandler,
        *,
        description: str = "",
        schema: ToolSchema | None = None,
        approval: ToolApproval | None = None,
        allow_override: bool = False,
    ) -> Tool:
        """Register a plain (sync or async) function as a tool."""
        tool = Tool(
            name=name,
            description=description,
            handler=handler,
            schema=schema or ToolSchema(),
            approval=approval or ToolApproval(),
        )
        return self.register(tool, allow_override=allow_override)

    def unregister(self, name: str) -> bool:
        if name in self._tools:
            del self._tools[name]
            LOGGER.debug("Unregistered tool: %s", name)
            return True
        return False

    def resolve(self, name: str) -> Tool | None:
        return self._tools.get(name)

    def get_required(self, name: str) -> Tool:
        """Resolve a tool, raising :class:`ToolNotFoundError` when absent."""
        tool = self.resolve(name)
        if tool is None:
            raise ToolNotFoundError(name)
        return tool

    def has(self, name: str) -> bool:
        return name in self._tools

    def names(self) -> list[str]:
        return list(self._tools)

    def list_tools(self) -> list[Tool]:
        return list(self._tools.values())

    def to_openai_tools(self, *, filter_names: Sequence[str] | None = None) -> list[dict[str, Any]]:
        """Tool definitions in the ``{"type": "function", ...}`` request shape."""
        return [
            tool.to_openai_tool()
            for tool in self._tools.values()
            if filter_names is None or tool.name in filter_names
        ]

    def tools_prompt(self) -> str:
        return build_tools_prompt(self._tools.values())

    async def invoke(
        self,
        name: str,
        params: Mapping[str, Any],
        *,
        call_id: str = "",
        timeout: float | None = None,
    ) -> ToolResult:
        """Validate ``params`` and execute the named tool.

        Unknown tools and invalid parameters come back as ``is_error`` results.
        Exceptions raised by the handler (including ``asyncio.TimeoutError``)
        propagate to the caller.
        """

        tool = self.resolve(name)
        if tool is None:
            LOGGER.warning("Tool '%s' not found", name)
            return ToolResult.error(f"Error: Tool '{name}' not found")

        if "_error" in params:
            message = f"Invalid tool parameters: {params.get('_error')}: {params.get('_raw', '')}"
            LOGGER.debug("Rejected undecodable arguments for %s (call_id=%s)", name, call_id)
            return ToolResult.error(message)

        try:
            arguments = tool.schema.validate(params)
        except SchemaValidationError as exc:
            LOGGER.debug("Rejected arguments for %s (call_id=%s): %s", name, call_id, exc)
            return ToolResult.error(f"Invalid tool parameters: {exc}")

        if self._log_arguments:
            LOGGER.debug("Executing tool %s (call_id=%s) with arguments: %s", name, call_id, arguments)
        else:
            LOGGER.debug("Executing tool %s (call_id=%s)", name, call_id)

        effective_timeout = timeout if timeout is not None else self._default_timeout
        start_time = time.perf_counter()
        try:
            if effective_timeout is not None and effective_timeout > 0:
                result = await asyncio.wait_for(tool.execute(arguments), timeout=effective_timeout)
            else:
                result = await tool.execute(arguments)
        except Exception as exc:
            duration_ms = (time.perf_counter() - start_time) * 1000
            LOGGER.warning("Tool %s failed after %.1fms: %s", name, duration_ms, exc)
            raise

        duration_ms = (time.perf_counter() - start_time) * 1000
        LOGGER.debug("Tool %s completed in %.1fms (error=%s)", name, duration_ms, result.is_error)
        return result

    def __len__(self) -> int:
        return len(self._tools)

    def __contains__(self, name: object) -> bool:
        return name in self._tools

    def __iter__(self) -> Iterator[Tool]:
        return iter(list(self._tools.values()))
