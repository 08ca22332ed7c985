"""Tool descriptor and approval types."""

from __future__ import annotations

import inspect
import json
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Mapping, Union

from ..types import ToolResult
from .schema import ToolSchema

__all__ = [
    "ApprovalCategory",
    "ApprovalContext",
    "ApprovalPredicate",
    "Tool",
    "ToolApproval",
    "ToolHandler",
    "coerce_tool_result",
]


# -----------------------------------------------------------------------------
# Approval
# -----------------------------------------------------------------------------


class ApprovalCategory:
    """Risk categories a tool declares for the approval gate."""

    READ = "read"
    WRITE = "write"
    COMMAND = "command"
    NETWORK = "network"

    ALL: tuple[str, ...] = (READ, WRITE, COMMAND, NETWORK)


@dataclass(slots=True, frozen=True)
class ApprovalContext:
    """Input to a tool's ``needs_approval`` predicate.

    Attributes:
        tool_name: Name of the tool being invoked.
        params: Invocation parameters.
        approval_mode: Host approval mode (``default``, ``auto_edit`` or ``yolo``).
        context: Optional host-specific context object.
    """

    tool_name: str
    params: Mapping[str, Any]
    approval_mode: str
    context: Any = None


ApprovalPredicate = Callable[[ApprovalContext], Union[bool, Awaitable[bool]]]


@dataclass(slots=True, frozen=True)
class ToolApproval:
    """Approval metadata carried by a tool.

    ``needs_approval`` decides per call whether the host must confirm. Without a
    predicate the call is approved.
    """

    category: str = ApprovalCategory.READ
    needs_approval: ApprovalPredicate | None = None


# -----------------------------------------------------------------------------
# Tool descriptor
# -----------------------------------------------------------------------------

ToolHandler = Callable[[Mapping[str, Any]], Any]


def coerce_tool_result(value: Any) -> ToolResult:
    """Normalize handler return values into a :class:`ToolResult`."""
    if isinstance(value, ToolResult):
        return value
    if isinstance(value, str):
        return ToolResult(llm_content=value)
    return ToolResult(llm_content=json.dumps(value, ensure_ascii=False, default=str))


@dataclass(slots=True)
class Tool:
    """A named capability the model can invoke.

    Example:
        tool = Tool(
            name="greet",
            description="Greet someone",
            schema=ToolSchema((ParameterSchema("name", "string", required=True),)),
            handler=lambda params: f"Hello, {params['name']}!",
        )
    """

    name: str
    description: str
    handler: ToolHandler
    schema: ToolSchema = field(default_factory=ToolSchema)
    approval: ToolApproval = field(default_factory=ToolApproval)
    describe: Callable[[Mapping[str, Any]], str] | None = None

    @property
    def category(self) -> str:
        return self.approval.category

    async def execute(self, params: Mapping[str, Any]) -> ToolResult:
        """Run the handler, awaiting it when it is a coroutine function."""
        outcome = self.handler(params)
        if inspect.isawaitable(outcome):
            outcome = await outcome
        return coerce_tool_result(outcome)

    def summary(self, params: Mapping[str, Any]) -> str:
        """Short one-line description of a call, for UIs."""
        if self.describe is None:
            return self.name
        return self.describe(params)

    def to_openai_tool(self) -> dict[str, Any]:
        """Convert to OpenAI tool definition format."""
        return {
            "type": "function",
            "function": {
                "name": self.name,
                "description": self.description,
                "parameters": self.schema.to_json_schema(),
            },
        }
