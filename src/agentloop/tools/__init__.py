"""Tool descriptors, registry, approval gate and built-in tools."""

from .approval import ApprovalDecision, ApprovalGate, ApprovalMode, category_needs_approval
from .prompt import build_tools_prompt, describe_tool
from .registry import DuplicateToolError, ToolNotFoundError, ToolRegistry
from .resolve import ToolContext, resolve_tools, todo_file_path
from .schema import ParameterSchema, SchemaValidationError, ToolSchema
from .types import ApprovalCategory, ApprovalContext, Tool, ToolApproval

__all__ = [
    "ApprovalCategory",
    "ApprovalContext",
    "ApprovalDecision",
    "ApprovalGate",
    "ApprovalMode",
    "DuplicateToolError",
    "ParameterSchema",
    "SchemaValidationError",
    "Tool",
    "ToolApproval",
    "ToolContext",
    "ToolNotFoundError",
    "ToolRegistry",
    "ToolSchema",
    "build_tools_prompt",
    "category_needs_approval",
    "describe_tool",
    "resolve_tools",
    "todo_file_path",
]
