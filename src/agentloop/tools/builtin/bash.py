"""``bash`` tool backed by the restricted shell."""

from __future__ import annotations

import re
from typing import Any, Mapping

from ...fs import FileSystem
from ...shell import CommandRegistry, ShellContext, build_default_registry
from ...types import ToolResult
from ..approval import category_needs_approval
from ..schema import ParameterSchema, ToolSchema
from ..types import ApprovalCategory, ApprovalContext, Tool, ToolApproval

__all__ = [
    "command_root",
    "create_bash_tool",
    "is_high_risk_command",
    "truncate_output",
    "validate_command",
]

MAX_OUTPUT_LINES = 5
HIGH_RISK_PATTERNS: tuple[re.Pattern[str], ...] = tuple(
    re.compile(pattern, re.IGNORECASE)
    for pattern in (
        r"rm\s+.*(-rf|--recursive)",
        r"sudo",
        r"curl.*\|.*sh",
        r"wget.*\|.*sh",
        r"dd\s+if=",
        r"mkfs",
        r"fdisk",
        r"format",
        r"del\s+.*/[qs]",
    )
)
_ROOT_STRIP = re.compile(r"[{}()]")
_ROOT_SPLIT = re.compile(r"[\s;&|]+")


def _has_substitution(command: str) -> bool:
    return "$(" in command or "`" in command


def command_root(command: str) -> str | None:
    """Return the executable name of the first command, without any path."""
    head = _ROOT_SPLIT.split(_ROOT_STRIP.sub("", command.strip()))[0]
    root = re.split(r"[/\\]", head)[-1] if head else ""
    return root or None


def is_high_risk_command(command: str) -> bool:
    if _has_substitution(command):
        return True
    return any(pattern.search(command) for pattern in HIGH_RISK_PATTERNS)


def validate_command(command: str, registry: CommandRegistry) -> str | None:
    """Return an error message when ``command`` may not run, otherwise None."""
    if not command.strip():
        return "Command cannot be empty."
    root = command_root(command)
    if root is None:
        return "Could not identify command root."
    if _has_substitution(command):
        return "Command substitution is not allowed for security reasons."
    if root.lower() not in registry:
        available = ", ".join(registry.names())
        return f"Command '{root}' is not allowed. Available commands: {available}"
    return None


def truncate_output(output: str, max_lines: int = MAX_OUTPUT_LINES) -> str:
    lines = output.split("\n")
    if len(lines) <= max_lines:
        return output
    return "\n".join(lines[:max_lines]) + f"\n… +{len(lines) - max_lines} lines"


def create_bash_tool(
    fs: FileSystem,
    *,
    cwd: str = "/",
    registry: CommandRegistry | None = None,
) -> Tool:
    commands = registry or build_default_registry()

    def execute(params: Mapping[str, Any]) -> ToolResult:
        command = params["command"]
        problem = validate_command(command, commands)
        if problem:
            return ToolResult.error(problem)
        result = commands.run_line(command, ShellContext(fs=fs, registry=commands, cwd=cwd))
        if not result.success:
            return ToolResult.error(result.error or "Command execution failed")
        output = result.output or "Command executed successfully"
        return ToolResult(llm_content=truncate_output(output), return_display="Command executed successfully.")

    def needs_approval(ctx: ApprovalContext) -> bool:
        command = ctx.params.get("command")
        if not command or not isinstance(command, str):
            return False
        if is_high_risk_command(command):
            return True
        root = command_root(command)
        if root is None or root.lower() not in commands:
            return True
        return category_needs_approval(ApprovalCategory.COMMAND, ctx.approval_mode)

    description = f"""
Run shell commands against the workspace filesystem.

Before using this tool:
- Verify that the command is one of the allowed commands: {", ".join(commands.names())}.
- Quote file paths that contain spaces with double quotes (e.g., cat "path with spaces/file.txt").

Notes:
- The command argument is required.
- Prefer the grep, glob, read and ls tools over the equivalent shell commands.
- Separate multiple commands with ';' or '&&'. Pipes and command substitution are not supported.
- Use absolute paths instead of cd.
"""

    def describe(params: Mapping[str, Any]) -> str:
        command = str(params.get("command") or "").strip()
        if not command:
            return "No command provided"
        return command if len(command) <= 100 else command[:97] + "..."

    return Tool(
        name="bash",
        description=description.strip(),
        handler=execute,
        schema=ToolSchema((ParameterSchema("command", "string", "The command to execute", required=True),)),
        approval=ToolApproval(category=ApprovalCategory.COMMAND, needs_approval=needs_approval),
        describe=describe,
    )
