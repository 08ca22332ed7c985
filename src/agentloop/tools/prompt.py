"""System-prompt section that teaches the model the tool-call wire format."""

from __future__ import annotations

import json
from typing import Iterable

from .types import Tool

__all__ = ["build_tools_prompt", "describe_tool"]

_TOOLS_PREAMBLE = """\
# TOOLS

You only have access to the tools listed below. Use at most one tool per message;
its result arrives in the next user message. Work step by step, letting each
tool result inform the next call.

## Tool Use Formatting

**CRITICAL: Always close all XML tags properly.**
**CRITICAL: Arguments must be valid JSON with properly escaped strings.**

A tool call is wrapped in <use_tool></use_tool>. The tool name goes inside
<tool_name></tool_name> and the parameters go inside <arguments></arguments> as a
JSON object that follows the tool's input schema.

Usage:
<use_tool>
  <tool_name>tool name here</tool_name>
  <arguments>
    {"param1": "value1", "param2": "value2 \\"escaped string\\""}
  </arguments>
</use_tool>

Place the tool call at the end of your response, at the top level, never nested
inside other tags. Do not call a tool when you lack the information it needs.

**Before sending: check that every <tag> has a matching </tag>.**

## Available Tools
"""


def describe_tool(tool: Tool) -> str:
    schema = json.dumps(tool.schema.to_json_schema(), ensure_ascii=False)
    return (
        "<tool>\n"
        f"<name>{tool.name}</name>\n"
        f"<description>{tool.description.strip()}</description>\n"
        f"<input_json_schema>{schema}</input_json_schema>\n"
        "</tool>"
    )


def build_tools_prompt(tools: Iterable[Tool]) -> str:
    """Return the markdown section describing ``tools`` and the call format."""
    listing = "\n".join(describe_tool(tool) for tool in tools)
    return f"{_TOOLS_PREAMBLE}\n{listing}\n"
