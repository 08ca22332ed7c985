"""Streaming agent loop with an embedded tool-call protocol."""

from .client import AIClient, ClientSettings, StreamChunk
from .history import History, Message
from .loop import (
    AgentLoop,
    LoopCallbacks,
    LoopConfig,
    LoopErrorType,
    LoopResult,
    MultipleToolUsePolicy,
    run_loop,
)
from .parser import parse_message
from .tools import Tool, ToolContext, ToolRegistry, resolve_tools
from .types import ToolResult, ToolUse
from .usage import Usage

__all__ = [
    "AIClient",
    "AgentLoop",
    "ClientSettings",
    "History",
    "LoopCallbacks",
    "LoopConfig",
    "LoopErrorType",
    "LoopResult",
    "Message",
    "MultipleToolUsePolicy",
    "StreamChunk",
    "Tool",
    "ToolContext",
    "ToolRegistry",
    "ToolResult",
    "ToolUse",
    "Usage",
    "parse_message",
    "resolve_tools",
    "run_loop",
]
