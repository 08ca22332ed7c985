"""Call-site view of tool invocations and their outcomes."""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from typing import Any, Mapping

__all__ = ["ToolUse", "ToolResult"]


@dataclass(slots=True, frozen=True)
class ToolUse:
    """A tool invocation requested by the model.

    Attributes:
        name: Requested tool name.
        params: Decoded JSON arguments (may carry ``_error``/``_raw`` markers).
        call_id: Identifier generated once per invocation; tool results echo it.
    """

    name: str
    params: Mapping[str, Any] = field(default_factory=dict)
    call_id: str = ""

    def with_params(self, params: Mapping[str, Any]) -> "ToolUse":
        return replace(self, params=dict(params))

    def to_dict(self) -> dict[str, Any]:
        return {"name": self.name, "params": dict(self.params), "call_id": self.call_id}


@dataclass(slots=True, frozen=True)
class ToolResult:
    """Outcome of executing a tool.

    Attributes:
        llm_content: Text (or JSON-encoded text) shown to the model.
        return_display: Optional payload intended for a UI, never sent to the model.
        is_error: Whether the call failed, was denied, or was skipped.
    """

    llm_content: str
    return_display: Any = None
    is_error: bool = False

    @classmethod
    def error(cls, message: str, *, return_display: Any = None) -> "ToolResult":
        return cls(llm_content=message, return_display=return_display, is_error=True)

    def to_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {"llm_content": self.llm_content}
        if self.return_display is not None:
            payload["return_display"] = self.return_display
        if self.is_error:
            payload["is_error"] = True
        return payload
