"""Append-only conversation history for a single loop run.

The history owns every message exchanged with the model endpoint. Messages are
immutable once appended; the only change applied at append time is the
assignment of a ``uuid`` and an ISO-8601 ``timestamp`` when they are missing.
"""

from __future__ import annotations

import inspect
import json
import logging
import uuid
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, ClassVar, Iterable, Literal, Mapping, Union

from .types import ToolResult
from .usage import Usage

__all__ = [
    "History",
    "Message",
    "MessageContent",
    "MessageRole",
    "OnMessageCallback",
    "TextContent",
    "ToolResultContent",
    "ToolUseContent",
]

LOGGER = logging.getLogger(__name__)

MessageRole = Literal["user", "assistant", "system"]


# -----------------------------------------------------------------------------
# Content items
# -----------------------------------------------------------------------------


@dataclass(slots=True, frozen=True)
class TextContent:
    """Plain text span inside a message."""

    text: str
    type: ClassVar[str] = "text"

    def to_api_text(self) -> str:
        return self.text

    def to_dict(self) -> dict[str, Any]:
        return {"type": self.type, "text": self.text}


@dataclass(slots=True, frozen=True)
class ToolUseContent:
    """A tool invocation recorded in an assistant message."""

    id: str
    name: str
    input: Mapping[str, Any] = field(default_factory=dict)
    type: ClassVar[str] = "tool_use"

    def to_api_text(self) -> str:
        arguments = json.dumps(dict(self.input), indent=2, ensure_ascii=False, default=str)
        return (
            "<use_tool>\n"
            f"<tool_name>{self.name}</tool_name>\n"
            f"<arguments>\n{arguments}\n</arguments>\n"
            "</use_tool>"
        )

    def to_dict(self) -> dict[str, Any]:
        return {"type": self.type, "id": self.id, "name": self.name, "input": dict(self.input)}


@dataclass(slots=True, frozen=True)
class ToolResultContent:
    """The answer to a :class:`ToolUseContent`, correlated by ``id``."""

    id: str
    name: str
    result: ToolResult
    input: Mapping[str, Any] = field(default_factory=dict)
    type: ClassVar[str] = "tool_result"

    def to_api_text(self) -> str:
        return f"Tool result: {json.dumps(self.result.to_dict(), ensure_ascii=False, default=str)}"

    def to_dict(self) -> dict[str, Any]:
        return {
            "type": self.type,
            "id": self.id,
            "name": self.name,
            "input": dict(self.input),
            "result": self.result.to_dict(),
        }


MessageContent = Union[TextContent, ToolUseContent, ToolResultContent]


# -----------------------------------------------------------------------------
# Message
# -----------------------------------------------------------------------------


def _utcnow_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


@dataclass(slots=True, frozen=True)
class Message:
    """One conversation entry.

    Attributes:
        role: Sender role.
        content: Either a plain string or an ordered tuple of content items.
        timestamp: ISO-8601 timestamp, assigned on append when missing.
        uuid: Unique message id, assigned on append when missing.
        parent_uuid: Optional id of the message this one follows.
        usage: ``{"input_tokens", "output_tokens"}`` for assistant turns.
    """

    role: MessageRole
    content: str | tuple[MessageContent, ...]
    timestamp: str | None = None
    uuid: str | None = None
    parent_uuid: str | None = None
    usage: Mapping[str, int] | None = None

    @classmethod
    def user(cls, content: str | Iterable[MessageContent]) -> "Message":
        return cls(role="user", content=content if isinstance(content, str) else tuple(content))

    @classmethod
    def system(cls, content: str) -> "Message":
        return cls(role="system", content=content)

    @classmethod
    def assistant(
        cls,
        content: str | Iterable[MessageContent],
        *,
        usage: Usage | None = None,
    ) -> "Message":
        usage_payload = None
        if usage is not None:
            usage_payload = {
                "input_tokens": usage.prompt_tokens,
                "output_tokens": usage.completion_tokens,
            }
        return cls(
            role="assistant",
            content=content if isinstance(content, str) else tuple(content),
            usage=usage_payload,
        )

    @classmethod
    def tool_result(
        cls,
        *,
        call_id: str,
        name: str,
        params: Mapping[str, Any],
        result: ToolResult,
    ) -> "Message":
        """Tool results travel back to the model inside a ``user`` message."""
        item = ToolResultContent(id=call_id, name=name, input=dict(params), result=result)
        return cls(role="user", content=(item,))

    def items(self) -> tuple[MessageContent, ...]:
        if isinstance(self.content, str):
            return (TextContent(self.content),)
        return self.content

    def to_api_content(self) -> str:
        if isinstance(self.content, str):
            return self.content.strip()
        return "\n".join(item.to_api_text() for item in self.content).strip()

    def to_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "role": self.role,
            "content": self.content
            if isinstance(self.content, str)
            else [item.to_dict() for item in self.content],
            "timestamp": self.timestamp,
            "uuid": self.uuid,
        }
        if self.parent_uuid is not None:
            payload["parent_uuid"] = self.parent_uuid
        if self.usage is not None:
            payload["usage"] = dict(self.usage)
        return payload


# -----------------------------------------------------------------------------
# History
# -----------------------------------------------------------------------------

OnMessageCallback = Callable[[Message], Union[Awaitable[None], None]]


class History:
    """Ordered, append-only log of :class:`Message` objects."""

    def __init__(
        self,
        messages: Iterable[Message] | None = None,
        *,
        on_message: OnMessageCallback | None = None,
    ) -> None:
        self._messages: list[Message] = [self._finalize(message) for message in messages or ()]
        self._on_message = on_message

    async def add_message(self, message: Message) -> Message:
        """Append ``message`` and notify the host callback.

        Returns the finalized message (with ``uuid`` and ``timestamp`` set). The
        callback is awaited before returning, so a slow callback delays the
        caller.
        """

        finalized = self._finalize(message)
        self._messages.append(finalized)
        LOGGER.debug(
            "History append #%s role=%s uuid=%s",
            len(self._messages),
            finalized.role,
            finalized.uuid,
        )
        if self._on_message is not None:
            outcome = self._on_message(finalized)
            if inspect.isawaitable(outcome):
                await outcome
        return finalized

    def get_messages(self) -> list[Message]:
        return list(self._messages)

    def to_api_messages(self) -> list[dict[str, str]]:
        """Flatten the log into ``{role, content}`` pairs for the endpoint."""
        return [
            {"role": message.role, "content": message.to_api_content()}
            for message in self._messages
        ]

    def get_last_assistant_usage(self) -> Usage:
        for message in reversed(self._messages):
            if message.role == "assistant" and message.usage:
                prompt = int(message.usage.get("input_tokens", 0))
                completion = int(message.usage.get("output_tokens", 0))
                return Usage(
                    prompt_tokens=prompt,
                    completion_tokens=completion,
                    total_tokens=prompt + completion,
                )
        return Usage.empty()

    def length(self) -> int:
        return len(self._messages)

    def __len__(self) -> int:
        return len(self._messages)

    def __iter__(self):
        return iter(list(self._messages))

    @staticmethod
    def _finalize(message: Message) -> Message:
        updates: dict[str, Any] = {}
        if not message.uuid:
            updates["uuid"] = str(uuid.uuid4())
        if not message.timestamp:
            updates["timestamp"] = _utcnow_iso()
        return replace(message, **updates) if updates else message
