"""Scripted model client and wire-format helpers shared by the loop tests."""

from __future__ import annotations

import json
from typing import Any, AsyncIterator, Mapping, Sequence

from agentloop.client import StreamChunk
from agentloop.usage import Usage


def tool_call(name: str, arguments: Mapping[str, Any] | None = None) -> str:
    return (
        "<use_tool>\n"
        f"<tool_name>{name}</tool_name>\n"
        f"<arguments>{json.dumps(dict(arguments or {}))}</arguments>\n"
        "</use_tool>"
    )


def turn(text: str, *, usage: tuple[int, int] | None = None, chunk_size: int = 8) -> list[StreamChunk]:
    """Split ``text`` into streamed chunks, optionally ending with a usage frame."""
    chunks = [StreamChunk(content=text[i : i + chunk_size]) for i in range(0, len(text), chunk_size)]
    if usage is not None:
        prompt, completion = usage
        chunks.append(
            StreamChunk(usage=Usage(prompt_tokens=prompt, completion_tokens=completion, total_tokens=prompt + completion))
        )
    return chunks


class ScriptedClient:
    """Model client replaying one scripted list of chunks per request.

    A script entry may also be an exception, raised when the stream is read.
    """

    def __init__(self, turns: Sequence[list[StreamChunk] | Exception]) -> None:
        self._turns = list(turns)
        self.requests: list[dict[str, Any]] = []
        self.opened = 0
        self.closed = 0

    async def stream_chat(
        self,
        messages: Sequence[Mapping[str, Any]],
        *,
        tools: Sequence[Mapping[str, Any]] | None = None,
        temperature: float | None = None,
    ) -> AsyncIterator[StreamChunk]:
        self.requests.append({"messages": [dict(m) for m in messages], "tools": tools, "temperature": temperature})
        script = self._turns.pop(0) if self._turns else turn("done")
        self.opened += 1
        try:
            if isinstance(script, Exception):
                raise script
            for chunk in script:
                yield chunk
        finally:
            self.closed += 1

    def count_tokens(self, text: str) -> int:
        return len(text.split())
