"""Streaming tool-call parser.

Model output mixes free text with embedded invocations of the form::

    <use_tool>
      <tool_name>NAME</tool_name>
      <arguments>{"key": "value"}</arguments>
    </use_tool>

:func:`parse_message` scans the accumulated text of one turn left to right and
returns an ordered list of blocks. The scan keeps an explicit
:class:`ParserState` plus a cursor and detects tags by checking whether the
text ending at the cursor equals the tag, so re-running it on a growing buffer
yields stable results for everything already closed.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any, ClassVar, Mapping, Union

__all__ = [
    "ARGUMENTS_CLOSE",
    "ARGUMENTS_OPEN",
    "ParsedContent",
    "ParsedText",
    "ParsedToolUse",
    "ParserState",
    "TOOL_NAME_CLOSE",
    "TOOL_NAME_OPEN",
    "TOOL_USE_CLOSE",
    "TOOL_USE_OPEN",
    "parse_arguments",
    "parse_message",
    "repair_json",
]

LOGGER = logging.getLogger(__name__)

TOOL_USE_OPEN = "<use_tool>"
TOOL_USE_CLOSE = "</use_tool>"
TOOL_NAME_OPEN = "<tool_name>"
TOOL_NAME_CLOSE = "</tool_name>"
ARGUMENTS_OPEN = "<arguments>"
ARGUMENTS_CLOSE = "</arguments>"

INVALID_JSON = "Invalid JSON"
INCOMPLETE_JSON = "Incomplete JSON"


class ParserState(Enum):
    """Where the scanner currently is."""

    SCANNING_TEXT = "scanning_text"
    INSIDE_TOOL = "inside_tool"
    INSIDE_TOOL_NAME = "inside_tool_name"
    INSIDE_ARGUMENTS = "inside_arguments"


# -----------------------------------------------------------------------------
# Parsed blocks
# -----------------------------------------------------------------------------


@dataclass(slots=True, frozen=True)
class ParsedText:
    """A trimmed span of free text."""

    content: str
    partial: bool = False
    type: ClassVar[str] = "text"


@dataclass(slots=True, frozen=True)
class ParsedToolUse:
    """A tool invocation found in the text.

    ``partial`` is True when the closing ``</use_tool>`` tag had not arrived yet.
    """

    name: str
    params: Mapping[str, Any] = field(default_factory=dict)
    partial: bool = False
    call_id: str | None = None
    type: ClassVar[str] = "tool_use"

    def with_call_id(self, call_id: str) -> "ParsedToolUse":
        return replace(self, call_id=call_id)


ParsedContent = Union[ParsedText, ParsedToolUse]


# -----------------------------------------------------------------------------
# Argument decoding
# -----------------------------------------------------------------------------


def repair_json(raw: str) -> str:
    """Best-effort fix for slightly truncated JSON objects.

    Adds a leading ``{`` when missing. When the text does not end with ``}``,
    closes a dangling string (odd number of double quotes) and appends ``}``.
    """

    cleaned = raw.strip()
    if not cleaned.startswith("{"):
        cleaned = "{" + cleaned
    if not cleaned.endswith("}"):
        if cleaned.count('"') % 2 != 0:
            cleaned += '"'
        cleaned += "}"
    return cleaned


def _load_object(text: str) -> dict[str, Any] | None:
    try:
        value = json.loads(text)
    except (TypeError, ValueError):
        return None
    return value if isinstance(value, dict) else None


def parse_arguments(raw: str, *, complete: bool = True) -> dict[str, Any]:
    """Decode the body of an ``<arguments>`` field.

    Never raises: undecodable input yields ``{"_error": ..., "_raw": ...}`` where
    ``_error`` is ``"Invalid JSON"`` for a closed field and ``"Incomplete JSON"``
    for one cut off by the end of the stream.
    """

    text = raw.strip()
    if not text:
        return {}
    parsed = _load_object(text)
    if parsed is not None:
        return parsed
    repaired = _load_object(repair_json(text))
    if repaired is not None:
        LOGGER.debug("Repaired malformed tool arguments (%s chars)", len(text))
        return repaired
    return {"_error": INVALID_JSON if complete else INCOMPLETE_JSON, "_raw": text}


# -----------------------------------------------------------------------------
# Scanner
# -----------------------------------------------------------------------------


def _closes_at(text: str, cursor: int, tag: str) -> bool:
    start = cursor + 1 - len(tag)
    return start >= 0 and text.startswith(tag, start)


def parse_message(text: str) -> list[ParsedContent]:
    """Split ``text`` into ordered text and tool-use blocks.

    The function is pure: it keeps no state between calls.
    """

    blocks: list[ParsedContent] = []
    state = ParserState.SCANNING_TEXT
    text_start = 0
    field_start = 0
    tool_name = ""
    tool_params: dict[str, Any] = {}

    for cursor in range(len(text)):
        if state is ParserState.INSIDE_TOOL_NAME:
            if _closes_at(text, cursor, TOOL_NAME_CLOSE):
                tool_name = text[field_start : cursor + 1 - len(TOOL_NAME_CLOSE)].strip()
                state = ParserState.INSIDE_TOOL
            continue

        if state is ParserState.INSIDE_ARGUMENTS:
            if _closes_at(text, cursor, ARGUMENTS_CLOSE):
                tool_params = parse_arguments(text[field_start : cursor + 1 - len(ARGUMENTS_CLOSE)])
                state = ParserState.INSIDE_TOOL
            continue

        if state is ParserState.INSIDE_TOOL:
            if _closes_at(text, cursor, TOOL_NAME_OPEN):
                state = ParserState.INSIDE_TOOL_NAME
                field_start = cursor + 1
            elif _closes_at(text, cursor, ARGUMENTS_OPEN):
                state = ParserState.INSIDE_ARGUMENTS
                field_start = cursor + 1
            elif _closes_at(text, cursor, TOOL_USE_CLOSE):
                blocks.append(ParsedToolUse(name=tool_name, params=tool_params, partial=False))
                state = ParserState.SCANNING_TEXT
                text_start = cursor + 1
            continue

        # SCANNING_TEXT
        if _closes_at(text, cursor, TOOL_USE_OPEN):
            content = text[text_start : cursor + 1 - len(TOOL_USE_OPEN)].strip()
            if content:
                blocks.append(ParsedText(content=content, partial=False))
            state = ParserState.INSIDE_TOOL
            tool_name = ""
            tool_params = {}

    if state is ParserState.SCANNING_TEXT:
        content = text[text_start:].strip()
        if content:
            blocks.append(ParsedText(content=content, partial=True))
        return blocks

    if state is ParserState.INSIDE_TOOL_NAME:
        tool_name = text[field_start:].strip()
    elif state is ParserState.INSIDE_ARGUMENTS:
        tool_params = parse_arguments(text[field_start:], complete=False)
    blocks.append(ParsedToolUse(name=tool_name, params=tool_params, partial=True))
    return blocks
