"""Token counters used to estimate usage when the endpoint reports none."""

from __future__ import annotations

import logging
import math
from typing import Any, Mapping, Protocol, Sequence, runtime_checkable

import tiktoken

__all__ = [
    "ApproxByteCounter",
    "TiktokenCounter",
    "TokenCounter",
    "build_token_counter",
    "count_message_tokens",
]

LOGGER = logging.getLogger(__name__)
_DEFAULT_BYTES_PER_TOKEN = 4
_FALLBACK_ENCODING = "cl100k_base"
# Per-message framing overhead used by OpenAI-style chat formats.
_MESSAGE_OVERHEAD = 4


@runtime_checkable
class TokenCounter(Protocol):
    def count(self, text: str) -> int:
        ...


class ApproxByteCounter:
    """Deterministic counter that estimates tokens via byte length."""

    def __init__(self, *, charset: str = "utf-8", bytes_per_token: int = _DEFAULT_BYTES_PER_TOKEN) -> None:
        self._charset = charset
        self._bytes_per_token = max(1, int(bytes_per_token))

    def count(self, text: str) -> int:
        if not text:
            return 0
        data = text.encode(self._charset, errors="ignore")
        return max(1, math.ceil(len(data) / self._bytes_per_token))


class TiktokenCounter:
    """Token counter backed by OpenAI's tiktoken package.

    Models tiktoken does not know (e.g. ``deepseek-chat``) use ``cl100k_base``.
    """

    def __init__(self, model_name: str, *, encoding_name: str | None = None) -> None:
        if not model_name:
            raise ValueError("model_name is required for TiktokenCounter")
        self.model_name = model_name
        self._encoding = self._load_encoding(model_name, encoding_name)

    def count(self, text: str) -> int:
        if not text:
            return 0
        return len(self._encoding.encode(text, disallowed_special=()))

    @staticmethod
    def _load_encoding(model_name: str, encoding_name: str | None) -> Any:
        if encoding_name:
            return tiktoken.get_encoding(encoding_name)
        try:
            return tiktoken.encoding_for_model(model_name)
        except KeyError:
            LOGGER.debug("Falling back to %s encoding for model %s", _FALLBACK_ENCODING, model_name)
            return tiktoken.get_encoding(_FALLBACK_ENCODING)


def build_token_counter(model_name: str, *, estimate_only: bool = False) -> TokenCounter:
    if estimate_only:
        return ApproxByteCounter()
    return TiktokenCounter(model_name)


def count_message_tokens(counter: TokenCounter, messages: Sequence[Mapping[str, Any]]) -> int:
    """Estimate prompt tokens for ``{role, content}`` messages."""
    total = 0
    for message in messages:
        total += _MESSAGE_OVERHEAD + counter.count(str(message.get("content") or ""))
    return total
