"""Token usage accounting for agent loop runs."""

from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Any, Mapping

__all__ = ["Usage"]


def _coerce_tokens(value: Any) -> int:
    if value is None or isinstance(value, bool):
        return 0
    try:
        number = float(value)
    except (TypeError, ValueError):
        return 0
    if math.isnan(number):
        return 0
    return int(number)


@dataclass(slots=True)
class Usage:
    """Mutable prompt/completion/total token counter.

    Instances are owned by a single loop run. ``Usage.empty()`` always returns a
    fresh object, so accumulating into one never leaks into another.
    """

    prompt_tokens: int = 0
    completion_tokens: int = 0
    total_tokens: int = 0

    @classmethod
    def empty(cls) -> "Usage":
        return cls()

    @classmethod
    def from_api_response(cls, usage: Mapping[str, Any] | Any | None) -> "Usage":
        """Build a usage record from an endpoint ``usage`` payload.

        Accepts either a mapping (``{"prompt_tokens": ...}``) or an object exposing
        the same attributes, such as the OpenAI SDK's ``CompletionUsage``. Missing
        or NaN figures count as zero; ``total_tokens`` falls back to
        ``prompt + completion`` when the endpoint omits it.
        """

        if usage is None:
            return cls()
        if isinstance(usage, Mapping):
            getter = usage.get
        else:
            getter = lambda key: getattr(usage, key, None)  # noqa: E731
        prompt = _coerce_tokens(getter("prompt_tokens"))
        completion = _coerce_tokens(getter("completion_tokens"))
        raw_total = getter("total_tokens")
        total = _coerce_tokens(raw_total) if raw_total is not None else prompt + completion
        return cls(prompt_tokens=prompt, completion_tokens=completion, total_tokens=total)

    def add(self, other: "Usage") -> None:
        self.prompt_tokens += other.prompt_tokens
        self.completion_tokens += other.completion_tokens
        self.total_tokens += other.total_tokens

    def reset(self) -> None:
        self.prompt_tokens = 0
        self.completion_tokens = 0
        self.total_tokens = 0

    def clone(self) -> "Usage":
        return Usage(
            prompt_tokens=self.prompt_tokens,
            completion_tokens=self.completion_tokens,
            total_tokens=self.total_tokens,
        )

    def is_valid(self) -> bool:
        return self.prompt_tokens >= 0 and self.completion_tokens >= 0 and self.total_tokens >= 0

    def to_dict(self) -> dict[str, int]:
        return {
            "prompt_tokens": self.prompt_tokens,
            "completion_tokens": self.completion_tokens,
            "total_tokens": self.total_tokens,
        }
