"""Async model client built around OpenAI-compatible chat completion endpoints."""

from __future__ import annotations

import inspect
import json
import logging
from dataclasses import dataclass
from typing import Any, AsyncIterator, Dict, Iterable, List, Mapping, Protocol, Sequence

import httpx
from openai import APIConnectionError, APITimeoutError, AsyncOpenAI, RateLimitError
from tenacity import AsyncRetrying, retry_if_exception_type, stop_after_attempt, wait_exponential

from .tokens import TokenCounter, build_token_counter
from .usage import Usage

__all__ = ["AIClient", "ClientSettings", "ModelClient", "StreamChunk"]

LOGGER = logging.getLogger(__name__)

DEFAULT_BASE_URL = "https://api.deepseek.com"
DEFAULT_MODEL = "deepseek-chat"


@dataclass(slots=True)
class ClientSettings:
    """Subset of settings required to configure the model client."""

    base_url: str = DEFAULT_BASE_URL
    api_key: str = ""
    model: str = DEFAULT_MODEL
    organization: str | None = None
    request_timeout: float | None = 90.0
    max_retries: int = 1
    retry_min_seconds: float = 0.5
    retry_max_seconds: float = 6.0
    default_headers: Mapping[str, str] | None = None
    include_usage: bool = True
    send_tool_schemas: bool = True
    debug_logging: bool = False


@dataclass(slots=True, frozen=True)
class StreamChunk:
    """One decoded stream frame: a text delta, a usage report, or both."""

    content: str = ""
    usage: Usage | None = None


class ModelClient(Protocol):
    """What the loop needs from a model endpoint."""

    def stream_chat(
        self,
        messages: Sequence[Mapping[str, Any]],
        *,
        tools: Sequence[Mapping[str, Any]] | None = None,
        temperature: float | None = None,
    ) -> AsyncIterator[StreamChunk]:
        ...

    def count_tokens(self, text: str) -> int:
        ...


class AIClient:
    """Streaming chat client with retry around opening the request."""

    def __init__(
        self,
        settings: ClientSettings,
        *,
        client: AsyncOpenAI | None = None,
        token_counter: TokenCounter | None = None,
    ) -> None:
        self._settings = settings
        self._client = client or self._build_client(settings)
        self._token_counter = token_counter

    @property
    def settings(self) -> ClientSettings:
        return self._settings

    async def stream_chat(
        self,
        messages: Sequence[Mapping[str, Any]],
        *,
        tools: Sequence[Mapping[str, Any]] | None = None,
        temperature: float | None = None,
    ) -> AsyncIterator[StreamChunk]:
        """Stream one chat completion as :class:`StreamChunk` objects.

        The HTTP response is held inside ``async with`` so it is released on
        success, error, and cancellation alike.
        """

        payload = self._build_chat_payload(messages, tools=tools, temperature=temperature)
        LOGGER.debug(
            "Starting streamed chat completion via %s with %s message(s)",
            self._settings.model,
            len(payload["messages"]),
        )
        if self._settings.debug_logging:
            self._log_prompt_payload(payload)

        stream = await self._open_stream(payload)
        async with stream:
            async for chunk in stream:
                normalized = self._normalize_chunk(chunk)
                if normalized is not None:
                    yield normalized

    def count_tokens(self, text: str) -> int:
        if self._token_counter is None:
            self._token_counter = build_token_counter(self._settings.model)
        return self._token_counter.count(text)

    async def aclose(self) -> None:
        """Close the underlying OpenAI client to release network resources."""
        result = self._client.close()
        if inspect.isawaitable(result):
            await result

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    @staticmethod
    def _build_client(settings: ClientSettings) -> AsyncOpenAI:
        headers = dict(settings.default_headers) if settings.default_headers else None
        # Retries are handled by tenacity in _retrying.
        return AsyncOpenAI(
            api_key=settings.api_key,
            base_url=settings.base_url,
            organization=settings.organization,
            timeout=settings.request_timeout,
            default_headers=headers,
            max_retries=0,
        )

    async def _open_stream(self, payload: Mapping[str, Any]) -> Any:
        async for attempt in self._retrying():
            with attempt:
                return await self._client.chat.completions.create(**payload)
        raise RuntimeError("Chat completion request was never attempted")

    def _retrying(self) -> AsyncRetrying:
        return AsyncRetrying(
            reraise=True,
            stop=stop_after_attempt(max(1, self._settings.max_retries)),
            wait=wait_exponential(
                multiplier=self._settings.retry_min_seconds,
                max=self._settings.retry_max_seconds,
            ),
            retry=retry_if_exception_type(
                (
                    APIConnectionError,
                    APITimeoutError,
                    RateLimitError,
                    httpx.TimeoutException,
                )
            ),
        )

    def _build_chat_payload(
        self,
        messages: Iterable[Mapping[str, Any]],
        *,
        tools: Sequence[Mapping[str, Any]] | None,
        temperature: float | None,
    ) -> Dict[str, Any]:
        normalized: List[Dict[str, Any]] = [dict(message) for message in messages]
        if not normalized:
            raise ValueError("At least one message is required to start a chat")
        payload: Dict[str, Any] = {
            "model": self._settings.model,
            "messages": normalized,
            "stream": True,
        }
        if self._settings.include_usage:
            payload["stream_options"] = {"include_usage": True}
        if tools and self._settings.send_tool_schemas:
            payload["tools"] = [dict(tool) for tool in tools]
        if temperature is not None:
            payload["temperature"] = temperature
        return payload

    @staticmethod
    def _normalize_chunk(chunk: Any) -> StreamChunk | None:
        choices = getattr(chunk, "choices", None) or []
        content = ""
        if choices:
            delta = getattr(choices[0], "delta", None)
            content = getattr(delta, "content", None) or ""
        raw_usage = getattr(chunk, "usage", None)
        usage = Usage.from_api_response(raw_usage) if raw_usage is not None else None
        if not content and usage is None:
            return None
        return StreamChunk(content=content, usage=usage)

    @staticmethod
    def _log_prompt_payload(payload: Mapping[str, Any]) -> None:
        try:
            serialized = json.dumps(payload, ensure_ascii=False, indent=2)
        except (TypeError, ValueError):
            LOGGER.debug("Model prompt payload (unserializable): %s", payload)
        else:
            LOGGER.debug("Model prompt payload:\n%s", serialized)

