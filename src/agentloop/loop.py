"""Turn orchestrator driving the model, the parser, and tool execution.

One call to :func:`run_loop` (or :meth:`AgentLoop.run`) owns a fresh
:class:`~agentloop.history.History` and usage totals. Each turn streams a
completion, parses the accumulated text into blocks, records the assistant
message, and then either finishes (no tool use) or runs the requested tool and
feeds its result into the next turn. Every exit path returns a
:class:`LoopResult`; the loop never raises, except that cancellation of the
calling task is re-raised once the history is consistent again.
"""

from __future__ import annotations

import asyncio
import inspect
import logging
import time
import uuid
from contextlib import aclosing
from dataclasses import dataclass, field, replace
from typing import Any, Awaitable, Callable, Iterable, Mapping, Sequence, Union

from .client import ModelClient
from .history import History, Message, MessageContent, OnMessageCallback, TextContent, ToolUseContent
from .parser import ParsedContent, ParsedText, ParsedToolUse, parse_message
from .tokens import count_message_tokens
from .tools.approval import ApprovalGate, ApprovalMode
from .tools.registry import ToolRegistry
from .types import ToolResult, ToolUse
from .usage import Usage

__all__ = [
    "AgentLoop",
    "DEFAULT_MAX_TURNS",
    "LoopCallbacks",
    "LoopConfig",
    "LoopData",
    "LoopError",
    "LoopErrorType",
    "LoopMetadata",
    "LoopResult",
    "MultipleToolUsePolicy",
    "run_loop",
]

LOGGER = logging.getLogger(__name__)

DEFAULT_MAX_TURNS = 20
DEFAULT_TEMPERATURE = 0.1

CANCELED_MESSAGE = "Operation was canceled"
DENIED_MESSAGE = "Error: Tool execution was denied by user."
TOOL_CANCELED_MESSAGE = "Error: Tool execution was canceled."
TOOL_SKIPPED_MESSAGE = "Error: Tool '{name}' was not executed. Only one tool call is processed per message."


class LoopErrorType:
    """Failure kinds reported in :attr:`LoopError.type`."""

    API_ERROR = "api_error"
    TOOL_ERROR = "tool_error"
    TOOL_DENIED = "tool_denied"
    MAX_TURNS_EXCEEDED = "max_turns_exceeded"
    CANCELED = "canceled"


class MultipleToolUsePolicy:
    """What to do when one turn contains several tool uses."""

    FIRST_ONLY = "first_only"
    SEQUENTIAL = "sequential"

    ALL: tuple[str, ...] = (FIRST_ONLY, SEQUENTIAL)


# -----------------------------------------------------------------------------
# Configuration and callbacks
# -----------------------------------------------------------------------------


@dataclass(slots=True, frozen=True)
class LoopConfig:
    """Per-run knobs.

    Attributes:
        max_turns: Request budget; turn ``max_turns + 1`` fails without a request.
        system_prompt: Prepended as a ``system`` message when the history has none.
        temperature: Sampling temperature forwarded to the endpoint.
        approval_mode: ``default``, ``auto_edit`` or ``yolo``.
        multiple_tool_use: ``first_only`` or ``sequential``.
        estimate_missing_usage: Count tokens locally for turns without a usage frame.
        include_tools_prompt: Append the tool catalogue to the system prompt.
    """

    max_turns: int = DEFAULT_MAX_TURNS
    system_prompt: str | None = None
    temperature: float | None = DEFAULT_TEMPERATURE
    approval_mode: str = ApprovalMode.DEFAULT
    multiple_tool_use: str = MultipleToolUsePolicy.FIRST_ONLY
    estimate_missing_usage: bool = False
    include_tools_prompt: bool = True

    def __post_init__(self) -> None:
        if self.max_turns < 1:
            raise ValueError("max_turns must be at least 1")
        if self.multiple_tool_use not in MultipleToolUsePolicy.ALL:
            raise ValueError(f"Unknown multiple tool use policy: {self.multiple_tool_use!r}")
        if self.approval_mode not in ApprovalMode.ALL:
            raise ValueError(f"Unknown approval mode: {self.approval_mode!r}")


MaybeAwaitable = Union[Awaitable[Any], Any]


@dataclass(slots=True)
class LoopCallbacks:
    """Host hooks. Each may be a plain function or a coroutine function."""

    on_text_delta: Callable[[str], MaybeAwaitable] | None = None
    on_text: Callable[[str], MaybeAwaitable] | None = None
    on_tool_use: Callable[[ToolUse], MaybeAwaitable] | None = None
    on_tool_approve: Callable[[ToolUse], MaybeAwaitable] | None = None
    on_tool_result: Callable[[ToolUse, ToolResult, bool], MaybeAwaitable] | None = None
    on_turn: Callable[[Mapping[str, Any]], MaybeAwaitable] | None = None
    on_message: OnMessageCallback | None = None


# -----------------------------------------------------------------------------
# Results
# -----------------------------------------------------------------------------


@dataclass(slots=True, frozen=True)
class LoopData:
    text: str
    history: list[Message]
    usage: Usage


@dataclass(slots=True, frozen=True)
class LoopError:
    """Failure description; ``details`` always holds history, usage and turns_count."""

    type: str
    message: str
    details: Mapping[str, Any] = field(default_factory=dict)


@dataclass(slots=True, frozen=True)
class LoopMetadata:
    turns_count: int
    tool_calls_count: int
    duration: float


@dataclass(slots=True, frozen=True)
class LoopResult:
    """Outcome of one run. Exactly one of ``data`` and ``error`` is set."""

    success: bool
    metadata: LoopMetadata
    data: LoopData | None = None
    error: LoopError | None = None


async def _maybe_await(value: Any) -> Any:
    if inspect.isawaitable(value):
        return await value
    return value


async def _invoke(callback: Callable[..., Any] | None, *args: Any) -> Any:
    if callback is None:
        return None
    return await _maybe_await(callback(*args))


# -----------------------------------------------------------------------------
# Orchestrator
# -----------------------------------------------------------------------------


class AgentLoop:
    """Reusable orchestrator bound to a client, a registry and a configuration.

    Example:
        loop = AgentLoop(client, registry, config=LoopConfig(max_turns=5))
        result = await loop.run("List the files in /docs")
        if result.success:
            print(result.data.text)
    """

    def __init__(
        self,
        client: ModelClient,
        registry: ToolRegistry | None = None,
        *,
        config: LoopConfig | None = None,
        callbacks: LoopCallbacks | None = None,
        approval_context: Any = None,
    ) -> None:
        self._client = client
        self._registry = registry if registry is not None else ToolRegistry()
        self._config = config or LoopConfig()
        self._callbacks = callbacks or LoopCallbacks()
        self._approval_context = approval_context

    @property
    def config(self) -> LoopConfig:
        return self._config

    @property
    def registry(self) -> ToolRegistry:
        return self._registry

    async def run(
        self,
        input: str | Iterable[Message],
        *,
        signal: asyncio.Event | None = None,
    ) -> LoopResult:
        """Run the conversation until a final answer or a terminal failure."""
        run = _LoopRun(self, input, signal)
        return await run.execute()

    def system_prompt(self) -> str | None:
        parts: list[str] = []
        if self._config.system_prompt:
            parts.append(self._config.system_prompt.strip())
        if self._config.include_tools_prompt and len(self._registry):
            parts.append(self._registry.tools_prompt().strip())
        return "\n\n".join(parts) or None


class _LoopRun:
    """State owned by a single :meth:`AgentLoop.run` call."""

    def __init__(self, loop: AgentLoop, input: str | Iterable[Message], signal: asyncio.Event | None) -> None:
        self._loop = loop
        self._client = loop._client
        self._registry = loop._registry
        self._config = loop._config
        self._callbacks = loop._callbacks
        self._signal = signal
        self._gate = ApprovalGate(self._config.approval_mode, context=loop._approval_context)
        seed = [Message.user(input)] if isinstance(input, str) else list(input)
        self._history = History(seed, on_message=self._callbacks.on_message)
        self._total_usage = Usage.empty()
        self._turns = 0
        self._tool_calls = 0
        self._answered: set[str] = set()
        self._started = time.perf_counter()

    # ------------------------------------------------------------------
    # Main loop
    # ------------------------------------------------------------------

    async def execute(self) -> LoopResult:
        try:
            return await self._run_turns()
        except asyncio.CancelledError:
            raise
        except Exception as exc:  # host callbacks raising outside the stream
            LOGGER.exception("Agent loop aborted by an unexpected error")
            return self._failure(LoopErrorType.TOOL_ERROR, f"Unexpected error: {exc}", exception=exc)

    async def _run_turns(self) -> LoopResult:
        while True:
            if self._canceled():
                return self._canceled_result()

            self._turns += 1
            if self._turns > self._config.max_turns:
                LOGGER.info("Stopping after %s turns", self._config.max_turns)
                return self._failure(
                    LoopErrorType.MAX_TURNS_EXCEEDED,
                    f"Maximum turns ({self._config.max_turns}) exceeded",
                )

            outcome = await self._run_turn()
            if outcome is not None:
                return outcome

    async def _run_turn(self) -> LoopResult | None:
        """Run one turn; returns a result when the run is over."""
        turn_start = time.time()
        messages = self._request_messages()
        turn_usage = Usage.empty()
        reported_usage = False
        deltas: list[str] = []

        LOGGER.debug("Turn %s: sending %s message(s)", self._turns, len(messages))
        try:
            stream = self._client.stream_chat(
                messages,
                tools=self._registry.to_openai_tools(),
                temperature=self._config.temperature,
            )
            async with aclosing(stream) as chunks:
                async for chunk in chunks:
                    if self._canceled():
                        return self._canceled_result()
                    if chunk.usage is not None:
                        turn_usage = chunk.usage.clone()
                        reported_usage = True
                    if chunk.content:
                        deltas.append(chunk.content)
                        await _invoke(self._callbacks.on_text_delta, chunk.content)
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            LOGGER.warning("Model request failed on turn %s: %s", self._turns, exc)
            return self._failure(LoopErrorType.API_ERROR, str(exc) or type(exc).__name__, exception=exc)

        if self._canceled():
            return self._canceled_result()

        text = "".join(deltas)
        if not reported_usage and self._config.estimate_missing_usage:
            turn_usage = self._estimate_usage(messages, text)
        # A later usage frame supersedes an earlier one within the same turn.
        self._total_usage.add(turn_usage)

        blocks = [
            block.with_call_id(str(uuid.uuid4())) if isinstance(block, ParsedToolUse) else block
            for block in parse_message(text)
        ]
        turn_text = "\n\n".join(block.content for block in blocks if isinstance(block, ParsedText))
        if turn_text:
            await _invoke(self._callbacks.on_text, turn_text)
        await _invoke(
            self._callbacks.on_turn,
            {"usage": turn_usage.clone(), "start_time": turn_start, "end_time": time.time()},
        )
        await self._history.add_message(Message.assistant(_to_message_content(blocks), usage=turn_usage))

        tool_uses = [block for block in blocks if isinstance(block, ParsedToolUse)]
        if not tool_uses:
            return self._success(turn_text)

        if self._config.multiple_tool_use == MultipleToolUsePolicy.SEQUENTIAL:
            runnable = tool_uses
        else:
            runnable = tool_uses[:1]
        for index, parsed in enumerate(runnable):
            try:
                outcome = await self._handle_tool_use(parsed)
            except asyncio.CancelledError:
                await self._skip(tool_uses[index + 1 :])
                raise
            if outcome is not None:
                await self._skip(tool_uses[index + 1 :])
                return outcome
        await self._skip(tool_uses[len(runnable) :])
        return None

    # ------------------------------------------------------------------
    # Tool handling
    # ------------------------------------------------------------------

    async def _handle_tool_use(self, parsed: ParsedToolUse) -> LoopResult | None:
        call_id = parsed.call_id or str(uuid.uuid4())
        tool_use = ToolUse(name=parsed.name, params=dict(parsed.params), call_id=call_id)
        try:
            return await self._process_tool_use(tool_use)
        except asyncio.CancelledError:
            if call_id not in self._answered:
                await self._record(tool_use, ToolResult.error(TOOL_CANCELED_MESSAGE))
            raise
        except Exception as exc:
            LOGGER.exception("Handling tool %s failed (call_id=%s)", tool_use.name, call_id)
            if call_id not in self._answered:
                await self._record(tool_use, ToolResult.error(f"Error: {exc}"))
            return self._failure(LoopErrorType.TOOL_ERROR, f"Unexpected error: {exc}", exception=exc)

    async def _process_tool_use(self, tool_use: ToolUse) -> LoopResult | None:
        call_id = tool_use.call_id
        transformed = await _invoke(self._callbacks.on_tool_use, tool_use)
        if isinstance(transformed, ToolUse):
            tool_use = replace(transformed, call_id=call_id)

        tool = self._registry.resolve(tool_use.name)
        decision = await self._gate.decide(tool, tool_use, self._callbacks.on_tool_approve)
        if not decision.approved:
            result = await self._review(tool_use, ToolResult.error(DENIED_MESSAGE), approved=False)
            await self._record(tool_use, result)
            LOGGER.info("Tool %s denied (call_id=%s)", tool_use.name, call_id)
            return self._failure(LoopErrorType.TOOL_DENIED, DENIED_MESSAGE, tool_use=tool_use.to_dict())

        self._tool_calls += 1
        if tool is None:
            LOGGER.warning("Model requested unknown tool %s", tool_use.name)
            result = await self._review(
                tool_use, ToolResult.error(f"Error: Tool '{tool_use.name}' not found"), approved=True
            )
            await self._record(tool_use, result)
            return None

        if self._canceled():
            await self._record(tool_use, ToolResult.error(TOOL_CANCELED_MESSAGE))
            return self._canceled_result()

        result, canceled = await self._execute(tool_use)
        if canceled:
            await self._record(tool_use, result)
            return self._canceled_result()

        result = await self._review(tool_use, result, approved=True)
        await self._record(tool_use, result)
        return None

    async def _execute(self, tool_use: ToolUse) -> tuple[ToolResult, bool]:
        """Run the tool, racing it against the cancellation signal.

        Returns the result and whether the signal interrupted the tool.
        """

        task = asyncio.ensure_future(
            self._registry.invoke(tool_use.name, tool_use.params, call_id=tool_use.call_id)
        )
        try:
            finished = await self._wait_unless_canceled(task)
        except asyncio.CancelledError:
            task.cancel()
            raise
        if not finished:
            task.cancel()
            await asyncio.gather(task, return_exceptions=True)
            LOGGER.info("Tool %s canceled (call_id=%s)", tool_use.name, tool_use.call_id)
            return ToolResult.error(TOOL_CANCELED_MESSAGE), True
        try:
            return task.result(), False
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            LOGGER.warning("Tool %s raised: %s", tool_use.name, exc, exc_info=True)
            return ToolResult.error(f"Error executing tool: {exc}"), False

    async def _wait_unless_canceled(self, task: asyncio.Future[Any]) -> bool:
        if self._signal is None:
            await asyncio.wait({task})
            return True
        waiter = asyncio.ensure_future(self._signal.wait())
        try:
            await asyncio.wait({task, waiter}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            waiter.cancel()
        return task.done()

    async def _review(self, tool_use: ToolUse, result: ToolResult, *, approved: bool) -> ToolResult:
        reviewed = await _invoke(self._callbacks.on_tool_result, tool_use, result, approved)
        return reviewed if isinstance(reviewed, ToolResult) else result

    async def _record(self, tool_use: ToolUse, result: ToolResult) -> None:
        self._answered.add(tool_use.call_id)
        await self._history.add_message(
            Message.tool_result(
                call_id=tool_use.call_id,
                name=tool_use.name,
                params=tool_use.params,
                result=result,
            )
        )

    async def _skip(self, tool_uses: Sequence[ParsedToolUse]) -> None:
        for parsed in tool_uses:
            await self._record(
                ToolUse(name=parsed.name, params=dict(parsed.params), call_id=parsed.call_id or str(uuid.uuid4())),
                ToolResult.error(TOOL_SKIPPED_MESSAGE.format(name=parsed.name)),
            )

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _canceled(self) -> bool:
        return self._signal is not None and self._signal.is_set()

    def _request_messages(self) -> list[dict[str, str]]:
        messages = self._history.to_api_messages()
        system_prompt = self._loop.system_prompt()
        if system_prompt and not (messages and messages[0]["role"] == "system"):
            messages.insert(0, {"role": "system", "content": system_prompt})
        return messages

    def _estimate_usage(self, messages: Sequence[Mapping[str, Any]], text: str) -> Usage:
        counter = _ClientCounter(self._client)
        prompt = count_message_tokens(counter, messages)
        completion = counter.count(text)
        return Usage(prompt_tokens=prompt, completion_tokens=completion, total_tokens=prompt + completion)

    def _metadata(self) -> LoopMetadata:
        return LoopMetadata(
            turns_count=self._turns,
            tool_calls_count=self._tool_calls,
            duration=time.perf_counter() - self._started,
        )

    def _success(self, text: str) -> LoopResult:
        data = LoopData(text=text, history=self._history.get_messages(), usage=self._total_usage.clone())
        return LoopResult(success=True, data=data, metadata=self._metadata())

    def _failure(self, error_type: str, message: str, **extra: Any) -> LoopResult:
        details = {
            "history": self._history.get_messages(),
            "usage": self._total_usage.clone(),
            "turns_count": self._turns,
            **extra,
        }
        return LoopResult(
            success=False,
            error=LoopError(type=error_type, message=message, details=details),
            metadata=self._metadata(),
        )

    def _canceled_result(self) -> LoopResult:
        LOGGER.info("Run canceled on turn %s", self._turns)
        return self._failure(LoopErrorType.CANCELED, CANCELED_MESSAGE)


class _ClientCounter:
    """Adapts ``client.count_tokens`` to the token counter protocol."""

    def __init__(self, client: ModelClient) -> None:
        self._client = client

    def count(self, text: str) -> int:
        return self._client.count_tokens(text)


def _to_message_content(blocks: Sequence[ParsedContent]) -> tuple[MessageContent, ...]:
    items: list[MessageContent] = []
    for block in blocks:
        if isinstance(block, ParsedToolUse):
            items.append(ToolUseContent(id=block.call_id or "", name=block.name, input=dict(block.params)))
        else:
            items.append(TextContent(text=block.content))
    return tuple(items)


async def run_loop(
    input: str | Iterable[Message],
    *,
    client: ModelClient,
    registry: ToolRegistry | None = None,
    config: LoopConfig | None = None,
    callbacks: LoopCallbacks | None = None,
    signal: asyncio.Event | None = None,
) -> LoopResult:
    """Convenience wrapper around :class:`AgentLoop` for a single run."""
    loop = AgentLoop(client, registry, config=config, callbacks=callbacks)
    return await loop.run(input, signal=signal)
