"""Tests for the agent loop orchestrator."""

from __future__ import annotations

import asyncio
from typing import Any, Mapping

import pytest

from agentloop.client import StreamChunk
from agentloop.history import Message, TextContent, ToolResultContent, ToolUseContent
from agentloop.loop import (
    CANCELED_MESSAGE,
    DENIED_MESSAGE,
    TOOL_CANCELED_MESSAGE,
    TOOL_SKIPPED_MESSAGE,
    AgentLoop,
    LoopCallbacks,
    LoopConfig,
    LoopErrorType,
    MultipleToolUsePolicy,
    run_loop,
)
from agentloop.tools.registry import ToolRegistry
from agentloop.tools.schema import ParameterSchema, ToolSchema
from agentloop.tools.types import ApprovalCategory, ToolApproval
from agentloop.types import ToolResult, ToolUse
from agentloop.usage import Usage

from helpers import ScriptedClient, tool_call, turn

_ADD_SCHEMA = ToolSchema(
    (
        ParameterSchema("a", "integer", required=True),
        ParameterSchema("b", "integer", required=True),
    )
)


def _registry(calls: list[Mapping[str, Any]] | None = None) -> ToolRegistry:
    seen = calls if calls is not None else []

    def add(params: Mapping[str, Any]) -> str:
        seen.append(dict(params))
        return str(params["a"] + params["b"])

    registry = ToolRegistry()
    registry.register_function("add", add, description="Add two integers.", schema=_ADD_SCHEMA)
    return registry


def _tool_results(messages: list[Message]) -> list[ToolResultContent]:
    return [item for message in messages for item in message.items() if isinstance(item, ToolResultContent)]


def _tool_uses(messages: list[Message]) -> list[ToolUseContent]:
    return [item for message in messages for item in message.items() if isinstance(item, ToolUseContent)]


# -----------------------------------------------------------------------------
# Success paths
# -----------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_plain_answer_finishes_in_one_turn() -> None:
    client = ScriptedClient([turn("Hello there", usage=(10, 3))])

    result = await run_loop("hi", client=client)

    assert result.success and result.error is None
    assert result.data.text == "Hello there"
    assert result.data.usage == Usage(prompt_tokens=10, completion_tokens=3, total_tokens=13)
    assert [message.role for message in result.data.history] == ["user", "assistant"]
    assert result.data.history[1].usage == {"input_tokens": 10, "output_tokens": 3}
    assert result.metadata.turns_count == 1
    assert result.metadata.tool_calls_count == 0
    assert result.metadata.duration >= 0


@pytest.mark.asyncio
async def test_tool_round_trip_accumulates_usage() -> None:
    calls: list[Mapping[str, Any]] = []
    client = ScriptedClient(
        [
            turn("Let me add.\n" + tool_call("add", {"a": 2, "b": 3}), usage=(5, 5)),
            turn("The answer is 5", usage=(7, 2)),
        ]
    )

    result = await AgentLoop(client, _registry(calls)).run("what is 2 + 3?")

    assert result.success
    assert result.data.text == "The answer is 5"
    assert calls == [{"a": 2, "b": 3}]
    assert result.data.usage == Usage(prompt_tokens=12, completion_tokens=7, total_tokens=19)
    assert result.metadata.turns_count == 2
    assert result.metadata.tool_calls_count == 1

    history = result.data.history
    assert [message.role for message in history] == ["user", "assistant", "user", "assistant"]
    assert history[1].items()[0] == TextContent("Let me add.")
    (use,) = _tool_uses(history)
    (answer,) = _tool_results(history)
    assert answer.id == use.id and use.id
    assert answer.result == ToolResult(llm_content="5")
    assert history[1].usage == {"input_tokens": 5, "output_tokens": 5}

    second_request = client.requests[1]["messages"]
    assert second_request[-1]["role"] == "user"
    assert second_request[-1]["content"].startswith("Tool result: ")
    assert "<tool_name>add</tool_name>" in second_request[-2]["content"]


@pytest.mark.asyncio
async def test_request_carries_tools_temperature_and_system_prompt() -> None:
    registry = _registry()
    client = ScriptedClient([turn("ok")])

    await AgentLoop(client, registry, config=LoopConfig(system_prompt="Be brief.")).run("hi")

    request = client.requests[0]
    system = request["messages"][0]
    assert system["role"] == "system"
    assert system["content"].startswith("Be brief.")
    assert "<name>add</name>" in system["content"]
    assert request["messages"][1] == {"role": "user", "content": "hi"}
    assert request["tools"] == registry.to_openai_tools()
    assert request["temperature"] == 0.1


@pytest.mark.asyncio
async def test_system_prompt_without_tool_catalogue() -> None:
    client = ScriptedClient([turn("ok")])
    config = LoopConfig(system_prompt="Be brief.", include_tools_prompt=False)

    await AgentLoop(client, _registry(), config=config).run("hi")

    assert client.requests[0]["messages"][0] == {"role": "system", "content": "Be brief."}


@pytest.mark.asyncio
async def test_existing_system_message_is_not_duplicated() -> None:
    client = ScriptedClient([turn("ok")])
    seed = [Message.system("Host prompt"), Message.user("hi")]

    result = await run_loop(seed, client=client, config=LoopConfig(system_prompt="Ignored"))

    messages = client.requests[0]["messages"]
    assert [message["role"] for message in messages] == ["system", "user"]
    assert messages[0]["content"] == "Host prompt"
    assert len(result.data.history) == 3


@pytest.mark.asyncio
async def test_no_system_message_when_nothing_to_say() -> None:
    client = ScriptedClient([turn("ok")])

    await run_loop("hi", client=client)

    assert client.requests[0]["messages"] == [{"role": "user", "content": "hi"}]


# -----------------------------------------------------------------------------
# Usage accounting
# -----------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_on_turn_reports_per_turn_usage() -> None:
    events: list[Mapping[str, Any]] = []
    client = ScriptedClient(
        [
            turn(tool_call("add", {"a": 1, "b": 1}), usage=(5, 5)),
            turn("done", usage=(7, 2)),
        ]
    )

    await AgentLoop(client, _registry(), callbacks=LoopCallbacks(on_turn=events.append)).run("go")

    assert [event["usage"] for event in events] == [
        Usage(prompt_tokens=5, completion_tokens=5, total_tokens=10),
        Usage(prompt_tokens=7, completion_tokens=2, total_tokens=9),
    ]
    assert all(event["start_time"] <= event["end_time"] for event in events)


@pytest.mark.asyncio
async def test_missing_usage_stays_zero_unless_estimated() -> None:
    plain = await run_loop("hi", client=ScriptedClient([turn("one two three")]))
    estimated = await run_loop(
        "hi",
        client=ScriptedClient([turn("one two three")]),
        config=LoopConfig(estimate_missing_usage=True),
    )

    assert plain.data.usage == Usage.empty()
    assert estimated.data.usage == Usage(prompt_tokens=5, completion_tokens=3, total_tokens=8)
    assert estimated.data.history[-1].usage == {"input_tokens": 5, "output_tokens": 3}


@pytest.mark.asyncio
async def test_later_usage_frame_replaces_earlier_one_in_same_turn() -> None:
    frames = [
        StreamChunk(content="Hi"),
        StreamChunk(usage=Usage(prompt_tokens=3, completion_tokens=1, total_tokens=4)),
        StreamChunk(usage=Usage(prompt_tokens=3, completion_tokens=2, total_tokens=5)),
    ]
    events: list[Mapping[str, Any]] = []

    result = await run_loop("hi", client=ScriptedClient([frames]), callbacks=LoopCallbacks(on_turn=events.append))

    assert [event["usage"] for event in events] == [Usage(prompt_tokens=3, completion_tokens=2, total_tokens=5)]
    assert result.data.usage == Usage(prompt_tokens=3, completion_tokens=2, total_tokens=5)
    assert result.data.usage.total_tokens == sum(event["usage"].total_tokens for event in events)


# -----------------------------------------------------------------------------
# Approval
# -----------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_denied_tool_stops_the_run() -> None:
    executed: list[Mapping[str, Any]] = []
    reviewed: list[tuple[str, bool]] = []
    registry = ToolRegistry()
    registry.register_function(
        "danger",
        lambda params: executed.append(dict(params)) or "ran",
        approval=ToolApproval(category=ApprovalCategory.WRITE, needs_approval=lambda ctx: True),
    )

    async def deny(tool_use: ToolUse) -> bool:
        return False

    callbacks = LoopCallbacks(
        on_tool_approve=deny,
        on_tool_result=lambda tool_use, result, approved: reviewed.append((result.llm_content, approved)),
    )
    client = ScriptedClient([turn(tool_call("danger", {"path": "/x"})), turn("unreachable")])

    result = await AgentLoop(client, registry, callbacks=callbacks).run("do it")

    assert not result.success and result.data is None
    assert result.error.type == LoopErrorType.TOOL_DENIED
    assert result.error.message == DENIED_MESSAGE
    assert result.error.details["tool_use"]["name"] == "danger"
    assert result.error.details["tool_use"]["params"] == {"path": "/x"}
    assert executed == []
    assert reviewed == [(DENIED_MESSAGE, False)]
    assert len(client.requests) == 1
    assert result.metadata.tool_calls_count == 0

    (denial,) = _tool_results(result.error.details["history"])
    assert denial.result.is_error
    assert denial.id == _tool_uses(result.error.details["history"])[0].id


@pytest.mark.asyncio
async def test_approved_tool_runs_when_host_agrees() -> None:
    registry = ToolRegistry()
    registry.register_function(
        "danger",
        lambda params: "ran",
        approval=ToolApproval(category=ApprovalCategory.WRITE, needs_approval=lambda ctx: ctx.approval_mode != "yolo"),
    )
    asked: list[str] = []
    callbacks = LoopCallbacks(on_tool_approve=lambda tool_use: asked.append(tool_use.name) or True)
    client = ScriptedClient([turn(tool_call("danger")), turn("done")])

    result = await AgentLoop(client, registry, callbacks=callbacks).run("do it")

    assert result.success
    assert asked == ["danger"]
    assert _tool_results(result.data.history)[0].result.llm_content == "ran"


@pytest.mark.asyncio
async def test_yolo_mode_skips_the_host() -> None:
    registry = ToolRegistry()
    registry.register_function(
        "danger",
        lambda params: "ran",
        approval=ToolApproval(category=ApprovalCategory.WRITE, needs_approval=lambda ctx: ctx.approval_mode != "yolo"),
    )
    asked: list[str] = []
    callbacks = LoopCallbacks(on_tool_approve=lambda tool_use: asked.append(tool_use.name) or False)
    client = ScriptedClient([turn(tool_call("danger")), turn("done")])

    result = await AgentLoop(client, registry, config=LoopConfig(approval_mode="yolo"), callbacks=callbacks).run("go")

    assert result.success
    assert asked == []


# -----------------------------------------------------------------------------
# Turn budget
# -----------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_max_turns_exceeded_without_extra_request() -> None:
    looping = [turn(tool_call("add", {"a": 1, "b": 2})) for _ in range(5)]
    client = ScriptedClient(looping)

    result = await AgentLoop(client, _registry(), config=LoopConfig(max_turns=2)).run("loop forever")

    assert result.error.type == LoopErrorType.MAX_TURNS_EXCEEDED
    assert result.error.message == "Maximum turns (2) exceeded"
    assert len(client.requests) == 2
    assert result.metadata.turns_count == 3
    assert result.error.details["turns_count"] == 3
    assert result.metadata.tool_calls_count == 2
    assert len(_tool_results(result.error.details["history"])) == 2


def test_config_validation() -> None:
    with pytest.raises(ValueError):
        LoopConfig(max_turns=0)
    with pytest.raises(ValueError):
        LoopConfig(multiple_tool_use="all_at_once")
    with pytest.raises(ValueError):
        LoopConfig(approval_mode="sometimes")


# -----------------------------------------------------------------------------
# Tool failures
# -----------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_unknown_tool_is_reported_and_the_run_continues() -> None:
    client = ScriptedClient([turn(tool_call("nope", {"x": 1})), turn("sorry")])

    result = await AgentLoop(client, _registry()).run("go")

    assert result.success
    assert result.data.text == "sorry"
    (missing,) = _tool_results(result.data.history)
    assert missing.result == ToolResult(llm_content="Error: Tool 'nope' not found", is_error=True)
    assert result.metadata.tool_calls_count == 1


@pytest.mark.asyncio
async def test_tool_exception_becomes_error_result() -> None:
    def explode(params: Mapping[str, Any]) -> str:
        raise RuntimeError("boom")

    registry = ToolRegistry()
    registry.register_function("explode", explode)
    client = ScriptedClient([turn(tool_call("explode")), turn("recovered")])

    result = await AgentLoop(client, registry).run("go")

    assert result.success
    (failure,) = _tool_results(result.data.history)
    assert failure.result.is_error
    assert failure.result.llm_content == "Error executing tool: boom"


@pytest.mark.asyncio
async def test_invalid_arguments_are_returned_to_the_model() -> None:
    calls: list[Mapping[str, Any]] = []
    client = ScriptedClient([turn(tool_call("add", {"a": "two"})), turn("fixed")])

    result = await AgentLoop(client, _registry(calls)).run("go")

    assert result.success
    assert calls == []
    (invalid,) = _tool_results(result.data.history)
    assert invalid.result.is_error
    assert invalid.result.llm_content.startswith("Invalid tool parameters:")


# -----------------------------------------------------------------------------
# Several tool uses in one message
# -----------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_first_only_policy_skips_later_tool_uses() -> None:
    calls: list[Mapping[str, Any]] = []
    text = tool_call("add", {"a": 1, "b": 1}) + "\n" + tool_call("add", {"a": 2, "b": 2})
    client = ScriptedClient([turn(text), turn("done")])

    result = await AgentLoop(client, _registry(calls)).run("go")

    assert result.success
    assert calls == [{"a": 1, "b": 1}]
    assert result.metadata.tool_calls_count == 1
    uses = _tool_uses(result.data.history)
    results = _tool_results(result.data.history)
    assert [item.id for item in results] == [item.id for item in uses]
    assert results[0].result.llm_content == "2"
    assert results[1].result == ToolResult(llm_content=TOOL_SKIPPED_MESSAGE.format(name="add"), is_error=True)


@pytest.mark.asyncio
async def test_sequential_policy_runs_every_tool_use() -> None:
    calls: list[Mapping[str, Any]] = []
    text = tool_call("add", {"a": 1, "b": 1}) + "\n" + tool_call("add", {"a": 2, "b": 2})
    client = ScriptedClient([turn(text), turn("done")])
    config = LoopConfig(multiple_tool_use=MultipleToolUsePolicy.SEQUENTIAL)

    result = await AgentLoop(client, _registry(calls), config=config).run("go")

    assert calls == [{"a": 1, "b": 1}, {"a": 2, "b": 2}]
    assert [item.result.llm_content for item in _tool_results(result.data.history)] == ["2", "4"]
    assert result.metadata.tool_calls_count == 2


# -----------------------------------------------------------------------------
# Cancellation
# -----------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_signal_set_before_start_sends_nothing() -> None:
    signal = asyncio.Event()
    signal.set()
    client = ScriptedClient([turn("never")])

    result = await run_loop("hi", client=client, signal=signal)

    assert result.error.type == LoopErrorType.CANCELED
    assert result.error.message == CANCELED_MESSAGE
    assert client.requests == []
    assert result.metadata.turns_count == 0


@pytest.mark.asyncio
async def test_cancel_while_streaming_skips_tool_execution() -> None:
    calls: list[Mapping[str, Any]] = []
    signal = asyncio.Event()
    client = ScriptedClient([turn(tool_call("add", {"a": 1, "b": 2}), chunk_size=4)])
    callbacks = LoopCallbacks(on_text_delta=lambda delta: signal.set())

    result = await AgentLoop(client, _registry(calls), callbacks=callbacks).run("go", signal=signal)

    assert result.error.type == LoopErrorType.CANCELED
    assert calls == []
    assert client.closed == client.opened == 1
    assert [message.role for message in result.error.details["history"]] == ["user"]


@pytest.mark.asyncio
async def test_cancel_during_tool_records_a_canceled_result() -> None:
    signal = asyncio.Event()

    async def slow(params: Mapping[str, Any]) -> str:
        signal.set()
        await asyncio.sleep(30)
        return "too late"

    registry = ToolRegistry()
    registry.register_function("slow", slow)
    client = ScriptedClient([turn(tool_call("slow")), turn("unreachable")])

    result = await AgentLoop(client, registry).run("go", signal=signal)

    assert result.error.type == LoopErrorType.CANCELED
    assert len(client.requests) == 1
    (canceled,) = _tool_results(result.error.details["history"])
    assert canceled.result == ToolResult(llm_content=TOOL_CANCELED_MESSAGE, is_error=True)


@pytest.mark.asyncio
async def test_task_cancellation_propagates_after_recording_result() -> None:
    started = asyncio.Event()
    recorded: list[Message] = []

    async def hang(params: Mapping[str, Any]) -> str:
        started.set()
        await asyncio.sleep(30)
        return "never"

    registry = ToolRegistry()
    registry.register_function("hang", hang)
    client = ScriptedClient([turn(tool_call("hang"))])
    loop = AgentLoop(client, registry, callbacks=LoopCallbacks(on_message=recorded.append))

    task = asyncio.create_task(loop.run("go"))
    await started.wait()
    task.cancel()

    with pytest.raises(asyncio.CancelledError):
        await task
    (canceled,) = _tool_results(recorded)
    assert canceled.result.llm_content == TOOL_CANCELED_MESSAGE


@pytest.mark.asyncio
async def test_cancellation_while_awaiting_approval_answers_every_tool_use() -> None:
    asking = asyncio.Event()
    never = asyncio.Event()
    recorded: list[Message] = []
    registry = ToolRegistry()
    registry.register_function(
        "danger",
        lambda params: "ran",
        approval=ToolApproval(category=ApprovalCategory.WRITE, needs_approval=lambda ctx: True),
    )

    async def ask(tool_use: ToolUse) -> bool:
        asking.set()
        await never.wait()
        return True

    callbacks = LoopCallbacks(on_tool_approve=ask, on_message=recorded.append)
    client = ScriptedClient([turn(tool_call("danger") + "\n" + tool_call("danger"))])
    task = asyncio.create_task(AgentLoop(client, registry, callbacks=callbacks).run("go"))
    await asking.wait()
    task.cancel()

    with pytest.raises(asyncio.CancelledError):
        await task
    uses = _tool_uses(recorded)
    results = _tool_results(recorded)
    assert len(uses) == 2
    assert [item.id for item in results] == [item.id for item in uses]
    assert results[0].result == ToolResult(llm_content=TOOL_CANCELED_MESSAGE, is_error=True)
    assert results[1].result == ToolResult(llm_content=TOOL_SKIPPED_MESSAGE.format(name="danger"), is_error=True)


@pytest.mark.asyncio
async def test_intercept_callback_error_still_answers_the_tool_use() -> None:
    calls: list[Mapping[str, Any]] = []

    def broken(tool_use: ToolUse) -> ToolUse:
        raise ValueError("hook failed")

    client = ScriptedClient(
        [turn(tool_call("add", {"a": 1, "b": 2}) + "\n" + tool_call("add", {"a": 3, "b": 4})), turn("unreachable")]
    )
    loop = AgentLoop(
        client,
        _registry(calls),
        config=LoopConfig(multiple_tool_use=MultipleToolUsePolicy.SEQUENTIAL),
        callbacks=LoopCallbacks(on_tool_use=broken),
    )

    result = await loop.run("go")

    assert result.error.type == LoopErrorType.TOOL_ERROR
    assert result.error.message == "Unexpected error: hook failed"
    assert calls == []
    assert len(client.requests) == 1
    history = result.error.details["history"]
    results = _tool_results(history)
    assert [item.id for item in results] == [item.id for item in _tool_uses(history)]
    assert results[0].result == ToolResult(llm_content="Error: hook failed", is_error=True)
    assert results[1].result.llm_content == TOOL_SKIPPED_MESSAGE.format(name="add")


# -----------------------------------------------------------------------------
# Endpoint and callback failures
# -----------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_api_error_closes_the_stream() -> None:
    client = ScriptedClient([RuntimeError("503 upstream")])

    result = await run_loop("hi", client=client)

    assert result.error.type == LoopErrorType.API_ERROR
    assert result.error.message == "503 upstream"
    assert client.opened == client.closed == 1
    assert isinstance(result.error.details["exception"], RuntimeError)
    assert result.error.details["turns_count"] == 1


@pytest.mark.asyncio
async def test_delta_callback_error_is_reported_as_api_error() -> None:
    def broken(delta: str) -> None:
        raise ValueError("display gone")

    client = ScriptedClient([turn("hello")])

    result = await run_loop("hi", client=client, callbacks=LoopCallbacks(on_text_delta=broken))

    assert result.error.type == LoopErrorType.API_ERROR
    assert result.error.message == "display gone"
    assert client.closed == 1


@pytest.mark.asyncio
async def test_unexpected_callback_error_is_reported_as_tool_error() -> None:
    def broken(text: str) -> None:
        raise ValueError("sink closed")

    client = ScriptedClient([turn("hello")])

    result = await run_loop("hi", client=client, callbacks=LoopCallbacks(on_text=broken))

    assert result.error.type == LoopErrorType.TOOL_ERROR
    assert result.error.message == "Unexpected error: sink closed"


# -----------------------------------------------------------------------------
# Callbacks
# -----------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_callbacks_observe_and_rewrite_tool_calls() -> None:
    calls: list[Mapping[str, Any]] = []
    deltas: list[str] = []
    texts: list[str] = []
    messages: list[Message] = []
    seen_ids: list[str] = []

    async def on_tool_use(tool_use: ToolUse) -> ToolUse:
        seen_ids.append(tool_use.call_id)
        return ToolUse(name=tool_use.name, params={"a": 10, "b": 5}, call_id="forged")

    async def on_tool_result(tool_use: ToolUse, result: ToolResult, approved: bool) -> ToolResult:
        return ToolResult(llm_content=f"sum={result.llm_content}")

    callbacks = LoopCallbacks(
        on_text_delta=deltas.append,
        on_text=texts.append,
        on_tool_use=on_tool_use,
        on_tool_result=on_tool_result,
        on_message=messages.append,
    )
    client = ScriptedClient([turn("Adding.\n" + tool_call("add", {"a": 1, "b": 2})), turn("It is 15.")])

    result = await AgentLoop(client, _registry(calls), callbacks=callbacks).run("go")

    assert result.success
    assert calls == [{"a": 10, "b": 5}]
    assert texts == ["Adding.", "It is 15."]
    assert "".join(deltas).endswith("It is 15.")
    (answer,) = _tool_results(result.data.history)
    assert answer.id == seen_ids[0] != "forged"
    assert answer.input == {"a": 10, "b": 5}
    assert answer.result.llm_content == "sum=15"
    assert [message.role for message in messages] == ["assistant", "user", "assistant"]
    assert messages == result.data.history[1:]


@pytest.mark.asyncio
async def test_runs_are_independent() -> None:
    client = ScriptedClient([turn("first", usage=(1, 1)), turn("second", usage=(2, 2))])
    loop = AgentLoop(client)

    first = await loop.run("one")
    second = await loop.run("two")

    assert first.data.usage.total_tokens == 2
    assert second.data.usage.total_tokens == 4
    assert [message.role for message in second.data.history] == ["user", "assistant"]
