"""Tests for the command line front end."""

from __future__ import annotations

import io
import json
from pathlib import Path

import pytest

from agentloop import cli
from agentloop.fs import MemoryFileSystem
from agentloop.loop import LoopErrorType
from agentloop.settings import Settings

from helpers import ScriptedClient, tool_call, turn


def test_parser_reads_flags() -> None:
    args = cli.build_parser().parse_args(
        ["list files", "--model", "m", "--max-turns", "3", "--approval-mode", "yolo", "--enable-write", "--yes"]
    )

    assert args.prompt == "list files"
    assert cli._overrides(args)["max_turns"] == 3
    assert cli._overrides(args)["enable_write"] is True
    assert cli._overrides(args)["enable_todo"] is None
    assert args.yes is True


@pytest.mark.asyncio
async def test_run_prompt_streams_text_and_reports_tools(memory_fs: MemoryFileSystem) -> None:
    client = ScriptedClient([turn(tool_call("read", {"file_path": "/README.md"})), turn("It is a demo.")])
    stdout, stderr = io.StringIO(), io.StringIO()

    result = await cli.run_prompt(
        "what is this?",
        Settings(api_key="k"),
        client=client,
        fs=memory_fs,
        stdout=stdout,
        stderr=stderr,
        ask=None,
    )

    assert result.success
    assert stdout.getvalue().endswith("It is a demo.")
    assert "[tool] read" in stderr.getvalue()
    system = client.requests[0]["messages"][0]
    assert system["role"] == "system"
    assert "<name>read</name>" in system["content"]
    assert "<name>write</name>" not in system["content"]


@pytest.mark.asyncio
async def test_run_prompt_asks_before_writing(memory_fs: MemoryFileSystem) -> None:
    questions: list[str] = []

    def ask(question: str) -> str:
        questions.append(question)
        return "n"

    client = ScriptedClient([turn(tool_call("write", {"file_path": "/x.txt", "content": "x"}))])

    result = await cli.run_prompt(
        "write it",
        Settings(api_key="k", enable_write=True),
        client=client,
        fs=memory_fs,
        stdout=io.StringIO(),
        stderr=io.StringIO(),
        ask=ask,
    )

    assert result.error.type == LoopErrorType.TOOL_DENIED
    assert questions == ["Allow write? [y/N] "]
    assert not memory_fs.exists("/x.txt")


@pytest.mark.asyncio
async def test_run_prompt_auto_approve(memory_fs: MemoryFileSystem) -> None:
    client = ScriptedClient([turn(tool_call("write", {"file_path": "/x.txt", "content": "x"})), turn("Written.")])

    result = await cli.run_prompt(
        "write it",
        Settings(api_key="k", enable_write=True),
        client=client,
        fs=memory_fs,
        stdout=io.StringIO(),
        stderr=io.StringIO(),
        ask=None,
        auto_approve=True,
    )

    assert result.success
    assert memory_fs.read_text("/x.txt") == "x\n"


def test_main_without_prompt_or_key(monkeypatch: pytest.MonkeyPatch, tmp_path: Path, capsys) -> None:
    monkeypatch.delenv("AGENTLOOP_API_KEY", raising=False)
    monkeypatch.setenv("AGENTLOOP_LOG_DIR", str(tmp_path / "logs"))
    monkeypatch.setattr("sys.stdin", io.StringIO(""))

    assert cli.main(["--settings", str(tmp_path / "settings.json")]) == 2
    assert cli.main(["hello", "--settings", str(tmp_path / "settings.json")]) == 2
    assert "No API key configured" in capsys.readouterr().err


def test_main_writes_transcript(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    monkeypatch.setenv("AGENTLOOP_LOG_DIR", str(tmp_path / "logs"))
    client = ScriptedClient([turn("Hello!")])
    original = cli.run_prompt

    async def fake_run_prompt(prompt, settings, **kwargs):
        return await original(prompt, settings, client=client, fs=MemoryFileSystem(), ask=None, **kwargs)

    monkeypatch.setattr(cli, "run_prompt", fake_run_prompt)
    transcript = tmp_path / "transcript.json"

    code = cli.main(
        ["hi", "--api-key", "k", "--settings", str(tmp_path / "settings.json"), "--transcript", str(transcript)]
    )

    assert code == 0
    payload = json.loads(transcript.read_text(encoding="utf-8"))
    assert [entry["role"] for entry in payload] == ["user", "assistant"]
