"""Command line front end running a single agent loop against a local directory."""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys
import uuid
from pathlib import Path
from typing import Any, Callable, Sequence, TextIO

from .client import AIClient, ModelClient
from .fs import FileSystem, LocalFileSystem
from .loop import AgentLoop, LoopCallbacks, LoopResult
from .settings import Settings, SettingsStore
from .tools.approval import ApprovalMode
from .tools.resolve import ToolContext, resolve_tools
from .types import ToolUse
from .utils.logging import configure_logging

__all__ = ["build_parser", "main", "run_prompt"]

LOGGER = logging.getLogger(__name__)

_DEFAULT_SYSTEM_PROMPT = (
    "You are a helpful assistant working inside the user's workspace. "
    "Use the available tools to inspect and change files, then answer concisely."
)

AskFn = Callable[[str], str]


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="agentloop", description="Run one agent conversation from the terminal.")
    parser.add_argument("prompt", nargs="?", help="Prompt to send. Reads stdin when omitted.")
    parser.add_argument("--workspace", type=Path, help="Directory exposed to the tools as '/'.")
    parser.add_argument("--settings", type=Path, help="Settings file (defaults to ~/.agentloop/settings.json).")
    parser.add_argument("--model", help="Model identifier.")
    parser.add_argument("--base-url", help="OpenAI-compatible endpoint base URL.")
    parser.add_argument("--api-key", help="API key for the endpoint.")
    parser.add_argument("--max-turns", type=int, help="Maximum number of model requests.")
    parser.add_argument("--approval-mode", choices=ApprovalMode.ALL, help="How tool calls are approved.")
    parser.add_argument("--enable-write", action="store_true", default=None, help="Enable write, edit and bash.")
    parser.add_argument("--enable-todo", action="store_true", default=None, help="Enable the session todo list.")
    parser.add_argument("--session-id", help="Session identifier for the todo list.")
    parser.add_argument("--system-prompt", help="Replace the default system prompt.")
    parser.add_argument("--transcript", type=Path, help="Write the conversation history as JSON to this file.")
    parser.add_argument("--yes", action="store_true", help="Approve every tool call without asking.")
    parser.add_argument("--debug", action="store_true", default=None, help="Enable debug logging.")
    return parser


def _overrides(args: argparse.Namespace) -> dict[str, Any]:
    return {
        "model": args.model,
        "base_url": args.base_url,
        "api_key": args.api_key,
        "max_turns": args.max_turns,
        "approval_mode": args.approval_mode,
        "enable_write": args.enable_write,
        "enable_todo": args.enable_todo,
        "debug_logging": args.debug,
        "workspace": str(args.workspace) if args.workspace else None,
    }


def _make_callbacks(*, stdout: TextIO, stderr: TextIO, ask: AskFn | None, auto_approve: bool) -> LoopCallbacks:
    def on_text_delta(delta: str) -> None:
        stdout.write(delta)
        stdout.flush()

    def on_tool_use(tool_use: ToolUse) -> ToolUse:
        stderr.write(f"\n[tool] {tool_use.name} {json.dumps(dict(tool_use.params), ensure_ascii=False)}\n")
        return tool_use

    async def on_tool_approve(tool_use: ToolUse) -> bool:
        if auto_approve or ask is None:
            return True
        answer = await asyncio.to_thread(ask, f"Allow {tool_use.name}? [y/N] ")
        return answer.strip().lower() in {"y", "yes"}

    return LoopCallbacks(on_text_delta=on_text_delta, on_tool_use=on_tool_use, on_tool_approve=on_tool_approve)


async def run_prompt(
    prompt: str,
    settings: Settings,
    *,
    client: ModelClient | None = None,
    fs: FileSystem | None = None,
    session_id: str | None = None,
    system_prompt: str | None = None,
    stdout: TextIO | None = None,
    stderr: TextIO | None = None,
    ask: AskFn | None = input,
    auto_approve: bool = False,
) -> LoopResult:
    """Run ``prompt`` through one loop with tools rooted at the settings workspace."""

    stdout = sys.stdout if stdout is None else stdout
    stderr = sys.stderr if stderr is None else stderr
    workspace_fs = fs or LocalFileSystem(Path(settings.workspace).expanduser())
    context = ToolContext(
        enable_write=settings.enable_write,
        enable_todo=settings.enable_todo,
        session_id=session_id or (str(uuid.uuid4()) if settings.enable_todo else None),
    )
    model_client = client or AIClient(settings.client_settings())
    try:
        registry = resolve_tools(context, fs=workspace_fs)
        loop = AgentLoop(
            model_client,
            registry,
            config=settings.loop_config(system_prompt=system_prompt or _DEFAULT_SYSTEM_PROMPT),
            callbacks=_make_callbacks(stdout=stdout, stderr=stderr, ask=ask, auto_approve=auto_approve),
        )
        return await loop.run(prompt)
    finally:
        if client is None and isinstance(model_client, AIClient):
            await model_client.aclose()


def _history_of(result: LoopResult) -> list[Any]:
    if result.data is not None:
        return result.data.history
    if result.error is not None:
        return list(result.error.details.get("history", []))
    return []


def main(argv: Sequence[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    prompt = args.prompt or sys.stdin.read().strip()
    if not prompt:
        print("No prompt provided.", file=sys.stderr)
        return 2

    settings = SettingsStore(args.settings).load(overrides=_overrides(args))
    configure_logging(settings)
    if not settings.api_key:
        print("No API key configured. Use --api-key or AGENTLOOP_API_KEY.", file=sys.stderr)
        return 2

    result = asyncio.run(
        run_prompt(
            prompt,
            settings,
            session_id=args.session_id,
            system_prompt=args.system_prompt,
            auto_approve=args.yes,
        )
    )
    sys.stdout.write("\n")

    if args.transcript:
        payload = [message.to_dict() for message in _history_of(result)]
        args.transcript.write_text(json.dumps(payload, indent=2, ensure_ascii=False), encoding="utf-8")
        LOGGER.debug("Transcript written to %s", args.transcript)

    if not result.success and result.error is not None:
        print(f"{result.error.type}: {result.error.message}", file=sys.stderr)
        return 1
    return 0


if __name__ == "__main__":  # pragma: no cover
    raise SystemExit(main())
