"""Command registry and line runner for the restricted shell."""

from __future__ import annotations

import logging
import shlex
from dataclasses import dataclass, field
from typing import Callable, Iterator

from ..fs import FileSystem, FileSystemError, normalize_path

__all__ = [
    "CommandRegistry",
    "ShellCommand",
    "ShellContext",
    "ShellError",
    "ShellResult",
]

LOGGER = logging.getLogger(__name__)

_SEQUENCE_OPERATORS = (";", "&&")
_REDIRECT_OPERATORS = (">", ">>")


class ShellError(Exception):
    """Raised by commands for usage errors; reported as a failed result."""


@dataclass(slots=True)
class ShellResult:
    success: bool
    output: str = ""
    error: str = ""


@dataclass(slots=True)
class ShellContext:
    """Mutable state shared by the commands of one line."""

    fs: FileSystem
    registry: "CommandRegistry"
    cwd: str = "/"

    def resolve(self, path: str) -> str:
        return normalize_path(path, self.cwd)


CommandHandler = Callable[[list[str], ShellContext], ShellResult]


@dataclass(slots=True, frozen=True)
class ShellCommand:
    name: str
    description: str
    usage: str
    run: CommandHandler


@dataclass
class CommandRegistry:
    """Whitelist of commands the shell may run."""

    _commands: dict[str, ShellCommand] = field(default_factory=dict)

    def register(self, command: ShellCommand) -> None:
        self._commands[command.name] = command

    def unregister(self, name: str) -> None:
        self._commands.pop(name, None)

    def get(self, name: str) -> ShellCommand | None:
        return self._commands.get(name)

    def names(self) -> list[str]:
        return sorted(self._commands)

    def __iter__(self) -> Iterator[ShellCommand]:
        return iter(sorted(self._commands.values(), key=lambda command: command.name))

    def __contains__(self, name: object) -> bool:
        return name in self._commands

    def execute(self, name: str, args: list[str], context: ShellContext) -> ShellResult:
        command = self.get(name)
        if command is None:
            return ShellResult(False, error=f"{name}: command not found\nType 'help' to see available commands")
        try:
            return command.run(args, context)
        except (ShellError, FileSystemError) as exc:
            return ShellResult(False, error=f"{name}: {exc}")
        except Exception as exc:
            LOGGER.debug("Shell command %s crashed", name, exc_info=True)
            return ShellResult(False, error=f"Error executing command: {exc}")

    def run_line(self, line: str, context: ShellContext) -> ShellResult:
        """Run a command line supporting ``;``, ``&&`` and ``>``/``>>`` redirection."""
        try:
            lexer = shlex.shlex(line, posix=True, punctuation_chars=";&|>")
            lexer.whitespace_split = True
            tokens = list(lexer)
        except ValueError as exc:
            return ShellResult(False, error=f"Could not parse command: {exc}")
        if "|" in tokens or "||" in tokens:
            return ShellResult(False, error="Pipes are not supported.")

        outputs: list[str] = []
        errors: list[str] = []
        result = ShellResult(True)
        for operator, segment in _split_segments(tokens):
            if operator == "&&" and not result.success:
                break
            if not segment:
                continue
            result = self._run_segment(segment, context)
            if result.output:
                outputs.append(result.output)
            if not result.success:
                errors.append(result.error)
        return ShellResult(result.success, output="\n".join(outputs), error="\n".join(errors))

    def _run_segment(self, tokens: list[str], context: ShellContext) -> ShellResult:
        redirect: tuple[str, str] | None = None
        for operator in _REDIRECT_OPERATORS:
            if operator in tokens:
                index = tokens.index(operator)
                if index + 1 >= len(tokens):
                    return ShellResult(False, error=f"syntax error near '{operator}'")
                redirect = (operator, tokens[index + 1])
                tokens = tokens[:index] + tokens[index + 2 :]
                break
        name, args = tokens[0], tokens[1:]
        result = self.execute(name, args, context)
        if redirect is None or not result.success:
            return result
        operator, target = redirect
        path = context.resolve(target)
        payload = result.output + "\n" if result.output else ""
        if operator == ">>" and context.fs.exists(path):
            payload = context.fs.read_text(path) + payload
        context.fs.write_text(path, payload)
        return ShellResult(True)


def _split_segments(tokens: list[str]) -> list[tuple[str, list[str]]]:
    segments: list[tuple[str, list[str]]] = []
    operator = ";"
    current: list[str] = []
    for token in tokens:
        if token in _SEQUENCE_OPERATORS:
            segments.append((operator, current))
            operator, current = token, []
        else:
            current.append(token)
    segments.append((operator, current))
    return segments
