"""Built-in commands of the restricted shell.

Every command operates on the session :class:`~agentloop.fs.FileSystem`; none
of them touch the host operating system.
"""

from __future__ import annotations

import fnmatch
import posixpath

from .registry import CommandRegistry, ShellCommand, ShellContext, ShellError, ShellResult

__all__ = ["build_default_registry"]


def _split_flags(args: list[str]) -> tuple[set[str], list[str]]:
    flags: set[str] = set()
    rest: list[str] = []
    for arg in args:
        if arg.startswith("-") and len(arg) > 1 and not arg[1:].isdigit():
            flags.update(arg[1:])
        else:
            rest.append(arg)
    return flags, rest


def _line_count_option(args: list[str], default: int = 10) -> tuple[int, list[str]]:
    count = default
    rest: list[str] = []
    iterator = iter(args)
    for arg in iterator:
        if arg == "-n":
            value = next(iterator, None)
            if value is None or not value.isdigit():
                raise ShellError("option -n requires a number")
            count = int(value)
        elif arg.startswith("-") and arg[1:].isdigit():
            count = int(arg[1:])
        else:
            rest.append(arg)
    return count, rest


def _require(args: list[str], usage: str) -> None:
    if not args:
        raise ShellError(f"missing operand\nUsage: {usage}")


def _walk(ctx: ShellContext, root: str):
    yield root
    if ctx.fs.is_dir(root):
        for child in ctx.fs.list_dir(root):
            yield from _walk(ctx, posixpath.join(root, child))


def _copy(ctx: ShellContext, source: str, target: str, recursive: bool) -> None:
    if ctx.fs.is_dir(source):
        if not recursive:
            raise ShellError(f"-r not specified; omitting directory '{source}'")
        ctx.fs.mkdir(target)
        for child in ctx.fs.list_dir(source):
            _copy(ctx, posixpath.join(source, child), posixpath.join(target, child), recursive)
        return
    ctx.fs.write_text(target, ctx.fs.read_text(source))


def _destination(ctx: ShellContext, source: str, target: str) -> str:
    if ctx.fs.is_dir(target):
        return posixpath.join(target, posixpath.basename(source))
    return target


# -----------------------------------------------------------------------------
# Commands
# -----------------------------------------------------------------------------


def _help(args: list[str], ctx: ShellContext) -> ShellResult:
    width = max((len(command.name) for command in ctx.registry), default=0)
    lines = ["Available commands:"]
    lines.extend(f"  {command.name.ljust(width)}  - {command.description}" for command in ctx.registry)
    return ShellResult(True, "\n".join(lines))


def _pwd(args: list[str], ctx: ShellContext) -> ShellResult:
    return ShellResult(True, ctx.cwd)


def _cd(args: list[str], ctx: ShellContext) -> ShellResult:
    target = ctx.resolve(args[0] if args else "/")
    if not ctx.fs.is_dir(target):
        raise ShellError(f"no such directory: {target}")
    ctx.cwd = target
    return ShellResult(True)


def _echo(args: list[str], ctx: ShellContext) -> ShellResult:
    if args and args[0] == "-n":
        args = args[1:]
    return ShellResult(True, " ".join(args))


def _ls(args: list[str], ctx: ShellContext) -> ShellResult:
    flags, paths = _split_flags(args)
    blocks: list[str] = []
    for raw in paths or ["."]:
        path = ctx.resolve(raw)
        if not ctx.fs.exists(path):
            raise ShellError(f"cannot access '{raw}': No such file or directory")
        if not ctx.fs.is_dir(path):
            blocks.append(raw)
            continue
        names = [
            name + ("/" if ctx.fs.is_dir(posixpath.join(path, name)) else "")
            for name in ctx.fs.list_dir(path)
            if "a" in flags or not name.startswith(".")
        ]
        entry = "\n".join(names) if "l" in flags else "  ".join(names)
        blocks.append(f"{raw}:\n{entry}" if len(paths) > 1 else entry)
    return ShellResult(True, "\n".join(blocks))


def _cat(args: list[str], ctx: ShellContext) -> ShellResult:
    _require(args, "cat <file>...")
    return ShellResult(True, "".join(ctx.fs.read_text(ctx.resolve(path)) for path in args).rstrip("\n"))


def _mkdir(args: list[str], ctx: ShellContext) -> ShellResult:
    flags, paths = _split_flags(args)
    _require(paths, "mkdir [-p] <dir>...")
    for raw in paths:
        path = ctx.resolve(raw)
        if ctx.fs.exists(path) and "p" not in flags:
            raise ShellError(f"cannot create directory '{raw}': File exists")
        if not ctx.fs.is_dir(posixpath.dirname(path)) and "p" not in flags:
            raise ShellError(f"cannot create directory '{raw}': No such file or directory")
        ctx.fs.mkdir(path)
    return ShellResult(True)


def _touch(args: list[str], ctx: ShellContext) -> ShellResult:
    _require(args, "touch <file>...")
    for raw in args:
        path = ctx.resolve(raw)
        if not ctx.fs.exists(path):
            ctx.fs.write_text(path, "")
    return ShellResult(True)


def _rm(args: list[str], ctx: ShellContext) -> ShellResult:
    flags, paths = _split_flags(args)
    _require(paths, "rm [-r] <path>...")
    for raw in paths:
        path = ctx.resolve(raw)
        if not ctx.fs.exists(path):
            if "f" in flags:
                continue
            raise ShellError(f"cannot remove '{raw}': No such file or directory")
        if ctx.fs.is_dir(path) and "r" not in flags:
            raise ShellError(f"cannot remove '{raw}': Is a directory")
        ctx.fs.delete(path, recursive="r" in flags)
    return ShellResult(True)


def _cp(args: list[str], ctx: ShellContext) -> ShellResult:
    flags, paths = _split_flags(args)
    if len(paths) != 2:
        raise ShellError("usage: cp [-r] <source> <target>")
    source = ctx.resolve(paths[0])
    if not ctx.fs.exists(source):
        raise ShellError(f"cannot stat '{paths[0]}': No such file or directory")
    _copy(ctx, source, _destination(ctx, source, ctx.resolve(paths[1])), "r" in flags)
    return ShellResult(True)


def _mv(args: list[str], ctx: ShellContext) -> ShellResult:
    if len(args) != 2:
        raise ShellError("usage: mv <source> <target>")
    source = ctx.resolve(args[0])
    if not ctx.fs.exists(source):
        raise ShellError(f"cannot stat '{args[0]}': No such file or directory")
    _copy(ctx, source, _destination(ctx, source, ctx.resolve(args[1])), True)
    ctx.fs.delete(source, recursive=True)
    return ShellResult(True)


def _wc(args: list[str], ctx: ShellContext) -> ShellResult:
    flags, paths = _split_flags(args)
    _require(paths, "wc [-l|-w|-c] <file>...")
    rows: list[str] = []
    for raw in paths:
        text = ctx.fs.read_text(ctx.resolve(raw))
        counts = {"l": text.count("\n"), "w": len(text.split()), "c": len(text.encode("utf-8"))}
        selected = [key for key in "lwc" if key in flags] or ["l", "w", "c"]
        rows.append(" ".join(str(counts[key]) for key in selected) + f" {raw}")
    return ShellResult(True, "\n".join(rows))


def _head(args: list[str], ctx: ShellContext) -> ShellResult:
    count, paths = _line_count_option(args)
    _require(paths, "head [-n N] <file>")
    lines = ctx.fs.read_text(ctx.resolve(paths[0])).splitlines()
    return ShellResult(True, "\n".join(lines[:count]))


def _tail(args: list[str], ctx: ShellContext) -> ShellResult:
    count, paths = _line_count_option(args)
    _require(paths, "tail [-n N] <file>")
    lines = ctx.fs.read_text(ctx.resolve(paths[0])).splitlines()
    return ShellResult(True, "\n".join(lines[-count:] if count else []))


def _find(args: list[str], ctx: ShellContext) -> ShellResult:
    pattern: str | None = None
    roots: list[str] = []
    iterator = iter(args)
    for arg in iterator:
        if arg == "-name":
            pattern = next(iterator, None)
            if pattern is None:
                raise ShellError("option -name requires a pattern")
        else:
            roots.append(arg)
    matches: list[str] = []
    for raw in roots or ["."]:
        root = ctx.resolve(raw)
        if not ctx.fs.exists(root):
            raise ShellError(f"'{raw}': No such file or directory")
        for path in _walk(ctx, root):
            if pattern is None or fnmatch.fnmatch(posixpath.basename(path), pattern):
                matches.append(path)
    return ShellResult(True, "\n".join(matches))


def _grep(args: list[str], ctx: ShellContext) -> ShellResult:
    flags, rest = _split_flags(args)
    if len(rest) < 2:
        raise ShellError("usage: grep [-i] [-n] [-r] <pattern> <path>...")
    pattern, paths = rest[0], rest[1:]
    needle = pattern.lower() if "i" in flags else pattern
    rows: list[str] = []
    for raw in paths:
        root = ctx.resolve(raw)
        targets = _walk(ctx, root) if "r" in flags else [root]
        for path in targets:
            if ctx.fs.is_dir(path):
                continue
            for number, line in enumerate(ctx.fs.read_text(path).splitlines(), start=1):
                haystack = line.lower() if "i" in flags else line
                if needle in haystack:
                    prefix = f"{path}:" if len(paths) > 1 or "r" in flags else ""
                    if "n" in flags:
                        prefix += f"{number}:"
                    rows.append(prefix + line)
    if not rows:
        return ShellResult(False, error="no matches")
    return ShellResult(True, "\n".join(rows))


_COMMANDS: tuple[ShellCommand, ...] = (
    ShellCommand("help", "Show available commands", "help", _help),
    ShellCommand("pwd", "Print working directory", "pwd", _pwd),
    ShellCommand("cd", "Change directory", "cd <dir>", _cd),
    ShellCommand("echo", "Display text", "echo <text>", _echo),
    ShellCommand("ls", "List directory contents", "ls [-a] [-l] [path]", _ls),
    ShellCommand("cat", "Display file contents", "cat <file>...", _cat),
    ShellCommand("mkdir", "Create directory", "mkdir [-p] <dir>...", _mkdir),
    ShellCommand("touch", "Create empty file", "touch <file>...", _touch),
    ShellCommand("rm", "Remove files or directories", "rm [-r] [-f] <path>...", _rm),
    ShellCommand("cp", "Copy files or directories", "cp [-r] <source> <target>", _cp),
    ShellCommand("mv", "Move or rename files or directories", "mv <source> <target>", _mv),
    ShellCommand("wc", "Count lines, words, characters", "wc [-l|-w|-c] <file>...", _wc),
    ShellCommand("head", "Display first lines of file", "head [-n N] <file>", _head),
    ShellCommand("tail", "Display last lines of file", "tail [-n N] <file>", _tail),
    ShellCommand("find", "Find files and directories", "find [path] [-name pattern]", _find),
    ShellCommand("grep", "Search text in files", "grep [-i] [-n] [-r] <pattern> <path>...", _grep),
)


def build_default_registry() -> CommandRegistry:
    registry = CommandRegistry()
    for command in _COMMANDS:
        registry.register(command)
    return registry
