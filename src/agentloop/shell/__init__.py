"""Restricted command interpreter over the virtual filesystem."""

from .commands import build_default_registry
from .registry import CommandRegistry, ShellCommand, ShellContext, ShellError, ShellResult

__all__ = [
    "CommandRegistry",
    "ShellCommand",
    "ShellContext",
    "ShellError",
    "ShellResult",
    "build_default_registry",
]
