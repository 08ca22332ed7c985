"""Built-in tools operating on the workspace filesystem and the network."""

from .bash import create_bash_tool
from .fetch import create_fetch_tool
from .glob import create_glob_tool
from .grep import create_grep_tool
from .ls import create_ls_tool
from .read import create_read_tool
from .todo import create_todo_tools
from .write import create_edit_tool, create_write_tool

__all__ = [
    "create_bash_tool",
    "create_edit_tool",
    "create_fetch_tool",
    "create_glob_tool",
    "create_grep_tool",
    "create_ls_tool",
    "create_read_tool",
    "create_todo_tools",
    "create_write_tool",
]
