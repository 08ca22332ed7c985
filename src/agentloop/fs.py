"""Virtual filesystem consumed by the built-in tools.

Tools only talk to the :class:`FileSystem` protocol. Two implementations ship
with the package: :class:`MemoryFileSystem` for sandboxes and tests, and
:class:`LocalFileSystem`, which maps the virtual root onto a real directory.
Virtual paths are POSIX-style and absolute; relative paths resolve against
``/``.
"""

from __future__ import annotations

import logging
import posixpath
import shutil
from pathlib import Path
from typing import Protocol, runtime_checkable

__all__ = [
    "FileSystem",
    "FileSystemError",
    "LocalFileSystem",
    "MemoryFileSystem",
    "normalize_path",
]

LOGGER = logging.getLogger(__name__)


class FileSystemError(Exception):
    """Raised for missing paths, type mismatches, and sandbox escapes."""

    def __init__(self, message: str, *, path: str | None = None) -> None:
        self.path = path
        super().__init__(message)


def normalize_path(path: str, cwd: str = "/") -> str:
    """Return the absolute, normalised virtual form of ``path``."""
    candidate = (path or ".").replace("\\", "/")
    if not candidate.startswith("/"):
        candidate = posixpath.join(cwd or "/", candidate)
    normalized = posixpath.normpath(candidate)
    if normalized.startswith("//"):
        normalized = "/" + normalized.lstrip("/")
    return normalized


@runtime_checkable
class FileSystem(Protocol):
    """Uniform read/write/list interface."""

    def exists(self, path: str) -> bool:
        ...

    def is_dir(self, path: str) -> bool:
        ...

    def read_text(self, path: str) -> str:
        ...

    def read_bytes(self, path: str) -> bytes:
        ...

    def write_text(self, path: str, content: str) -> None:
        ...

    def list_dir(self, path: str) -> list[str]:
        """Return the sorted child names of a directory."""
        ...

    def mkdir(self, path: str) -> None:
        """Create a directory and any missing parents."""
        ...

    def delete(self, path: str, *, recursive: bool = False) -> None:
        ...


# -----------------------------------------------------------------------------
# In-memory implementation
# -----------------------------------------------------------------------------


class MemoryFileSystem:
    """Dictionary-backed filesystem."""

    def __init__(self, files: dict[str, str | bytes] | None = None) -> None:
        self._files: dict[str, bytes] = {}
        self._dirs: set[str] = {"/"}
        for path, content in (files or {}).items():
            if isinstance(content, bytes):
                self.write_bytes(path, content)
            else:
                self.write_text(path, content)

    def exists(self, path: str) -> bool:
        target = normalize_path(path)
        return target in self._files or target in self._dirs

    def is_dir(self, path: str) -> bool:
        return normalize_path(path) in self._dirs

    def read_bytes(self, path: str) -> bytes:
        target = normalize_path(path)
        if target in self._dirs:
            raise FileSystemError(f"{target} is a directory", path=target)
        try:
            return self._files[target]
        except KeyError:
            raise FileSystemError(f"File {target} does not exist.", path=target) from None

    def read_text(self, path: str) -> str:
        return self.read_bytes(path).decode("utf-8", errors="replace")

    def write_bytes(self, path: str, content: bytes) -> None:
        target = normalize_path(path)
        if target in self._dirs:
            raise FileSystemError(f"{target} is a directory", path=target)
        self.mkdir(posixpath.dirname(target))
        self._files[target] = content

    def write_text(self, path: str, content: str) -> None:
        self.write_bytes(path, content.encode("utf-8"))

    def list_dir(self, path: str) -> list[str]:
        target = normalize_path(path)
        if target not in self._dirs:
            raise FileSystemError(f"Directory {target} does not exist.", path=target)
        prefix = target.rstrip("/") + "/"
        children = {
            entry[len(prefix):].split("/", 1)[0]
            for entry in (*self._files, *self._dirs)
            if entry.startswith(prefix) and entry != target
        }
        return sorted(children)

    def mkdir(self, path: str) -> None:
        target = normalize_path(path)
        if target in self._files:
            raise FileSystemError(f"{target} is a file", path=target)
        while target not in self._dirs:
            self._dirs.add(target)
            target = posixpath.dirname(target)

    def delete(self, path: str, *, recursive: bool = False) -> None:
        target = normalize_path(path)
        if target in self._files:
            del self._files[target]
            return
        if target not in self._dirs or target == "/":
            raise FileSystemError(f"Cannot remove {target}", path=target)
        prefix = target + "/"
        nested = [entry for entry in (*self._files, *self._dirs) if entry.startswith(prefix)]
        if nested and not recursive:
            raise FileSystemError(f"Directory {target} is not empty", path=target)
        for entry in nested:
            self._files.pop(entry, None)
            self._dirs.discard(entry)
        self._dirs.discard(target)


# -----------------------------------------------------------------------------
# Directory-rooted implementation
# -----------------------------------------------------------------------------


class LocalFileSystem:
    """Maps the virtual root onto ``root`` on disk; paths cannot escape it."""

    def __init__(self, root: Path | str) -> None:
        self._root = Path(root).expanduser().resolve()

    @property
    def root(self) -> Path:
        return self._root

    def _real(self, path: str) -> Path:
        virtual = normalize_path(path)
        real = (self._root / virtual.lstrip("/")).resolve()
        if real != self._root and self._root not in real.parents:
            raise FileSystemError(f"Path {virtual} escapes the workspace", path=virtual)
        return real

    def exists(self, path: str) -> bool:
        return self._real(path).exists()

    def is_dir(self, path: str) -> bool:
        return self._real(path).is_dir()

    def read_bytes(self, path: str) -> bytes:
        real = self._real(path)
        if not real.is_file():
            raise FileSystemError(f"File {normalize_path(path)} does not exist.", path=path)
        return real.read_bytes()

    def read_text(self, path: str) -> str:
        return self.read_bytes(path).decode("utf-8", errors="replace")

    def write_text(self, path: str, content: str) -> None:
        real = self._real(path)
        if real.is_dir():
            raise FileSystemError(f"{normalize_path(path)} is a directory", path=path)
        real.parent.mkdir(parents=True, exist_ok=True)
        real.write_text(content, encoding="utf-8")

    def list_dir(self, path: str) -> list[str]:
        real = self._real(path)
        if not real.is_dir():
            raise FileSystemError(f"Directory {normalize_path(path)} does not exist.", path=path)
        return sorted(child.name for child in real.iterdir())

    def mkdir(self, path: str) -> None:
        self._real(path).mkdir(parents=True, exist_ok=True)

    def delete(self, path: str, *, recursive: bool = False) -> None:
        real = self._real(path)
        if real == self._root:
            raise FileSystemError("Cannot remove the workspace root", path=path)
        if real.is_dir():
            if recursive:
                shutil.rmtree(real)
            else:
                try:
                    real.rmdir()
                except OSError as exc:
                    raise FileSystemError(f"Directory {normalize_path(path)} is not empty", path=path) from exc
        elif real.exists():
            real.unlink()
        else:
            raise FileSystemError(f"Cannot remove {normalize_path(path)}", path=path)
        LOGGER.debug("Removed %s", real)
