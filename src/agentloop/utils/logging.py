"""Logging setup for the agentloop command line and embedding hosts."""

from __future__ import annotations

import logging
import logging.handlers
import os
from pathlib import Path
from typing import Iterable

from ..settings import Settings, redact_secret

__all__ = ["SecretRedactingFilter", "configure_logging", "get_log_path", "setup_logging"]

_DEFAULT_LOG_DIR = Path.home() / ".agentloop" / "logs"
_LOG_FILE_NAME = "agentloop.log"
_NOISY_LOGGERS: tuple[str, ...] = ("asyncio", "httpx", "httpcore", "openai")
_CONFIGURED = False
_LOG_PATH: Path | None = None


class SecretRedactingFilter(logging.Filter):
    """Masks known secrets (API keys) in records before a handler formats them."""

    def __init__(self, secrets: Iterable[str] = ()) -> None:
        super().__init__()
        self._secrets = tuple(secret.strip() for secret in secrets if secret and secret.strip())

    def filter(self, record: logging.LogRecord) -> bool:
        if not self._secrets:
            return True
        message = record.getMessage()
        redacted = message
        for secret in self._secrets:
            redacted = redacted.replace(secret, redact_secret(secret))
        if redacted != message:
            record.msg = redacted
            record.args = None
        return True


def setup_logging(
    level: int = logging.INFO,
    *,
    log_dir: Path | str | None = None,
    console: bool = True,
    secrets: Iterable[str] = (),
    max_bytes: int = 1_000_000,
    backup_count: int = 3,
    force: bool = False,
) -> Path:
    """Configure root logging with a rotating file handler and an optional console handler.

    ``AGENTLOOP_LOG_DIR`` overrides the default directory when ``log_dir`` is
    not given. Every handler masks ``secrets``. Calling it again is a no-op
    unless ``force`` is set.
    """

    global _CONFIGURED, _LOG_PATH
    if _CONFIGURED and not force and _LOG_PATH is not None:
        return _LOG_PATH

    target_dir = Path(log_dir or os.environ.get("AGENTLOOP_LOG_DIR") or _DEFAULT_LOG_DIR).expanduser()
    target_dir.mkdir(parents=True, exist_ok=True)
    log_path = target_dir / _LOG_FILE_NAME

    formatter = logging.Formatter(
        fmt="%(asctime)s | %(levelname)-8s | %(name)s | %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )
    redactor = SecretRedactingFilter(secrets)
    handlers: list[logging.Handler] = [
        logging.handlers.RotatingFileHandler(log_path, maxBytes=max_bytes, backupCount=backup_count, encoding="utf-8")
    ]
    if console:
        handlers.append(logging.StreamHandler())
    for handler in handlers:
        handler.setLevel(level)
        handler.setFormatter(formatter)
        handler.addFilter(redactor)

    logging.basicConfig(level=level, handlers=handlers, force=True)
    logging.captureWarnings(True)

    # Client libraries log request bodies at DEBUG.
    quiet_level = logging.WARNING if level < logging.WARNING else level
    for name in _NOISY_LOGGERS:
        logging.getLogger(name).setLevel(quiet_level)

    _CONFIGURED = True
    _LOG_PATH = log_path
    return log_path


def configure_logging(settings: Settings, *, log_dir: Path | str | None = None, force: bool = False) -> Path:
    """Apply :func:`setup_logging` using the ``debug_logging`` flag and API key from ``settings``.

    Debug mode logs at ``DEBUG`` and mirrors records to the console; otherwise
    only the log file receives ``INFO`` and above.
    """

    debug = bool(settings.debug_logging)
    return setup_logging(
        logging.DEBUG if debug else logging.INFO,
        log_dir=log_dir,
        console=debug,
        secrets=(settings.api_key,),
        force=force,
    )


def get_log_path() -> Path | None:
    """Return the configured log file, if any."""
    return _LOG_PATH
