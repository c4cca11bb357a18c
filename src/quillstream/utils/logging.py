"""Logging bootstrap for the quillstream command line and embedding hosts.

Handlers installed here are tagged so that reconfiguring replaces only
quillstream's own handlers; anything a host application attached to the
root logger is left in place.
"""

from __future__ import annotations

import logging
import logging.handlers
import os
from pathlib import Path

from ..services.settings import Settings

__all__ = ["log_level_for", "setup_logging"]

_DEFAULT_LOG_DIR = Path.home() / ".quillstream" / "logs"
_LOG_FILE_NAME = "quillstream.log"
_HANDLER_MARKER = "_quillstream_handler"
# Chatty at DEBUG: one record per HTTP request or streamed chunk.
_NOISY_LOGGERS: tuple[str, ...] = ("asyncio", "httpx", "httpcore", "openai")
_LOG_PATH: Path | None = None


def log_level_for(settings: Settings | None = None, *, debug: bool = False) -> int:
    """DEBUG when the caller or ``settings.debug_logging`` asks for it, else INFO."""

    if debug or (settings is not None and settings.debug_logging):
        return logging.DEBUG
    return logging.INFO


def setup_logging(
    settings: Settings | None = None,
    *,
    debug: bool = False,
    log_dir: Path | str | None = None,
    console: bool | None = None,
    max_bytes: int = 1_000_000,
    backup_count: int = 3,
    force: bool = False,
) -> Path:
    """Attach a rotating log file (and optionally the console) to the root logger.

    Args:
        settings: Source of ``debug_logging``; ``debug`` overrides it upwards.
        console: Echo records to stderr. Defaults to on at DEBUG level only.
        force: Reconfigure even if logging was already set up.

    Returns:
        Path of the active log file.
    """

    global _LOG_PATH
    if _LOG_PATH is not None and not force:
        return _LOG_PATH

    level = log_level_for(settings, debug=debug)
    if console is None:
        console = level <= logging.DEBUG

    target_dir = _resolve_log_dir(log_dir)
    target_dir.mkdir(parents=True, exist_ok=True)
    log_path = target_dir / _LOG_FILE_NAME

    formatter = logging.Formatter(
        fmt="%(asctime)s | %(levelname)-8s | %(name)s | %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )
    handlers: list[logging.Handler] = [
        logging.handlers.RotatingFileHandler(
            log_path, maxBytes=max_bytes, backupCount=backup_count, encoding="utf-8"
        )
    ]
    if console:
        handlers.append(logging.StreamHandler())

    root = logging.getLogger()
    _remove_own_handlers(root)
    for handler in handlers:
        handler.setFormatter(formatter)
        setattr(handler, _HANDLER_MARKER, True)
        root.addHandler(handler)
    root.setLevel(level)
    logging.captureWarnings(True)

    quiet_level = max(level, logging.WARNING)
    for name in _NOISY_LOGGERS:
        logging.getLogger(name).setLevel(quiet_level)

    _LOG_PATH = log_path
    return log_path


def _remove_own_handlers(root: logging.Logger) -> None:
    for handler in list(root.handlers):
        if getattr(handler, _HANDLER_MARKER, False):
            root.removeHandler(handler)
            handler.close()


def _resolve_log_dir(log_dir: Path | str | None) -> Path:
    env_override = os.environ.get("QUILLSTREAM_LOG_DIR")
    return Path(log_dir or env_override or _DEFAULT_LOG_DIR).expanduser()
