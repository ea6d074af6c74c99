"""File logger for SuperCoder.

Each session appends to <workspace>/.supercoder/supercoder.log so a
conversation can be reconstructed afterwards: stream open/close, retries,
cancellations and tool dispatches. The file rotates at 5 MB, keeping 5.

Modules take a child logger at import time:
    from .logger import get_logger
    log = get_logger("agent")
"""

import logging
import os
import sys
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Optional, Union

LOG_FILE_NAME = "supercoder.log"
MAX_LOG_BYTES = 5 * 1024 * 1024
LOG_BACKUPS = 5

_ROOT = "supercoder"
_FORMAT = logging.Formatter(
    fmt="%(asctime)s.%(msecs)03d | %(levelname)-5s | %(name)s | %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)

_log_path: Optional[Path] = None


def init_logging(workspace: Union[str, Path], level: int = logging.DEBUG) -> Path:
    """Attach the rotating file handler for workspace; returns the log path.

    Only the first call configures handlers; later calls return the path
    already in use.
    """
    global _log_path
    if _log_path is not None:
        return _log_path

    log_dir = Path(workspace) / ".supercoder"
    log_dir.mkdir(parents=True, exist_ok=True)
    _log_path = log_dir / LOG_FILE_NAME

    root = logging.getLogger(_ROOT)
    root.setLevel(level)
    root.propagate = False

    handler = RotatingFileHandler(
        str(_log_path), maxBytes=MAX_LOG_BYTES, backupCount=LOG_BACKUPS, encoding="utf-8"
    )
    handler.setLevel(level)
    handler.setFormatter(_FORMAT)
    root.addHandler(handler)

    # Mirror to stderr while developing
    if os.environ.get("SUPERCODER_DEBUG_LOG"):
        mirror = logging.StreamHandler(sys.stderr)
        mirror.setFormatter(_FORMAT)
        root.addHandler(mirror)

    root.info("=== session start === pid=%d python=%s log=%s",
              os.getpid(), sys.version.split()[0], _log_path)
    return _log_path


def get_logger(name: str) -> logging.Logger:
    """Child of the 'supercoder' logger. Silent until init_logging() runs."""
    return logging.getLogger(f"{_ROOT}.{name}")


def log_exception(logger: logging.Logger, msg: str, exc: BaseException) -> None:
    """Log exc with its traceback at ERROR."""
    logger.error("%s: %s", msg, exc, exc_info=(type(exc), exc, exc.__traceback__))


def truncate(text: str, max_len: int = 200) -> str:
    """One-line preview of text for log records."""
    if not text:
        return "(empty)"
    text = text.replace("\n", "\\n")
    if len(text) <= max_len:
        return text
    return f"{text[:max_len]}...[{len(text)} chars]"
