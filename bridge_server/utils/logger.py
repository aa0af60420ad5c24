"""
Logging setup for the session server.

One console handler plus one rotating file per server run, installed on
the root logger so every ``logging.getLogger(__name__)`` in the package
shares them. Calling ``setup_logging`` again with the same file is a no-op.
"""

import logging
import os
from datetime import datetime
from logging.handlers import RotatingFileHandler
from typing import Optional

DEFAULT_LOG_DIR = "logs"
DEFAULT_LOG_LEVEL = logging.INFO
LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"
MAX_LOG_BYTES = 10 * 1024 * 1024
LOG_BACKUPS = 10

# Per-frame and per-request chatter from the transport libraries
NOISY_LOGGERS = ("websockets", "werkzeug")

logger = logging.getLogger("bridge_server")


def _run_log_path(log_dir: str) -> str:
    started = datetime.now().strftime("%Y%m%d_%H%M%S")
    return os.path.join(log_dir, f"bridge_{started}.log")


def resolve_level(level) -> int:
    """Accept either a logging constant or a level name such as "debug"."""
    if isinstance(level, int):
        return level
    resolved = logging.getLevelName(str(level).upper())
    if not isinstance(resolved, int):
        raise ValueError(f"Unknown log level: {level}")
    return resolved


def _resolve_target(log_file: Optional[str]) -> str:
    if not log_file:
        return _run_log_path(DEFAULT_LOG_DIR)
    if os.path.isdir(log_file):
        return _run_log_path(log_file)
    return log_file


def _has_console_handler(root: logging.Logger) -> bool:
    # FileHandler subclasses StreamHandler, so match the exact type
    return any(type(h) is logging.StreamHandler for h in root.handlers)


def _has_file_handler(root: logging.Logger, path: str) -> bool:
    target = os.path.abspath(path)
    return any(
        isinstance(h, RotatingFileHandler) and os.path.abspath(h.baseFilename) == target
        for h in root.handlers
    )


def setup_logging(log_file: Optional[str] = None, level=DEFAULT_LOG_LEVEL) -> str:
    """
    Configure root logging for a server run.

    Args:
        log_file: Log file path, or a directory to create a per-run file in.
            Defaults to ``logs/bridge_<timestamp>.log``.
        level: Logging constant or level name

    Returns:
        Path of the log file in use
    """
    root = logging.getLogger()
    path = _resolve_target(log_file)
    os.makedirs(os.path.dirname(path) or ".", exist_ok=True)
    formatter = logging.Formatter(LOG_FORMAT, datefmt=DATE_FORMAT)

    if not _has_console_handler(root):
        console = logging.StreamHandler()
        console.setFormatter(formatter)
        root.addHandler(console)

    if not _has_file_handler(root, path):
        file_handler = RotatingFileHandler(path, maxBytes=MAX_LOG_BYTES, backupCount=LOG_BACKUPS, encoding="utf-8")
        file_handler.setFormatter(formatter)
        root.addHandler(file_handler)

    resolved = resolve_level(level)
    root.setLevel(resolved)
    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(max(resolved, logging.WARNING))

    logger.debug(f"Logging initialized at {logging.getLevelName(resolved)} -> {path}")
    return path
