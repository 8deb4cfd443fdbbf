"""Logging configuration for OverlaySync."""

import logging
import os
import sys
from logging.handlers import RotatingFileHandler
from typing import Iterable, Optional

from .utils import ensure_dir_exists

LOG_FORMAT = '%(asctime)s - %(levelname)s - [%(name)s:%(lineno)d] - %(message)s'
DATE_FORMAT = '%Y-%m-%d %H:%M:%S'

# Whisper pulls in numba, whose JIT debug output drowns the sync log
NOISY_LOGGERS = ("numba", "urllib3", "filelock")


def parse_log_level(name: Optional[str], default: int = logging.INFO) -> int:
    """Maps a level name such as 'debug' to its logging constant."""
    if not name:
        return default
    level = logging.getLevelName(name.upper())
    return level if isinstance(level, int) else default


def setup_logging(
    log_level: int = logging.INFO,
    log_dir: Optional[str] = None,
    log_file: str = "overlaysync.log",
    max_bytes: int = 5 * 1024 * 1024,
    backup_count: int = 3,
    quiet: Iterable[str] = NOISY_LOGGERS,
) -> Optional[str]:
    """
    Configures the root logger for a sync run.

    Console output always goes to stdout. When `log_dir` is given a rotating
    file log is added as well; before the config has been read the CLI calls
    this without a directory so nothing is written to disk yet.

    Args:
        log_level: Minimum level for both handlers.
        log_dir: Directory for the rotating log file, or None for console only.
        log_file: Log file name inside `log_dir`.
        max_bytes: Size at which the file log rotates.
        backup_count: Rotated files to keep.
        quiet: Third-party logger names capped at WARNING.

    Returns:
        Path of the file log, or None when logging to the console only.
    """
    root = logging.getLogger()
    for handler in root.handlers[:]:
        root.removeHandler(handler)
    root.setLevel(log_level)
    formatter = logging.Formatter(LOG_FORMAT, datefmt=DATE_FORMAT)

    console = logging.StreamHandler(sys.stdout)
    console.setFormatter(formatter)
    console.setLevel(log_level)
    root.addHandler(console)

    for name in quiet:
        logging.getLogger(name).setLevel(logging.WARNING)

    if not log_dir:
        return None

    log_path = os.path.join(log_dir, log_file)
    try:
        ensure_dir_exists(log_dir)
        file_handler = RotatingFileHandler(log_path, maxBytes=max_bytes, backupCount=backup_count, encoding='utf-8')
    except Exception as e:
        # Keep going with console output only
        root.error(f"Could not open log file {log_path}: {e}")
        return None
    file_handler.setFormatter(formatter)
    root.addHandler(file_handler)
    root.info(f"Sync log file: {log_path}")
    return log_path
