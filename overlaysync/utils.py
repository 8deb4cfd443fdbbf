"""Small helpers shared across OverlaySync modules."""

import os
import logging
from .exceptions import FileSystemError

logger = logging.getLogger(__name__)

def ensure_dir_exists(dir_path: str) -> None:
    """
    Creates `dir_path` (and parents) unless it is already a directory.

    Raises:
        ValueError: If the path is empty.
        FileSystemError: If the path is a file or cannot be created.
    """
    if not dir_path:
        raise ValueError("Directory path cannot be empty.")
    if os.path.isdir(dir_path):
        return
    if os.path.exists(dir_path):
        raise FileSystemError(f"Path exists but is not a directory: {dir_path}")
    try:
        os.makedirs(dir_path, exist_ok=True)
    except OSError as e:
        raise FileSystemError(f"Could not create directory {dir_path}: {e}") from e
    logger.info(f"Created directory: {dir_path}")

def round_ms(seconds: float) -> float:
    """Rounds a time in seconds to millisecond precision."""
    return round(float(seconds), 3)

def text_weight(text: str) -> int:
    """
    Character weight of a unit's text for proportional timing.

    Empty text still weighs 1 so a parent's duration is never divided by zero.
    """
    length = len((text or "").strip())
    return length if length > 0 else 1

def format_clock_time(seconds: float) -> str:
    """
    Formats seconds as a media overlay clock value H:MM:SS.mmm.

    Args:
        seconds: Time in seconds.

    Returns:
        Formatted time string.
    """
    if seconds < 0:
        seconds = 0.0 # Ensure non-negative time
    milliseconds = round(seconds * 1000)
    hrs = milliseconds // 3600000
    milliseconds %= 3600000
    mins = milliseconds // 60000
    milliseconds %= 60000
    secs = milliseconds // 1000
    milliseconds %= 1000
    return f"{hrs}:{mins:02d}:{secs:02d}.{milliseconds:03d}"
