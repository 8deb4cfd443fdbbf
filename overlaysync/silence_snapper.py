"""Moves a boundary onto the quietest nearby sample."""

import logging
import math
from typing import Optional

import numpy as np

from .models import AudioBuffer

logger = logging.getLogger(__name__)

DEFAULT_WINDOW_MS = 100
DEFAULT_THRESHOLD = 0.1


class SilenceSnapper:
    """
    Local, single-pass amplitude-minimum search around a candidate time.

    This is not global silence detection; it scans only the window around
    one time, which keeps it cheap enough to run on every drag end.
    """

    def __init__(
        self,
        audio: Optional[AudioBuffer],
        window_ms: float = DEFAULT_WINDOW_MS,
        threshold: float = DEFAULT_THRESHOLD,
        enabled: bool = True
    ):
        """
        Args:
            audio: Decoded audio; with no audio every time is returned unchanged.
            window_ms: Half-width of the search window in milliseconds.
            threshold: Absolute amplitude (on [-1, 1]) below which a sample counts as quiet.
            enabled: Turns snapping off without removing the snapper.
        """
        self.audio = audio
        self.window_ms = window_ms
        self.threshold = threshold
        self.enabled = enabled

    def snap(self, target_time: float, window_ms: Optional[float] = None) -> float:
        """
        Returns the time of the quietest sample within the window, if quiet enough.

        Args:
            target_time: Candidate boundary in seconds.
            window_ms: Overrides the configured window for this call.

        Returns:
            The snapped time, or target_time when snapping is disabled, there
            is no audio, or no sample in the window is below the threshold.
            The result never moves more than window_ms/1000 from target_time.
        """
        if not self.enabled or self.audio is None or len(self.audio.samples) == 0:
            return target_time

        window = (self.window_ms if window_ms is None else window_ms) / 1000.0
        rate = self.audio.sample_rate
        # Only samples whose time lies inside [t - w, t + w]
        first = max(0, math.ceil((target_time - window) * rate))
        last = min(len(self.audio.samples) - 1, math.floor((target_time + window) * rate))
        if last < first:
            return target_time

        segment = np.abs(self.audio.samples[first:last + 1])
        offset = int(np.argmin(segment))
        min_amplitude = float(segment[offset])
        if min_amplitude >= self.threshold:
            return target_time

        snapped = (first + offset) / float(rate)
        # Guard against float error at the window edge
        snapped = min(max(snapped, target_time - window), target_time + window)
        logger.debug(f"[Snap] {target_time:.3f}s -> {snapped:.3f}s (amplitude: {min_amplitude:.4f})")
        return snapped
