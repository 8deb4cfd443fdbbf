"""Audio transport abstraction sampled by editing sessions."""

import logging
from abc import ABC, abstractmethod
from typing import Optional

logger = logging.getLogger(__name__)

class Transport(ABC):
    """Play/pause/seek control plus the playback clock of one audio resource."""

    @abstractmethod
    def play(self) -> None:
        pass

    @abstractmethod
    def pause(self) -> None:
        pass

    @abstractmethod
    def seek(self, time: float) -> None:
        pass

    @abstractmethod
    def current_time(self) -> float:
        """Current playback position in seconds."""
        pass

    @property
    @abstractmethod
    def is_loaded(self) -> bool:
        """Whether an audio resource is loaded and the clock is meaningful."""
        pass

    @property
    @abstractmethod
    def duration(self) -> Optional[float]:
        pass


class SimulatedTransport(Transport):
    """
    A transport whose clock only moves when told to.

    Used to replay recorded mark scripts deterministically and in tests.
    """

    def __init__(self, duration: Optional[float] = None, loaded: bool = True):
        self._duration = duration
        self._loaded = loaded
        self._time = 0.0
        self.playing = False

    def load(self, duration: float) -> None:
        self._duration = duration
        self._loaded = True
        self._time = 0.0

    def play(self) -> None:
        self.playing = True

    def pause(self) -> None:
        self.playing = False

    def seek(self, time: float) -> None:
        upper = self._duration if self._duration is not None else time
        self._time = min(max(0.0, time), upper)

    def advance(self, seconds: float) -> None:
        """Moves the clock forward as if playback had run for the given time."""
        self.seek(self._time + seconds)

    def current_time(self) -> float:
        return self._time

    @property
    def is_loaded(self) -> bool:
        return self._loaded

    @property
    def duration(self) -> Optional[float]:
        return self._duration
