"""Interactive tap-to-sync and region-drag editing over one page."""

import logging
from collections import deque
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Deque, Dict, List, Optional, Tuple

from .exceptions import UserInputError
from .models import InvariantWarning, SyncLevel, SyncUnit
from .propagation import PropagationEngine
from .silence_snapper import SilenceSnapper
from .timing_store import StoreSnapshot, TimingStore
from .transport import Transport
from .utils import round_ms

logger = logging.getLogger(__name__)

# Float noise allowance when comparing gesture durations against thresholds
_TIME_TOLERANCE = 1e-6


class SessionState(Enum):
    IDLE = "idle"
    RECORDING = "recording"
    DRAGGING = "dragging"


@dataclass
class MarkOutcome:
    """Result of a completed press/release gesture."""
    accepted: bool
    unit_id: Optional[str] = None
    start: Optional[float] = None
    end: Optional[float] = None
    reason: Optional[str] = None # Set when the mark was discarded
    warnings: List[InvariantWarning] = field(default_factory=list)


# --- Commands, for scripted replays and front ends that queue input ---

@dataclass
class StartRecording:
    page_number: int

@dataclass
class MarkPress:
    time: Optional[float] = None

@dataclass
class MarkRelease:
    time: Optional[float] = None

@dataclass
class DragStart:
    unit_id: str

@dataclass
class DragMove:
    start: float
    end: float

@dataclass
class DragEnd:
    pass

@dataclass
class Undo:
    pass

@dataclass
class DeleteUnit:
    unit_id: str

@dataclass
class StopRecording:
    pass


class RegionSession:
    """
    State machine for editing the timings of one page.

    All timing writes go through the TimingStore; the session only owns the
    cursor, the pending gesture and the undo stack.
    """

    def __init__(
        self,
        store: TimingStore,
        transport: Transport,
        snapper: Optional[SilenceSnapper] = None,
        propagation: Optional[PropagationEngine] = None,
        config: Optional[Dict[str, Any]] = None
    ):
        """
        Args:
            store: The document's timing store.
            transport: Audio transport whose clock is sampled on each gesture.
            snapper: Silence snapper; without one, boundaries are used as marked.
            propagation: Engine used to fill in word timings.
            config: Session settings (min_hold_duration, min_sync_interval,
                    undo_depth, recording_level, show_word_track).
        """
        config = config or {}
        self.store = store
        self.transport = transport
        self.snapper = snapper
        self.propagation = propagation or PropagationEngine()
        self.min_hold_duration = float(config.get('min_hold_duration', 0.15))
        self.min_sync_interval = float(config.get('min_sync_interval', 0.3))
        self.recording_level = SyncLevel.parse(config.get('recording_level', 'sentence'))
        self.show_word_track = bool(config.get('show_word_track', True))
        self._undo_stack: Deque[Tuple[int, StoreSnapshot]] = deque(maxlen=int(config.get('undo_depth', 10)))

        self.state = SessionState.IDLE
        self.page_number: Optional[int] = None
        self.cursor = 0
        self._page_units: List[SyncUnit] = []
        self._mark_in: Optional[float] = None
        self._last_mark_out: Optional[float] = None
        self._drag_unit: Optional[SyncUnit] = None
        self._drag_bounds: Optional[Tuple[float, float]] = None
        self._drag_origin: Optional[SessionState] = None
        self._page_complete = False

    @property
    def current_unit(self) -> Optional[SyncUnit]:
        """The unit the next accepted mark will be written to."""
        if self.state is SessionState.RECORDING and self.cursor < len(self._page_units):
            return self._page_units[self.cursor]
        return None

    @property
    def undo_depth(self) -> int:
        return len(self._undo_stack)

    # --- Recording ---

    def start_recording(self, page_number: int) -> None:
        """
        Starts tap-to-sync on a page, clearing the page's existing timings.

        Raises:
            UserInputError: If no audio is loaded, a gesture is in progress,
                            or the page has nothing to record.
        """
        if not self.transport.is_loaded:
            raise UserInputError("Cannot start recording: no audio is loaded.")
        if self.state is SessionState.DRAGGING:
            raise UserInputError("Cannot start recording while a region is being dragged.")
        page_units = self.store.units_on_page(page_number, self.recording_level)
        if not page_units:
            raise UserInputError(
                f"Page {page_number} has no {self.recording_level.value} units to record."
            )

        cleared = self.store.reset_page(page_number)
        self._page_units = page_units
        self.page_number = page_number
        self.cursor = 0
        self._undo_stack.clear()
        self._mark_in = None
        self._last_mark_out = None
        self._page_complete = False
        self.state = SessionState.RECORDING
        logger.info(f"Recording page {page_number}: {len(page_units)} {self.recording_level.value}s "
                    f"({cleared} existing timings cleared)")

    def stop_recording(self) -> None:
        if self.state is not SessionState.RECORDING:
            logger.info("Stop requested while not recording; ignoring.")
            return
        self._mark_in = None
        self._page_complete = False
        self.state = SessionState.IDLE
        logger.info(f"Recording stopped on page {self.page_number} at unit {self.cursor}/{len(self._page_units)}")

    def press(self, time: Optional[float] = None) -> float:
        """
        Records the mark-in time of a press-and-hold gesture.

        Args:
            time: Playback time of the press; defaults to the transport clock.

        Returns:
            The recorded mark-in time.

        Raises:
            UserInputError: If the session is not recording.
        """
        if self.state is not SessionState.RECORDING:
            raise UserInputError(f"Cannot mark while {self.state.value}.")
        self._mark_in = self.transport.current_time() if time is None else float(time)
        return self._mark_in

    def release(self, time: Optional[float] = None) -> MarkOutcome:
        """
        Completes a gesture and, if it passes the hold and debounce guards,
        writes it to the unit under the cursor.

        Args:
            time: Playback time of the release; defaults to the transport clock.

        Returns:
            A MarkOutcome describing what happened to the mark.

        Raises:
            UserInputError: If the session is not recording.
        """
        if self.state is not SessionState.RECORDING:
            raise UserInputError(f"Cannot mark while {self.state.value}.")
        if self._mark_in is None:
            return MarkOutcome(False, reason="no_press")

        mark_in = self._mark_in
        mark_out = self.transport.current_time() if time is None else float(time)
        self._mark_in = None
        unit = self._page_units[self.cursor]

        if mark_out - mark_in < self.min_hold_duration - _TIME_TOLERANCE:
            logger.debug(f"Mark discarded: held {mark_out - mark_in:.3f}s")
            return MarkOutcome(False, unit.id, mark_in, mark_out, reason="hold_too_short")
        if self._last_mark_out is not None and \
                mark_in - self._last_mark_out < self.min_sync_interval - _TIME_TOLERANCE:
            logger.debug(f"Mark discarded: {mark_in - self._last_mark_out:.3f}s after previous mark")
            return MarkOutcome(False, unit.id, mark_in, mark_out, reason="debounced")

        self._push_undo()
        start, end = self._snap_region(mark_in, mark_out)
        start, end = round_ms(start), round_ms(end)
        warnings = self.store.upsert(unit.id, start, end)
        if self.show_word_track:
            warnings.extend(self.propagation.apply(self.store, unit.id, SyncLevel.WORD))

        self._last_mark_out = mark_out
        self.cursor += 1
        logger.info(f"Synced {unit.id}: {start:.3f}s - {end:.3f}s")
        if self.cursor >= len(self._page_units):
            self.state = SessionState.IDLE
            self._page_complete = True
            logger.info(f"All {len(self._page_units)} units on page {self.page_number} synced.")
        return MarkOutcome(True, unit.id, start, end, warnings=warnings)

    # --- Region drag ---

    def begin_drag(self, unit_id: str) -> None:
        """
        Raises:
            UserInputError: If another drag is in progress.
            UnknownUnitError: If the unit is not in the document.
        """
        if self.state is SessionState.DRAGGING:
            raise UserInputError("A region drag is already in progress.")
        self._drag_unit = self.store.unit(unit_id)
        entry = self.store.get(unit_id)
        self._drag_bounds = (entry.start, entry.end) if entry.is_synced else None
        self._drag_origin = self.state
        self._mark_in = None
        self.state = SessionState.DRAGGING

    def drag_to(self, start: float, end: float) -> None:
        """Records the pending bounds; nothing is written until the drag ends."""
        if self.state is not SessionState.DRAGGING:
            raise UserInputError("No region drag in progress.")
        self._drag_bounds = (float(start), float(end))

    def end_drag(self) -> List[InvariantWarning]:
        """
        Commits the dragged region: snap, clamp words into their sentence,
        write, and re-propagate a sentence's words.

        Returns:
            Invariant warnings produced by the write.
        """
        if self.state is not SessionState.DRAGGING:
            raise UserInputError("No region drag in progress.")
        unit, bounds = self._drag_unit, self._drag_bounds
        self.state = self._drag_origin or SessionState.IDLE
        self._drag_unit = self._drag_bounds = self._drag_origin = None
        if bounds is None:
            logger.info(f"Drag on {unit.id} ended without a region; nothing written.")
            return []

        start, end = self._snap_region(bounds[0], bounds[1])
        if unit.level is SyncLevel.WORD and unit.parent_id is not None:
            parent = self.store.get(unit.parent_id)
            if parent.is_synced:
                start = min(max(start, parent.start), parent.end)
                end = min(max(end, parent.start), parent.end)

        self._push_undo()
        start, end = round_ms(start), round_ms(end)
        warnings = self.store.upsert(unit.id, start, end)
        if unit.level is SyncLevel.SENTENCE:
            warnings.extend(self.propagation.apply(self.store, unit.id, SyncLevel.WORD))
        logger.info(f"Region {unit.id} moved to {start:.3f}s - {end:.3f}s")
        return warnings

    # --- History ---

    def undo(self) -> bool:
        """
        Reverts the most recent accepted mark, drag or delete.

        Returns:
            False when there was nothing to undo.
        """
        if self.state is SessionState.DRAGGING:
            logger.info("Undo ignored during a region drag.")
            return False
        if not self._undo_stack:
            logger.info("Nothing to undo.")
            return False
        cursor, snapshot = self._undo_stack.pop()
        self.store.restore(snapshot)
        self.cursor = cursor
        self._last_mark_out = None
        if self._page_complete and self.state is SessionState.IDLE and self.cursor < len(self._page_units):
            # Undoing the final mark of a finished page resumes recording on that unit
            self._page_complete = False
            self.state = SessionState.RECORDING
        logger.info(f"Undo: cursor back to {self.cursor}")
        return True

    def delete_unit(self, unit_id: str) -> List[str]:
        """Clears a unit and its descendants. Undoable."""
        if self.state is SessionState.DRAGGING:
            raise UserInputError("Cannot delete while a region is being dragged.")
        self.store.unit(unit_id)
        self._push_undo()
        cleared = self.store.delete(unit_id)
        logger.info(f"Deleted timing of {unit_id} ({len(cleared)} units cleared)")
        return cleared

    # --- Dispatch ---

    def handle(self, command: Any) -> Any:
        """
        Applies a command object and returns whatever the matching method returns.

        Raises:
            UserInputError: For unknown command types, or as raised by the action.
        """
        if isinstance(command, StartRecording):
            return self.start_recording(command.page_number)
        if isinstance(command, MarkPress):
            return self.press(command.time)
        if isinstance(command, MarkRelease):
            return self.release(command.time)
        if isinstance(command, DragStart):
            return self.begin_drag(command.unit_id)
        if isinstance(command, DragMove):
            return self.drag_to(command.start, command.end)
        if isinstance(command, DragEnd):
            return self.end_drag()
        if isinstance(command, Undo):
            return self.undo()
        if isinstance(command, DeleteUnit):
            return self.delete_unit(command.unit_id)
        if isinstance(command, StopRecording):
            return self.stop_recording()
        raise UserInputError(f"Unknown session command: {type(command).__name__}")

    def _push_undo(self) -> None:
        self._undo_stack.append((self.cursor, self.store.snapshot()))

    def _snap(self, time: float) -> float:
        return self.snapper.snap(time) if self.snapper is not None else time

    def _snap_region(self, start: float, end: float) -> Tuple[float, float]:
        """Snaps both ends, keeping the raw times if snapping would collapse or invert the region."""
        snapped_start, snapped_end = self._snap(start), self._snap(end)
        if snapped_start < snapped_end or start >= end:
            return snapped_start, snapped_end
        logger.debug(f"Snapping collapsed {start:.3f}-{end:.3f}s; keeping unsnapped times")
        return start, end
