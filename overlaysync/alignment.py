"""Automatic alignment: forced alignment against a transcript, or linear spread as a fallback."""

import asyncio
import logging
import re
from abc import ABC, abstractmethod
from concurrent.futures import ThreadPoolExecutor
from difflib import SequenceMatcher
from typing import Callable, Dict, List, Optional, Sequence, Set, Tuple

from .exceptions import AlignmentError, AlignmentInProgressError
from .models import (
    AlignedSegment, AlignmentOptions, AlignmentResult, AlignmentTranscript,
    SyncLevel, SyncUnit
)
from .propagation import PropagationEngine, subdivide
from .timing_store import TimingStore
from .utils import text_weight

logger = logging.getLogger(__name__)

_TOKEN_PATTERN = re.compile(r"[\w']+")


def normalize_tokens(text: str) -> List[str]:
    """Lowercased word tokens with punctuation removed."""
    return _TOKEN_PATTERN.findall((text or "").lower())


class AlignmentService(ABC):
    """External service that locates text units in an audio resource."""

    @abstractmethod
    def align(self, text_units: Sequence[SyncUnit], audio_path: str, language: str) -> AlignmentTranscript:
        """
        Aligns units to audio.

        Args:
            text_units: The units to locate, in document order.
            audio_path: Path to the audio resource.
            language: Spoken language code.

        Returns:
            Segments for the units found, plus ids the service chose to skip.
        """
        pass


class AlignmentStrategy(ABC):
    """Abstract base class for automatic alignment strategies."""

    name = "strategy"

    @abstractmethod
    def align(self, units: Sequence[SyncUnit], audio_path: str, options: AlignmentOptions) -> AlignmentResult:
        """
        Computes intervals for the given units.

        Implementations never touch a TimingStore; applying the result is the
        adapter's job.

        Raises:
            AlignmentError: If no result can be produced.
        """
        pass


class TranscriptMatcher:
    """
    Maps units onto timestamped transcript words, in document order.

    For each unit the matcher looks for the best-matching run of words within
    a bounded look-ahead window from the current position. A unit with no run
    scoring at least ``min_ratio`` is skipped and the position does not move,
    so one unit missing from the audio cannot shift every later unit.
    """

    def __init__(self, lookahead_words: int = 40, min_ratio: float = 0.6):
        self.lookahead_words = lookahead_words
        self.min_ratio = min_ratio

    def match(
        self,
        units: Sequence[SyncUnit],
        words: Sequence[Tuple[str, float, float]]
    ) -> AlignmentTranscript:
        """
        Args:
            units: Units to locate, in document order.
            words: (text, start, end) for each transcript word, in time order.

        Returns:
            An AlignmentTranscript with a segment per matched unit and the ids
            of unmatched units in skipped_ids.
        """
        word_tokens = [" ".join(normalize_tokens(w[0])) for w in words]
        transcript = AlignmentTranscript()
        position = 0

        for unit in units:
            unit_tokens = normalize_tokens(unit.text)
            if not unit_tokens:
                transcript.skipped_ids.append(unit.id)
                continue
            target = " ".join(unit_tokens)
            span = len(unit_tokens)

            best_ratio, best_offset = 0.0, None
            last_offset = min(position + self.lookahead_words, len(words) - 1)
            for offset in range(position, last_offset + 1):
                candidate = " ".join(t for t in word_tokens[offset:offset + span] if t)
                ratio = SequenceMatcher(None, target, candidate).ratio()
                if ratio > best_ratio:
                    best_ratio, best_offset = ratio, offset

            if best_offset is None or best_ratio < self.min_ratio:
                logger.debug(f"No transcript match for {unit.id} (best ratio {best_ratio:.2f}); skipping")
                transcript.skipped_ids.append(unit.id)
                continue

            last_word = min(best_offset + span, len(words)) - 1
            transcript.segments.append(
                AlignedSegment(unit.id, float(words[best_offset][1]), float(words[last_word][2]))
            )
            position = last_word + 1

        logger.info(f"Matched {len(transcript.segments)}/{len(units)} units against {len(words)} transcript words")
        return transcript


class ForcedAlignmentStrategy(AlignmentStrategy):
    """Delegates to an AlignmentService; units it does not return are SKIPPED."""

    name = "forced"

    def __init__(self, service: AlignmentService):
        self.service = service

    def align(self, units: Sequence[SyncUnit], audio_path: str, options: AlignmentOptions) -> AlignmentResult:
        try:
            transcript = self.service.align(units, audio_path, options.language)
        except AlignmentError:
            raise
        except FileNotFoundError as e:
            raise AlignmentError(f"Audio resource not found: {audio_path}", retryable=False) from e
        except Exception as e:
            logger.error(f"Alignment service failed for {audio_path}: {e}", exc_info=True)
            raise AlignmentError(f"Alignment service failed: {e}") from e

        wanted = {u.id for u in units}
        intervals: Dict[str, Tuple[float, float]] = {}
        for segment in transcript.segments:
            if segment.unit_id not in wanted:
                logger.debug(f"Ignoring segment for unknown unit {segment.unit_id}")
                continue
            if segment.start is None or segment.end is None or segment.start < 0 or segment.end <= segment.start:
                logger.warning(f"Ignoring invalid segment for {segment.unit_id}: "
                               f"[{segment.start}, {segment.end}]")
                continue
            intervals[segment.unit_id] = (float(segment.start), float(segment.end)) # last one wins

        result = AlignmentResult(method=self.name)
        for unit in units:
            if unit.id in intervals:
                start, end = intervals[unit.id]
                result.synced.append((unit.id, start, end))
            else:
                result.skipped.append(unit.id)
        logger.info(f"Forced alignment: {len(result.synced)} synced, {len(result.skipped)} skipped")
        return result


class LinearSpreadStrategy(AlignmentStrategy):
    """Spreads a time window across units in proportion to their character counts."""

    name = "linear"

    def __init__(self, duration_provider: Optional[Callable[[str], float]] = None):
        """
        Args:
            duration_provider: Returns an audio file's duration in seconds; used
                               when the options leave the window end open.
        """
        self.duration_provider = duration_provider

    def align(self, units: Sequence[SyncUnit], audio_path: str, options: AlignmentOptions) -> AlignmentResult:
        window_end = options.window_end
        if window_end is None:
            if self.duration_provider is None:
                raise AlignmentError("Linear spread needs a window end or a duration provider.", retryable=False)
            try:
                window_end = float(self.duration_provider(audio_path))
            except Exception as e:
                raise AlignmentError(f"Could not determine audio duration for {audio_path}: {e}") from e

        window_start = options.window_start or 0.0
        if window_end <= window_start:
            raise AlignmentError(
                f"Empty alignment window [{window_start:.3f}, {window_end:.3f}]", retryable=False
            )

        pieces = subdivide(window_start, window_end, [text_weight(u.text) for u in units])
        result = AlignmentResult(method=self.name)
        result.synced = [(unit.id, start, end) for unit, (start, end) in zip(units, pieces)]
        logger.info(f"Linear spread of {len(units)} units over [{window_start:.3f}, {window_end:.3f}]")
        return result


class AlignmentAdapter:
    """
    Runs an alignment strategy off the event loop and applies its result to a TimingStore.

    The store is written only after a complete result is in hand, and all of
    it is written in one synchronous step, so a failed, timed-out or cancelled
    run leaves the store exactly as it was.
    """

    def __init__(
        self,
        store: TimingStore,
        strategy: AlignmentStrategy,
        propagation: Optional[PropagationEngine] = None
    ):
        self.store = store
        self.strategy = strategy
        self.propagation = propagation or PropagationEngine()
        self._in_flight: Set[str] = set()

    def is_running(self, target: str) -> bool:
        return target in self._in_flight

    async def auto_sync(
        self,
        target: str,
        units: Sequence[SyncUnit],
        audio_path: str,
        options: Optional[AlignmentOptions] = None,
        strategy: Optional[AlignmentStrategy] = None
    ) -> AlignmentResult:
        """
        Aligns the units and replaces any previous timings for them.

        Args:
            target: Identifies the run (a page or document); a second call for
                    the same target while one is running is rejected.
            units: Units to align, all of one level, in document order.
            audio_path: Path to the audio resource.
            options: Language, window, word propagation and timeout.
            strategy: Overrides the adapter's strategy for this run.

        Returns:
            The applied AlignmentResult, with any invariant warnings attached.

        Raises:
            AlignmentInProgressError: If the target is already being aligned.
            AlignmentError: If the strategy fails or times out.
        """
        options = options or AlignmentOptions()
        strategy = strategy or self.strategy
        if target in self._in_flight:
            raise AlignmentInProgressError(f"Alignment for '{target}' is already running.")
        if not units:
            raise AlignmentError(f"Nothing to align for '{target}'.", retryable=False)

        self._in_flight.add(target)
        try:
            logger.info(f"Starting {strategy.name} alignment of {len(units)} units for '{target}'")
            # Private worker: a timed-out run is abandoned, not joined at loop shutdown
            executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix=f"align-{target}")
            loop = asyncio.get_running_loop()
            try:
                result = await asyncio.wait_for(
                    loop.run_in_executor(executor, strategy.align, list(units), audio_path, options),
                    timeout=options.timeout_seconds,
                )
            except asyncio.TimeoutError as e:
                logger.error(f"Alignment for '{target}' timed out after {options.timeout_seconds}s")
                raise AlignmentError(f"Alignment timed out after {options.timeout_seconds}s") from e
            except AlignmentError:
                raise
            except Exception as e:
                logger.error(f"Alignment for '{target}' failed: {e}", exc_info=True)
                raise AlignmentError(f"Alignment failed: {e}") from e
            finally:
                executor.shutdown(wait=False)

            self._apply(units, result, options)
            return result
        finally:
            self._in_flight.discard(target)

    def _apply(self, units: Sequence[SyncUnit], result: AlignmentResult, options: AlignmentOptions) -> None:
        unit_ids = {u.id for u in units}
        synced = [(uid, s, e) for uid, s, e in result.synced if uid in unit_ids]
        skipped = [uid for uid in result.skipped if uid in unit_ids]

        # Replace, never merge, earlier automatic results
        for unit in units:
            self.store.delete(unit.id)

        warnings = []
        for unit_id, start, end in synced:
            warnings.extend(self.store.upsert(unit_id, start, end))
            if options.propagate_words:
                warnings.extend(self.propagation.apply(self.store, unit_id, SyncLevel.WORD))
        for unit_id in skipped:
            self.store.mark_skipped(unit_id)

        result.warnings = warnings
        if warnings:
            logger.warning(f"Alignment applied with {len(warnings)} invariant warnings")
        logger.info(f"Applied {result.method} alignment: {len(synced)} synced, {len(skipped)} skipped")
