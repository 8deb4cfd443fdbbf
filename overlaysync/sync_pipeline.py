"""Orchestrates document extraction, alignment, editing replays and persistence."""

import asyncio
import logging
import os
import time
import weakref
from dataclasses import dataclass, field
from typing import Any, List, Optional, Sequence

from .alignment import AlignmentAdapter, AlignmentStrategy
from .audio_decoder import AudioDecoder
from .document_reader import DocumentReader
from .exceptions import AlignmentError, AlignmentInProgressError, OverlaySyncError, FileSystemError, UserInputError
from .exclusion import ExclusionPolicy
from .models import AlignmentOptions, AlignmentResult, InvariantWarning, SyncBlock, SyncLevel
from .persistence import JsonSyncBlockRepository, SyncBlockRepository
from .propagation import PropagationEngine
from .region_session import (
    DeleteUnit, DragEnd, DragMove, DragStart, MarkPress, MarkRelease,
    RegionSession, StartRecording, StopRecording, Undo
)
from .serializer import SyncBlockSerializer
from .silence_snapper import SilenceSnapper
from .timing_store import TimingStore
from .transport import SimulatedTransport
from .unit_extractor import DocumentUnitExtractor
from .utils import format_clock_time

logger = logging.getLogger(__name__)


@dataclass
class SyncRunSummary:
    """What a pipeline run produced."""
    document_id: str
    output_path: Optional[str] = None
    method: Optional[str] = None
    blocks: List[SyncBlock] = field(default_factory=list)
    skipped: List[str] = field(default_factory=list)
    orphaned: List[str] = field(default_factory=list)
    warnings: List[InvariantWarning] = field(default_factory=list)
    diagnostics: List[str] = field(default_factory=list)


def parse_session_script(items: Sequence[Any]) -> List[Any]:
    """
    Turns a recorded mark script (as loaded from YAML) into session commands.

    Each item is a single-key mapping:
        {"start": 1}                              start recording page 1
        {"mark": [1.0, 2.0]}                      press at 1.0, release at 2.0
        {"drag": {"unit": "p1_s2", "start": 2.5, "end": 3.1}}
        {"delete": "p1_s3"}, {"undo": true}, {"stop": true}

    Raises:
        UserInputError: If an item is not understood.
    """
    commands: List[Any] = []
    for index, item in enumerate(items or []):
        if not isinstance(item, dict) or len(item) != 1:
            raise UserInputError(f"Script item {index} must be a single-key mapping, got {item!r}")
        action, value = next(iter(item.items()))
        try:
            if action == "start":
                commands.append(StartRecording(int(value)))
            elif action == "mark":
                mark_in, mark_out = value
                commands.extend([MarkPress(float(mark_in)), MarkRelease(float(mark_out))])
            elif action == "drag":
                commands.extend([
                    DragStart(str(value["unit"])),
                    DragMove(float(value["start"]), float(value["end"])),
                    DragEnd(),
                ])
            elif action == "delete":
                commands.append(DeleteUnit(str(value)))
            elif action == "undo":
                commands.append(Undo())
            elif action == "stop":
                commands.append(StopRecording())
            else:
                raise UserInputError(f"Unknown script action '{action}' in item {index}")
        except (TypeError, ValueError, KeyError) as e:
            raise UserInputError(f"Malformed script item {index} ({item!r}): {e}") from e
    return commands


class SyncPipeline:
    """
    Manages the end-to-end process of producing sync blocks for one document.
    """

    def __init__(
        self,
        config: dict,
        strategy: Optional[AlignmentStrategy],
        fallback_strategy: Optional[AlignmentStrategy] = None,
        audio_decoder: Optional[AudioDecoder] = None,
        repository: Optional[SyncBlockRepository] = None,
        reader: Optional[DocumentReader] = None
    ):
        """
        Initializes the SyncPipeline.

        Args:
            config: A dictionary containing configuration settings.
            strategy: The primary alignment strategy, or None when it could not be set up.
            fallback_strategy: Used when the primary strategy is missing or fails
                               and 'fallback_to_linear' is set.
            audio_decoder: Decodes audio for silence snapping during replays.
            repository: Where sync blocks are saved; defaults to JSON files in output_dir.
            reader: Reads source documents.
        """
        self.config = config
        self.strategy = strategy
        self.fallback_strategy = fallback_strategy
        self.audio_decoder = audio_decoder or AudioDecoder(
            ffmpeg_path=config.get('ffmpeg_path'),
            sample_rate=int(config.get('sample_rate', 16000))
        )
        self.output_dir = config.get('output_dir', 'sync_blocks')
        self.repository = repository or JsonSyncBlockRepository(self.output_dir)
        self.reader = reader or DocumentReader()

        self.exclusion_policy = ExclusionPolicy.from_config(config)
        self.extractor = DocumentUnitExtractor(self.exclusion_policy)
        self.serializer = SyncBlockSerializer(self.exclusion_policy)
        self.propagation = PropagationEngine()
        self.granularity = SyncLevel.parse(config.get('granularity', 'sentence'))
        # One adapter per store so its in-flight guard spans calls
        self._adapters = weakref.WeakKeyDictionary()

        if self.strategy is None and self.fallback_strategy is None:
            raise OverlaySyncError("No alignment strategy available.")

    # --- Building blocks ---

    def load_document(self, document_path: str, diagnostics: Optional[List[str]] = None) -> TimingStore:
        """
        Reads and extracts a document into a fresh TimingStore.

        Raises:
            FileNotFoundError: If the document does not exist.
            ExtractionError: If the document cannot be read at all.
        """
        document = self.reader.read_file(document_path)
        result = self.extractor.extract(document)
        for message in result.diagnostics:
            logger.warning(f"Extraction: {message}")
        if diagnostics is not None:
            diagnostics.extend(result.diagnostics)
        return TimingStore(result.units, sibling_tolerance=float(self.config.get('sibling_tolerance', 0.05)))

    def restore_saved(
        self,
        store: TimingStore,
        document_id: str,
        repository: Optional[SyncBlockRepository] = None
    ) -> List[str]:
        """Loads previously saved blocks into the store; returns ids that did not attach."""
        blocks = (repository or self.repository).load_sync_blocks(document_id)
        if not blocks:
            return []
        _, orphaned = self.serializer.restore(store, blocks)
        return orphaned

    def auto_sync(
        self,
        store: TimingStore,
        audio_path: str,
        target: str,
        page_number: Optional[int] = None,
        window_start: float = 0.0,
        window_end: Optional[float] = None
    ) -> AlignmentResult:
        """
        Aligns every unit at the configured granularity (optionally one page).

        Falls back to linear spread when the primary strategy is missing or
        fails and the configuration allows it.

        Raises:
            UserInputError: If there is nothing to align.
            AlignmentInProgressError: If the same target is already being aligned on this store.
            AlignmentError: If alignment fails and no fallback applies.
        """
        units = store.units_on_page(page_number, self.granularity) if page_number is not None \
            else store.units(self.granularity)
        if not units:
            raise UserInputError(f"No {self.granularity.value} units to align.")

        options = AlignmentOptions(
            language=self.config.get('language', 'en'),
            window_start=window_start,
            window_end=window_end,
            propagate_words=bool(self.config.get('show_word_track', True)),
            timeout_seconds=self.config.get('alignment_timeout_seconds'),
        )
        fallback_allowed = bool(self.config.get('fallback_to_linear', True)) and self.fallback_strategy is not None

        if self.strategy is not None:
            try:
                return self._run_alignment(self.strategy, store, units, audio_path, target, options)
            except AlignmentInProgressError:
                raise
            except AlignmentError as e:
                if not fallback_allowed or self.fallback_strategy is self.strategy:
                    raise
                logger.warning(f"{self.strategy.name} alignment failed ({e}); falling back to {self.fallback_strategy.name}")
        else:
            logger.warning(f"Primary alignment unavailable; using {self.fallback_strategy.name}")
        return self._run_alignment(self.fallback_strategy, store, units, audio_path, target, options)

    def adapter_for(self, store: TimingStore) -> AlignmentAdapter:
        """The alignment adapter bound to `store`, created on first use."""
        adapter = self._adapters.get(store)
        if adapter is None:
            adapter = AlignmentAdapter(store, self.strategy or self.fallback_strategy, self.propagation)
            self._adapters[store] = adapter
        return adapter

    def _run_alignment(self, strategy, store, units, audio_path, target, options) -> AlignmentResult:
        adapter = self.adapter_for(store)
        return asyncio.run(adapter.auto_sync(target, units, audio_path, options, strategy=strategy))

    def create_session(self, store: TimingStore, audio_path: str) -> RegionSession:
        """A RegionSession over a simulated transport, snapping to the decoded audio."""
        snapper = None
        duration = None
        if self.config.get('snap_to_silence', True):
            audio = self.audio_decoder.decode(audio_path)
            duration = audio.duration
            snapper = SilenceSnapper(
                audio,
                window_ms=float(self.config.get('snap_window_ms', 100)),
                threshold=float(self.config.get('snap_threshold', 0.1)),
            )
        else:
            duration = self.audio_decoder.probe_duration(audio_path)
        transport = SimulatedTransport(duration=duration)
        return RegionSession(store, transport, snapper, self.propagation, self.config)

    def replay_script(self, store: TimingStore, audio_path: str, script: Sequence[Any]) -> List[InvariantWarning]:
        """
        Replays a recorded mark script against the store.

        Rejected marks are logged and the replay continues; user-input errors
        stop the replay.
        """
        session = self.create_session(store, audio_path)
        warnings: List[InvariantWarning] = []
        for command in parse_session_script(script):
            outcome = session.handle(command)
            if isinstance(command, MarkRelease):
                if outcome.accepted:
                    warnings.extend(outcome.warnings)
                else:
                    logger.info(f"Mark for {outcome.unit_id} discarded ({outcome.reason})")
            elif isinstance(command, DragEnd):
                warnings.extend(outcome)
        return warnings

    # --- End to end ---

    def run(
        self,
        document_path: str,
        audio_path: str,
        document_id: Optional[str] = None,
        output_dir: Optional[str] = None,
        window_start: float = 0.0,
        window_end: Optional[float] = None,
        script: Optional[Sequence[Any]] = None
    ) -> SyncRunSummary:
        """
        Executes the full pipeline for one document/audio pair.

        With a script, the recorded marks are replayed instead of running
        automatic alignment.

        Args:
            document_path: XHTML or YAML/JSON document to sync.
            audio_path: Narration audio for the document.
            document_id: Key the blocks are saved under; defaults to the document's file stem.
            output_dir: Overrides the configured output directory.
            window_start: Start of the audio window used by alignment.
            window_end: End of the audio window; defaults to the full duration.
            script: Optional mark script to replay.

        Returns:
            A SyncRunSummary of the run.

        Raises:
            OverlaySyncError: For any configuration or processing errors in the pipeline.
            FileNotFoundError: If an input file is not found.
        """
        start_time = time.time()
        document_id = document_id or os.path.splitext(os.path.basename(document_path))[0]
        logger.info(f"--- Starting OverlaySync process for: {document_path} ---")
        if not os.path.isfile(audio_path):
            raise FileNotFoundError(f"Audio file not found: {audio_path}")

        repository = self.repository
        if output_dir and output_dir != self.output_dir:
            repository = JsonSyncBlockRepository(output_dir)
        summary = SyncRunSummary(document_id=document_id)

        try:
            # 1. Extract units
            logger.info("Step 1: Extracting syncable units...")
            store = self.load_document(document_path, summary.diagnostics)
            if len(store) == 0:
                raise OverlaySyncError(f"No syncable units found in {document_path}.")
            logger.info(f"Extracted {len(store)} units.")

            # 2. Previously saved timings
            logger.info("Step 2: Restoring saved sync blocks...")
            summary.orphaned = self.restore_saved(store, document_id, repository)

            # 3. Sync
            if script is not None:
                logger.info("Step 3: Replaying recorded marks...")
                summary.warnings = self.replay_script(store, audio_path, script)
                summary.method = "manual"
            else:
                logger.info("Step 3: Aligning text to audio...")
                result = self.auto_sync(store, audio_path, document_id,
                                        window_start=window_start, window_end=window_end)
                summary.method = result.method
                summary.skipped = list(result.skipped)
                summary.warnings = list(result.warnings)

            remaining = store.validate()
            if remaining:
                logger.warning(f"{len(remaining)} invariant warnings remain after sync")
                for warning in remaining[:10]:
                    logger.warning(f"  {warning.message}")

            # 4. Serialize and save
            logger.info("Step 4: Saving sync blocks...")
            summary.blocks = self.serializer.serialize(store)
            summary.output_path = repository.save_sync_blocks(
                document_id, summary.blocks, os.path.basename(audio_path), self.granularity.value
            )
            if summary.blocks:
                logger.info(f"Blocks span {format_clock_time(summary.blocks[0].start)} - "
                            f"{format_clock_time(max(b.end for b in summary.blocks))}")

            end_time = time.time()
            logger.info(f"--- OverlaySync process completed successfully in {end_time - start_time:.2f} seconds ---")
            return summary

        except (OverlaySyncError, FileNotFoundError, FileSystemError) as e:
            logger.error(f"OverlaySync process failed: {e}", exc_info=False)
            raise
        except Exception as e:
            logger.critical(f"An unexpected critical error occurred during sync: {e}", exc_info=True)
            raise OverlaySyncError(f"An unexpected critical error occurred: {e}") from e
