"""Converts timing state into the flat sync block list consumed by EPUB generation."""

import logging
from typing import Dict, Iterable, List, Optional, Sequence, Tuple

from .exclusion import ExclusionPolicy
from .models import SyncBlock, SyncLevel
from .timing_store import TimingStore
from .utils import round_ms

logger = logging.getLogger(__name__)

class SyncBlockSerializer:
    """Builds, merges and restores sync blocks."""

    def __init__(self, exclusion_policy: Optional[ExclusionPolicy] = None):
        """
        Args:
            exclusion_policy: Applied again on output, for units that entered
                              the hierarchy before a pattern was added.
        """
        self.exclusion_policy = exclusion_policy

    def serialize(self, store: TimingStore, levels: Optional[Iterable[SyncLevel]] = None) -> List[SyncBlock]:
        """
        One block per SYNCED unit, ordered by start time.

        SKIPPED and UNSYNCED units are omitted. Ties on start keep document
        order, so output is stable across runs.

        Args:
            store: The timing store to read.
            levels: Only emit these levels; all levels when None.

        Returns:
            The ordered block list, times rounded to milliseconds.
        """
        wanted = set(levels) if levels is not None else None
        blocks: Dict[str, Tuple[int, SyncBlock]] = {}
        excluded = 0
        for entry in store.synced_entries():
            unit = store.unit(entry.unit_id)
            if wanted is not None and unit.level not in wanted:
                continue
            if self.exclusion_policy is not None and self.exclusion_policy.matches(unit.id, unit.text, unit.level):
                excluded += 1
                continue
            blocks[unit.id] = (unit.order, SyncBlock(
                unit_id=unit.id,
                level=unit.level,
                page_number=unit.page_number,
                start=round_ms(entry.start),
                end=round_ms(entry.end),
                text=unit.text,
            ))

        if excluded:
            logger.warning(f"Dropped {excluded} synced units matching exclusion patterns")
        ordered = sorted(blocks.values(), key=lambda item: (item[1].start, item[0], item[1].unit_id))
        result = [block for _, block in ordered]
        logger.info(f"Serialized {len(result)} sync blocks")
        return result

    @staticmethod
    def merge_blocks(*block_lists: Sequence[SyncBlock]) -> List[SyncBlock]:
        """
        Combines block lists, later lists overriding earlier ones by unit id.

        Returns:
            Deduplicated blocks ordered by start time.
        """
        merged: Dict[str, SyncBlock] = {}
        position: Dict[str, int] = {}
        for blocks in block_lists:
            for block in blocks:
                if block.unit_id not in position:
                    position[block.unit_id] = len(position)
                merged[block.unit_id] = block
        return sorted(merged.values(), key=lambda b: (b.start, position[b.unit_id]))

    def restore(self, store: TimingStore, blocks: Sequence[SyncBlock]) -> Tuple[int, List[str]]:
        """
        Writes persisted blocks back into a store by unit id.

        Coarser levels are written first so parents exist when their
        children are checked. Blocks for excluded units are not restored.

        Returns:
            The number of blocks attached, and the ids of blocks that match
            no unit in the document. Repeated ids count once.
        """
        attached = 0
        orphaned: List[str] = []
        # A hand-edited or merged file may repeat an id; the last block wins
        for block in sorted(self.merge_blocks(blocks), key=lambda b: b.level.rank):
            if block.unit_id not in store:
                orphaned.append(block.unit_id)
                continue
            unit = store.unit(block.unit_id)
            if self.exclusion_policy is not None and self.exclusion_policy.matches(unit.id, unit.text, unit.level):
                logger.debug(f"Not restoring excluded unit {unit.id}")
                continue
            if unit.level is not block.level:
                logger.warning(f"Block {block.unit_id} is a {block.level.value} but the unit is a "
                               f"{unit.level.value}; restoring by id")
            store.upsert(block.unit_id, block.start, block.end)
            attached += 1

        if orphaned:
            logger.warning(f"{len(orphaned)} saved blocks did not attach to any unit "
                           f"(first: {orphaned[0]}). Was the document re-extracted with different ids?")
        logger.info(f"Restored {attached} sync blocks")
        return attached, orphaned
