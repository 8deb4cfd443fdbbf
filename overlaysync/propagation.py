"""Derives child intervals from a parent interval by character-weighted subdivision."""

import logging
from typing import List, Optional, Sequence, Tuple

from .models import InvariantWarning, SyncLevel, SyncUnit, TimingEntry
from .timing_store import TimingStore
from .utils import round_ms, text_weight

logger = logging.getLogger(__name__)


def subdivide(start: float, end: float, weights: Sequence[float]) -> List[Tuple[float, float]]:
    """
    Splits [start, end] into contiguous pieces proportional to the weights.

    Boundaries are rounded to the millisecond from the cumulative weight, so
    rounding never accumulates: each piece ends exactly where the next one
    starts, and the last piece ends exactly at ``end``.

    Args:
        start: Interval start in seconds.
        end: Interval end in seconds.
        weights: One positive weight per piece, in order.

    Returns:
        A (start, end) pair per weight, or an empty list when the interval is
        empty or there are no weights.
    """
    if end <= start or not weights:
        return []

    total = float(sum(weights))
    duration = end - start
    pieces = []
    running = 0.0
    previous_boundary = round_ms(start)
    for i, weight in enumerate(weights):
        running += weight
        if i == len(weights) - 1:
            boundary = round_ms(end)
        else:
            boundary = round_ms(start + duration * running / total)
        pieces.append((previous_boundary, boundary))
        previous_boundary = boundary
    return pieces


class PropagationEngine:
    """Fills in finer levels from a synced coarser interval."""

    def propagate(self, parent: TimingEntry, children: Sequence[SyncUnit]) -> List[TimingEntry]:
        """
        Computes child intervals for one parent.

        Pure function: nothing is written.

        Args:
            parent: The parent's current entry (must be SYNCED).
            children: The parent's direct children in document order.

        Returns:
            One SYNCED TimingEntry per child, or an empty list when the parent
            is not synced or its interval is empty.
        """
        if not parent.is_synced or parent.end <= parent.start or not children:
            return []
        weights = [text_weight(child.text) for child in children]
        return [
            TimingEntry(child.id, start, end, parent.status)
            for child, (start, end) in zip(children, subdivide(parent.start, parent.end, weights))
        ]

    def apply(
        self,
        store: TimingStore,
        parent_id: str,
        down_to: Optional[SyncLevel] = SyncLevel.WORD
    ) -> List[InvariantWarning]:
        """
        Propagates a parent's interval into the store, level by level.

        Args:
            store: The timing store to write through.
            parent_id: The synced unit whose descendants are recomputed.
            down_to: Finest level to fill in; a paragraph propagated down to
                     WORD rewrites its sentences and their words.

        Returns:
            Invariant warnings produced by the writes.
        """
        parent_unit = store.unit(parent_id)
        if down_to is None or down_to.rank <= parent_unit.level.rank:
            return []

        children = store.children(parent_id)
        child_entries = self.propagate(store.get(parent_id), children)
        if not child_entries:
            return []

        warnings: List[InvariantWarning] = []
        for entry in child_entries:
            warnings.extend(store.upsert(entry.unit_id, entry.start, entry.end))
        logger.debug(f"Propagated {parent_id} into {len(child_entries)} {children[0].level.value}s")

        for child in children:
            warnings.extend(self.apply(store, child.id, down_to))
        return warnings
