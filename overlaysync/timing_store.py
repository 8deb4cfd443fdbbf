"""Authoritative map from unit id to timing state, with invariant checks on every write."""

import logging
from dataclasses import dataclass
from types import MappingProxyType
from typing import Dict, Iterable, List, Mapping, Optional

from .exceptions import DuplicateUnitError, UnknownUnitError
from .models import InvariantWarning, SyncLevel, SyncStatus, SyncUnit, TimingEntry

logger = logging.getLogger(__name__)

# Differences below this are float noise, not real overlaps.
EPSILON = 0.0005


@dataclass(frozen=True)
class StoreSnapshot:
    """Full copy of every entry, taken for undo."""
    entries: Mapping[str, TimingEntry]


class TimingStore:
    """
    Owns the TimingEntry of every unit in a document.

    All other components read and write timings only through this class so
    containment and sibling ordering can be checked at every write. Entries
    are frozen dataclasses; a read hands out the stored instance, which no
    caller can modify.
    """

    def __init__(self, units: Iterable[SyncUnit], sibling_tolerance: float = 0.05):
        """
        Args:
            units: The extracted units, in document order.
            sibling_tolerance: Sibling overlap (seconds) flagged as tolerated
                               rather than as a violation.
        """
        self.sibling_tolerance = sibling_tolerance
        self._units: Dict[str, SyncUnit] = {}
        self._children: Dict[Optional[str], List[str]] = {}
        for unit in sorted(units, key=lambda u: u.order):
            if unit.id in self._units:
                raise DuplicateUnitError(f"Duplicate unit id in document: {unit.id}")
            self._units[unit.id] = unit
            self._children.setdefault(unit.parent_id, []).append(unit.id)
        self._entries: Dict[str, TimingEntry] = {uid: TimingEntry(uid) for uid in self._units}
        logger.debug(f"Timing store created for {len(self._units)} units")

    # --- Unit hierarchy (read-only) ---

    def __contains__(self, unit_id: str) -> bool:
        return unit_id in self._units

    def __len__(self) -> int:
        return len(self._units)

    def unit(self, unit_id: str) -> SyncUnit:
        try:
            return self._units[unit_id]
        except KeyError:
            raise UnknownUnitError(f"Unknown unit id: {unit_id}") from None

    def units(self, level: Optional[SyncLevel] = None) -> List[SyncUnit]:
        """All units in document order, optionally of a single level."""
        return [u for u in self._units.values() if level is None or u.level is level]

    def units_on_page(self, page_number: int, level: Optional[SyncLevel] = None) -> List[SyncUnit]:
        return [u for u in self.units(level) if u.page_number == page_number]

    def children(self, unit_id: Optional[str]) -> List[SyncUnit]:
        """Direct children of a unit (or the top-level paragraphs for None), in document order."""
        return [self._units[cid] for cid in self._children.get(unit_id, [])]

    def descendants(self, unit_id: str) -> List[SyncUnit]:
        result = []
        for child in self.children(unit_id):
            result.append(child)
            result.extend(self.descendants(child.id))
        return result

    # --- Reads ---

    def get(self, unit_id: str) -> TimingEntry:
        self.unit(unit_id)
        return self._entries[unit_id]

    def entries(self) -> List[TimingEntry]:
        """All entries in document order."""
        return [self._entries[uid] for uid in self._units]

    def synced_entries(self, level: Optional[SyncLevel] = None) -> List[TimingEntry]:
        return [
            self._entries[u.id] for u in self.units(level)
            if self._entries[u.id].is_synced
        ]

    def unit_at_time(self, time: float, level: Optional[SyncLevel] = None) -> Optional[SyncUnit]:
        """
        The finest synced unit whose interval contains the playback time.

        Used to drive active-unit highlighting; a pure read.
        """
        best: Optional[SyncUnit] = None
        for unit in self.units(level):
            entry = self._entries[unit.id]
            if entry.is_synced and entry.start <= time < entry.end:
                if best is None or unit.level.rank > best.level.rank:
                    best = unit
        return best

    # --- Writes ---

    def upsert(
        self,
        unit_id: str,
        start: float,
        end: float,
        status: SyncStatus = SyncStatus.SYNCED
    ) -> List[InvariantWarning]:
        """
        Writes a unit's interval.

        The write always happens; invariant problems are returned for the
        caller to surface, because editing has to stay fluid.

        Args:
            unit_id: The unit to write.
            start: Interval start in seconds.
            end: Interval end in seconds.
            status: New status, normally SYNCED.

        Returns:
            Warnings for every containment or ordering invariant the new
            state violates around this unit.

        Raises:
            UnknownUnitError: If the id does not belong to the document.
        """
        self.unit(unit_id)
        self._entries[unit_id] = TimingEntry(unit_id, float(start), float(end), status)
        warnings = self.validate_unit(unit_id)
        for warning in warnings:
            logger.debug(f"Invariant warning on {unit_id}: {warning.message}")
        return warnings

    def mark_skipped(self, unit_id: str) -> None:
        """Marks a unit as absent from the audio. It keeps no interval."""
        self.unit(unit_id)
        self._entries[unit_id] = TimingEntry(unit_id, status=SyncStatus.SKIPPED)

    def reset(self, unit_id: str) -> None:
        """Returns a single unit to UNSYNCED without touching its descendants."""
        self.unit(unit_id)
        self._entries[unit_id] = TimingEntry(unit_id)

    def delete(self, unit_id: str) -> List[str]:
        """
        Clears the timing of a unit and everything beneath it.

        Deleting a sentence clears its words; deleting a paragraph clears its
        sentences and their words. The units themselves stay in the document.

        Returns:
            The ids whose timing was cleared.
        """
        self.unit(unit_id)
        cleared = [unit_id] + [d.id for d in self.descendants(unit_id)]
        for uid in cleared:
            self._entries[uid] = TimingEntry(uid)
        logger.debug(f"Deleted timing for {unit_id} ({len(cleared) - 1} descendants)")
        return cleared

    def reset_page(self, page_number: int) -> int:
        """Clears every interval on a page; returns how many units were affected."""
        page_units = self.units_on_page(page_number)
        for unit in page_units:
            self._entries[unit.id] = TimingEntry(unit.id)
        return len(page_units)

    # --- Undo support ---

    def snapshot(self) -> StoreSnapshot:
        return StoreSnapshot(MappingProxyType(dict(self._entries)))

    def restore(self, snapshot: StoreSnapshot) -> None:
        """Swaps in a previously taken snapshot. Ids not in the document are ignored."""
        restored = {uid: TimingEntry(uid) for uid in self._units}
        for uid, entry in snapshot.entries.items():
            if uid in restored:
                restored[uid] = entry
            else:
                logger.warning(f"Snapshot entry for unknown unit {uid} ignored on restore")
        self._entries = restored

    # --- Invariant checks ---

    def validate_unit(self, unit_id: str) -> List[InvariantWarning]:
        """Checks interval validity, containment and sibling ordering around one unit."""
        entry = self._entries[unit_id]
        if not entry.is_synced:
            return []

        unit = self._units[unit_id]
        warnings: List[InvariantWarning] = []

        if entry.start < 0 or entry.start >= entry.end:
            warnings.append(InvariantWarning(
                unit_id, "invalid_interval",
                f"{unit_id}: interval [{entry.start:.3f}, {entry.end:.3f}] is empty or negative",
            ))

        if unit.parent_id is not None:
            parent = self._entries[unit.parent_id]
            if parent.is_synced and not self._contains(parent, entry):
                warnings.append(InvariantWarning(
                    unit_id, "outside_parent",
                    f"{unit_id} [{entry.start:.3f}, {entry.end:.3f}] is not inside parent "
                    f"{unit.parent_id} [{parent.start:.3f}, {parent.end:.3f}]",
                    related_id=unit.parent_id,
                ))

        for child in self.children(unit_id):
            child_entry = self._entries[child.id]
            if child_entry.is_synced and not self._contains(entry, child_entry):
                warnings.append(InvariantWarning(
                    unit_id, "child_outside",
                    f"child {child.id} [{child_entry.start:.3f}, {child_entry.end:.3f}] falls outside "
                    f"{unit_id} [{entry.start:.3f}, {entry.end:.3f}]",
                    related_id=child.id,
                ))

        warnings.extend(self._sibling_warnings(unit))
        return warnings

    def validate(self) -> List[InvariantWarning]:
        """Document-wide scan: every warning that upserting each synced unit would report."""
        warnings: List[InvariantWarning] = []
        for unit in self._units.values():
            entry = self._entries[unit.id]
            if not entry.is_synced:
                continue
            for warning in self.validate_unit(unit.id):
                # Pair warnings are reported once, from the earlier unit
                if warning.kind.startswith("sibling") and warning.related_id is not None \
                        and self._units[warning.related_id].order < unit.order:
                    continue
                if warning.kind == "child_outside":
                    continue
                warnings.append(warning)
        return warnings

    def _sibling_warnings(self, unit: SyncUnit) -> List[InvariantWarning]:
        entry = self._entries[unit.id]
        warnings = []
        for sibling_id in self._children.get(unit.parent_id, []):
            other = self._entries[sibling_id]
            if sibling_id == unit.id or not other.is_synced:
                continue
            # the earlier sibling in document order must end before the later one starts
            first, second = (other, entry) if self._units[sibling_id].order < unit.order else (entry, other)
            overlap = first.end - second.start
            if overlap <= EPSILON:
                continue
            kind = "sibling_overlap_tolerated" if overlap <= self.sibling_tolerance else "sibling_overlap"
            warnings.append(InvariantWarning(
                unit.id, kind,
                f"{first.unit_id} and {second.unit_id} overlap by {overlap * 1000:.0f}ms",
                related_id=sibling_id,
            ))
        return warnings

    @staticmethod
    def _contains(outer: TimingEntry, inner: TimingEntry) -> bool:
        return outer.start - EPSILON <= inner.start and inner.end <= outer.end + EPSILON
