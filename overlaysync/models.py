"""Data models for OverlaySync."""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple

import numpy as np


class SyncLevel(Enum):
    """Hierarchy level of a syncable unit, coarsest first."""
    PARAGRAPH = "paragraph"
    SENTENCE = "sentence"
    WORD = "word"

    @property
    def rank(self) -> int:
        return _LEVEL_RANK[self]

    @property
    def child_level(self) -> Optional["SyncLevel"]:
        """The next finer level, or None for words."""
        return _LEVEL_ORDER[self.rank + 1] if self.rank + 1 < len(_LEVEL_ORDER) else None

    @property
    def parent_level(self) -> Optional["SyncLevel"]:
        """The next coarser level, or None for paragraphs."""
        return _LEVEL_ORDER[self.rank - 1] if self.rank > 0 else None

    @classmethod
    def parse(cls, value: Any) -> "SyncLevel":
        """Accepts an enum member or its (case-insensitive) name/value."""
        if isinstance(value, cls):
            return value
        try:
            return cls(str(value).strip().lower())
        except ValueError:
            raise ValueError(f"Unknown sync level: {value!r}") from None


_LEVEL_ORDER = (SyncLevel.PARAGRAPH, SyncLevel.SENTENCE, SyncLevel.WORD)
_LEVEL_RANK = {level: i for i, level in enumerate(_LEVEL_ORDER)}


class SyncStatus(Enum):
    UNSYNCED = "unsynced"
    SYNCED = "synced"
    SKIPPED = "skipped"


@dataclass(frozen=True)
class SyncUnit:
    """One syncable span of document text."""
    id: str
    level: SyncLevel
    parent_id: Optional[str]
    text: str
    page_number: int
    order: int = 0 # Position in document order, assigned at extraction


@dataclass(frozen=True)
class TimingEntry:
    """Sync state of one unit. Instances are never mutated; writes replace them."""
    unit_id: str
    start: Optional[float] = None
    end: Optional[float] = None
    status: SyncStatus = SyncStatus.UNSYNCED

    @property
    def is_synced(self) -> bool:
        return self.status is SyncStatus.SYNCED

    @property
    def duration(self) -> float:
        if self.start is None or self.end is None:
            return 0.0
        return self.end - self.start


@dataclass(frozen=True)
class InvariantWarning:
    """A containment or ordering problem detected on write. Advisory only."""
    unit_id: str
    kind: str
    message: str
    related_id: Optional[str] = None


@dataclass
class SyncBlock:
    """One persisted unit interval, as consumed by EPUB generation."""
    unit_id: str
    level: SyncLevel
    page_number: int
    start: float
    end: float
    text: str

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for JSON export."""
        return {
            "id": self.unit_id,
            "level": self.level.value,
            "pageNumber": self.page_number,
            "start": round(self.start, 3),
            "end": round(self.end, 3),
            "text": self.text,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "SyncBlock":
        return cls(
            unit_id=str(data["id"]),
            level=SyncLevel.parse(data["level"]),
            page_number=int(data.get("pageNumber", 1)),
            start=float(data["start"]),
            end=float(data["end"]),
            text=data.get("text", ""),
        )


@dataclass
class ExtractionResult:
    """Units extracted from a document plus any diagnostics about skipped input."""
    units: List[SyncUnit] = field(default_factory=list)
    diagnostics: List[str] = field(default_factory=list)


@dataclass
class AudioBuffer:
    """Decoded mono audio, amplitudes normalized to [-1, 1]."""
    sample_rate: int
    samples: np.ndarray

    @property
    def duration(self) -> float:
        if self.sample_rate <= 0:
            return 0.0
        return len(self.samples) / float(self.sample_rate)


@dataclass
class AlignedSegment:
    """A unit located in the audio by an alignment service."""
    unit_id: str
    start: float
    end: float


@dataclass
class AlignmentTranscript:
    """Raw output of an alignment service."""
    segments: List[AlignedSegment] = field(default_factory=list)
    skipped_ids: List[str] = field(default_factory=list)
    language: Optional[str] = None


@dataclass
class AlignmentResult:
    """Normalized output of an alignment strategy, ready to apply to the timing store."""
    synced: List[Tuple[str, float, float]] = field(default_factory=list)
    skipped: List[str] = field(default_factory=list)
    method: str = ""
    warnings: List[InvariantWarning] = field(default_factory=list) # Filled in when applied to a store


@dataclass
class AlignmentOptions:
    language: str = "en"
    window_start: float = 0.0
    window_end: Optional[float] = None # None means the full audio duration
    propagate_words: bool = True
    timeout_seconds: Optional[float] = None
