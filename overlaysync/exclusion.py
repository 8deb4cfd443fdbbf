"""Exclusion policy for content that is never narrated (TOC, navigation, page furniture)."""

import logging
import re
from typing import Iterable, List, Optional, Pattern

from .exceptions import ConfigurationError
from .models import SyncLevel

logger = logging.getLogger(__name__)

# Matched against unit identifiers.
DEFAULT_ID_PATTERNS = [
    r"toc",
    r"table-of-contents",
    r"contents",
    r"chapter-index",
    r"chapter-idx",
    r"^nav",
    r"^header",
    r"^footer",
    r"^sidebar",
    r"^menu",
    r"page-number",
    r"page-num",
    r"^skip",
    r"^metadata",
]

# Matched against the unit's whole (stripped) text.
DEFAULT_TEXT_PATTERNS = [
    r"^table\s+of\s+contents$",
    r"^contents$",
    r"^toc$",
    r"^\d+$", # bare page numbers
    r"^(chapter|section|part)\s+\d+\s*(\.\s*){2,}\s*\d+$", # "Chapter 1 ..... 5"
    r"^page\s+\d+(\s+of\s+\d+)?$",
]


class ExclusionPolicy:
    """Decides whether a unit is unspoken content that must never be synced."""

    def __init__(
        self,
        id_patterns: Optional[Iterable[str]] = None,
        text_patterns: Optional[Iterable[str]] = None,
        exclude_ids: Optional[Iterable[str]] = None,
        use_defaults: bool = True
    ):
        """
        Args:
            id_patterns: Extra regular expressions tested against unit ids.
            text_patterns: Extra regular expressions tested against unit text.
            exclude_ids: Explicit ids to exclude.
            use_defaults: Whether to include the built-in pattern set.
        """
        id_sources = (DEFAULT_ID_PATTERNS if use_defaults else []) + list(id_patterns or [])
        text_sources = (DEFAULT_TEXT_PATTERNS if use_defaults else []) + list(text_patterns or [])
        self.id_patterns: List[Pattern] = [re.compile(p, re.IGNORECASE) for p in id_sources]
        self.text_patterns: List[Pattern] = [re.compile(p, re.IGNORECASE) for p in text_sources]
        self.exclude_ids = set(exclude_ids or [])

    @classmethod
    def from_config(cls, config: dict) -> "ExclusionPolicy":
        try:
            return cls(
                id_patterns=config.get('exclude_id_patterns') or [],
                text_patterns=config.get('exclude_text_patterns') or [],
                exclude_ids=config.get('exclude_ids') or [],
                use_defaults=config.get('use_default_exclusions', True),
            )
        except re.error as e:
            raise ConfigurationError(f"Invalid exclusion pattern in configuration: {e}") from e

    def matches(self, unit_id: Optional[str], text: Optional[str], level: Optional[SyncLevel] = None) -> bool:
        """
        Returns True when the id or text identifies unspoken content.

        Text patterns describe whole blocks of page furniture, so they are only
        tested against paragraphs (or when no level is given). A word or
        sentence reading "1984" is narrated.
        """
        if unit_id and unit_id in self.exclude_ids:
            return True
        if unit_id and any(p.search(unit_id) for p in self.id_patterns):
            return True
        if level is not None and level is not SyncLevel.PARAGRAPH:
            return False
        stripped = (text or "").strip()
        if stripped and any(p.search(stripped) for p in self.text_patterns):
            return True
        return False
