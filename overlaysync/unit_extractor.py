"""Turns a tagged document tree into the ordered paragraph/sentence/word unit hierarchy."""

import logging
from typing import Any, Optional, Set

from .exclusion import ExclusionPolicy
from .models import ExtractionResult, SyncLevel, SyncUnit

logger = logging.getLogger(__name__)

_ID_SUFFIX = {
    SyncLevel.PARAGRAPH: "p",
    SyncLevel.SENTENCE: "s",
    SyncLevel.WORD: "w",
}


class DocumentUnitExtractor:
    """
    Walks an already-tagged document and produces SyncUnits in document order.

    The expected input is::

        {"pages": [{"number": 1, "nodes": [
            {"id": "page1_p1", "level": "paragraph", "readable": true,
             "text": "...", "children": [...]}
        ]}]}

    Nodes without an id get one derived from their position, so extracting
    the same document twice always yields the same identifiers.
    """

    def __init__(self, exclusion_policy: Optional[ExclusionPolicy] = None):
        self.exclusion_policy = exclusion_policy or ExclusionPolicy()

    def extract(self, document: Any) -> ExtractionResult:
        """
        Extracts syncable units from a tagged document.

        Args:
            document: The tagged tree (mapping with a "pages" list).

        Returns:
            An ExtractionResult. Malformed input produces an empty unit list
            and a diagnostic instead of an exception.
        """
        result = ExtractionResult()
        if not isinstance(document, dict) or not isinstance(document.get("pages"), list):
            message = "Document is not a mapping with a 'pages' list; nothing extracted."
            logger.warning(message)
            result.diagnostics.append(message)
            return result

        seen_ids: Set[str] = set()
        excluded = 0
        for page_index, page in enumerate(document["pages"]):
            if not isinstance(page, dict):
                result.diagnostics.append(f"Page {page_index + 1} is not a mapping; skipped.")
                continue
            try:
                page_number = int(page.get("number", page_index + 1))
            except (TypeError, ValueError):
                result.diagnostics.append(f"Page {page_index + 1} has an invalid number {page.get('number')!r}; using position.")
                page_number = page_index + 1

            nodes = page.get("nodes") or []
            if not isinstance(nodes, list):
                result.diagnostics.append(f"Page {page_number} 'nodes' is not a list; skipped.")
                continue

            paragraph_index = 0
            for node in nodes:
                paragraph_index += 1
                excluded += self._walk(
                    node,
                    expected_level=SyncLevel.PARAGRAPH,
                    parent_id=None,
                    fallback_id=f"page{page_number}_{_ID_SUFFIX[SyncLevel.PARAGRAPH]}{paragraph_index}",
                    page_number=page_number,
                    seen_ids=seen_ids,
                    result=result,
                )

        if excluded:
            logger.info(f"Excluded {excluded} unspoken elements (TOC, headers, etc.)")
        if not result.units:
            logger.warning("No syncable units found in document.")
        else:
            logger.info(f"Extracted {len(result.units)} syncable units across {len(document['pages'])} pages.")
        return result

    def _walk(
        self,
        node: Any,
        expected_level: SyncLevel,
        parent_id: Optional[str],
        fallback_id: str,
        page_number: int,
        seen_ids: Set[str],
        result: ExtractionResult
    ) -> int:
        """Adds the node and its descendants; returns how many units were excluded."""
        if not isinstance(node, dict):
            result.diagnostics.append(f"Non-mapping node under {parent_id or 'page ' + str(page_number)}; skipped.")
            return 0

        try:
            level = SyncLevel.parse(node.get("level", expected_level.value))
        except ValueError as e:
            result.diagnostics.append(f"{e} at {node.get('id') or fallback_id}; subtree skipped.")
            return 0
        if level is not expected_level:
            result.diagnostics.append(
                f"{node.get('id') or fallback_id} is a {level.value} where a {expected_level.value} was expected; subtree skipped."
            )
            return 0

        unit_id = str(node.get("id") or fallback_id)
        children = node.get("children") or []
        if not isinstance(children, list):
            result.diagnostics.append(f"{unit_id} has a non-list 'children'; children ignored.")
            children = []

        text = node.get("text")
        if text is None:
            text = " ".join(self._collect_text(c) for c in children).strip()
        text = " ".join(str(text).split())

        if not node.get("readable", True):
            logger.debug(f"Skipping non-readable element: {unit_id}")
            return 0
        if self.exclusion_policy.matches(unit_id, text, level):
            logger.debug(f"Excluding unspoken content: {unit_id} ({text[:30]}...)")
            return 1
        if unit_id in seen_ids:
            result.diagnostics.append(f"Duplicate unit id {unit_id}; later occurrence skipped.")
            return 0
        if not text:
            result.diagnostics.append(f"{unit_id} has no text; skipped.")
            return 0

        seen_ids.add(unit_id)
        result.units.append(SyncUnit(
            id=unit_id,
            level=level,
            parent_id=parent_id,
            text=text,
            page_number=page_number,
            order=len(result.units),
        ))

        excluded = 0
        child_level = level.child_level
        if child_level is None:
            if children:
                result.diagnostics.append(f"Word {unit_id} has children; they were ignored.")
            return excluded

        for child_index, child in enumerate(children, start=1):
            excluded += self._walk(
                child,
                expected_level=child_level,
                parent_id=unit_id,
                fallback_id=f"{unit_id}_{_ID_SUFFIX[child_level]}{child_index}",
                page_number=page_number,
                seen_ids=seen_ids,
                result=result,
            )
        return excluded

    def _collect_text(self, node: Any) -> str:
        if not isinstance(node, dict):
            return ""
        if node.get("text") is not None:
            return str(node["text"])
        children = node.get("children") or []
        if not isinstance(children, list):
            return ""
        return " ".join(self._collect_text(c) for c in children)
