"""Reads source documents into the tagged tree consumed by DocumentUnitExtractor."""

import logging
import os
import re
from typing import Any, Dict, List, Optional

import yaml
from bs4 import BeautifulSoup, Tag

from .exceptions import ExtractionError
from .models import SyncLevel

logger = logging.getLogger(__name__)

XHTML_EXTENSIONS = ('.xhtml', '.html', '.htm')
TREE_EXTENSIONS = ('.yaml', '.yml', '.json')

_SYNC_CLASSES = {
    'sync-word': SyncLevel.WORD,
    'sync-sentence': SyncLevel.SENTENCE,
    'sync-paragraph': SyncLevel.PARAGRAPH,
}
_WORD_ID = re.compile(r"_w\d+$")
_SENTENCE_ID = re.compile(r"_s\d+$")


class DocumentReader:
    """
    Loads a document from disk.

    XHTML sections (as produced by the PDF-to-XHTML conversion) are walked
    with BeautifulSoup; YAML or JSON files are expected to already contain
    the tagged tree.
    """

    def read_file(self, path: str) -> Dict[str, Any]:
        """
        Reads one document file.

        Args:
            path: Path to an .xhtml/.html file or a .yaml/.yml/.json tree.

        Returns:
            The tagged tree ({"pages": [...]}).

        Raises:
            FileNotFoundError: If the file does not exist.
            ExtractionError: If the file cannot be read or parsed.
        """
        logger.info(f"Reading document: {path}")
        if not os.path.isfile(path):
            raise FileNotFoundError(f"Document file not found: {path}")

        ext = os.path.splitext(path)[1].lower()
        try:
            with open(path, 'r', encoding='utf-8') as f:
                content = f.read()
        except (IOError, UnicodeDecodeError) as e:
            logger.error(f"Could not read document {path}: {e}", exc_info=True)
            raise ExtractionError(f"Could not read document {path}: {e}") from e

        if ext in XHTML_EXTENSIONS:
            return self.read_xhtml_sections([content])
        if ext in TREE_EXTENSIONS:
            try:
                data = yaml.safe_load(content)
            except yaml.YAMLError as e:
                raise ExtractionError(f"Invalid document tree in {path}: {e}") from e
            # A bare list is taken as the page list
            if isinstance(data, list):
                return {"pages": data}
            return data
        raise ExtractionError(f"Unsupported document type '{ext}' for {path}")

    def read_xhtml_sections(self, sections: List[str]) -> Dict[str, Any]:
        """
        Builds the tagged tree from XHTML sections, one page per section.

        Syncable elements carry data-read-aloud="true" or one of the sync-*
        classes. An element nests under the closest syncable ancestor; orphan
        sentences and words get a synthetic parent so the hierarchy stays
        one level per step.
        """
        pages = []
        for index, xhtml in enumerate(sections):
            soup = BeautifulSoup(xhtml or "", "lxml")
            nodes = self._build_nodes(soup)
            pages.append({"number": index + 1, "nodes": nodes})
            logger.debug(f"Section {index + 1}: {len(nodes)} top-level nodes")
        return {"pages": pages}

    def _build_nodes(self, soup: BeautifulSoup) -> List[Dict[str, Any]]:
        roots: List[Dict[str, Any]] = []
        node_for: Dict[int, Dict[str, Any]] = {}

        for el in soup.find_all(self._is_syncable):
            level = self._level_of(el)
            read_aloud = (el.get('data-read-aloud') or '').lower()
            should_sync = (el.get('data-should-sync') or '').lower()
            node = {
                "id": el.get('id'),
                "level": level.value,
                "readable": read_aloud != 'false' and should_sync != 'false',
                "text": el.get_text(" ", strip=True),
                "children": [],
            }
            node_for[id(el)] = node

            parent_node = None
            for ancestor in el.parents:
                if id(ancestor) in node_for:
                    parent_node = node_for[id(ancestor)]
                    break

            if parent_node is None:
                roots.append(self._wrap(node, level, SyncLevel.PARAGRAPH))
            else:
                parent_level = SyncLevel.parse(parent_node["level"])
                if level.rank <= parent_level.rank:
                    # Same-or-coarser level nested inside another unit: treat as a sibling
                    logger.debug(f"Element {node['id']} nested under a {parent_level.value}; kept at top level.")
                    roots.append(self._wrap(node, level, SyncLevel.PARAGRAPH))
                else:
                    parent_node["children"].append(self._wrap(node, level, parent_level.child_level))
        return roots

    def _wrap(self, node: Dict[str, Any], level: SyncLevel, target: Optional[SyncLevel]) -> Dict[str, Any]:
        """Wraps node in synthetic (id-less) parents until it sits at the target level."""
        while target is not None and level.rank > target.rank:
            level = level.parent_level
            node = {"level": level.value, "readable": node["readable"], "children": [node]}
        return node

    @staticmethod
    def _is_syncable(el: Tag) -> bool:
        if not el.get('id'):
            return False
        if el.get('data-read-aloud') is not None:
            return True
        classes = el.get('class') or []
        return any(c in _SYNC_CLASSES for c in classes)

    @staticmethod
    def _level_of(el: Tag) -> SyncLevel:
        classes = el.get('class') or []
        for css_class, level in _SYNC_CLASSES.items():
            if css_class in classes:
                return level
        el_id = el.get('id') or ''
        if _WORD_ID.search(el_id):
            return SyncLevel.WORD
        if _SENTENCE_ID.search(el_id):
            return SyncLevel.SENTENCE
        return SyncLevel.PARAGRAPH
