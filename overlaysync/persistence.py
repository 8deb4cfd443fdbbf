"""Saves and loads sync block lists per document."""

import json
import logging
import os
import re
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Sequence

from .exceptions import FileSystemError, PersistenceError
from .models import SyncBlock
from .utils import ensure_dir_exists

logger = logging.getLogger(__name__)

FORMAT_VERSION = 1

class SyncBlockRepository(ABC):
    """Abstract base class for sync block storage."""

    @abstractmethod
    def save_sync_blocks(
        self,
        document_id: str,
        blocks: Sequence[SyncBlock],
        audio_file_ref: Optional[str],
        granularity: str
    ) -> str:
        """
        Persists the block list for a document, replacing any earlier save.

        Returns:
            A reference to where the blocks were stored.

        Raises:
            PersistenceError: If the blocks cannot be written.
        """
        pass

    @abstractmethod
    def load_sync_blocks(self, document_id: str) -> List[SyncBlock]:
        """
        Returns the saved blocks for a document, or an empty list if none were saved.

        Raises:
            PersistenceError: If a saved record exists but cannot be read.
        """
        pass


class JsonSyncBlockRepository(SyncBlockRepository):
    """Stores one JSON file per document under a base directory."""

    def __init__(self, base_dir: str):
        self.base_dir = base_dir

    def _path_for(self, document_id: str) -> str:
        if not document_id or not str(document_id).strip():
            raise PersistenceError("Document id cannot be empty.")
        safe_id = re.sub(r"[^\w.-]+", "_", str(document_id).strip())
        return os.path.join(self.base_dir, f"{safe_id}.sync.json")

    def save_sync_blocks(
        self,
        document_id: str,
        blocks: Sequence[SyncBlock],
        audio_file_ref: Optional[str],
        granularity: str
    ) -> str:
        path = self._path_for(document_id)
        record = {
            "documentId": document_id,
            "audioFile": audio_file_ref,
            "granularity": granularity,
            "version": FORMAT_VERSION,
            "savedAt": datetime.now(timezone.utc).isoformat(),
            "blocks": [block.to_dict() for block in blocks],
        }
        try:
            ensure_dir_exists(self.base_dir)
            tmp_path = f"{path}.tmp"
            with open(tmp_path, 'w', encoding='utf-8') as f:
                json.dump(record, f, ensure_ascii=False, indent=2)
            os.replace(tmp_path, path)
        except (FileSystemError, OSError, TypeError, ValueError) as e:
            logger.error(f"Failed to save sync blocks for {document_id}: {e}", exc_info=True)
            raise PersistenceError(f"Could not save sync blocks to {path}: {e}") from e

        logger.info(f"Saved {len(blocks)} sync blocks for '{document_id}' to {path}")
        return path

    def load_record(self, document_id: str) -> Optional[Dict[str, Any]]:
        """The full saved record (metadata plus raw blocks), or None if nothing was saved."""
        path = self._path_for(document_id)
        if not os.path.exists(path):
            logger.info(f"No saved sync blocks for '{document_id}' at {path}")
            return None
        try:
            with open(path, 'r', encoding='utf-8') as f:
                record = json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            logger.error(f"Failed to read sync blocks from {path}: {e}", exc_info=True)
            raise PersistenceError(f"Could not read sync blocks from {path}: {e}") from e
        if not isinstance(record, dict) or not isinstance(record.get("blocks", []), list):
            raise PersistenceError(f"Unexpected sync block file structure in {path}")
        return record

    def load_sync_blocks(self, document_id: str) -> List[SyncBlock]:
        record = self.load_record(document_id)
        if record is None:
            return []
        try:
            blocks = [SyncBlock.from_dict(item) for item in record.get("blocks", [])]
        except (KeyError, TypeError, ValueError) as e:
            raise PersistenceError(f"Malformed sync block for '{document_id}': {e}") from e
        logger.info(f"Loaded {len(blocks)} sync blocks for '{document_id}'")
        return blocks
