"""
baseline_store.py

Named, immutable baseline snapshots of enriched request records.

Snapshots are deep-copied both when saved and when loaded, so neither the
live record set nor a caller holding a loaded copy can ever alias the
stored contents.
"""

import copy
import logging
from typing import Dict, Iterable, List, Optional, Tuple

from services.models import EnrichedRequestRecord

logger = logging.getLogger(__name__)


class BaselineStore:
    """In-process store of baseline snapshots keyed by snapshot id."""

    def __init__(self):
        self._snapshots: Dict[str, Tuple[EnrichedRequestRecord, ...]] = {}

    def save_snapshot(self, snapshot_id: str, records: Iterable[EnrichedRequestRecord]) -> int:
        """
        Store a deep copy of `records` under `snapshot_id`, replacing any
        snapshot previously saved with that id.

        Returns:
            Number of records stored.

        Raises:
            ValueError: If snapshot_id is empty.
        """
        if not snapshot_id or not str(snapshot_id).strip():
            raise ValueError("Snapshot id must be a non-empty string.")

        stored = tuple(copy.deepcopy(list(records)))
        replaced = snapshot_id in self._snapshots
        self._snapshots[snapshot_id] = stored
        logger.info(
            "Baseline snapshot '%s' %s with %d record(s)",
            snapshot_id, "replaced" if replaced else "saved", len(stored),
        )
        return len(stored)

    def load_snapshot(self, snapshot_id: str) -> Optional[List[EnrichedRequestRecord]]:
        """Return a deep copy of the snapshot, or None if no such snapshot exists."""
        stored = self._snapshots.get(snapshot_id)
        if stored is None:
            logger.debug("Baseline snapshot '%s' not found", snapshot_id)
            return None
        return copy.deepcopy(list(stored))

    def delete_snapshot(self, snapshot_id: str) -> bool:
        return self._snapshots.pop(snapshot_id, None) is not None

    def list_snapshots(self) -> Dict[str, int]:
        """Snapshot ids mapped to their record counts, in save order."""
        return {sid: len(records) for sid, records in self._snapshots.items()}

    def __contains__(self, snapshot_id: object) -> bool:
        return snapshot_id in self._snapshots

    def __len__(self) -> int:
        return len(self._snapshots)
