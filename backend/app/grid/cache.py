"""
In-memory store of the latest grid snapshot per cell size.
"""

from typing import Dict, List, Optional

from .aggregator import GridSnapshot


class GridCache:
    """
    Cell-size key -> latest GridSnapshot.

    Snapshots are immutable and entries are replaced by rebinding the
    dict slot, so a reader always sees either the previous snapshot or
    the new one in full. There is no expiry; callers that care about
    freshness check ``updated_at``.
    """

    def __init__(self):
        self._entries: Dict[str, GridSnapshot] = {}

    def get(self, key: str) -> Optional[GridSnapshot]:
        return self._entries.get(key)

    def put(self, key: str, snapshot: GridSnapshot) -> None:
        self._entries[key] = snapshot

    def keys(self) -> List[str]:
        return list(self._entries)

    def __contains__(self, key: str) -> bool:
        return key in self._entries

    def __len__(self) -> int:
        return len(self._entries)
