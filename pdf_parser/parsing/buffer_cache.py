from __future__ import annotations

import logging
from typing import Dict, List, Optional

logger = logging.getLogger(__name__)

MAX_BIN_BUFFER_COUNT = 10


def format_mtime(file_mtime: float) -> str:
    """Render milliseconds without a trailing ``.0`` for whole values: ``1700000000000``."""
    if float(file_mtime).is_integer():
        return str(int(file_mtime))
    return repr(float(file_mtime))


def make_cache_key(file_path: str, file_mtime: float) -> str:
    """
    Cache key for a file snapshot: the path and its mtime (milliseconds)
    concatenated into a single string.
    """
    return f"{file_path}{format_mtime(file_mtime)}"


class BinaryBufferCache:
    """
    Bounded mapping of cache key -> raw PDF bytes, shared by all parsers of a process.

    Entries are kept in insertion order. When an insert pushes the entry count
    above ``max_entries``, one entry is evicted: the key at position
    ``requester_id % max_entries`` of the current key list. The victim depends
    on the requesting parser's id and on the key order at that moment, so it
    is deterministic per call but not stable across cache mutations. It is not
    an LRU: no access times or hit counts are tracked.

    Eviction through ``put`` always runs with more keys than ``max_entries``,
    so the index is in range. A direct ``evict_one`` on a shorter key list
    wraps the index once more, modulo the number of keys.

    ``max_entries`` is fixed at construction.
    """

    def __init__(self, max_entries: int = MAX_BIN_BUFFER_COUNT):
        if max_entries < 1:
            raise ValueError("max_entries must be at least 1")
        self._max_entries = max_entries
        self._buffers: Dict[str, bytes] = {}

    @property
    def max_entries(self) -> int:
        return self._max_entries

    def __len__(self) -> int:
        return len(self._buffers)

    def __contains__(self, key: object) -> bool:
        return key in self._buffers

    def has(self, key: Optional[str]) -> bool:
        return key is not None and key in self._buffers

    def get(self, key: str) -> bytes:
        return self._buffers[key]

    def keys(self) -> List[str]:
        return list(self._buffers)

    def put(self, key: str, data: bytes, requester_id: int) -> Optional[str]:
        """
        Insert or overwrite ``key``; evict one entry if the cache is now over its bound.
        Returns the evicted key, if any.
        """
        self._buffers[key] = data
        if len(self._buffers) > self.max_entries:
            return self.evict_one(requester_id)
        return None

    def evict_one(self, requester_id: int) -> Optional[str]:
        all_keys = self.keys()
        if not all_keys:
            return None
        idx = requester_id % self.max_entries
        key = all_keys[idx % len(all_keys)]
        del self._buffers[key]
        logger.info("re-cycled cache for %s", key)
        return key

    def clear(self) -> None:
        self._buffers.clear()

    def stats(self) -> Dict[str, object]:
        return {
            "entries": len(self._buffers),
            "max_entries": self.max_entries,
            "keys": self.keys(),
        }
