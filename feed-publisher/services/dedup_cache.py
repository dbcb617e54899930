"""
In-memory deduplication cache.
Maps raw template text to the comparison value of its last publish.
"""

import logging
from collections import OrderedDict
from typing import Iterable, Optional

from domain.ports import DedupCache


logger = logging.getLogger(__name__)


class InMemoryDedupCache(DedupCache):
    """
    Process-lifetime dedup cache with optional capacity bound.

    Entries are ordered by last write; when ``max_entries`` is set the least
    recently written key is evicted first. Callers serialize access, the cache
    itself takes no locks.
    """

    def __init__(self, max_entries: Optional[int] = None):
        """
        Initialize the cache.

        Args:
            max_entries: Capacity bound, None for unbounded growth
        """
        if max_entries is not None and max_entries < 1:
            raise ValueError("max_entries must be positive")
        self.max_entries = max_entries
        self._entries: "OrderedDict[str, str]" = OrderedDict()

    async def get(self, key: str) -> Optional[str]:
        return self._entries.get(key)

    async def upsert(self, key: str, value: str) -> None:
        self._entries[key] = value
        self._entries.move_to_end(key)

        if self.max_entries is not None:
            while len(self._entries) > self.max_entries:
                evicted, _ = self._entries.popitem(last=False)
                logger.debug(
                    "Dedup cache full, evicted oldest entry",
                    extra={
                        "component": "dedup_cache",
                        "max_entries": self.max_entries,
                        "evicted_key_length": len(evicted)
                    }
                )

    async def reconcile(self, keys: Iterable[str]) -> int:
        keep = set(keys)
        stale = [key for key in self._entries if key not in keep]
        for key in stale:
            del self._entries[key]

        if stale:
            logger.info(
                f"Dropped {len(stale)} stale dedup entries",
                extra={"component": "dedup_cache", "removed": len(stale)}
            )

        return len(stale)

    async def size(self) -> int:
        return len(self._entries)
