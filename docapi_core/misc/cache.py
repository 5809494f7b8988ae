"""
docapi time-limited cache for the results of read operations
"""

import json
import time
import logging
from typing import Any, Callable, Dict, List, NamedTuple, Optional

from ..persistence.store import DocumentStore


logger = logging.getLogger(__name__)


class CacheEntry(NamedTuple):
    data: List[Dict[str, Any]]
    timestamp: float


class ResultCache:
    """
    Memoize store lookups for a limited lifespan (in seconds)

    Entries are never invalidated by write operations, so a result may be
    stale for up to `lifespan` seconds after a change. Use ``clear`` to
    drop all entries explicitly. Any problem with the cache itself makes
    the lookup fall back to a direct store query.
    """

    def __init__(
            self,
            store: DocumentStore,
            enable: bool = True,
            lifespan: float = 1.0,
            clock: Callable[[], float] = time.monotonic
    ):
        self.store = store
        self.is_enabled = enable
        self.lifespan = lifespan
        self.clock = clock
        self.cache: Dict[str, CacheEntry] = {}

    @staticmethod
    def make_key(query: Any, options: Any, store_options: Any) -> str:
        return json.dumps([query, options, store_options], sort_keys=True, separators=(",", ":"))

    def prune(self):
        """
        Remove all entries that exceeded their lifespan
        """

        now = self.clock()
        for key in [k for k, entry in self.cache.items() if now - entry.timestamp > self.lifespan]:
            self.cache.pop(key, None)

    def clear(self, *_):
        self.cache = {}

    def _lookup(self, key: str) -> Optional[CacheEntry]:
        self.prune()
        return self.cache.get(key)

    async def get(
            self,
            query: Dict[str, Any],
            options: Dict[str, Any],
            store_options: Optional[Dict[str, Any]] = None
    ) -> List[Dict[str, Any]]:
        """
        Return the documents of the collection in `options` matching the query, from cache if possible
        """

        if not self.is_enabled:
            return await self.store.find(options["collection_name"], query, store_options)

        key = None
        try:
            key = self.make_key(query, options, store_options)
            entry = self._lookup(key)
            if entry is not None:
                return entry.data
        except Exception as exc:
            logger.warning(f"Cache lookup failed, falling back to the store: {type(exc).__name__}: {exc}")
            key = None

        data = await self.store.find(options["collection_name"], query, store_options)
        if key is not None:
            self.cache[key] = CacheEntry(data, self.clock())
        return data
