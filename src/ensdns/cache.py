from __future__ import annotations

import logging
import threading
import time
from typing import Callable, Optional, Tuple

from cachetools import LRUCache
from dnslib import DNSRecord

logger = logging.getLogger(__name__)

# Entries older than this are treated as absent on read.
FRESHNESS_WINDOW = 6 * 60 * 60

DEFAULT_CACHE_SIZE = 500


def cache_key(name: str, qtype: int) -> str:
    """Brief: Build the case-insensitive, type-specific cache key.

    Inputs:
      - name: Query name (with or without the trailing root dot).
      - qtype: Numeric record type.

    Outputs:
      - str: lowercase(name) + ";" + decimal qtype.

    Example:
      >>> cache_key("Alice.ETH.", 16)
      'alice.eth.;16'
    """

    return f"{name.lower()};{int(qtype):d}"


class ENSCache:
    """
    Bounded LRU store of synthesized ENS responses with a read-time freshness check.

    Inputs:
        size: Maximum number of entries (default 500).
        clock: Callable returning epoch seconds (default time.time).

    Outputs:
        ENSCache instance

    Notes:
        Responses are stored packed and parsed again on every hit, so callers
        always receive a private DNSRecord they may mutate. Stale entries are
        masked but stay in the LRU until capacity pushes them out.

    Example use:
        >>> from dnslib import DNSRecord
        >>> cache = ENSCache(size=2)
        >>> msg = DNSRecord.question("alice.eth", "TXT").reply()
        >>> cache.set("alice.eth.", 16, msg)
        >>> cache.get("ALICE.eth.", 16).q.qname == msg.q.qname
        True
        >>> cache.get("alice.eth.", 1) is None
        True
    """

    def __init__(
        self,
        size: int = DEFAULT_CACHE_SIZE,
        *,
        clock: Callable[[], float] = time.time,
    ) -> None:
        if int(size) < 1:
            raise ValueError("cache size must be positive")
        self._store: LRUCache[str, Tuple[float, bytes]] = LRUCache(maxsize=int(size))
        self._clock = clock
        self._lock = threading.RLock()

    @property
    def maxsize(self) -> int:
        return int(self._store.maxsize)

    def __len__(self) -> int:
        with self._lock:
            return len(self._store)

    def set(self, name: str, qtype: int, msg: DNSRecord) -> "ENSCache":
        """
        Store a response under (name, qtype), replacing any previous entry.

        Inputs:
            name: Query name.
            qtype: Numeric query type.
            msg: Response to cache; packed immediately.
        Outputs:
            self
        """
        key = cache_key(name, qtype)
        raw = msg.pack()
        with self._lock:
            self._store[key] = (self._clock(), raw)
        logger.debug("cached %s (%d bytes, %d entries)", key, len(raw), len(self))
        return self

    def get(self, name: str, qtype: int) -> Optional[DNSRecord]:
        """
        Return the cached response for (name, qtype), or None when absent or stale.

        Inputs:
            name: Query name (case-insensitive).
            qtype: Numeric query type.
        Outputs:
            Fresh DNSRecord parsed from the stored wire, or None.
        """
        key = cache_key(name, qtype)
        with self._lock:
            item = self._store.get(key)
            if item is None:
                return None
            stored_at, raw = item
            if self._clock() > stored_at + FRESHNESS_WINDOW:
                return None
        return DNSRecord.parse(raw)

    def clear(self) -> None:
        with self._lock:
            self._store.clear()
