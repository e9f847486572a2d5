# ansybl/cache.py
"""
Time-bounded in-memory cache of decrypted key pairs.

Owned by a single KeyManager. Entries expire a fixed time after they are
stored; a miss (or an expired hit) always falls through to the key store.
Pairs are copied on the way in and out, so callers never share the
cached object.
"""

import copy
import logging
import time
from dataclasses import dataclass
from typing import Callable, Dict, List, Optional

from .keystore.models import KeyPair

logger = logging.getLogger(__name__)

DEFAULT_TTL_SECONDS = 3600


@dataclass
class CacheEntry:
    """A cached key pair and when it was stored."""
    key_pair: KeyPair
    created_at: float

    def is_expired(self, now: float, ttl: float) -> bool:
        return now - self.created_at >= ttl


@dataclass
class CacheStats:
    """Statistics about cache usage."""
    total_entries: int = 0
    hits: int = 0
    misses: int = 0
    expirations: int = 0
    hit_rate: float = 0.0

    def record_hit(self):
        self.hits += 1
        self._update_rate()

    def record_miss(self):
        self.misses += 1
        self._update_rate()

    def _update_rate(self):
        total = self.hits + self.misses
        self.hit_rate = self.hits / total if total > 0 else 0.0


class KeyCache:
    """
    TTL cache keyed by key id.

    Args:
        ttl_seconds: Lifetime of each entry
        clock: Returns the current time in seconds (injectable for tests)
    """

    def __init__(self, ttl_seconds: float = DEFAULT_TTL_SECONDS,
                 clock: Callable[[], float] = time.monotonic):
        if ttl_seconds <= 0:
            raise ValueError("ttl_seconds must be positive")
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._entries: Dict[str, CacheEntry] = {}
        self.stats = CacheStats()

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, key_id: str) -> bool:
        """Check presence of a live entry (without affecting stats)."""
        entry = self._entries.get(key_id)
        return entry is not None and not entry.is_expired(self._clock(), self.ttl_seconds)

    def get(self, key_id: str) -> Optional[KeyPair]:
        """
        Get a cached key pair.

        Returns the key pair if cached and fresh, None otherwise. Expired
        entries are dropped on read.
        """
        entry = self._entries.get(key_id)
        if entry is None:
            self.stats.record_miss()
            return None

        if entry.is_expired(self._clock(), self.ttl_seconds):
            logger.debug(f"Cache expired: {key_id}")
            self._remove_entry(key_id)
            self.stats.expirations += 1
            self.stats.record_miss()
            return None

        self.stats.record_hit()
        logger.debug(f"Cache hit: {key_id}")
        return copy.deepcopy(entry.key_pair)

    def put(self, key_id: str, key_pair: KeyPair) -> None:
        self._entries[key_id] = CacheEntry(key_pair=copy.deepcopy(key_pair), created_at=self._clock())
        self.stats.total_entries = len(self._entries)

    def remove(self, key_id: str) -> bool:
        """Remove an entry. True if one was present."""
        return self._remove_entry(key_id)

    def _remove_entry(self, key_id: str) -> bool:
        if key_id not in self._entries:
            return False
        del self._entries[key_id]
        self.stats.total_entries = len(self._entries)
        return True

    def clear(self):
        """Drop every entry and reset statistics."""
        self._entries.clear()
        self.stats = CacheStats()

    def keys(self) -> List[str]:
        return list(self._entries)

    def prune(self) -> int:
        """
        Remove all expired entries.

        Returns:
            Number of entries removed
        """
        now = self._clock()
        removed = 0
        for key_id, entry in list(self._entries.items()):
            if entry.is_expired(now, self.ttl_seconds):
                self._remove_entry(key_id)
                removed += 1
        self.stats.expirations += removed
        return removed
