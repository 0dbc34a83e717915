"""
In-memory cache store with two-tier TTL metadata and strict LRU order.

The store is a plain data structure. It performs no I/O and never fetches;
the DataCache coordinator is its only writer.
"""

from __future__ import annotations

import asyncio
from collections import OrderedDict
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Iterator, List, Optional

from shared.errors import ConfigurationError


@dataclass(frozen=True)
class CachePolicy:
    """Freshness rule supplied per call: soft TTL revalidates, hard TTL refetches."""

    ttl: float
    soft_ttl: float

    def __post_init__(self):
        if self.ttl < 0 or self.soft_ttl < 0:
            raise ConfigurationError(
                "Cache TTLs must be non-negative",
                details={"ttl": self.ttl, "soft_ttl": self.soft_ttl},
            )
        if self.soft_ttl > self.ttl:
            # soft expiry can never outlive hard expiry
            object.__setattr__(self, "soft_ttl", self.ttl)


class PendingState(str, Enum):
    PENDING = "pending"
    RESOLVED = "resolved"
    REJECTED = "rejected"


@dataclass
class PendingFetch:
    """Explicit handle for the single outstanding fetch of a key."""

    task: "asyncio.Task[Any]"
    background: bool = False

    @property
    def state(self) -> PendingState:
        if not self.task.done():
            return PendingState.PENDING
        if self.task.cancelled() or self.task.exception() is not None:
            return PendingState.REJECTED
        return PendingState.RESOLVED

    def done(self) -> bool:
        return self.task.done()


@dataclass
class CacheEntry:
    """One record per cache key.

    A record with ``fetched_at is None`` is a placeholder that only exists
    to carry a pending fetch for a key that has never resolved.
    """

    key: str
    data: Any = None
    fetched_at: Optional[float] = None
    expires_at: float = 0.0
    soft_expires_at: float = 0.0
    seq: int = 0
    pending: Optional[PendingFetch] = field(default=None, repr=False, compare=False)

    @classmethod
    def from_fetch(cls, key: str, data: Any, now: float, policy: CachePolicy, seq: int) -> "CacheEntry":
        return cls(
            key=key,
            data=data,
            fetched_at=now,
            expires_at=now + policy.ttl,
            soft_expires_at=now + policy.soft_ttl,
            seq=seq,
        )

    @property
    def has_data(self) -> bool:
        return self.fetched_at is not None

    def is_fresh(self, now: float) -> bool:
        return self.has_data and now < self.soft_expires_at

    def is_usable(self, now: float) -> bool:
        """Data may be returned (fresh or stale) without blocking."""
        return self.has_data and now < self.expires_at

    def is_hard_expired(self, now: float) -> bool:
        return not self.is_usable(now)


class CacheStore:
    """Keyed entries plus LRU order, most recently touched last."""

    def __init__(self, max_entries: int = 100):
        if max_entries < 1:
            raise ConfigurationError("max_entries must be >= 1", details={"max_entries": max_entries})
        self.max_entries = max_entries
        self._entries: "OrderedDict[str, CacheEntry]" = OrderedDict()

    def get(self, key: str) -> Optional[CacheEntry]:
        """Return the raw record, including hard-expired metadata."""
        return self._entries.get(key)

    def get_usable(self, key: str, now: float) -> Optional[CacheEntry]:
        """Return the record only when its data has not passed hard expiry."""
        entry = self._entries.get(key)
        if entry is None or entry.is_hard_expired(now):
            return None
        return entry

    def set(self, key: str, entry: CacheEntry) -> None:
        self._entries[key] = entry
        self._entries.move_to_end(key)

    def delete(self, key: str) -> Optional[CacheEntry]:
        return self._entries.pop(key, None)

    def touch(self, key: str) -> None:
        if key in self._entries:
            self._entries.move_to_end(key)

    def evict_if_over_capacity(self) -> List[str]:
        """Drop least-recently-touched entries until back at capacity.

        Entries carrying an unfinished fetch are never evicted; their pending
        marker is what keeps a key single-flight. When only such entries
        remain, the store stays over capacity until they settle.
        """
        excess = len(self._entries) - self.max_entries
        if excess <= 0:
            return []

        evicted: List[str] = []
        for key, entry in list(self._entries.items()):
            if len(evicted) == excess:
                break
            if entry.pending is not None and not entry.pending.done():
                continue
            evicted.append(key)

        for key in evicted:
            del self._entries[key]
        return evicted

    def lru_order(self) -> List[str]:
        return list(self._entries.keys())

    def keys(self) -> List[str]:
        return list(self._entries.keys())

    def clear(self) -> None:
        self._entries.clear()

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, key: object) -> bool:
        return key in self._entries

    def __iter__(self) -> Iterator[str]:
        return iter(list(self._entries.keys()))
