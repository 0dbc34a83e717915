"""
Session persistence for durable cache namespaces.

Mirrors a subset of cache entries into a per-session key/value medium so a
reload can serve the dashboard without a cold fetch. Persistence is an
optimization only: every storage failure is logged and swallowed, and the
layer keeps working from memory.
"""

from __future__ import annotations

from typing import Any, Dict, Iterable, List, Optional, Protocol, Tuple

from pydantic import BaseModel, ValidationError

from shared.errors import StorageError
from shared.logging import get_logger
from shared.metrics import MetricsCollector

from service_freshness.app.capabilities import Clock, system_clock
from service_freshness.app.caching.store import CacheEntry

DEFAULT_PREFIX = "tp_cache:"
DEFAULT_NAMESPACES = ("dashboard:",)
DEFAULT_MAX_PERSISTED = 10


class SessionStorage(Protocol):
    """String-keyed, string-valued per-session medium (sessionStorage semantics)."""

    def get_item(self, key: str) -> Optional[str]: ...

    def set_item(self, key: str, value: str) -> None: ...

    def remove_item(self, key: str) -> None: ...

    @property
    def length(self) -> int: ...

    def key(self, index: int) -> Optional[str]: ...


class InMemorySessionStorage:
    """Dict-backed session medium.

    ``quota`` bounds the total characters stored (keys plus values); a write
    that would exceed it raises StorageError the way a full browser store does.
    Other components may share the medium under their own key prefixes.
    """

    def __init__(self, quota: Optional[int] = None, initial: Optional[Dict[str, str]] = None):
        self.quota = quota
        self._items: Dict[str, str] = dict(initial or {})

    def _size_with(self, key: str, value: str) -> int:
        current = sum(len(k) + len(v) for k, v in self._items.items() if k != key)
        return current + len(key) + len(value)

    def get_item(self, key: str) -> Optional[str]:
        return self._items.get(key)

    def set_item(self, key: str, value: str) -> None:
        if self.quota is not None and self._size_with(key, value) > self.quota:
            raise StorageError("Session storage quota exceeded", details={"key": key, "quota": self.quota})
        self._items[key] = value

    def remove_item(self, key: str) -> None:
        self._items.pop(key, None)

    @property
    def length(self) -> int:
        return len(self._items)

    def key(self, index: int) -> Optional[str]:
        keys = list(self._items.keys())
        if 0 <= index < len(keys):
            return keys[index]
        return None

    def items(self) -> Dict[str, str]:
        return dict(self._items)


class PersistedSnapshot(BaseModel):
    """Durable record for one persisted cache key."""

    data: Any
    fetched_at: float
    expires_at: float
    soft_expires_at: float
    seq: int = 0

    @classmethod
    def from_entry(cls, entry: CacheEntry) -> "PersistedSnapshot":
        return cls(
            data=entry.data,
            fetched_at=entry.fetched_at or 0.0,
            expires_at=entry.expires_at,
            soft_expires_at=entry.soft_expires_at,
            seq=entry.seq,
        )

    def to_entry(self, key: str) -> CacheEntry:
        return CacheEntry(
            key=key,
            data=self.data,
            fetched_at=self.fetched_at,
            expires_at=self.expires_at,
            soft_expires_at=self.soft_expires_at,
            seq=self.seq,
        )


class PersistenceAdapter:
    """Write-through mirror of durable cache keys into a session medium."""

    def __init__(
        self,
        storage: SessionStorage,
        prefix: str = DEFAULT_PREFIX,
        namespaces: Iterable[str] = DEFAULT_NAMESPACES,
        max_persisted: int = DEFAULT_MAX_PERSISTED,
        clock: Clock = system_clock,
        metrics: Optional[MetricsCollector] = None,
    ):
        self.storage = storage
        self.prefix = prefix
        self.namespaces = tuple(namespaces)
        self.max_persisted = max_persisted
        self.clock = clock
        self.metrics = metrics
        self.logger = get_logger("freshness.persistence")

    def should_persist(self, key: str) -> bool:
        return any(key.startswith(namespace) for namespace in self.namespaces)

    def _storage_key(self, key: str) -> str:
        return f"{self.prefix}{key}"

    def _record_failure(self, operation: str, error: Exception, **context) -> None:
        self.logger.warning(
            "Session storage operation failed",
            operation=operation,
            error=str(error),
            **context
        )
        if self.metrics:
            self.metrics.increment_counter("persistence_failures_total", operation=operation)

    def _owned_keys(self) -> List[str]:
        """Snapshot the prefixed storage keys before any mutation."""
        keys: List[str] = []
        for index in range(self.storage.length):
            raw_key = self.storage.key(index)
            if raw_key and raw_key.startswith(self.prefix):
                keys.append(raw_key)
        return keys

    def _remove_quietly(self, raw_key: str) -> None:
        try:
            self.storage.remove_item(raw_key)
        except Exception as e:
            self._record_failure("delete", e, storage_key=raw_key)

    def write(self, key: str, entry: CacheEntry) -> bool:
        """Persist one entry; returns False when skipped or the medium refused it."""
        if not self.should_persist(key) or not entry.has_data:
            return False
        if self.clock() >= entry.expires_at:
            return False

        try:
            payload = PersistedSnapshot.from_entry(entry).model_dump_json()
            self.storage.set_item(self._storage_key(key), payload)
        except Exception as e:
            self._record_failure("write", e, key=key)
            return False
        return True

    def delete(self, key: str) -> None:
        self._remove_quietly(self._storage_key(key))

    def clear(self) -> None:
        """Remove every record under this adapter's prefix, leaving other users alone."""
        try:
            raw_keys = self._owned_keys()
        except Exception as e:
            self._record_failure("clear", e)
            return
        for raw_key in raw_keys:
            self._remove_quietly(raw_key)

    def hydrate(self) -> Dict[str, CacheEntry]:
        """Load unexpired snapshots; expired or corrupt records are dropped from the medium."""
        entries: Dict[str, CacheEntry] = {}
        try:
            raw_keys = self._owned_keys()
        except Exception as e:
            self._record_failure("hydrate", e)
            return entries

        now = self.clock()
        dropped = 0
        for raw_key in raw_keys:
            cache_key = raw_key[len(self.prefix):]
            try:
                raw = self.storage.get_item(raw_key)
                if raw is None:
                    continue
                snapshot = PersistedSnapshot.model_validate_json(raw)
            except (ValidationError, ValueError) as e:
                self.logger.debug("Dropping corrupt persisted entry", key=cache_key, error=str(e))
                self._remove_quietly(raw_key)
                dropped += 1
                continue
            except Exception as e:
                self._record_failure("hydrate", e, key=cache_key)
                continue

            if snapshot.data is None or now >= snapshot.expires_at:
                self._remove_quietly(raw_key)
                dropped += 1
                continue

            entries[cache_key] = snapshot.to_entry(cache_key)

        self.logger.info("Hydrated persisted cache entries", loaded=len(entries), dropped=dropped)
        return entries

    def evict_over_capacity(self) -> List[str]:
        """Keep at most ``max_persisted`` records, oldest fetch first out."""
        try:
            raw_keys = self._owned_keys()
        except Exception as e:
            self._record_failure("evict", e)
            return []

        items: List[Tuple[float, str]] = []
        for raw_key in raw_keys:
            try:
                raw = self.storage.get_item(raw_key)
                snapshot = PersistedSnapshot.model_validate_json(raw or "")
            except (ValidationError, ValueError):
                self._remove_quietly(raw_key)
                continue
            except Exception as e:
                self._record_failure("evict", e, storage_key=raw_key)
                continue
            items.append((snapshot.fetched_at, raw_key))

        if len(items) <= self.max_persisted:
            return []

        items.sort(key=lambda item: item[0])
        evicted = [raw_key for _, raw_key in items[: len(items) - self.max_persisted]]
        for raw_key in evicted:
            self._remove_quietly(raw_key)

        self.logger.debug("Evicted persisted entries", count=len(evicted))
        return [raw_key[len(self.prefix):] for raw_key in evicted]
