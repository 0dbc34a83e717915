"""
Caching package.

Provides the keyed two-tier TTL store, the single-flight fetch coordinator
and the session persistence mirror. Prefer explicit invalidation over
short TTLs when the push stream reports a change.
"""

from .data_cache import DataCache, Envelope, FetchResult
from .persistence import InMemorySessionStorage, PersistenceAdapter, PersistedSnapshot
from .store import CacheEntry, CachePolicy, CacheStore

__all__ = [
    "CacheEntry",
    "CachePolicy",
    "CacheStore",
    "DataCache",
    "Envelope",
    "FetchResult",
    "InMemorySessionStorage",
    "PersistedSnapshot",
    "PersistenceAdapter",
]
