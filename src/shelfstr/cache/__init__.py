"""Caches layered on the relay connection.

Attributes:
    TtlCache: Generic time-to-live mapping with an injectable clock.
        See [TtlCache][shelfstr.cache.ttl.TtlCache].
    BatchFetchCache: Batched, coalescing relay-backed cache.
        See [BatchFetchCache][shelfstr.cache.batch.BatchFetchCache].
    ProfileCache: Kind-0 profiles keyed by public key.
        See [ProfileCache][shelfstr.cache.profiles.ProfileCache].
"""

from .batch import BatchFetchCache, InFlightFetch
from .profiles import ProfileCache
from .ttl import CacheEntry, TtlCache


__all__ = [
    "BatchFetchCache",
    "CacheEntry",
    "InFlightFetch",
    "ProfileCache",
    "TtlCache",
]
