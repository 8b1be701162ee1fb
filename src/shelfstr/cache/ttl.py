"""Time-to-live key/value cache.

Entries are valid while ``now - timestamp < ttl``. Invalidation is purely
time-based: expired entries are dropped lazily on access or by ``purge()``.
The clock is injectable so tests can advance time without sleeping.
"""

from __future__ import annotations

import time
from collections.abc import Callable, Hashable, Iterator
from dataclasses import dataclass
from typing import Generic, TypeVar


K = TypeVar("K", bound=Hashable)
V = TypeVar("V")


@dataclass(frozen=True, slots=True)
class CacheEntry(Generic[V]):
    """A cached value and the clock reading when it was stored."""

    value: V
    timestamp: float


class TtlCache(Generic[K, V]):
    """Mapping from keys to values that expire ``ttl`` seconds after being set.

    Args:
        ttl: Lifetime of an entry in seconds.
        clock: Monotonic time source (defaults to ``time.monotonic``).

    Examples:
        ```python
        cache: TtlCache[str, Profile] = TtlCache(ttl=86_400)
        cache.set(pubkey, profile)
        cache.get(pubkey)    # profile, until a day has passed
        ```
    """

    def __init__(self, ttl: float, *, clock: Callable[[], float] = time.monotonic) -> None:
        if ttl <= 0:
            raise ValueError(f"ttl must be positive, got {ttl}")
        self._ttl = ttl
        self._clock = clock
        self._entries: dict[K, CacheEntry[V]] = {}

    @property
    def ttl(self) -> float:
        return self._ttl

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, key: object) -> bool:
        entry = self._entries.get(key)  # type: ignore[call-overload]
        return entry is not None and self._is_fresh(entry)

    def __iter__(self) -> Iterator[K]:
        return iter([k for k, e in self._entries.items() if self._is_fresh(e)])

    def _is_fresh(self, entry: CacheEntry[V]) -> bool:
        return self._clock() - entry.timestamp < self._ttl

    def get(self, key: K) -> V | None:
        """Return the fresh value for *key*, or ``None`` if missing or expired."""
        entry = self._entries.get(key)
        if entry is None:
            return None
        if not self._is_fresh(entry):
            del self._entries[key]
            return None
        return entry.value

    def get_entry(self, key: K) -> CacheEntry[V] | None:
        """Like ``get()`` but returns the entry with its timestamp."""
        entry = self._entries.get(key)
        if entry is None or not self._is_fresh(entry):
            return None
        return entry

    def set(self, key: K, value: V) -> None:
        self._entries[key] = CacheEntry(value, self._clock())

    def delete(self, key: K) -> None:
        self._entries.pop(key, None)

    def clear(self) -> None:
        self._entries.clear()

    def purge(self) -> int:
        """Drop expired entries and return how many were removed."""
        expired = [k for k, e in self._entries.items() if not self._is_fresh(e)]
        for k in expired:
            del self._entries[k]
        return len(expired)
