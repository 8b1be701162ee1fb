"""Profile cache: kind-0 metadata keyed by public key.

Lookups are batched (``{"kinds": [0], "authors": [...]}``) and coalesced by
[BatchFetchCache][shelfstr.cache.batch.BatchFetchCache]. Profiles stay fresh
for a day by default.

Examples:
    ```python
    cache = ProfileCache(router)
    profiles = await cache.fetch_many([alice, bob, alice])
    profiles[alice].display
    ```
"""

from __future__ import annotations

from typing import Any, ClassVar

from shelfstr.events.profile import parse_profile_event
from shelfstr.models import Event, EventKind, Profile

from .batch import BatchFetchCache


class ProfileCache(BatchFetchCache[Profile]):
    """Batched TTL cache of [Profile][shelfstr.models.profile.Profile] values."""

    CACHE_NAME: ClassVar[str] = "profiles"

    def build_filter(self, keys: list[str]) -> dict[str, Any]:
        return {"kinds": [int(EventKind.METADATA)], "authors": keys}

    def key_of(self, event: Event) -> str:
        return event.pubkey

    def parse(self, event: Event) -> Profile | None:
        return parse_profile_event(event)

    def empty(self, key: str, *, loaded: bool) -> Profile:
        return Profile.empty(key, loaded=loaded)

    def created_at_of(self, value: Profile) -> int:
        return value.created_at or 0
