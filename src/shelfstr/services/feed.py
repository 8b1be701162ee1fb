"""
Live feed of similarity relations.

[SimilarityFeed][shelfstr.services.feed.SimilarityFeed] subscribes to
kind-1729 events, keeps every valid relation exactly once (by event id) and
exposes them newest first. Invalid events are counted and dropped.

Author profiles are warmed in the background: once for all authors seen
before end-of-stored-events, then per author for live events, so that
rendering a relation rarely waits on a profile lookup.

Examples:
    ```python
    async with RelayClient() as client:
        feed = SimilarityFeed(client, limit=50)
        await feed.start()
        if await feed.wait_loaded(timeout=5.0):
            for relation in feed.relations:
                print(relation.item_a, relation.item_b, relation.score)
        await feed.stop()
    ```
"""

from __future__ import annotations

import asyncio
from collections.abc import Callable
from typing import Any, Self

from shelfstr.client import RelayClient
from shelfstr.core.logger import Logger
from shelfstr.events.similarity import parse_similarity_event
from shelfstr.models import Event, EventKind, SimilarityRelation, SubscriptionRole
from shelfstr.relay.router import Subscription


RelationCallback = Callable[[SimilarityRelation], None]


class SimilarityFeed:
    """Deduplicated, newest-first view of similarity relations on the relay.

    Args:
        client: Connected or connectable relay client.
        limit: Optional ``limit`` for the stored-events part of the REQ.
        prefetch_authors: Warm the profile cache for relation authors.
        on_relation: Called once per new valid relation, in receive order.
    """

    def __init__(
        self,
        client: RelayClient,
        *,
        limit: int | None = None,
        prefetch_authors: bool = True,
        on_relation: RelationCallback | None = None,
    ) -> None:
        if limit is not None and limit < 1:
            raise ValueError(f"limit must be positive, got {limit}")
        self._client = client
        self._limit = limit
        self._prefetch_authors = prefetch_authors
        self._on_relation = on_relation
        self._logger = Logger("feed")
        self._relations: dict[str, SimilarityRelation] = {}
        self._rejected = 0
        self._loaded = asyncio.Event()
        self._subscription: Subscription | None = None
        self.closed_reason: str | None = None

    # -------------------------------------------------------------------------
    # State
    # -------------------------------------------------------------------------

    @property
    def relations(self) -> list[SimilarityRelation]:
        """All relations received so far, newest first."""
        return sorted(self._relations.values(), key=lambda r: (r.created_at, r.id), reverse=True)

    @property
    def loaded(self) -> bool:
        """``True`` once the relay signalled the end of stored events."""
        return self._loaded.is_set()

    @property
    def running(self) -> bool:
        return self._subscription is not None and self._subscription.active

    @property
    def rejected_count(self) -> int:
        return self._rejected

    # -------------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------------

    async def start(self) -> None:
        """Subscribe to similarity events. No-op if already running.

        Raises:
            RelayConnectionError: If the relay cannot be reached.
        """
        if self.running:
            return

        feed_filter: dict[str, Any] = {"kinds": [int(EventKind.SIMILARITY)]}
        if self._limit is not None:
            feed_filter["limit"] = self._limit

        self._loaded.clear()
        self.closed_reason = None
        self._subscription = await self._client.subscribe(
            [feed_filter],
            self._handle_event,
            on_eose=self._handle_eose,
            on_closed=self._handle_closed,
            prefix=SubscriptionRole.FEED.value,
        )
        self._logger.info("feed_started", subscription=self._subscription.id, limit=self._limit)

    async def stop(self) -> None:
        """Unsubscribe. Relations received so far are kept."""
        subscription, self._subscription = self._subscription, None
        if subscription is not None:
            await subscription.unsubscribe()
            self._logger.info("feed_stopped", relations=len(self._relations))

    async def wait_loaded(self, timeout: float) -> bool:
        """Wait up to *timeout* seconds for end of stored events.

        Returns:
            ``True`` if the stored events finished loading in time.
        """
        try:
            await asyncio.wait_for(self._loaded.wait(), timeout)
        except TimeoutError:
            return False
        return True

    async def __aenter__(self) -> Self:
        await self.start()
        return self

    async def __aexit__(self, *_: object) -> None:
        await self.stop()

    # -------------------------------------------------------------------------
    # Callbacks
    # -------------------------------------------------------------------------

    def _handle_event(self, event: Event) -> None:
        relation = parse_similarity_event(event)
        if relation is None:
            self._rejected += 1
            return
        if relation.id in self._relations:
            return

        self._relations[relation.id] = relation
        if self._on_relation is not None:
            self._on_relation(relation)
        # Stored events are prefetched together on EOSE
        if self._prefetch_authors and self.loaded:
            self._client.prefetch_profiles([relation.author])

    def _handle_eose(self) -> None:
        self._loaded.set()
        self._logger.info(
            "feed_loaded", relations=len(self._relations), rejected=self._rejected
        )
        if self._prefetch_authors and self._relations:
            self._client.prefetch_profiles(r.author for r in self.relations)

    def _handle_closed(self, reason: str) -> None:
        self._subscription = None
        self.closed_reason = reason
        self._logger.warning("feed_closed", reason=reason, relations=len(self._relations))
