"""
High-level relay client.

[RelayClient][shelfstr.client.RelayClient] wires one
[ConnectionManager][shelfstr.relay.connection.ConnectionManager] to the
components that share it:

```text
RelayClient
 ├── SubscriptionRouter ──┐
 ├── PublishTracker ──────┼── ConnectionManager ── Transport
 └── ProfileCache ────────┘        (one per client)
       └── uses SubscriptionRouter for batch REQs
```

Every component receives the manager explicitly; there is no module-level
connection state.

Examples:
    ```python
    async with RelayClient(ClientConfig(), signer=KeysSigner.from_env()) as client:
        event = await client.publish_similarity("9781729527085", "1639940251", 0.92)
        profile = await client.fetch_profile(event.pubkey)
    ```
"""

from __future__ import annotations

import asyncio
import time
from collections.abc import Callable, Iterable, Mapping, Sequence
from typing import Any, Protocol, Self

from shelfstr.cache.profiles import ProfileCache
from shelfstr.core.exceptions import CapabilityError
from shelfstr.core.logger import Logger
from shelfstr.events.similarity import build_similarity_event
from shelfstr.models import Event, ItemRef, Profile
from shelfstr.relay.configs import ClientConfig
from shelfstr.relay.connection import ConnectionManager
from shelfstr.relay.publisher import PublishTracker
from shelfstr.relay.router import (
    ClosedCallback,
    EoseCallback,
    EventCallback,
    Subscription,
    SubscriptionRouter,
)
from shelfstr.relay.transport import TransportFactory
from shelfstr.utils.keys import Signer


class MetadataSource(Protocol):
    """Book metadata lookup service (e.g. a catalogue search API).

    Only the interface is defined here; no implementation ships with shelfstr.
    """

    async def lookup_by_key(self, key: str) -> Mapping[str, Any] | None: ...

    async def search(self, query: str) -> list[Mapping[str, Any]]: ...


class RelayClient:
    """Facade over the relay connection, subscriptions, publishing and profiles.

    Args:
        config: Client configuration (defaults to ``ClientConfig()``).
        signer: Signing capability; publishing requires one that can sign.
        transport_factory: Override for the WebSocket factory (tests).
        clock: Time source for the profile cache TTL.
    """

    def __init__(
        self,
        config: ClientConfig | None = None,
        *,
        signer: Signer | None = None,
        transport_factory: TransportFactory | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._config = config or ClientConfig()
        self._signer = signer
        self._logger = Logger("client")

        self._connection = ConnectionManager(
            self._config.relay_url,
            connect_timeout=self._config.connect_timeout,
            retry=self._config.retry,
            transport_factory=transport_factory,
        )
        self._router = SubscriptionRouter(
            self._connection, id_length=self._config.subscription_id_length
        )
        self._publisher = PublishTracker(self._connection, timeout=self._config.publish_timeout)
        self._profiles = ProfileCache(
            self._router,
            ttl=self._config.cache.ttl,
            batch_size=self._config.cache.batch_size,
            batch_timeout=self._config.cache.batch_timeout,
            retry=self._config.retry,
            clock=clock,
        )

    # -------------------------------------------------------------------------
    # Components
    # -------------------------------------------------------------------------

    @property
    def config(self) -> ClientConfig:
        return self._config

    @property
    def connection(self) -> ConnectionManager:
        return self._connection

    @property
    def router(self) -> SubscriptionRouter:
        return self._router

    @property
    def publisher(self) -> PublishTracker:
        return self._publisher

    @property
    def profiles(self) -> ProfileCache:
        return self._profiles

    @property
    def can_sign(self) -> bool:
        return self._signer is not None and self._signer.can_sign()

    # -------------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------------

    async def connect(self) -> None:
        """Open the relay connection, retrying connectivity failures."""
        await self._connection.connect_with_retry()

    async def close(self) -> None:
        """Stop cache work and close the connection. Idempotent."""
        await self._profiles.close()
        await self._connection.close()

    async def __aenter__(self) -> Self:
        await self.connect()
        return self

    async def __aexit__(self, *_: object) -> None:
        await self.close()

    # -------------------------------------------------------------------------
    # Subscriptions and publishing
    # -------------------------------------------------------------------------

    async def subscribe(
        self,
        filters: Sequence[Mapping[str, Any]],
        on_event: EventCallback,
        *,
        on_eose: EoseCallback | None = None,
        on_closed: ClosedCallback | None = None,
        prefix: str = "",
    ) -> Subscription:
        """Open a subscription, connecting with bounded retry first.

        See [SubscriptionRouter.subscribe()][shelfstr.relay.router.SubscriptionRouter.subscribe].
        """
        await self._connection.connect_with_retry()
        return await self._router.subscribe(
            filters, on_event, on_eose=on_eose, on_closed=on_closed, prefix=prefix
        )

    async def publish(self, event: Event) -> str:
        """Publish a signed event and wait for its acknowledgment.

        See [PublishTracker.publish()][shelfstr.relay.publisher.PublishTracker.publish].
        """
        await self._connection.connect_with_retry()
        return await self._publisher.publish(event)

    async def publish_similarity(
        self,
        item_a: str | ItemRef,
        item_b: str | ItemRef,
        score: float,
        content: str = "",
    ) -> Event:
        """Sign and publish a similarity relation between two ISBNs.

        Returns:
            The signed event, once the relay accepted it.

        Raises:
            CapabilityError: If no signer is configured or it cannot sign.
            ValueError: If the score or an identifier is invalid.
            PublishRejectedError: If the relay rejected the event.
            RelayTimeoutError: If no acknowledgment arrived in time.
            RelayConnectionError: If the connection failed or closed.
        """
        if self._signer is None or not self._signer.can_sign():
            raise CapabilityError("publishing requires a signer that can sign")

        unsigned = build_similarity_event(item_a, item_b, score, content)
        event = self._signer.sign(unsigned)
        await self.publish(event)
        self._logger.info(
            "similarity_published",
            id=event.id,
            item_a=str(item_a),
            item_b=str(item_b),
            score=score,
        )
        return event

    # -------------------------------------------------------------------------
    # Profiles
    # -------------------------------------------------------------------------

    async def fetch_profile(self, pubkey: str) -> Profile:
        return await self._profiles.fetch_one(pubkey)

    async def fetch_profiles(self, pubkeys: Iterable[str]) -> dict[str, Profile]:
        return await self._profiles.fetch_many(pubkeys)

    def prefetch_profiles(self, pubkeys: Iterable[str]) -> asyncio.Task[dict[str, Profile]] | None:
        """Warm the profile cache in the background."""
        return self._profiles.prefetch(pubkeys)
