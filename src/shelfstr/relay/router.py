r"""
Subscription multiplexing over the shared relay connection.

The [SubscriptionRouter][shelfstr.relay.router.SubscriptionRouter] keeps the
table of live subscriptions and installs exactly one frame listener per
transport, which demultiplexes ``EVENT``, ``EOSE`` and ``CLOSED`` frames by
subscription id. ``NOTICE`` frames are logged.

Lifecycle of a [Subscription][shelfstr.relay.router.Subscription]:

```text
subscribe() -> REQ sent -> events... -> EOSE (stays live) -> events...
                                     \-> unsubscribe()  (CLOSE sent if open)
                                     \-> relay CLOSED   (on_closed(message))
                                     \-> transport lost (on_closed(reason))
```

Subscriptions are never resumed after a transport closes; owners decide
whether to subscribe again.
"""

from __future__ import annotations

import logging
import secrets
import string
from collections.abc import Callable, Mapping, Sequence
from typing import Any

from shelfstr.core.exceptions import RelayConnectionError
from shelfstr.core.metrics import ACTIVE_SUBSCRIPTIONS
from shelfstr.models import Event

from .codec import ClosedFrame, CloseFrame, EoseFrame, EventFrame, Frame, NoticeFrame, ReqFrame
from .connection import ConnectionManager
from .transport import Transport


logger = logging.getLogger("relay.router")

EventCallback = Callable[[Event], None]
EoseCallback = Callable[[], None]
ClosedCallback = Callable[[str], None]

_ID_ALPHABET = string.ascii_letters + string.digits
# NIP-01 caps subscription ids at 64 characters
_MAX_ID_LENGTH = 64


def generate_subscription_id(length: int = 8, prefix: str = "") -> str:
    """Return ``prefix`` followed by ``length`` random alphanumeric characters."""
    if len(prefix) + length > _MAX_ID_LENGTH:
        raise ValueError(f"subscription id longer than {_MAX_ID_LENGTH} characters")
    return prefix + "".join(secrets.choice(_ID_ALPHABET) for _ in range(length))


class Subscription:
    """Handle for one active REQ on the shared connection.

    Attributes:
        id: Subscription id, unique among active subscriptions.
        filters: Filters sent with the REQ.
        active: ``False`` once unsubscribed, closed by the relay, or lost
            with the transport. Inactive subscriptions receive no callbacks.
        eose_received: ``True`` once the relay signalled end of stored events.
    """

    __slots__ = (
        "_confirmed",
        "_on_closed",
        "_on_eose",
        "_on_event",
        "_router",
        "_transport",
        "active",
        "eose_received",
        "filters",
        "id",
    )

    def __init__(  # noqa: PLR0913
        self,
        router: SubscriptionRouter,
        transport: Transport,
        subscription_id: str,
        filters: tuple[Mapping[str, Any], ...],
        on_event: EventCallback,
        on_eose: EoseCallback | None,
        on_closed: ClosedCallback | None,
    ) -> None:
        self.id = subscription_id
        self.filters = filters
        self.active = True
        self.eose_received = False
        self._router = router
        self._transport = transport
        self._on_event = on_event
        self._on_eose = on_eose
        self._on_closed = on_closed
        self._confirmed = False

    def __repr__(self) -> str:
        return f"Subscription(id={self.id!r}, active={self.active}, eose={self.eose_received})"

    async def unsubscribe(self) -> None:
        """Stop delivery and send ``CLOSE`` if the transport is still open.

        Delivery stops before this coroutine first suspends. Safe to call
        any number of times, including after the transport closed.
        """
        await self._router.unsubscribe(self)


class SubscriptionRouter:
    """Routes relay frames to subscriptions by id.

    Args:
        connection: Source of the shared transport.
        id_length: Random characters per generated subscription id.
    """

    def __init__(self, connection: ConnectionManager, *, id_length: int = 8) -> None:
        self._connection = connection
        self._id_length = id_length
        self._subscriptions: dict[str, Subscription] = {}
        self._bound: Transport | None = None

    @property
    def active_count(self) -> int:
        return len(self._subscriptions)

    def get(self, subscription_id: str) -> Subscription | None:
        return self._subscriptions.get(subscription_id)

    def generate_id(self, prefix: str = "") -> str:
        """Return an id not used by any active subscription."""
        while True:
            sub_id = generate_subscription_id(self._id_length, prefix)
            if sub_id not in self._subscriptions:
                return sub_id

    async def subscribe(
        self,
        filters: Sequence[Mapping[str, Any]],
        on_event: EventCallback,
        *,
        on_eose: EoseCallback | None = None,
        on_closed: ClosedCallback | None = None,
        prefix: str = "",
    ) -> Subscription:
        """Open a subscription on the shared connection.

        Args:
            filters: One or more NIP-01 filter objects, passed through as is.
            on_event: Called with each event, in receive order.
            on_eose: Called once when stored events are exhausted.
            on_closed: Called with the reason when the relay or the
                transport ends the subscription (not on ``unsubscribe()``).
            prefix: Role prefix for the subscription id.

        Returns:
            The live [Subscription][shelfstr.relay.router.Subscription].

        Raises:
            ValueError: If *filters* is empty.
            RelayConnectionError: If connecting or sending the REQ fails.
                ``on_closed`` is not called in that case.
        """
        if not filters:
            raise ValueError("at least one filter is required")

        transport = await self._connection.connect()
        self._bind(transport)

        sub = Subscription(
            self,
            transport,
            self.generate_id(prefix),
            tuple(filters),
            on_event,
            on_eose,
            on_closed,
        )
        # Registered before the REQ goes out so no early EVENT is missed
        self._subscriptions[sub.id] = sub
        ACTIVE_SUBSCRIPTIONS.set(len(self._subscriptions))

        try:
            await transport.send(ReqFrame(sub.id, sub.filters))
        except RelayConnectionError:
            self._deactivate(sub)
            raise

        sub._confirmed = True
        logger.debug("subscription_opened id=%s filters=%d", sub.id, len(sub.filters))
        return sub

    async def unsubscribe(self, sub: Subscription) -> None:
        """Deactivate *sub* and send ``CLOSE`` best-effort. Idempotent."""
        if not sub.active:
            return
        self._deactivate(sub)
        logger.debug("subscription_closed id=%s", sub.id)

        if not sub._transport.is_open:
            return
        try:
            await sub._transport.send(CloseFrame(sub.id))
        except RelayConnectionError as e:
            logger.debug("close_frame_failed id=%s error=%s", sub.id, e)

    def _deactivate(self, sub: Subscription) -> None:
        sub.active = False
        if self._subscriptions.get(sub.id) is sub:
            del self._subscriptions[sub.id]
        ACTIVE_SUBSCRIPTIONS.set(len(self._subscriptions))

    def _bind(self, transport: Transport) -> None:
        if self._bound is transport:
            return
        self._bound = transport
        transport.add_listener(self._route)
        transport.add_close_callback(lambda reason: self._on_transport_closed(transport, reason))

    def _route(self, frame: Frame) -> None:
        if isinstance(frame, EventFrame):
            sub = self._subscriptions.get(frame.subscription_id)
            if sub is None:
                logger.debug("event_for_unknown_subscription id=%s", frame.subscription_id)
                return
            sub._on_event(frame.event)
        elif isinstance(frame, EoseFrame):
            sub = self._subscriptions.get(frame.subscription_id)
            if sub is None:
                return
            sub.eose_received = True
            if sub._on_eose is not None:
                sub._on_eose()
        elif isinstance(frame, ClosedFrame):
            sub = self._subscriptions.get(frame.subscription_id)
            if sub is None:
                return
            self._deactivate(sub)
            logger.info("subscription_closed_by_relay id=%s message=%s", sub.id, frame.message)
            if sub._on_closed is not None:
                sub._on_closed(frame.message)
        elif isinstance(frame, NoticeFrame):
            logger.info("relay_notice url=%s message=%s", self._connection.url, frame.message)

    def _on_transport_closed(self, transport: Transport, reason: str) -> None:
        if self._bound is transport:
            self._bound = None
        lost = [sub for sub in self._subscriptions.values() if sub._transport is transport]
        for sub in lost:
            self._deactivate(sub)
        if lost:
            logger.info("subscriptions_lost count=%d reason=%s", len(lost), reason)
        for sub in lost:
            if sub._confirmed and sub._on_closed is not None:
                try:
                    sub._on_closed(reason)
                except Exception:
                    logger.exception("on_closed_failed id=%s", sub.id)
