"""
Publish-with-acknowledgment tracking.

[PublishTracker.publish()][shelfstr.relay.publisher.PublishTracker.publish]
sends ``["EVENT", event]`` and waits for the relay's ``["OK", id, accepted,
message]`` answer for that exact id. Each pending publish resolves exactly
once, to one of:

* the event id (``accepted=true``);
* [PublishRejectedError][shelfstr.core.exceptions.PublishRejectedError]
  (``accepted=false``);
* [RelayTimeoutError][shelfstr.core.exceptions.RelayTimeoutError] after the
  deadline, even while acks for other ids keep arriving;
* [RelayConnectionError][shelfstr.core.exceptions.RelayConnectionError] if
  the transport closes first.

Publishing an id that is already pending does not resend; the second caller
awaits the outcome of the first.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass

from shelfstr.core.exceptions import (
    PublishRejectedError,
    RelayConnectionError,
    RelayTimeoutError,
)
from shelfstr.core.metrics import PUBLISH_RESULTS
from shelfstr.models import Event

from .codec import Frame, OkFrame, PublishFrame
from .connection import ConnectionManager


logger = logging.getLogger("relay.publisher")


@dataclass(slots=True)
class PendingPublish:
    """An event awaiting its acknowledgment.

    Attributes:
        event_id: Id the ack must match.
        deadline: Loop time after which the publish fails with a timeout.
        future: Resolves to the event id or fails with the outcome error.
    """

    event_id: str
    deadline: float
    future: asyncio.Future[str]


def _outcome(future: asyncio.Future[str]) -> str:
    if future.cancelled():
        return "cancelled"
    error = future.exception()
    if error is None:
        return "accepted"
    if isinstance(error, PublishRejectedError):
        return "rejected"
    if isinstance(error, RelayTimeoutError):
        return "timeout"
    return "disconnected"


class PublishTracker:
    """Sends events and matches relay acknowledgments by event id.

    Args:
        connection: Source of the shared transport.
        timeout: Default seconds to wait for an ack.
    """

    def __init__(self, connection: ConnectionManager, *, timeout: float = 10.0) -> None:
        self._connection = connection
        self._timeout = timeout
        self._pending: dict[str, PendingPublish] = {}

    @property
    def pending_count(self) -> int:
        return len(self._pending)

    def is_pending(self, event_id: str) -> bool:
        return event_id in self._pending

    async def publish(self, event: Event, *, timeout: float | None = None) -> str:
        """Publish *event* and wait for the relay to accept it.

        Args:
            event: Signed event to publish.
            timeout: Seconds to wait for the ack (defaults to the tracker's).

        Returns:
            The event id once accepted.

        Raises:
            PublishRejectedError: The relay answered ``accepted=false``.
            RelayTimeoutError: No matching ack before the deadline.
            RelayConnectionError: Connecting failed or the transport closed
                before the ack.
        """
        existing = self._pending.get(event.id)
        if existing is not None:
            logger.debug("publish_coalesced id=%s", event.id)
            return await asyncio.shield(existing.future)

        transport = await self._connection.connect()

        # Re-check: another publish of this id may have registered meanwhile
        existing = self._pending.get(event.id)
        if existing is not None:
            return await asyncio.shield(existing.future)

        wait = self._timeout if timeout is None else timeout
        loop = asyncio.get_running_loop()
        future: asyncio.Future[str] = loop.create_future()
        pending = PendingPublish(event.id, loop.time() + wait, future)
        self._pending[event.id] = pending

        def on_frame(frame: Frame) -> None:
            if not isinstance(frame, OkFrame) or frame.event_id != event.id or future.done():
                return
            if frame.accepted:
                future.set_result(event.id)
            else:
                future.set_exception(PublishRejectedError(event.id, frame.message))

        def on_close(reason: str) -> None:
            if not future.done():
                future.set_exception(
                    RelayConnectionError(f"connection closed before ack for {event.id}: {reason}")
                )

        def on_deadline() -> None:
            if not future.done():
                future.set_exception(
                    RelayTimeoutError(f"no acknowledgment for {event.id} within {wait}s")
                )

        remove_listener = transport.add_listener(on_frame)
        remove_close_callback = transport.add_close_callback(on_close)
        timer = loop.call_at(pending.deadline, on_deadline)

        def settle(f: asyncio.Future[str]) -> None:
            remove_listener()
            remove_close_callback()
            timer.cancel()
            if self._pending.get(event.id) is pending:
                del self._pending[event.id]
            outcome = _outcome(f)
            PUBLISH_RESULTS.labels(result=outcome).inc()
            if outcome == "accepted":
                logger.debug("publish_accepted id=%s", event.id)
            else:
                logger.warning("publish_failed id=%s outcome=%s", event.id, outcome)

        future.add_done_callback(settle)

        try:
            await transport.send(PublishFrame(event))
        except RelayConnectionError as e:
            if not future.done():
                future.set_exception(e)

        return await asyncio.shield(future)
