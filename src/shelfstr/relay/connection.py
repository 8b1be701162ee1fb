"""
Single-connection lifecycle management.

The [ConnectionManager][shelfstr.relay.connection.ConnectionManager] owns the
one transport to the configured relay. It guarantees that at most one
transport is open or opening at any time:

* concurrent ``connect()`` calls while a handshake is in progress all await
  the same future and receive the same transport;
* once open, ``connect()`` returns the live transport without suspending
  on I/O;
* when the transport closes, the handle is cleared and the next
  ``connect()`` opens a fresh one;
* ``close()`` during a handshake fails its waiters with
  ``RelayConnectionError`` and closes whatever transport it yields.

``connect()`` never retries on its own.
[connect_with_retry()][shelfstr.relay.connection.ConnectionManager.connect_with_retry]
layers the bounded backoff policy on top.
"""

from __future__ import annotations

import asyncio
import logging

from shelfstr.core.exceptions import RelayConnectionError
from shelfstr.models import ConnectionState
from shelfstr.utils.retry import RetryConfig, retry_async

from .transport import Transport, TransportFactory, open_websocket


logger = logging.getLogger("relay.connection")


class ConnectionManager:
    """Owns the lifecycle of the single relay transport.

    Args:
        url: Relay URL.
        connect_timeout: Handshake timeout passed to the factory.
        retry: Backoff policy used by ``connect_with_retry()``.
        transport_factory: ``factory(url, timeout)`` coroutine returning an
            open transport. Defaults to
            [open_websocket()][shelfstr.relay.transport.open_websocket].

    Examples:
        ```python
        manager = ConnectionManager("wss://relay.damus.io")
        t1, t2 = await asyncio.gather(manager.connect(), manager.connect())
        assert t1 is t2
        ```
    """

    def __init__(
        self,
        url: str,
        *,
        connect_timeout: float = 10.0,
        retry: RetryConfig | None = None,
        transport_factory: TransportFactory | None = None,
    ) -> None:
        self._url = url
        self._connect_timeout = connect_timeout
        self._retry = retry or RetryConfig()
        self._factory: TransportFactory = transport_factory or open_websocket
        self._state = ConnectionState.IDLE
        self._transport: Transport | None = None
        self._pending: asyncio.Future[Transport] | None = None
        self._generation = 0
        self._closing: set[asyncio.Future[None]] = set()

    @property
    def url(self) -> str:
        return self._url

    @property
    def state(self) -> ConnectionState:
        return self._state

    @property
    def transport(self) -> Transport | None:
        """The open transport, or ``None`` when not connected."""
        return self._transport if self._state == ConnectionState.OPEN else None

    async def connect(self) -> Transport:
        """Return the open transport, opening one if needed.

        Raises:
            RelayConnectionError: If the handshake fails or ``close()`` runs
                before it completes. Every caller that was awaiting the same
                handshake receives the same error.
        """
        if self._transport is not None and self._transport.is_open:
            return self._transport

        if self._pending is None:
            self._state = ConnectionState.CONNECTING
            logger.debug("connect_started url=%s", self._url)
            generation = self._generation
            self._pending = asyncio.ensure_future(self._open())
            self._pending.add_done_callback(lambda f: self._on_connect_done(f, generation))

        pending, generation = self._pending, self._generation
        try:
            # Shielded so one cancelled caller does not abort the shared handshake
            transport = await asyncio.shield(pending)
        except asyncio.CancelledError:
            task = asyncio.current_task()
            if pending.cancelled() and generation != self._generation:
                if task is None or not task.cancelling():
                    raise self._closed_during_handshake() from None
            raise
        if generation != self._generation:
            raise self._closed_during_handshake()
        return transport

    async def connect_with_retry(self) -> Transport:
        """Like ``connect()``, retrying connectivity failures with backoff."""
        return await retry_async(self.connect, self._retry, "relay_connect")

    async def close(self) -> None:
        """Close the transport if open. Idempotent.

        A handshake still in progress is abandoned: its waiters receive
        [RelayConnectionError][shelfstr.core.exceptions.RelayConnectionError]
        and a transport it opens late is closed.
        """
        self._generation += 1
        pending, self._pending = self._pending, None
        if pending is not None and not pending.done():
            pending.cancel()
        transport, self._transport = self._transport, None
        if transport is not None:
            await transport.close()
        if self._state != ConnectionState.IDLE:
            self._state = ConnectionState.CLOSED

    async def _open(self) -> Transport:
        try:
            transport = await self._factory(self._url, self._connect_timeout)
        except RelayConnectionError:
            raise
        except (TimeoutError, OSError) as e:
            raise RelayConnectionError(f"Connection failed: {e}") from e
        if not transport.is_open:
            raise RelayConnectionError(f"transport to {self._url} closed during handshake")
        return transport

    def _closed_during_handshake(self) -> RelayConnectionError:
        return RelayConnectionError(f"connection to {self._url} closed during handshake")

    def _on_connect_done(self, future: asyncio.Future[Transport], generation: int) -> None:
        if generation != self._generation:
            # close() ran while the handshake was in flight
            if not future.cancelled() and future.exception() is None:
                self._close_abandoned(future.result())
            return

        self._pending = None
        if future.cancelled():
            self._state = ConnectionState.CLOSED
            return
        error = future.exception()
        if error is not None:
            self._state = ConnectionState.CLOSED
            logger.warning("connect_failed url=%s error=%s", self._url, error)
            return

        transport = future.result()
        self._transport = transport
        self._state = ConnectionState.OPEN
        transport.add_close_callback(lambda reason: self._on_transport_closed(transport, reason))
        logger.info("connected url=%s", self._url)

    def _close_abandoned(self, transport: Transport) -> None:
        logger.debug("abandoned_transport_closing url=%s", self._url)
        task = asyncio.ensure_future(transport.close())
        self._closing.add(task)
        task.add_done_callback(self._closing.discard)

    def _on_transport_closed(self, transport: Transport, reason: str) -> None:
        if self._transport is not transport:
            return
        self._transport = None
        self._state = ConnectionState.CLOSED
        logger.info("disconnected url=%s reason=%s", self._url, reason)
