"""
Frame transports for the relay connection.

A [Transport][shelfstr.relay.transport.Transport] carries encoded frames to
the relay and fans decoded inbound frames out to registered listeners. The
base class owns everything that is independent of the socket library:
listener and close-callback registration, decoding, and the one-shot close
notification. [WebSocketTransport][shelfstr.relay.transport.WebSocketTransport]
implements it over an ``aiohttp`` client WebSocket.

Inbound frames that fail to decode are logged and dropped. A listener that
raises is logged and does not prevent delivery to the remaining listeners.

See Also:
    [ConnectionManager][shelfstr.relay.connection.ConnectionManager]: Opens
        transports through a
        [TransportFactory][shelfstr.relay.transport.TransportFactory].
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
from abc import ABC, abstractmethod
from collections.abc import Awaitable, Callable

import aiohttp

from shelfstr.core.exceptions import ProtocolError, RelayConnectionError
from shelfstr.core.metrics import RELAY_FRAMES

from .codec import Frame, decode_frame, encode_frame


logger = logging.getLogger("relay.transport")

FrameListener = Callable[[Frame], None]
CloseCallback = Callable[[str], None]

_WS_CLOSE_TIMEOUT = 5.0
_WS_HEARTBEAT = 30.0


class Transport(ABC):
    """Bidirectional frame channel to one relay.

    Subclasses implement ``_send_text`` and ``close`` and call
    ``_dispatch_text`` for every inbound text message and ``_mark_closed``
    exactly when the underlying socket goes away.
    """

    def __init__(self, url: str) -> None:
        self.url = url
        self.close_reason: str | None = None
        self._closed = False
        self._listeners: list[FrameListener] = []
        self._close_callbacks: list[CloseCallback] = []

    @property
    def is_open(self) -> bool:
        return not self._closed

    def add_listener(self, listener: FrameListener) -> Callable[[], None]:
        """Register *listener* for every inbound frame.

        Returns:
            A function that removes the listener. Calling it twice is harmless.
        """
        self._listeners.append(listener)

        def remove() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return remove

    def add_close_callback(self, callback: CloseCallback) -> Callable[[], None]:
        """Register *callback* to run once with the close reason.

        If the transport is already closed the callback runs immediately.

        Returns:
            A function that unregisters the callback.
        """
        if self._closed:
            callback(self.close_reason or "closed")
            return lambda: None

        self._close_callbacks.append(callback)

        def remove() -> None:
            if callback in self._close_callbacks:
                self._close_callbacks.remove(callback)

        return remove

    async def send(self, frame: Frame) -> None:
        """Encode and send one frame.

        Raises:
            RelayConnectionError: If the transport is closed or the write fails.
        """
        if self._closed:
            raise RelayConnectionError(f"transport to {self.url} is closed")
        await self._send_text(encode_frame(frame))
        RELAY_FRAMES.labels(direction="out", frame_type=frame.TYPE.value).inc()

    @abstractmethod
    async def _send_text(self, text: str) -> None:
        """Write one text message to the socket."""

    @abstractmethod
    async def close(self) -> None:
        """Close the socket. Close callbacks run with reason ``"closed by client"``."""

    def _dispatch_text(self, text: str | bytes) -> None:
        try:
            frame = decode_frame(text)
        except ProtocolError as e:
            RELAY_FRAMES.labels(direction="in", frame_type="invalid").inc()
            logger.warning("invalid_frame_dropped url=%s error=%s", self.url, e)
            return

        RELAY_FRAMES.labels(direction="in", frame_type=frame.TYPE.value).inc()
        for listener in list(self._listeners):
            try:
                listener(frame)
            except Exception:
                logger.exception("frame_listener_failed url=%s frame=%s", self.url, frame.TYPE)

    def _mark_closed(self, reason: str) -> None:
        if self._closed:
            return
        self._closed = True
        self.close_reason = reason
        callbacks, self._close_callbacks = self._close_callbacks, []
        logger.debug("transport_closed url=%s reason=%s", self.url, reason)
        for callback in callbacks:
            try:
                callback(reason)
            except Exception:
                logger.exception("close_callback_failed url=%s", self.url)


TransportFactory = Callable[[str, float], Awaitable[Transport]]
"""``factory(url, timeout)`` returning an open transport, or raising
[RelayConnectionError][shelfstr.core.exceptions.RelayConnectionError]."""


class WebSocketTransport(Transport):
    """Transport over an ``aiohttp`` client WebSocket.

    A reader task consumes inbound messages until the socket closes, then
    marks the transport closed and releases the HTTP session.
    """

    def __init__(
        self,
        url: str,
        ws: aiohttp.ClientWebSocketResponse,
        session: aiohttp.ClientSession,
        close_timeout: float = _WS_CLOSE_TIMEOUT,
    ) -> None:
        super().__init__(url)
        self._ws = ws
        self._session = session
        self._close_timeout = close_timeout
        self._reader: asyncio.Task[None] | None = None

    def start(self) -> None:
        """Start the reader task. Called once by the factory."""
        if self._reader is None:
            self._reader = asyncio.create_task(self._read_loop(), name=f"relay-reader:{self.url}")

    async def _read_loop(self) -> None:
        reason = "connection closed by relay"
        try:
            async for msg in self._ws:
                if msg.type == aiohttp.WSMsgType.TEXT:
                    self._dispatch_text(msg.data)
                elif msg.type == aiohttp.WSMsgType.BINARY:
                    logger.debug("binary_message_ignored url=%s size=%d", self.url, len(msg.data))
                elif msg.type == aiohttp.WSMsgType.ERROR:
                    reason = f"websocket error: {self._ws.exception()}"
                    break
        finally:
            if self._ws.close_code is not None and reason == "connection closed by relay":
                reason = f"connection closed by relay (code {self._ws.close_code})"
            self._mark_closed(reason)
            await self._release()

    async def _send_text(self, text: str) -> None:
        try:
            await self._ws.send_str(text)
        except (aiohttp.ClientError, OSError) as e:
            self._mark_closed(f"send failed: {e}")
            raise RelayConnectionError(f"send to {self.url} failed: {e}") from e

    async def close(self) -> None:
        self._mark_closed("closed by client")
        await self._release()
        if self._reader is not None and not self._reader.done():
            self._reader.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._reader

    async def _release(self) -> None:
        # aiohttp can raise ClientError, ServerDisconnectedError, etc. during teardown
        with contextlib.suppress(Exception):
            await asyncio.wait_for(self._ws.close(), timeout=self._close_timeout)
        with contextlib.suppress(Exception):
            await asyncio.wait_for(self._session.close(), timeout=self._close_timeout)


async def open_websocket(url: str, timeout: float) -> WebSocketTransport:
    """Open a WebSocket to *url* and start its reader task.

    Args:
        url: Relay URL (``ws://`` or ``wss://``).
        timeout: Handshake timeout in seconds.

    Returns:
        An open [WebSocketTransport][shelfstr.relay.transport.WebSocketTransport].

    Raises:
        RelayConnectionError: If the handshake fails or times out.
        asyncio.CancelledError: If cancelled; the session is closed first.
    """
    session = aiohttp.ClientSession()

    try:
        ws = await asyncio.wait_for(session.ws_connect(url, heartbeat=_WS_HEARTBEAT), timeout)
    except aiohttp.ClientError as e:
        await session.close()
        logger.debug("ws_connect_failed url=%s error=%s", url, str(e))
        raise RelayConnectionError(f"Connection failed: {e}") from e
    except TimeoutError:
        await session.close()
        logger.debug("ws_connect_timeout url=%s", url)
        raise RelayConnectionError(f"Connection timeout: {url}") from None
    except asyncio.CancelledError:
        await session.close()
        logger.debug("ws_connect_cancelled url=%s", url)
        raise
    except OSError as e:
        await session.close()
        logger.debug("ws_connect_error url=%s error=%s", url, str(e))
        raise RelayConnectionError(f"Connection failed: {e}") from e

    transport = WebSocketTransport(url, ws, session)
    transport.start()
    return transport
