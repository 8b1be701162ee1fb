"""shelfstr exception hierarchy.

Typed exceptions separate recoverable connectivity problems from permanent
failures, and let ``CancelledError`` propagate untouched.

Exception hierarchy:

```text
ShelfstrError (base -- never raised directly)
├── ConfigurationError         -- bad YAML, invalid config values
├── ConnectivityError          -- relay unreachable or gone
│   ├── RelayConnectionError   -- handshake failed / transport closed
│   └── RelayTimeoutError      -- ack or batch exceeded its deadline
├── ProtocolError              -- frame matched no known shape (dropped)
├── ValidationError            -- domain shape check failed (not surfaced)
├── CapabilityError            -- publish attempted without a signer
└── PublishingError            -- event publication failed
    └── PublishRejectedError   -- relay answered OK with accepted=false
```

``RelayConnectionError`` and ``RelayTimeoutError`` also derive from the
builtin ``ConnectionError`` and ``TimeoutError`` so generic handlers in
calling code keep working.

See Also:
    [retry_async()][shelfstr.utils.retry.retry_async]: Retries
        [ConnectivityError][shelfstr.core.exceptions.ConnectivityError]
        with bounded backoff and re-raises the last one.
"""

from __future__ import annotations


class ShelfstrError(Exception):
    """Base exception for all shelfstr errors. Never raised directly."""


# ---------------------------------------------------------------------------
# Configuration
# ---------------------------------------------------------------------------


class ConfigurationError(ShelfstrError):
    """Invalid or missing configuration (YAML, env vars, CLI flags)."""


# ---------------------------------------------------------------------------
# Connectivity
# ---------------------------------------------------------------------------


class ConnectivityError(ShelfstrError):
    """Base for relay connectivity errors. Recoverable by reconnecting."""


class RelayConnectionError(ConnectivityError, ConnectionError):
    """The transport failed to open, or closed while an operation depended on it.

    Raised by
    [ConnectionManager.connect()][shelfstr.relay.connection.ConnectionManager.connect]
    on handshake failure and by the publish tracker when the transport closes
    before an acknowledgment arrives.
    """


class RelayTimeoutError(ConnectivityError, TimeoutError):
    """A publish acknowledgment or a batch fetch exceeded its deadline.

    Callers may retry; any retry must be bounded.
    """


# ---------------------------------------------------------------------------
# Protocol / domain
# ---------------------------------------------------------------------------


class ProtocolError(ShelfstrError):
    """A wire frame did not match any recognized shape.

    Raised by [decode_frame()][shelfstr.relay.codec.decode_frame]. The
    transport logs and drops such frames; it is never fatal.
    """


class ValidationError(ShelfstrError):
    """A relay event failed the domain shape check.

    Parsers catch this internally and return ``None``: an invalid event is a
    filtered-out input, not a failure.
    """


class CapabilityError(ShelfstrError):
    """Publishing was attempted without signing capability. Not retried."""


# ---------------------------------------------------------------------------
# Publishing
# ---------------------------------------------------------------------------


class PublishingError(ShelfstrError):
    """Failed to publish an event to the relay."""


class PublishRejectedError(PublishingError):
    """The relay acknowledged the event with ``accepted=false``.

    Attributes:
        event_id: Id of the rejected event.
        reason: Message returned by the relay (may be empty).
    """

    def __init__(self, event_id: str, reason: str) -> None:
        super().__init__(f"relay rejected event {event_id}: {reason or 'no reason given'}")
        self.event_id = event_id
        self.reason = reason
