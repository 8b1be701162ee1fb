"""Shared constants for the models layer.

Defines enumerations used across the models, relay and cache packages.
Placing them here avoids circular dependencies between those layers.

See Also:
    [shelfstr.relay.connection][]: Drives the
        [ConnectionState][shelfstr.models.constants.ConnectionState] machine.
    [shelfstr.events][]: Parses events of the kinds listed in
        [EventKind][shelfstr.models.constants.EventKind].
"""

from __future__ import annotations

from enum import IntEnum, StrEnum


class ConnectionState(StrEnum):
    """Lifecycle of the single relay connection.

    Transitions are ``idle -> connecting -> open -> closed`` and
    ``closed -> connecting`` on the next connect request. A failed handshake
    moves ``connecting -> closed``.

    Attributes:
        IDLE: No connection has been requested yet.
        CONNECTING: A handshake is in progress; callers share its future.
        OPEN: The transport is usable.
        CLOSED: The transport closed or failed; the next connect reopens.
    """

    IDLE = "idle"
    CONNECTING = "connecting"
    OPEN = "open"
    CLOSED = "closed"


class EventKind(IntEnum):
    """Nostr event kinds handled by shelfstr.

    Attributes:
        METADATA: Kind 0 -- user profile metadata (NIP-01).
        SIMILARITY: Kind 1729 -- similarity relation between two books.
    """

    METADATA = 0
    SIMILARITY = 1729


class ItemScheme(StrEnum):
    """Identifier schemes accepted for items in a similarity relation."""

    ISBN = "isbn"


class SubscriptionRole(StrEnum):
    """Subscription id prefixes identifying which component opened it.

    Attributes:
        BATCH: Batched cache lookups (profiles).
        FEED: The similarity feed.
    """

    BATCH = "b"
    FEED = "f"


EVENT_KIND_MAX = 65_535
