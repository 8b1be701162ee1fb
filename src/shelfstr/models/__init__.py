"""Pure frozen dataclasses with zero I/O for relays, events and profiles.

The models layer is the foundation of the package: it depends on no other
shelfstr package. Every model uses ``@dataclass(frozen=True, slots=True)``
and validates in ``__post_init__`` so invalid instances never escape the
constructor.

Attributes:
    Relay: Validated relay URL with RFC 3986 parsing and normalization.
    Event: Signed Nostr event as exchanged on the wire.
    UnsignedEvent: Event template awaiting a signature.
    ItemRef: Reference to a book by ISBN.
    SimilarityRelation: Validated similarity between two items.
    ProfileMetadata: Recognized kind-0 fields plus extras.
    Profile: Cached profile with its loaded state.
    ConnectionState: Relay connection lifecycle states.
    EventKind: Event kinds handled by shelfstr.

Note:
    All models use ``object.__setattr__`` in ``__post_init__`` to set
    normalized fields on frozen dataclasses.
"""

from .constants import EVENT_KIND_MAX, ConnectionState, EventKind, ItemScheme, SubscriptionRole
from .event import Event, Tags, UnsignedEvent
from .profile import Profile, ProfileMetadata
from .relay import Relay
from .similarity import ItemRef, SimilarityRelation


__all__ = [
    "EVENT_KIND_MAX",
    "ConnectionState",
    "Event",
    "EventKind",
    "ItemRef",
    "ItemScheme",
    "Profile",
    "ProfileMetadata",
    "Relay",
    "SimilarityRelation",
    "SubscriptionRole",
    "Tags",
    "UnsignedEvent",
]
