"""
Immutable Nostr events as exchanged on the wire.

[Event][shelfstr.models.event.Event] is a signed event received from or sent
to a relay. [UnsignedEvent][shelfstr.models.event.UnsignedEvent] is the
template handed to a signer. Both validate their fields eagerly so that an
instance which exists is always well-formed; relay input that fails
validation never becomes an ``Event``.

See Also:
    [shelfstr.relay.codec][]: Decodes ``EVENT`` frames into
        [Event][shelfstr.models.event.Event] instances.
    [shelfstr.utils.keys][]: Signs
        [UnsignedEvent][shelfstr.models.event.UnsignedEvent] templates.
"""

from __future__ import annotations

import json
from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any

from ._validation import (
    freeze_tags,
    validate_hex,
    validate_mapping,
    validate_str_no_null,
    validate_timestamp,
)
from .constants import EVENT_KIND_MAX


Tags = tuple[tuple[str, ...], ...]

_ID_LENGTH = 64
_PUBKEY_LENGTH = 64
_SIG_LENGTH = 128


def _validate_kind(value: Any) -> None:
    if isinstance(value, bool) or not isinstance(value, int):
        raise TypeError(f"kind must be an int, got {type(value).__name__}")
    if not 0 <= value <= EVENT_KIND_MAX:
        raise ValueError(f"kind must be between 0 and {EVENT_KIND_MAX}, got {value}")


def _require(data: Mapping[str, Any], key: str) -> Any:
    try:
        return data[key]
    except KeyError:
        raise ValueError(f"event is missing required field '{key}'") from None


@dataclass(frozen=True, slots=True)
class Event:
    """Immutable signed Nostr event.

    Tags are normalized to a tuple of string tuples on construction, so an
    ``Event`` is hashable and safe to share between subscriptions.

    Attributes:
        id: 64-char lowercase hex event id.
        pubkey: 64-char lowercase hex author public key.
        created_at: Unix timestamp in seconds.
        kind: Integer event kind (``0 <= kind <= 65535``).
        tags: Event tags, each a tuple of strings.
        content: Event content.
        sig: 128-char lowercase hex Schnorr signature.

    Raises:
        TypeError: If a field has the wrong type.
        ValueError: If a field has the right type but an invalid value.

    Note:
        The signature is checked for shape only. Cryptographic verification
        is left to the relay.

    Examples:
        ```python
        event = Event.from_dict(json.loads(raw))
        event.tag_values("i")   # ['isbn:9781729527085', 'isbn:1639940251']
        event.to_dict()         # wire object
        ```
    """

    id: str
    pubkey: str
    created_at: int
    kind: int
    tags: Tags
    content: str
    sig: str

    def __post_init__(self) -> None:
        validate_hex(self.id, "id", _ID_LENGTH)
        validate_hex(self.pubkey, "pubkey", _PUBKEY_LENGTH)
        validate_timestamp(self.created_at, "created_at")
        _validate_kind(self.kind)
        validate_str_no_null(self.content, "content")
        validate_hex(self.sig, "sig", _SIG_LENGTH)
        object.__setattr__(self, "tags", freeze_tags(self.tags, "tags"))

    @classmethod
    def from_dict(cls, data: Any) -> Event:
        """Build an event from its wire object.

        Raises:
            TypeError: If *data* is not a mapping or a field has the wrong type.
            ValueError: If a required field is missing or invalid.
        """
        validate_mapping(data, "event")
        return cls(
            id=_require(data, "id"),
            pubkey=_require(data, "pubkey"),
            created_at=_require(data, "created_at"),
            kind=_require(data, "kind"),
            tags=_require(data, "tags"),
            content=_require(data, "content"),
            sig=_require(data, "sig"),
        )

    @classmethod
    def from_json(cls, raw: str) -> Event:
        """Build an event from a JSON string (e.g. ``nostr_sdk.Event.as_json()``)."""
        return cls.from_dict(json.loads(raw))

    def to_dict(self) -> dict[str, Any]:
        """Return the wire object for this event."""
        return {
            "id": self.id,
            "pubkey": self.pubkey,
            "created_at": self.created_at,
            "kind": self.kind,
            "tags": [list(tag) for tag in self.tags],
            "content": self.content,
            "sig": self.sig,
        }

    def tag_values(self, name: str) -> list[str]:
        """Return the first value of every tag named *name*, in tag order."""
        return [tag[1] for tag in self.tags if len(tag) >= 2 and tag[0] == name]  # noqa: PLR2004


@dataclass(frozen=True, slots=True)
class UnsignedEvent:
    """Event template awaiting a signature.

    ``pubkey`` may be empty: the signer fills in the key it signs with.
    """

    kind: int
    content: str
    tags: Tags = ()
    created_at: int = 0
    pubkey: str = ""

    def __post_init__(self) -> None:
        _validate_kind(self.kind)
        validate_str_no_null(self.content, "content")
        validate_timestamp(self.created_at, "created_at")
        if self.pubkey:
            validate_hex(self.pubkey, "pubkey", _PUBKEY_LENGTH)
        object.__setattr__(self, "tags", freeze_tags(self.tags, "tags"))

    def to_dict(self) -> dict[str, Any]:
        return {
            "pubkey": self.pubkey,
            "created_at": self.created_at,
            "kind": self.kind,
            "tags": [list(tag) for tag in self.tags],
            "content": self.content,
        }
