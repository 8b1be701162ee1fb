"""
NIP-01 wire codec.

Every message on the relay connection is a JSON array whose first element
names the frame type. [encode_frame()][shelfstr.relay.codec.encode_frame]
serializes the typed frame objects defined here and
[decode_frame()][shelfstr.relay.codec.decode_frame] parses text back into
them, for both directions:

```text
client -> relay   ["REQ", sub_id, filter, ...]     ReqFrame
                  ["CLOSE", sub_id]                CloseFrame
                  ["EVENT", event]                 PublishFrame
relay -> client   ["EVENT", sub_id, event]         EventFrame
                  ["EOSE", sub_id]                 EoseFrame
                  ["OK", event_id, accepted, msg]  OkFrame
                  ["NOTICE", message]              NoticeFrame
                  ["CLOSED", sub_id, message]      ClosedFrame
```

``EVENT`` is disambiguated by arity and by whether the second element is a
string (subscription id) or an object (event).

Any text that does not match one of these shapes raises
[ProtocolError][shelfstr.core.exceptions.ProtocolError]; the transport logs
and drops such frames.
"""

from __future__ import annotations

import json
from collections.abc import Mapping
from dataclasses import dataclass
from enum import StrEnum
from typing import Any, ClassVar

from shelfstr.core.exceptions import ProtocolError
from shelfstr.models import Event


class FrameType(StrEnum):
    """First element of every NIP-01 frame."""

    REQ = "REQ"
    CLOSE = "CLOSE"
    EVENT = "EVENT"
    EOSE = "EOSE"
    OK = "OK"
    NOTICE = "NOTICE"
    CLOSED = "CLOSED"


# =============================================================================
# Frames
# =============================================================================


@dataclass(frozen=True, slots=True)
class ReqFrame:
    """Open a subscription with one or more filters."""

    TYPE: ClassVar[FrameType] = FrameType.REQ

    subscription_id: str
    filters: tuple[Mapping[str, Any], ...]

    def to_wire(self) -> list[Any]:
        return [self.TYPE.value, self.subscription_id, *(dict(f) for f in self.filters)]


@dataclass(frozen=True, slots=True)
class CloseFrame:
    """Close a subscription."""

    TYPE: ClassVar[FrameType] = FrameType.CLOSE

    subscription_id: str

    def to_wire(self) -> list[Any]:
        return [self.TYPE.value, self.subscription_id]


@dataclass(frozen=True, slots=True)
class PublishFrame:
    """Client-to-relay event publication."""

    TYPE: ClassVar[FrameType] = FrameType.EVENT

    event: Event

    def to_wire(self) -> list[Any]:
        return [self.TYPE.value, self.event.to_dict()]


@dataclass(frozen=True, slots=True)
class EventFrame:
    """Relay-to-client event delivered on a subscription."""

    TYPE: ClassVar[FrameType] = FrameType.EVENT

    subscription_id: str
    event: Event

    def to_wire(self) -> list[Any]:
        return [self.TYPE.value, self.subscription_id, self.event.to_dict()]


@dataclass(frozen=True, slots=True)
class EoseFrame:
    """End of stored events for a subscription."""

    TYPE: ClassVar[FrameType] = FrameType.EOSE

    subscription_id: str

    def to_wire(self) -> list[Any]:
        return [self.TYPE.value, self.subscription_id]


@dataclass(frozen=True, slots=True)
class OkFrame:
    """Acknowledgment of a published event."""

    TYPE: ClassVar[FrameType] = FrameType.OK

    event_id: str
    accepted: bool
    message: str = ""

    def to_wire(self) -> list[Any]:
        return [self.TYPE.value, self.event_id, self.accepted, self.message]


@dataclass(frozen=True, slots=True)
class NoticeFrame:
    """Human-readable message from the relay."""

    TYPE: ClassVar[FrameType] = FrameType.NOTICE

    message: str

    def to_wire(self) -> list[Any]:
        return [self.TYPE.value, self.message]


@dataclass(frozen=True, slots=True)
class ClosedFrame:
    """Relay-side termination of a subscription."""

    TYPE: ClassVar[FrameType] = FrameType.CLOSED

    subscription_id: str
    message: str = ""

    def to_wire(self) -> list[Any]:
        return [self.TYPE.value, self.subscription_id, self.message]


Frame = (
    ReqFrame
    | CloseFrame
    | PublishFrame
    | EventFrame
    | EoseFrame
    | OkFrame
    | NoticeFrame
    | ClosedFrame
)


# =============================================================================
# Encoding
# =============================================================================


def encode_frame(frame: Frame) -> str:
    """Serialize a frame to its compact JSON text."""
    return json.dumps(frame.to_wire(), separators=(",", ":"), ensure_ascii=False)


# =============================================================================
# Decoding
# =============================================================================


def _expect_str(value: Any, what: str) -> str:
    if not isinstance(value, str):
        raise ProtocolError(f"{what} must be a string, got {type(value).__name__}")
    return value


def _decode_event(value: Any) -> Event:
    try:
        return Event.from_dict(value)
    except (TypeError, ValueError) as e:
        raise ProtocolError(f"invalid event: {e}") from e


def _decode_req(parts: list[Any]) -> ReqFrame:
    if len(parts) < 3:  # noqa: PLR2004
        raise ProtocolError("REQ frame requires a subscription id and at least one filter")
    filters = parts[2:]
    for f in filters:
        if not isinstance(f, dict):
            raise ProtocolError(f"REQ filter must be an object, got {type(f).__name__}")
    return ReqFrame(_expect_str(parts[1], "subscription id"), tuple(filters))


def _decode_close(parts: list[Any]) -> CloseFrame:
    if len(parts) != 2:  # noqa: PLR2004
        raise ProtocolError("CLOSE frame requires exactly a subscription id")
    return CloseFrame(_expect_str(parts[1], "subscription id"))


def _decode_event_frame(parts: list[Any]) -> PublishFrame | EventFrame:
    if len(parts) == 2 and isinstance(parts[1], dict):  # noqa: PLR2004
        return PublishFrame(_decode_event(parts[1]))
    if len(parts) == 3:  # noqa: PLR2004
        return EventFrame(_expect_str(parts[1], "subscription id"), _decode_event(parts[2]))
    raise ProtocolError(f"EVENT frame has unexpected shape (length {len(parts)})")


def _decode_eose(parts: list[Any]) -> EoseFrame:
    if len(parts) != 2:  # noqa: PLR2004
        raise ProtocolError("EOSE frame requires exactly a subscription id")
    return EoseFrame(_expect_str(parts[1], "subscription id"))


def _decode_ok(parts: list[Any]) -> OkFrame:
    if len(parts) not in (3, 4):
        raise ProtocolError("OK frame requires an event id, a flag and a message")
    accepted = parts[2]
    if not isinstance(accepted, bool):
        raise ProtocolError(f"OK accepted flag must be a boolean, got {type(accepted).__name__}")
    message = _expect_str(parts[3], "OK message") if len(parts) == 4 else ""  # noqa: PLR2004
    return OkFrame(_expect_str(parts[1], "event id"), accepted, message)


def _decode_notice(parts: list[Any]) -> NoticeFrame:
    if len(parts) != 2:  # noqa: PLR2004
        raise ProtocolError("NOTICE frame requires exactly a message")
    return NoticeFrame(_expect_str(parts[1], "NOTICE message"))


def _decode_closed(parts: list[Any]) -> ClosedFrame:
    if len(parts) not in (2, 3):
        raise ProtocolError("CLOSED frame requires a subscription id and a message")
    message = _expect_str(parts[2], "CLOSED message") if len(parts) == 3 else ""  # noqa: PLR2004
    return ClosedFrame(_expect_str(parts[1], "subscription id"), message)


_DECODERS = {
    FrameType.REQ: _decode_req,
    FrameType.CLOSE: _decode_close,
    FrameType.EVENT: _decode_event_frame,
    FrameType.EOSE: _decode_eose,
    FrameType.OK: _decode_ok,
    FrameType.NOTICE: _decode_notice,
    FrameType.CLOSED: _decode_closed,
}


def decode_frame(text: str | bytes) -> Frame:
    """Parse one wire message into a typed frame.

    Args:
        text: Raw message text as received from the WebSocket.

    Returns:
        The decoded frame object.

    Raises:
        ProtocolError: If the text is not JSON, not a non-empty array, names
            an unknown frame type, or has the wrong arity or element types.

    Examples:
        ```python
        decode_frame('["EOSE","b3kQ9zLx"]')        # EoseFrame(subscription_id='b3kQ9zLx')
        decode_frame('["OK","ab..",false,"dup"]')  # OkFrame(event_id='ab..', accepted=False, ...)
        ```
    """
    try:
        parts = json.loads(text)
    except (ValueError, UnicodeDecodeError, RecursionError) as e:
        raise ProtocolError(f"frame is not valid JSON: {e}") from e

    if not isinstance(parts, list) or not parts:
        raise ProtocolError("frame must be a non-empty JSON array")

    label = parts[0]
    if not isinstance(label, str):
        raise ProtocolError("frame type must be a string")
    try:
        frame_type = FrameType(label)
    except ValueError:
        raise ProtocolError(f"unknown frame type: {label!r}") from None

    return _DECODERS[frame_type](parts)
