"""Kind-0 profile metadata parsing."""

from __future__ import annotations

import json
import logging
from collections.abc import Mapping
from typing import Any

from shelfstr.models import Event, EventKind, Profile, ProfileMetadata


logger = logging.getLogger("events.profile")


def parse_profile_content(content: str) -> ProfileMetadata:
    """Decode a kind-0 content string; anything but a JSON object yields empty metadata."""
    try:
        data = json.loads(content)
    except ValueError:
        logger.debug("profile_content_invalid_json length=%d", len(content))
        return ProfileMetadata()
    if not isinstance(data, dict):
        return ProfileMetadata()
    return ProfileMetadata.from_dict(data)


def parse_profile_event(raw: Event | Mapping[str, Any]) -> Profile | None:
    """Return the profile carried by a kind-0 event, or ``None``.

    ``None`` is returned for malformed events and for events of any other
    kind. A well-formed event with unreadable content yields a loaded profile
    with empty metadata.
    """
    if isinstance(raw, Event):
        event = raw
    else:
        try:
            event = Event.from_dict(raw)
        except (TypeError, ValueError) as e:
            logger.debug("profile_event_rejected reason=%s", e)
            return None

    if event.kind != EventKind.METADATA:
        return None

    return Profile(
        pubkey=event.pubkey,
        metadata=parse_profile_content(event.content),
        loaded=True,
        created_at=event.created_at,
        raw=event,
    )
