"""
User profiles derived from kind-0 metadata events.

A [Profile][shelfstr.models.profile.Profile] distinguishes three states that
callers render differently:

* ``loaded=True`` with metadata: the relay returned a profile.
* ``loaded=True`` with empty metadata: the relay confirmed there is none.
* ``loaded=False``: no answer yet (timeout or connection loss); retry later.

See Also:
    [parse_profile_event()][shelfstr.events.profile.parse_profile_event]:
        Builds profiles from relay events.
    [ProfileCache][shelfstr.cache.profiles.ProfileCache]: Caches them.
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any, ClassVar

from ._validation import deep_freeze, validate_instance, validate_mapping, validate_timestamp
from .event import Event


@dataclass(frozen=True, slots=True)
class ProfileMetadata:
    """Recognized profile fields plus any extra keys the author published.

    Recognized fields must be strings; a recognized key with a non-string
    value is moved to ``extra`` rather than rejected.

    Examples:
        ```python
        meta = ProfileMetadata.from_dict({"displayName": "Ada", "bot": True})
        meta.display_name   # 'Ada'
        meta.extra["bot"]   # True
        ```
    """

    name: str | None = None
    display_name: str | None = None
    picture: str | None = None
    banner: str | None = None
    about: str | None = None
    website: str | None = None
    nip05: str | None = None
    lud16: str | None = None
    extra: Mapping[str, Any] = field(default_factory=dict)

    _FIELDS: ClassVar[tuple[str, ...]] = (
        "name",
        "display_name",
        "picture",
        "banner",
        "about",
        "website",
        "nip05",
        "lud16",
    )
    # Wire spellings accepted for display_name, in priority order
    _DISPLAY_NAME_KEYS: ClassVar[tuple[str, ...]] = ("display_name", "displayName")

    def __post_init__(self) -> None:
        for name in self._FIELDS:
            value = getattr(self, name)
            if value is not None and not isinstance(value, str):
                raise TypeError(f"{name} must be a str, got {type(value).__name__}")
        validate_mapping(self.extra, "extra")
        object.__setattr__(self, "extra", deep_freeze(dict(self.extra)))

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> ProfileMetadata:
        """Split a decoded kind-0 content object into known and extra fields."""
        validate_mapping(data, "metadata")
        known: dict[str, str] = {}
        display_key = next(
            (k for k in cls._DISPLAY_NAME_KEYS if isinstance(data.get(k), str)),
            None,
        )
        if display_key is not None:
            known["display_name"] = data[display_key]
        extra: dict[str, Any] = {}
        for key, value in data.items():
            if not isinstance(key, str) or key == display_key:
                continue
            if key in cls._FIELDS and key != "display_name" and isinstance(value, str):
                known[key] = value
            else:
                extra[key] = value
        return cls(**known, extra=extra)

    @property
    def is_empty(self) -> bool:
        return not self.extra and all(getattr(self, name) is None for name in self._FIELDS)

    def to_dict(self) -> dict[str, Any]:
        """Return the known fields that are set, followed by the extras."""
        result: dict[str, Any] = {
            name: getattr(self, name) for name in self._FIELDS if getattr(self, name) is not None
        }
        for key, value in self.extra.items():
            result.setdefault(key, value)
        return result


_EMPTY_METADATA = ProfileMetadata()


@dataclass(frozen=True, slots=True)
class Profile:
    """Cached view of a user's profile.

    Attributes:
        pubkey: Hex public key the profile belongs to.
        metadata: Parsed profile fields (empty when none were found).
        loaded: ``True`` when the relay answered for this key.
        created_at: Timestamp of the source event, if any.
        raw: Source event, if any.
    """

    pubkey: str
    metadata: ProfileMetadata = _EMPTY_METADATA
    loaded: bool = True
    created_at: int | None = None
    raw: Event | None = field(default=None, repr=False)

    def __post_init__(self) -> None:
        validate_instance(self.pubkey, str, "pubkey")
        validate_instance(self.metadata, ProfileMetadata, "metadata")
        validate_instance(self.loaded, bool, "loaded")
        if self.created_at is not None:
            validate_timestamp(self.created_at, "created_at")
        if self.raw is not None:
            validate_instance(self.raw, Event, "raw")

    @classmethod
    def empty(cls, pubkey: str, *, loaded: bool) -> Profile:
        """Return a profile with no metadata for *pubkey*."""
        return cls(pubkey=pubkey, metadata=_EMPTY_METADATA, loaded=loaded)

    @property
    def display(self) -> str:
        """Best human-readable label: display name, then name, then a short key."""
        return self.metadata.display_name or self.metadata.name or f"{self.pubkey[:8]}..."
