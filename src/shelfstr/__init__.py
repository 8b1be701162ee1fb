r"""shelfstr -- book similarity relations over Nostr.

A single-relay client for NIP-01 with subscription multiplexing,
publish-with-acknowledgment and a batched profile cache, plus the parser and
builder for kind-1729 similarity events linking two books by ISBN.

Imports flow strictly downward:

```text
        client / services        Facade and feed
              |
        cache    events          Profile cache, event parsing
              |
            relay                Codec, transport, connection, router, publisher
              |
        core   utils             Logging, errors, metrics, YAML, retry, keys
              |
            models               Pure frozen dataclasses (zero I/O)
```

Note:
    Top-level imports (``from shelfstr import RelayClient``) use lazy loading
    and resolve on first access.
"""

import importlib
from importlib.metadata import version as _get_version


__version__ = _get_version("shelfstr")

__all__ = [
    "ClientConfig",
    "ConnectionManager",
    "Event",
    "ItemRef",
    "KeysSigner",
    "Logger",
    "Profile",
    "ProfileCache",
    "ProfileMetadata",
    "PublishTracker",
    "Relay",
    "RelayClient",
    "SimilarityFeed",
    "SimilarityRelation",
    "SubscriptionRouter",
    "UnsignedEvent",
    "build_similarity_event",
    "parse_profile_event",
    "parse_similarity_event",
]

_LAZY_IMPORTS: dict[str, tuple[str, str]] = {
    "RelayClient": ("shelfstr.client", "RelayClient"),
    "Logger": ("shelfstr.core", "Logger"),
    "ProfileCache": ("shelfstr.cache", "ProfileCache"),
    "Event": ("shelfstr.models", "Event"),
    "ItemRef": ("shelfstr.models", "ItemRef"),
    "Profile": ("shelfstr.models", "Profile"),
    "ProfileMetadata": ("shelfstr.models", "ProfileMetadata"),
    "Relay": ("shelfstr.models", "Relay"),
    "SimilarityRelation": ("shelfstr.models", "SimilarityRelation"),
    "UnsignedEvent": ("shelfstr.models", "UnsignedEvent"),
    "ClientConfig": ("shelfstr.relay", "ClientConfig"),
    "ConnectionManager": ("shelfstr.relay", "ConnectionManager"),
    "PublishTracker": ("shelfstr.relay", "PublishTracker"),
    "SubscriptionRouter": ("shelfstr.relay", "SubscriptionRouter"),
    "build_similarity_event": ("shelfstr.events", "build_similarity_event"),
    "parse_profile_event": ("shelfstr.events", "parse_profile_event"),
    "parse_similarity_event": ("shelfstr.events", "parse_similarity_event"),
    "SimilarityFeed": ("shelfstr.services", "SimilarityFeed"),
    "KeysSigner": ("shelfstr.utils", "KeysSigner"),
}


def __getattr__(name: str) -> object:
    if name in _LAZY_IMPORTS:
        module_path, attr_name = _LAZY_IMPORTS[name]
        module = importlib.import_module(module_path)
        value = getattr(module, attr_name)
        globals()[name] = value  # Cache for subsequent access
        return value
    raise AttributeError(f"module 'shelfstr' has no attribute {name!r}")


def __dir__() -> list[str]:
    return __all__
