"""Nostr key management and event signing.

Provides functions and Pydantic models for loading Nostr keys from
environment variables, and [KeysSigner][shelfstr.utils.keys.KeysSigner],
which signs [UnsignedEvent][shelfstr.models.event.UnsignedEvent] templates
with ``nostr_sdk``. Both nsec1 (bech32) and hex private keys are accepted.

Warning:
    Private keys must **never** be stored in configuration files, source code,
    or logged to any output. Always use environment variables or a secure
    secret management system.

Examples:
    ```python
    import os

    os.environ["PRIVATE_KEY"] = "nsec1..."  # pragma: allowlist secret
    signer = KeysSigner(load_keys_from_env("PRIVATE_KEY"))
    signer.public_key   # hex public key
    ```
"""

from __future__ import annotations

import os
import time
from typing import Any, Protocol, runtime_checkable

from nostr_sdk import EventBuilder, Keys, Kind, NostrSdkError, Tag, Timestamp
from pydantic import BaseModel, Field, model_validator

from shelfstr.core.exceptions import ConfigurationError
from shelfstr.models import Event, UnsignedEvent


ENV_PRIVATE_KEY = "PRIVATE_KEY"  # pragma: allowlist secret  # Default env var name


@runtime_checkable
class Signer(Protocol):
    """Signing capability used by [RelayClient][shelfstr.client.RelayClient]."""

    def can_sign(self) -> bool: ...

    def sign(self, event: UnsignedEvent) -> Event: ...


def load_keys_from_env(env_var: str) -> Keys:
    """Load Nostr keys from an environment variable.

    Args:
        env_var: Name of the environment variable containing the private key.

    Returns:
        A ``nostr_sdk.Keys`` instance ready for signing operations.

    Raises:
        ValueError: If the environment variable is not set or is empty.
        ConfigurationError: If the key value is malformed or invalid.
    """
    value = os.getenv(env_var)

    if not value:
        raise ValueError(
            f"{env_var} environment variable is required. Generate one with: openssl rand -hex 32"
        )

    try:
        return Keys.parse(value)
    except NostrSdkError as e:
        raise ConfigurationError(f"{env_var} is not a valid private key: {e}") from e


class KeysConfig(BaseModel):
    """Pydantic model that auto-loads Nostr keys from an environment variable.

    Attributes:
        keys_env: Environment variable name for the private key.
        keys: Loaded ``nostr_sdk.Keys`` instance.

    Warning:
        The ``keys`` field contains a live private key. Do not serialize
        this model to logs, JSON, or any persistent storage.
    """

    model_config = {"arbitrary_types_allowed": True}

    keys_env: str = Field(
        default=ENV_PRIVATE_KEY,
        min_length=1,
        description="Environment variable name for private key",
    )
    keys: Keys = Field(description="Keys loaded from keys_env (required)")

    @model_validator(mode="before")
    @classmethod
    def _load_keys_from_env(cls, data: Any) -> Any:
        """Auto-populate the ``keys`` field from the environment variable."""
        if isinstance(data, dict) and "keys" not in data:
            env_var = data.get("keys_env", ENV_PRIVATE_KEY)
            data["keys"] = load_keys_from_env(env_var)
        return data


class KeysSigner:
    """[Signer][shelfstr.utils.keys.Signer] backed by ``nostr_sdk.Keys``.

    The template's ``pubkey`` is ignored: events are always authored by the
    loaded key. A ``created_at`` of ``0`` means "now".
    """

    def __init__(self, keys: Keys) -> None:
        self._keys = keys

    @classmethod
    def from_env(cls, env_var: str = ENV_PRIVATE_KEY) -> KeysSigner:
        return cls(load_keys_from_env(env_var))

    @property
    def public_key(self) -> str:
        return self._keys.public_key().to_hex()

    def can_sign(self) -> bool:
        return True

    def sign(self, event: UnsignedEvent) -> Event:
        created_at = event.created_at or int(time.time())
        builder = (
            EventBuilder(Kind(event.kind), event.content)
            .tags([Tag.parse(list(tag)) for tag in event.tags])
            .custom_created_at(Timestamp.from_secs(created_at))
        )
        return Event.from_json(builder.sign_with_keys(self._keys).as_json())
