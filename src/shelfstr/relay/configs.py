"""Configuration models for the relay client.

[ClientConfig][shelfstr.relay.configs.ClientConfig] is the root model. Every
field has a default, so an empty YAML file (or none at all) yields a client
for ``wss://relay.damus.io`` with the stock timeouts, retry policy and cache
settings.

Examples:
    ```yaml
    relay_url: wss://relay.damus.io
    publish_timeout: 10.0
    retry:
      max_attempts: 2
      initial_delay: 1.0
    cache:
      ttl: 86400
      batch_size: 10
      batch_timeout: 10.0
    metrics:
      enabled: true
      port: 8000
    ```
"""

from __future__ import annotations

from pathlib import Path
from typing import Any

import pydantic
from pydantic import BaseModel, Field, field_validator

from shelfstr.core.exceptions import ConfigurationError
from shelfstr.core.metrics import MetricsConfig
from shelfstr.core.yaml import load_yaml
from shelfstr.models import Relay
from shelfstr.utils.retry import RetryConfig


DEFAULT_RELAY_URL = "wss://relay.damus.io"


class CacheConfig(BaseModel):
    """Profile cache settings.

    Attributes:
        ttl: Seconds a cached profile stays fresh (24 hours by default).
        batch_size: Maximum keys per batch subscription.
        batch_timeout: Seconds to wait for a batch before caching the
            unanswered keys as empty profiles.
    """

    ttl: float = Field(default=86_400.0, gt=0.0)
    batch_size: int = Field(default=10, ge=1, le=500)
    batch_timeout: float = Field(default=10.0, gt=0.0, le=300.0)


class ClientConfig(BaseModel):
    """Root configuration for [RelayClient][shelfstr.client.RelayClient].

    Attributes:
        relay_url: Relay to connect to (``ws://`` or ``wss://``).
        connect_timeout: Handshake timeout in seconds.
        publish_timeout: Seconds to wait for an ``OK`` acknowledgment.
        subscription_id_length: Random characters per subscription id,
            excluding the role prefix.
        retry: Backoff for connects and batch subscriptions.
        cache: Profile cache settings.
        metrics: Prometheus endpoint settings.
    """

    relay_url: str = Field(default=DEFAULT_RELAY_URL)
    connect_timeout: float = Field(default=10.0, gt=0.0, le=120.0)
    publish_timeout: float = Field(default=10.0, gt=0.0, le=300.0)
    subscription_id_length: int = Field(default=8, ge=4, le=63)
    retry: RetryConfig = Field(default_factory=RetryConfig)
    cache: CacheConfig = Field(default_factory=CacheConfig)
    metrics: MetricsConfig = Field(default_factory=MetricsConfig)

    @field_validator("relay_url")
    @classmethod
    def validate_relay_url(cls, v: str) -> str:
        """Validate and normalize the relay URL."""
        try:
            return Relay(v).url
        except (ValueError, TypeError) as e:
            raise ValueError(f"Invalid relay URL '{v}': {e}") from e

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ClientConfig:
        """Build a config from a parsed mapping.

        Raises:
            ConfigurationError: If any value fails validation.
        """
        try:
            return cls(**data)
        except pydantic.ValidationError as e:
            raise ConfigurationError(f"Invalid client configuration: {e}") from e

    @classmethod
    def from_yaml(cls, config_path: str | Path) -> ClientConfig:
        """Build a config from a YAML file via [load_yaml()][shelfstr.core.yaml.load_yaml]."""
        return cls.from_dict(load_yaml(config_path))
