"""
Unit tests for relay.configs module.

Tests:
- ClientConfig defaults and nested models
- Relay URL validation and normalization
- from_dict() / from_yaml() error wrapping
"""

from __future__ import annotations

from pathlib import Path

import pytest
from pydantic import ValidationError

from shelfstr.core.exceptions import ConfigurationError
from shelfstr.relay.configs import DEFAULT_RELAY_URL, CacheConfig, ClientConfig


class TestClientConfigDefaults:
    """Default values."""

    def test_defaults(self) -> None:
        config = ClientConfig()

        assert config.relay_url == DEFAULT_RELAY_URL == "wss://relay.damus.io"
        assert config.connect_timeout == 10.0
        assert config.publish_timeout == 10.0
        assert config.subscription_id_length == 8
        assert config.retry.max_attempts == 2
        assert config.cache.ttl == 86_400.0
        assert config.cache.batch_size == 10
        assert config.cache.batch_timeout == 10.0
        assert config.metrics.enabled is False

    def test_empty_dict(self) -> None:
        assert ClientConfig.from_dict({}) == ClientConfig()


class TestRelayUrl:
    """relay_url validation."""

    def test_normalized(self) -> None:
        config = ClientConfig(relay_url="WSS://Relay.Example.com:443/")
        assert config.relay_url == "wss://relay.example.com"

    def test_local_ws_allowed(self) -> None:
        config = ClientConfig(relay_url="ws://localhost:7777")
        assert config.relay_url == "ws://localhost:7777"

    @pytest.mark.parametrize("url", ["https://relay.example.com", "relay.example.com", ""])
    def test_invalid(self, url: str) -> None:
        with pytest.raises(ValidationError, match="Invalid relay URL"):
            ClientConfig(relay_url=url)


class TestBounds:
    """Field constraints."""

    def test_cache_batch_size_minimum(self) -> None:
        with pytest.raises(ValidationError):
            CacheConfig(batch_size=0)

    def test_cache_ttl_positive(self) -> None:
        with pytest.raises(ValidationError):
            CacheConfig(ttl=0)

    def test_subscription_id_length_bounds(self) -> None:
        with pytest.raises(ValidationError):
            ClientConfig(subscription_id_length=3)
        with pytest.raises(ValidationError):
            ClientConfig(subscription_id_length=64)


class TestLoading:
    """from_dict() and from_yaml()."""

    def test_from_dict_nested(self) -> None:
        config = ClientConfig.from_dict(
            {
                "relay_url": "wss://nos.lol",
                "cache": {"batch_size": 25, "batch_timeout": 2.5},
                "retry": {"max_attempts": 0},
            }
        )

        assert config.relay_url == "wss://nos.lol"
        assert config.cache.batch_size == 25
        assert config.cache.batch_timeout == 2.5
        assert config.retry.max_attempts == 0

    def test_from_dict_invalid_wrapped(self) -> None:
        with pytest.raises(ConfigurationError, match="Invalid client configuration"):
            ClientConfig.from_dict({"publish_timeout": -1})

    def test_from_yaml(self, tmp_path: Path) -> None:
        path = tmp_path / "client.yaml"
        path.write_text("relay_url: wss://nos.lol\ncache:\n  ttl: 60\n")

        config = ClientConfig.from_yaml(path)

        assert config.relay_url == "wss://nos.lol"
        assert config.cache.ttl == 60.0

    def test_from_yaml_invalid_value(self, tmp_path: Path) -> None:
        path = tmp_path / "client.yaml"
        path.write_text("relay_url: http://nope\n")

        with pytest.raises(ConfigurationError):
            ClientConfig.from_yaml(path)

    def test_shipped_example_config(self) -> None:
        path = Path(__file__).parents[3] / "config" / "client.yaml"
        config = ClientConfig.from_yaml(path)
        assert config == ClientConfig()
