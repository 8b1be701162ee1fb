"""
Unit tests for utils.retry module.

Tests:
- RetryConfig bounds and delay_for() backoff
- retry_async(): success, retry on connectivity errors, exhaustion,
  non-retryable errors
"""

from __future__ import annotations

import logging

import pytest
from pydantic import ValidationError

from shelfstr.core.exceptions import ProtocolError, RelayConnectionError, RelayTimeoutError
from shelfstr.utils.retry import RetryConfig, retry_async


class Flaky:
    """Awaitable factory failing a set number of times."""

    def __init__(self, failures: int, error: Exception) -> None:
        self.failures = failures
        self.error = error
        self.calls = 0

    async def __call__(self) -> str:
        self.calls += 1
        if self.calls <= self.failures:
            raise self.error
        return "ok"


def _instant(max_attempts: int) -> RetryConfig:
    return RetryConfig(max_attempts=max_attempts, initial_delay=0.0, max_delay=0.0, jitter=0.0)


class TestRetryConfig:
    """Configuration model."""

    def test_defaults(self) -> None:
        config = RetryConfig()
        assert config.max_attempts == 2
        assert config.initial_delay == 1.0
        assert config.max_delay == 10.0
        assert config.jitter == 0.5

    def test_delay_for_doubles_and_caps(self) -> None:
        config = RetryConfig(initial_delay=1.0, max_delay=5.0)
        assert [config.delay_for(n) for n in range(5)] == [1.0, 2.0, 4.0, 5.0, 5.0]

    def test_bounds(self) -> None:
        with pytest.raises(ValidationError):
            RetryConfig(max_attempts=11)
        with pytest.raises(ValidationError):
            RetryConfig(initial_delay=-1)


class TestRetryAsync:
    """retry_async() loop."""

    async def test_first_try(self) -> None:
        factory = Flaky(0, RelayConnectionError("x"))
        assert await retry_async(factory, _instant(2), "op") == "ok"
        assert factory.calls == 1

    async def test_retries_connectivity_errors(self) -> None:
        factory = Flaky(2, RelayTimeoutError("slow"))
        assert await retry_async(factory, _instant(2), "op") == "ok"
        assert factory.calls == 3

    async def test_retries_os_errors(self) -> None:
        factory = Flaky(1, ConnectionResetError("reset"))
        assert await retry_async(factory, _instant(1), "op") == "ok"

    async def test_exhausted_reraises_last(self, caplog: pytest.LogCaptureFixture) -> None:
        factory = Flaky(10, RelayConnectionError("refused"))

        with (
            caplog.at_level(logging.WARNING, logger="utils.retry"),
            pytest.raises(RelayConnectionError, match="refused"),
        ):
            await retry_async(factory, _instant(2), "relay_connect")

        assert factory.calls == 3
        assert any("retry_exhausted" in r.message for r in caplog.records)

    async def test_zero_attempts_means_single_try(self) -> None:
        factory = Flaky(1, RelayConnectionError("refused"))
        with pytest.raises(RelayConnectionError):
            await retry_async(factory, _instant(0), "op")
        assert factory.calls == 1

    async def test_non_retryable_raised_immediately(self) -> None:
        factory = Flaky(1, ProtocolError("bad frame"))
        with pytest.raises(ProtocolError):
            await retry_async(factory, _instant(3), "op")
        assert factory.calls == 1
