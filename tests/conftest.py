"""
Pytest configuration and shared fixtures for shelfstr tests.

Provides:
- An in-memory relay (transport factory) and the relay-layer components
  wired to it
- Retry settings without backoff so failure paths run instantly
- A manually advanced clock for TTL tests
"""

from __future__ import annotations

import logging
from collections.abc import AsyncIterator

import pytest
from fakes import RELAY_URL, FakeClock, FakeRelay

from shelfstr.relay.connection import ConnectionManager
from shelfstr.relay.publisher import PublishTracker
from shelfstr.relay.router import SubscriptionRouter
from shelfstr.utils.retry import RetryConfig


# ============================================================================
# Logging Configuration
# ============================================================================


@pytest.fixture(scope="session", autouse=True)
def setup_logging() -> None:
    """Configure logging for tests."""
    logging.basicConfig(level=logging.DEBUG)


# ============================================================================
# Relay Fixtures
# ============================================================================


@pytest.fixture
def no_retry() -> RetryConfig:
    """Retry policy that gives up after the first failure."""
    return RetryConfig(max_attempts=0, initial_delay=0.0, max_delay=0.0, jitter=0.0)


@pytest.fixture
def fast_retry() -> RetryConfig:
    """Retry policy with one immediate retry."""
    return RetryConfig(max_attempts=1, initial_delay=0.0, max_delay=0.0, jitter=0.0)


@pytest.fixture
def fake_relay() -> FakeRelay:
    """Transport factory with no scripted replies."""
    return FakeRelay()


@pytest.fixture
async def connection(
    fake_relay: FakeRelay, no_retry: RetryConfig
) -> AsyncIterator[ConnectionManager]:
    """Connection manager opening transports on the fake relay."""
    manager = ConnectionManager(
        RELAY_URL, connect_timeout=1.0, retry=no_retry, transport_factory=fake_relay
    )
    yield manager
    await manager.close()


@pytest.fixture
def router(connection: ConnectionManager) -> SubscriptionRouter:
    return SubscriptionRouter(connection)


@pytest.fixture
def publisher(connection: ConnectionManager) -> PublishTracker:
    return PublishTracker(connection, timeout=0.2)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()
