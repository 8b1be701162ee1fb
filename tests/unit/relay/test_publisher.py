"""
Unit tests for relay.publisher module.

Tests:
- Accepted and rejected acknowledgments
- Timeout while acknowledgments for other ids keep arriving
- Transport loss before the acknowledgment
- Duplicate publishes of one id share a single outcome
"""

from __future__ import annotations

import asyncio

import pytest
from fakes import FakeRelay, ack_all, make_event, until

from shelfstr.core.exceptions import (
    PublishRejectedError,
    RelayConnectionError,
    RelayTimeoutError,
)
from shelfstr.models import Event
from shelfstr.relay.codec import Frame, PublishFrame
from shelfstr.relay.connection import ConnectionManager
from shelfstr.relay.publisher import PublishTracker


def _ack_others(frame: Frame) -> list:
    """Acknowledge some other event for every publish."""
    if isinstance(frame, PublishFrame):
        return [["OK", "f" * 64, True, ""], ["OK", "e" * 64, False, "invalid"]]
    return []


class TestPublishOutcomes:
    """Each publish resolves exactly once."""

    async def test_accepted(self, publisher: PublishTracker, fake_relay: FakeRelay) -> None:
        fake_relay.responder = ack_all()
        event = make_event()

        result = await publisher.publish(event)

        assert result == event.id
        assert fake_relay.transport.sent == [PublishFrame(event)]
        assert publisher.pending_count == 0

    async def test_rejected(self, publisher: PublishTracker, fake_relay: FakeRelay) -> None:
        fake_relay.responder = ack_all(accepted=False, message="blocked: spam")
        event = make_event()

        with pytest.raises(PublishRejectedError) as exc_info:
            await publisher.publish(event)

        assert exc_info.value.event_id == event.id
        assert exc_info.value.reason == "blocked: spam"
        assert publisher.pending_count == 0

    async def test_timeout_despite_other_acks(
        self, publisher: PublishTracker, fake_relay: FakeRelay
    ) -> None:
        fake_relay.responder = _ack_others
        event = make_event()

        with pytest.raises(RelayTimeoutError, match=event.id):
            await publisher.publish(event, timeout=0.05)

        assert not publisher.is_pending(event.id)

    async def test_connection_lost_before_ack(
        self, publisher: PublishTracker, fake_relay: FakeRelay
    ) -> None:
        event = make_event()
        task = asyncio.create_task(publisher.publish(event))
        await until(lambda: publisher.is_pending(event.id))

        fake_relay.transport.drop("connection reset by peer")

        with pytest.raises(RelayConnectionError, match="connection reset by peer"):
            await task
        assert publisher.pending_count == 0

    async def test_send_failure(
        self,
        publisher: PublishTracker,
        connection: ConnectionManager,
        fake_relay: FakeRelay,
    ) -> None:
        await connection.connect()
        fake_relay.transport.fail_sends = True

        with pytest.raises(RelayConnectionError):
            await publisher.publish(make_event())

        assert publisher.pending_count == 0

    async def test_connect_failure(self, publisher: PublishTracker, fake_relay: FakeRelay) -> None:
        fake_relay.fail_with = RelayConnectionError("refused")

        with pytest.raises(RelayConnectionError, match="refused"):
            await publisher.publish(make_event())

    async def test_late_ack_after_timeout_ignored(
        self, publisher: PublishTracker, fake_relay: FakeRelay
    ) -> None:
        event = make_event()

        with pytest.raises(RelayTimeoutError):
            await publisher.publish(event, timeout=0.02)
        fake_relay.transport.receive(["OK", event.id, True, ""])

        assert publisher.pending_count == 0


class TestDuplicatePublish:
    """Publishing an id that is already pending."""

    async def test_shares_outcome_and_sends_once(
        self,
        publisher: PublishTracker,
        connection: ConnectionManager,
        fake_relay: FakeRelay,
    ) -> None:
        fake_relay.responder = ack_all()
        await connection.connect()
        event = make_event()

        results = await asyncio.gather(publisher.publish(event), publisher.publish(event))

        assert results == [event.id, event.id]
        assert len(fake_relay.transport.sent_of(PublishFrame)) == 1

    async def test_shares_rejection(
        self,
        publisher: PublishTracker,
        connection: ConnectionManager,
        fake_relay: FakeRelay,
    ) -> None:
        fake_relay.responder = ack_all(accepted=False, message="duplicate:")
        await connection.connect()
        event = make_event()

        results = await asyncio.gather(
            publisher.publish(event), publisher.publish(event), return_exceptions=True
        )

        assert all(isinstance(r, PublishRejectedError) for r in results)

    async def test_republish_after_settled_sends_again(
        self, publisher: PublishTracker, fake_relay: FakeRelay
    ) -> None:
        fake_relay.responder = ack_all()
        event: Event = make_event()

        await publisher.publish(event)
        await publisher.publish(event)

        assert len(fake_relay.sent_of(PublishFrame)) == 2

    async def test_independent_ids_resolve_independently(
        self,
        publisher: PublishTracker,
        connection: ConnectionManager,
        fake_relay: FakeRelay,
    ) -> None:
        await connection.connect()
        first, second = make_event(), make_event()
        task_a = asyncio.create_task(publisher.publish(first))
        task_b = asyncio.create_task(publisher.publish(second, timeout=0.05))
        await until(lambda: publisher.pending_count == 2)

        fake_relay.transport.receive(["OK", first.id, True, ""])

        assert await task_a == first.id
        with pytest.raises(RelayTimeoutError):
            await task_b
