"""
Unit tests for cache.profiles and cache.batch modules.

Tests:
- Batch resolution: received, EOSE, timeout, connection loss, relay CLOSED
- Coalescing of concurrent lookups into one REQ
- Chunking by batch_size, key de-duplication
- Newest created_at wins
- TTL expiry triggers a new fetch and purges expired entries
- Subscribe failures reach every waiter
- prefetch() and close()
"""

from __future__ import annotations

import asyncio

import pytest
from fakes import (
    BASE_TIMESTAMP,
    FakeClock,
    FakeRelay,
    event_frame,
    make_profile_event,
    pubkey,
    serve_events,
    until,
)

from shelfstr.cache.profiles import ProfileCache
from shelfstr.core.exceptions import RelayConnectionError
from shelfstr.relay.codec import CloseFrame, ReqFrame
from shelfstr.relay.router import SubscriptionRouter
from shelfstr.utils.retry import RetryConfig


ALICE = pubkey(0xA11CE)
BOB = pubkey(0xB0B)
CAROL = pubkey(0xCA201)


@pytest.fixture
def cache(router: SubscriptionRouter, clock: FakeClock, no_retry: RetryConfig) -> ProfileCache:
    return ProfileCache(
        router, ttl=3600.0, batch_size=10, batch_timeout=0.05, retry=no_retry, clock=clock
    )


def _reqs(fake_relay: FakeRelay) -> list[ReqFrame]:
    return fake_relay.sent_of(ReqFrame)


# =============================================================================
# Batch Resolution Tests
# =============================================================================


class TestBatchResolution:
    """How each key of a batch is resolved."""

    async def test_found_profile(self, cache: ProfileCache, fake_relay: FakeRelay) -> None:
        fake_relay.responder = serve_events([make_profile_event(ALICE, {"name": "alice"})])

        profile = await cache.fetch_one(ALICE)

        assert profile.loaded
        assert profile.metadata.name == "alice"
        assert _reqs(fake_relay)[0].filters == ({"kinds": [0], "authors": [ALICE]},)
        assert _reqs(fake_relay)[0].subscription_id.startswith("b")

    async def test_eose_without_event_caches_loaded_empty(
        self, cache: ProfileCache, fake_relay: FakeRelay
    ) -> None:
        fake_relay.responder = serve_events([])

        profile = await cache.fetch_one(ALICE)

        assert profile.loaded
        assert profile.metadata.is_empty
        assert cache.peek(ALICE) == profile

    async def test_partial_batch_times_out_and_caches_unloaded(
        self, cache: ProfileCache, fake_relay: FakeRelay
    ) -> None:
        fake_relay.responder = serve_events(
            [make_profile_event(ALICE, {"name": "alice"})], eose=False
        )

        profiles = await cache.fetch_many([ALICE, BOB, CAROL])

        assert profiles[ALICE].loaded
        assert profiles[ALICE].metadata.name == "alice"
        for key in (BOB, CAROL):
            assert profiles[key].loaded is False
            assert profiles[key].metadata.is_empty

        again = await cache.fetch_many([ALICE, BOB, CAROL])

        assert again == profiles
        assert len(_reqs(fake_relay)) == 1

    async def test_complete_batch_finishes_without_eose(
        self, router: SubscriptionRouter, fake_relay: FakeRelay, no_retry: RetryConfig
    ) -> None:
        cache = ProfileCache(router, batch_timeout=5.0, retry=no_retry)
        fake_relay.responder = serve_events(
            [make_profile_event(ALICE, {"name": "a"}), make_profile_event(BOB, {"name": "b"})],
            eose=False,
        )

        profiles = await asyncio.wait_for(cache.fetch_many([ALICE, BOB]), timeout=1.0)

        assert {p.metadata.name for p in profiles.values()} == {"a", "b"}

    async def test_batch_subscription_closed_afterwards(
        self, cache: ProfileCache, fake_relay: FakeRelay
    ) -> None:
        fake_relay.responder = serve_events([])

        await cache.fetch_one(ALICE)

        req = _reqs(fake_relay)[0]
        assert fake_relay.transport.sent_of(CloseFrame) == [CloseFrame(req.subscription_id)]
        assert cache.in_flight_keys == frozenset()
        assert cache.in_flight_batches == []

    async def test_connection_loss_resolves_unloaded_uncached(
        self, cache: ProfileCache, fake_relay: FakeRelay
    ) -> None:
        task = asyncio.create_task(cache.fetch_many([ALICE, BOB]))
        await until(lambda: len(_reqs(fake_relay)) == 1)

        fake_relay.transport.drop("connection reset by peer")
        profiles = await task

        assert all(p.loaded is False for p in profiles.values())
        assert cache.peek(ALICE) is None
        assert cache.peek(BOB) is None

    async def test_connection_loss_keeps_received_profiles(
        self, cache: ProfileCache, fake_relay: FakeRelay
    ) -> None:
        task = asyncio.create_task(cache.fetch_many([ALICE, BOB]))
        await until(lambda: len(_reqs(fake_relay)) == 1)
        sub_id = _reqs(fake_relay)[0].subscription_id

        fake_relay.transport.receive(
            event_frame(sub_id, make_profile_event(ALICE, {"name": "alice"}))
        )
        fake_relay.transport.drop()
        profiles = await task

        assert profiles[ALICE].loaded
        assert cache.peek(ALICE) == profiles[ALICE]
        assert profiles[BOB].loaded is False
        assert cache.peek(BOB) is None

    async def test_relay_closed_subscription_treated_as_lost(
        self, cache: ProfileCache, fake_relay: FakeRelay
    ) -> None:
        task = asyncio.create_task(cache.fetch_one(ALICE))
        await until(lambda: len(_reqs(fake_relay)) == 1)

        fake_relay.transport.receive(
            ["CLOSED", _reqs(fake_relay)[0].subscription_id, "rate-limited:"]
        )
        profile = await task

        assert profile.loaded is False
        assert cache.peek(ALICE) is None

    async def test_lost_key_fetched_again_next_time(
        self, cache: ProfileCache, fake_relay: FakeRelay
    ) -> None:
        task = asyncio.create_task(cache.fetch_one(ALICE))
        await until(lambda: len(_reqs(fake_relay)) == 1)
        fake_relay.transport.drop()
        await task

        fake_relay.responder = serve_events([make_profile_event(ALICE, {"name": "alice"})])
        profile = await cache.fetch_one(ALICE)

        assert profile.metadata.name == "alice"
        assert fake_relay.calls == 2


class TestNewestWins:
    """Replaceable events: keep the latest created_at per key."""

    async def test_newer_event_kept_regardless_of_order(
        self, cache: ProfileCache, fake_relay: FakeRelay
    ) -> None:
        newer = make_profile_event(ALICE, {"name": "new"}, created_at=BASE_TIMESTAMP + 100)
        older = make_profile_event(ALICE, {"name": "old"}, created_at=BASE_TIMESTAMP)
        task = asyncio.create_task(cache.fetch_many([ALICE, BOB]))
        await until(lambda: len(_reqs(fake_relay)) == 1)
        sub_id = _reqs(fake_relay)[0].subscription_id

        fake_relay.transport.receive(event_frame(sub_id, newer))
        fake_relay.transport.receive(event_frame(sub_id, older))
        fake_relay.transport.receive(["EOSE", sub_id])
        profiles = await task

        assert profiles[ALICE].metadata.name == "new"
        assert cache.peek(ALICE) == profiles[ALICE]

    async def test_events_for_unrequested_keys_ignored(
        self, cache: ProfileCache, fake_relay: FakeRelay
    ) -> None:
        task = asyncio.create_task(cache.fetch_one(ALICE))
        await until(lambda: len(_reqs(fake_relay)) == 1)
        sub_id = _reqs(fake_relay)[0].subscription_id

        fake_relay.transport.receive(event_frame(sub_id, make_profile_event(BOB, {"name": "b"})))
        fake_relay.transport.receive(["EOSE", sub_id])
        await task

        assert cache.peek(BOB) is None


# =============================================================================
# Coalescing and Chunking Tests
# =============================================================================


class TestCoalescing:
    """Concurrent lookups share in-flight fetches."""

    async def test_concurrent_fetch_one_single_req(
        self, cache: ProfileCache, fake_relay: FakeRelay
    ) -> None:
        fake_relay.responder = serve_events([make_profile_event(ALICE, {"name": "alice"})])

        first, second = await asyncio.gather(cache.fetch_one(ALICE), cache.fetch_one(ALICE))

        assert first is second
        assert len(_reqs(fake_relay)) == 1

    async def test_overlapping_fetch_many_requests_only_new_keys(
        self, cache: ProfileCache, fake_relay: FakeRelay
    ) -> None:
        fake_relay.responder = serve_events([])

        await asyncio.gather(cache.fetch_many([ALICE, BOB]), cache.fetch_many([BOB, CAROL]))

        requested = [f["authors"] for req in _reqs(fake_relay) for f in req.filters]
        assert requested == [[ALICE, BOB], [CAROL]]

    async def test_duplicate_keys_collapsed(
        self, cache: ProfileCache, fake_relay: FakeRelay
    ) -> None:
        fake_relay.responder = serve_events([])

        profiles = await cache.fetch_many([ALICE, ALICE, BOB])

        assert list(profiles) == [ALICE, BOB]
        assert _reqs(fake_relay)[0].filters[0]["authors"] == [ALICE, BOB]

    async def test_cancelled_caller_does_not_abort_batch(
        self, cache: ProfileCache, fake_relay: FakeRelay
    ) -> None:
        first = asyncio.create_task(cache.fetch_one(ALICE))
        second = asyncio.create_task(cache.fetch_one(ALICE))
        await until(lambda: len(_reqs(fake_relay)) == 1)

        first.cancel()
        sub_id = _reqs(fake_relay)[0].subscription_id
        fake_relay.transport.receive(["EOSE", sub_id])

        assert (await second).loaded
        assert first.cancelled()


class TestChunking:
    """Misses split into batches of at most batch_size keys."""

    async def test_chunks(
        self, router: SubscriptionRouter, fake_relay: FakeRelay, no_retry: RetryConfig
    ) -> None:
        cache = ProfileCache(router, batch_size=2, batch_timeout=0.05, retry=no_retry)
        fake_relay.responder = serve_events([])
        keys = [pubkey(n) for n in range(5)]

        profiles = await cache.fetch_many(keys)

        sizes = [len(req.filters[0]["authors"]) for req in _reqs(fake_relay)]
        assert sizes == [2, 2, 1]
        assert list(profiles) == keys

    def test_invalid_batch_size(self, router: SubscriptionRouter) -> None:
        with pytest.raises(ValueError, match="batch_size"):
            ProfileCache(router, batch_size=0)


# =============================================================================
# TTL and Failure Tests
# =============================================================================


class TestTtl:
    """Cached profiles expire after the TTL."""

    async def test_hit_then_refetch_after_expiry(
        self, cache: ProfileCache, fake_relay: FakeRelay, clock: FakeClock
    ) -> None:
        fake_relay.responder = serve_events([make_profile_event(ALICE, {"name": "alice"})])

        await cache.fetch_one(ALICE)
        clock.advance(3599)
        await cache.fetch_one(ALICE)
        assert len(_reqs(fake_relay)) == 1

        clock.advance(2)
        await cache.fetch_one(ALICE)
        assert len(_reqs(fake_relay)) == 2

    async def test_expired_entries_purged_on_next_batch(
        self, cache: ProfileCache, fake_relay: FakeRelay, clock: FakeClock
    ) -> None:
        fake_relay.responder = serve_events([])
        await cache.fetch_many([ALICE, BOB])
        assert cache.cache_size == 2

        clock.advance(3601)
        await cache.fetch_one(CAROL)

        assert cache.cache_size == 1
        assert cache.peek(CAROL) is not None

    async def test_invalidate(self, cache: ProfileCache, fake_relay: FakeRelay) -> None:
        fake_relay.responder = serve_events([])
        await cache.fetch_one(ALICE)

        cache.invalidate(ALICE)

        assert cache.peek(ALICE) is None


class TestSubscribeFailure:
    """The batch REQ cannot be sent."""

    async def test_error_reaches_all_waiters_after_retries(
        self, router: SubscriptionRouter, fake_relay: FakeRelay, fast_retry: RetryConfig
    ) -> None:
        cache = ProfileCache(router, batch_timeout=0.05, retry=fast_retry)
        fake_relay.fail_with = RelayConnectionError("refused")

        results = await asyncio.gather(
            cache.fetch_many([ALICE, BOB]), cache.fetch_one(BOB), return_exceptions=True
        )

        assert all(isinstance(r, RelayConnectionError) for r in results)
        assert fake_relay.calls == 2
        assert cache.in_flight_keys == frozenset()
        assert cache.peek(ALICE) is None

    async def test_recovers_on_retry(
        self, router: SubscriptionRouter, fake_relay: FakeRelay, fast_retry: RetryConfig
    ) -> None:
        cache = ProfileCache(router, batch_timeout=0.05, retry=fast_retry)
        fake_relay.fail_with = RelayConnectionError("refused")
        fake_relay.fail_times = 1
        fake_relay.responder = serve_events([make_profile_event(ALICE, {"name": "alice"})])

        profile = await cache.fetch_one(ALICE)

        assert profile.metadata.name == "alice"


# =============================================================================
# Prefetch and Close Tests
# =============================================================================


class TestPrefetch:
    """Background warming."""

    async def test_prefetch_fills_cache(self, cache: ProfileCache, fake_relay: FakeRelay) -> None:
        fake_relay.responder = serve_events([make_profile_event(ALICE, {"name": "alice"})])

        task = cache.prefetch([ALICE])
        assert task is not None
        await task

        assert cache.peek(ALICE) is not None

    async def test_prefetch_skips_cached_and_in_flight(
        self, cache: ProfileCache, fake_relay: FakeRelay
    ) -> None:
        fake_relay.responder = serve_events([])
        await cache.fetch_one(ALICE)

        assert cache.prefetch([ALICE]) is None

    async def test_prefetch_failure_logged_not_raised(
        self, cache: ProfileCache, fake_relay: FakeRelay, caplog: pytest.LogCaptureFixture
    ) -> None:
        fake_relay.fail_with = RelayConnectionError("refused")

        task = cache.prefetch([ALICE])
        assert task is not None
        await asyncio.gather(task, return_exceptions=True)
        await until(lambda: any("prefetch_failed" in r.message for r in caplog.records))

    async def test_close_cancels_waiters(self, cache: ProfileCache, fake_relay: FakeRelay) -> None:
        task = asyncio.create_task(cache.fetch_one(ALICE))
        await until(lambda: len(_reqs(fake_relay)) == 1)

        await cache.close()

        with pytest.raises(asyncio.CancelledError):
            await task
        assert cache.in_flight_keys == frozenset()
