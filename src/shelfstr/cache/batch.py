r"""
Batched, coalescing fetch cache over relay subscriptions.

[BatchFetchCache][shelfstr.cache.batch.BatchFetchCache] answers lookups for
keys whose values live on the relay (one replaceable event per key). A
``fetch_many(keys)`` call splits its keys three ways:

```text
keys --dedupe--> fresh in cache ----------------------------> value
             \-> already in flight --(shared future)--------> value
             \-> to fetch --chunk(batch_size)--> one REQ per batch
                                                   |
                          EVENT* ... EOSE | timeout | all received | lost
                                                   |
                                    resolve every key of the batch
```

Each batch resolves its keys exactly once:

* received keys get the newest parsed value (by ``created_at``), cached;
* on EOSE the rest are cached as explicit empty values (``loaded=True``);
* on timeout the rest are cached as empty values with ``loaded=False``, so
  they are not queried again until the TTL expires;
* if the connection is lost (or the relay closes the subscription) the rest
  resolve to ``loaded=False`` values that are **not** cached;
* if the subscription cannot be opened even after bounded retries, the error
  is raised to every caller waiting on that batch.

Batches run as tasks owned by the cache; callers await shielded per-key
futures, so a cancelled caller never aborts a batch others depend on.
"""

from __future__ import annotations

import asyncio
import logging
import time
from abc import ABC, abstractmethod
from collections.abc import Callable, Iterable
from dataclasses import dataclass, field
from typing import Any, ClassVar, Generic, TypeVar

from shelfstr.core.metrics import BATCH_DURATION_SECONDS, CACHE_LOOKUPS
from shelfstr.models import Event, SubscriptionRole
from shelfstr.relay.router import Subscription, SubscriptionRouter
from shelfstr.utils.retry import RetryConfig, retry_async

from .ttl import TtlCache


logger = logging.getLogger("cache.batch")

V = TypeVar("V")


@dataclass(slots=True)
class InFlightFetch(Generic[V]):
    """State of one batch between its REQ and its resolution.

    Attributes:
        keys: Keys requested by the batch.
        subscription_id: Id of the batch subscription, once opened.
        received: Best value seen so far per key.
        deadline: Loop time at which unanswered keys time out.
    """

    keys: tuple[str, ...]
    subscription_id: str | None = None
    received: dict[str, V] = field(default_factory=dict)
    deadline: float | None = None
    finished: asyncio.Event = field(default_factory=asyncio.Event)
    lost_reason: str | None = None

    @property
    def complete(self) -> bool:
        return len(self.received) == len(self.keys)


def _chunks(items: list[str], size: int) -> Iterable[list[str]]:
    for i in range(0, len(items), size):
        yield items[i : i + size]


class BatchFetchCache(ABC, Generic[V]):
    """TTL cache whose misses are fetched from the relay in batches.

    Subclasses define how keys map to a filter and how events map back to
    keys and values.

    Args:
        router: Router used to open batch subscriptions.
        ttl: Seconds a cached value stays fresh.
        batch_size: Maximum keys per batch subscription.
        batch_timeout: Seconds to wait for a batch after its REQ.
        retry: Backoff for opening the batch subscription.
        clock: Time source for the TTL cache.
    """

    CACHE_NAME: ClassVar[str] = "batch"
    SUBSCRIPTION_PREFIX: ClassVar[str] = SubscriptionRole.BATCH.value

    def __init__(  # noqa: PLR0913
        self,
        router: SubscriptionRouter,
        *,
        ttl: float = 86_400.0,
        batch_size: int = 10,
        batch_timeout: float = 10.0,
        retry: RetryConfig | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if batch_size < 1:
            raise ValueError(f"batch_size must be at least 1, got {batch_size}")
        self._router = router
        self._batch_size = batch_size
        self._batch_timeout = batch_timeout
        self._retry = retry or RetryConfig()
        self._cache: TtlCache[str, V] = TtlCache(ttl, clock=clock)
        self._inflight: dict[str, asyncio.Future[V]] = {}
        self._fetches: dict[int, InFlightFetch[V]] = {}
        self._tasks: set[asyncio.Task[Any]] = set()

    # -------------------------------------------------------------------------
    # Subclass hooks
    # -------------------------------------------------------------------------

    @abstractmethod
    def build_filter(self, keys: list[str]) -> dict[str, Any]:
        """Return the REQ filter selecting the events for *keys*."""

    @abstractmethod
    def key_of(self, event: Event) -> str:
        """Return the cache key an event answers for."""

    @abstractmethod
    def parse(self, event: Event) -> V | None:
        """Convert an event to a value, or ``None`` to ignore it."""

    @abstractmethod
    def empty(self, key: str, *, loaded: bool) -> V:
        """Return the placeholder value for a key without data."""

    @abstractmethod
    def created_at_of(self, value: V) -> int:
        """Return the timestamp used to keep the newest value per key."""

    # -------------------------------------------------------------------------
    # Lookups
    # -------------------------------------------------------------------------

    @property
    def cache_size(self) -> int:
        """Number of stored entries, expired ones included until purged."""
        return len(self._cache)

    @property
    def in_flight_keys(self) -> frozenset[str]:
        return frozenset(self._inflight)

    @property
    def in_flight_batches(self) -> list[InFlightFetch[V]]:
        return list(self._fetches.values())

    def peek(self, key: str) -> V | None:
        """Return the fresh cached value for *key* without fetching."""
        return self._cache.get(key)

    def invalidate(self, key: str) -> None:
        self._cache.delete(key)

    async def fetch_one(self, key: str) -> V:
        """Return the value for *key*, fetching it if not freshly cached."""
        return (await self.fetch_many([key]))[key]

    async def fetch_many(self, keys: Iterable[str]) -> dict[str, V]:
        """Return values for all *keys*, fetching misses in batches.

        Duplicate keys are collapsed. Keys already being fetched by another
        call share that fetch instead of starting a new one.

        Returns:
            Mapping from each distinct key to its value.

        Raises:
            ConnectivityError: If a batch subscription could not be opened.
        """
        unique = list(dict.fromkeys(keys))
        results: dict[str, V] = {}
        waiting: dict[str, asyncio.Future[V]] = {}
        to_fetch: list[str] = []

        for key in unique:
            cached = self._cache.get(key)
            if cached is not None:
                results[key] = cached
                CACHE_LOOKUPS.labels(cache=self.CACHE_NAME, result="hit").inc()
                continue
            pending = self._inflight.get(key)
            if pending is not None:
                waiting[key] = pending
                CACHE_LOOKUPS.labels(cache=self.CACHE_NAME, result="coalesced").inc()
                continue
            to_fetch.append(key)
            CACHE_LOOKUPS.labels(cache=self.CACHE_NAME, result="miss").inc()

        for batch in _chunks(to_fetch, self._batch_size):
            waiting.update(self._start_batch(batch))

        if waiting:
            values = await asyncio.gather(*(asyncio.shield(f) for f in waiting.values()))
            results.update(zip(waiting, values, strict=True))

        return {key: results[key] for key in unique}

    def prefetch(self, keys: Iterable[str]) -> asyncio.Task[dict[str, V]] | None:
        """Warm the cache for *keys* in the background.

        Returns:
            The background task, or ``None`` when every key is already cached
            or in flight. Failures are logged, never raised.
        """
        missing = [
            k for k in dict.fromkeys(keys) if k not in self._cache and k not in self._inflight
        ]
        if not missing:
            return None
        task = asyncio.create_task(self.fetch_many(missing), name=f"{self.CACHE_NAME}-prefetch")
        self._tasks.add(task)
        task.add_done_callback(self._on_prefetch_done)
        return task

    async def close(self) -> None:
        """Cancel running batches and prefetches; their waiters are cancelled."""
        tasks = list(self._tasks)
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        for future in list(self._inflight.values()):
            future.cancel()

    # -------------------------------------------------------------------------
    # Batch execution
    # -------------------------------------------------------------------------

    def _start_batch(self, keys: list[str]) -> dict[str, asyncio.Future[V]]:
        purged = self._cache.purge()
        if purged:
            logger.debug("cache_purged cache=%s entries=%d", self.CACHE_NAME, purged)

        loop = asyncio.get_running_loop()
        futures: dict[str, asyncio.Future[V]] = {}
        for key in keys:
            future: asyncio.Future[V] = loop.create_future()
            future.add_done_callback(lambda f, k=key: self._on_key_done(k, f))
            futures[key] = future
        self._inflight.update(futures)

        task = asyncio.create_task(self._run_batch(keys, futures), name=f"{self.CACHE_NAME}-batch")
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return futures

    async def _run_batch(self, keys: list[str], futures: dict[str, asyncio.Future[V]]) -> None:
        loop = asyncio.get_running_loop()
        fetch: InFlightFetch[V] = InFlightFetch(keys=tuple(keys))
        self._fetches[id(fetch)] = fetch
        started = loop.time()

        try:
            try:
                sub = await retry_async(
                    lambda: self._subscribe(fetch),
                    self._retry,
                    f"{self.CACHE_NAME}_subscribe",
                )
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.warning("batch_subscribe_failed keys=%d error=%s", len(keys), e)
                for future in futures.values():
                    if not future.done():
                        future.set_exception(e)
                return

            fetch.subscription_id = sub.id
            fetch.deadline = loop.time() + self._batch_timeout
            timed_out = False
            try:
                await asyncio.wait_for(fetch.finished.wait(), self._batch_timeout)
            except TimeoutError:
                timed_out = True
            finally:
                await sub.unsubscribe()

            self._resolve(fetch, futures, timed_out=timed_out)
        finally:
            del self._fetches[id(fetch)]
            for future in futures.values():
                future.cancel()
            BATCH_DURATION_SECONDS.labels(cache=self.CACHE_NAME).observe(loop.time() - started)

    async def _subscribe(self, fetch: InFlightFetch[V]) -> Subscription:
        # A retried subscribe starts over with a fresh view of the batch
        fetch.received.clear()
        fetch.lost_reason = None
        fetch.finished.clear()
        return await self._router.subscribe(
            [self.build_filter(list(fetch.keys))],
            lambda event: self._on_event(fetch, event),
            on_eose=fetch.finished.set,
            on_closed=lambda reason: self._on_lost(fetch, reason),
            prefix=self.SUBSCRIPTION_PREFIX,
        )

    def _on_event(self, fetch: InFlightFetch[V], event: Event) -> None:
        key = self.key_of(event)
        if key not in fetch.keys:
            return
        value = self.parse(event)
        if value is None:
            return
        current = fetch.received.get(key)
        if current is None or self.created_at_of(value) > self.created_at_of(current):
            fetch.received[key] = value
            self._cache.set(key, value)
        if fetch.complete:
            fetch.finished.set()

    def _on_lost(self, fetch: InFlightFetch[V], reason: str) -> None:
        fetch.lost_reason = reason
        fetch.finished.set()

    def _resolve(
        self,
        fetch: InFlightFetch[V],
        futures: dict[str, asyncio.Future[V]],
        *,
        timed_out: bool,
    ) -> None:
        missing = [k for k in fetch.keys if k not in fetch.received]
        if missing:
            if fetch.lost_reason is not None:
                logger.info(
                    "batch_lost keys=%d missing=%d reason=%s",
                    len(fetch.keys),
                    len(missing),
                    fetch.lost_reason,
                )
            elif timed_out:
                logger.info("batch_timeout keys=%d missing=%d", len(fetch.keys), len(missing))

        for key in fetch.keys:
            value = fetch.received.get(key)
            if value is None:
                if fetch.lost_reason is not None:
                    value = self.empty(key, loaded=False)
                else:
                    value = self.empty(key, loaded=not timed_out)
                    self._cache.set(key, value)
            future = futures[key]
            if not future.done():
                future.set_result(value)

    def _on_key_done(self, key: str, future: asyncio.Future[V]) -> None:
        if self._inflight.get(key) is future:
            del self._inflight[key]
        if not future.cancelled():
            # Mark the exception retrieved; waiters receive it through their shields
            future.exception()

    def _on_prefetch_done(self, task: asyncio.Task[Any]) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            return
        error = task.exception()
        if error is not None:
            logger.warning("prefetch_failed cache=%s error=%s", self.CACHE_NAME, error)
