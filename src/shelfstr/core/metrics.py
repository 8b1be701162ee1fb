"""
Prometheus metrics for relay traffic, publishes, and cache lookups.

Metric objects are module-level singletons shared by every component of the
process. The relay layer records frames and subscription counts, the publish
tracker records acknowledgment outcomes, and the batch cache records hits,
misses and coalesced lookups.

The [MetricsServer][shelfstr.core.metrics.MetricsServer] exposes the default
registry over HTTP (aiohttp) for Prometheus scraping. The CLI starts it in
``feed --follow`` mode when ``metrics.enabled`` is set.

Architecture:
    RELAY_FRAMES:           Frames sent/received by direction and type.
    ACTIVE_SUBSCRIPTIONS:   Subscriptions currently routed on the connection.
    PUBLISH_RESULTS:        Publish outcomes (accepted, rejected, timeout, ...).
    CACHE_LOOKUPS:          Cache lookups by cache name and result.
    BATCH_DURATION_SECONDS: Histogram of batch fetch latency.
"""

from __future__ import annotations

from aiohttp import web
from prometheus_client import (
    CONTENT_TYPE_LATEST,
    Counter,
    Gauge,
    Histogram,
    generate_latest,
)
from pydantic import BaseModel, Field


class MetricsConfig(BaseModel):
    """Configuration for the Prometheus metrics endpoint."""

    enabled: bool = Field(default=False, description="Serve metrics over HTTP")
    port: int = Field(default=8000, ge=1024, le=65535, description="Metrics HTTP port")
    host: str = Field(default="127.0.0.1", description="Metrics HTTP bind address")
    path: str = Field(default="/metrics", description="Metrics endpoint path")


# direction: "in" | "out"; frame_type: REQ, CLOSE, EVENT, EOSE, OK, NOTICE, CLOSED, invalid
RELAY_FRAMES = Counter(
    "shelfstr_relay_frames",
    "Relay frames by direction and type",
    ["direction", "frame_type"],
)

ACTIVE_SUBSCRIPTIONS = Gauge(
    "shelfstr_active_subscriptions",
    "Subscriptions currently routed on the relay connection",
)

# result: accepted, rejected, timeout, disconnected
PUBLISH_RESULTS = Counter(
    "shelfstr_publish_results",
    "Publish outcomes by result",
    ["result"],
)

# result: hit, miss, coalesced
CACHE_LOOKUPS = Counter(
    "shelfstr_cache_lookups",
    "Cache lookups by cache name and result",
    ["cache", "result"],
)

BATCH_DURATION_SECONDS = Histogram(
    "shelfstr_batch_duration_seconds",
    "Duration of one batch fetch in seconds",
    ["cache"],
    buckets=(0.05, 0.1, 0.25, 0.5, 1, 2.5, 5, 10, 30),
)


class MetricsServer:
    """Async HTTP server exposing a Prometheus-compatible endpoint.

    Example:
        server = MetricsServer(MetricsConfig(enabled=True, port=8001))
        await server.start()
        # ... feed runs ...
        await server.stop()
    """

    def __init__(self, config: MetricsConfig) -> None:
        self._config = config
        self._runner: web.AppRunner | None = None

    async def start(self) -> None:
        """Bind the endpoint. No-op when metrics are disabled.

        Raises:
            OSError: If the port is already in use.
        """
        if not self._config.enabled:
            return

        app = web.Application()
        app.router.add_get(self._config.path, self._handle_metrics)

        self._runner = web.AppRunner(app, access_log=None)
        await self._runner.setup()
        site = web.TCPSite(self._runner, self._config.host, self._config.port)
        await site.start()

    async def stop(self) -> None:
        """Release the port. Idempotent."""
        if self._runner:
            await self._runner.cleanup()
            self._runner = None

    @staticmethod
    async def _handle_metrics(_request: web.Request) -> web.Response:
        return web.Response(
            body=generate_latest(),
            headers={"Content-Type": CONTENT_TYPE_LATEST},
        )


async def start_metrics_server(config: MetricsConfig | None = None) -> MetricsServer:
    """Create and start a metrics server; the caller must ``stop()`` it."""
    server = MetricsServer(config or MetricsConfig())
    await server.start()
    return server
