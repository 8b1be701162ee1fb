"""Core layer shared by the relay, cache and service packages.

Depends only on third-party libraries and the standard library; every other
shelfstr package may import from it.

Attributes:
    Logger: Structured logger supporting key=value and JSON output modes.
        See [Logger][shelfstr.core.logger.Logger].
    Exceptions: The [ShelfstrError][shelfstr.core.exceptions.ShelfstrError]
        hierarchy separating connectivity, protocol and publishing failures.
    MetricsServer: Prometheus ``/metrics`` HTTP endpoint.
        See [MetricsServer][shelfstr.core.metrics.MetricsServer].
    YAML: Safe YAML loading with ``yaml.safe_load()``.
        See [load_yaml()][shelfstr.core.yaml.load_yaml].

See Also:
    [shelfstr.relay][shelfstr.relay]: Relay protocol layer built on this one.
"""

from .exceptions import (
    CapabilityError,
    ConfigurationError,
    ConnectivityError,
    ProtocolError,
    PublishingError,
    PublishRejectedError,
    RelayConnectionError,
    RelayTimeoutError,
    ShelfstrError,
    ValidationError,
)
from .logger import Logger, StructuredFormatter, format_kv_pairs
from .metrics import (
    ACTIVE_SUBSCRIPTIONS,
    BATCH_DURATION_SECONDS,
    CACHE_LOOKUPS,
    PUBLISH_RESULTS,
    RELAY_FRAMES,
    MetricsConfig,
    MetricsServer,
    start_metrics_server,
)
from .yaml import load_yaml


__all__ = [
    "ACTIVE_SUBSCRIPTIONS",
    "BATCH_DURATION_SECONDS",
    "CACHE_LOOKUPS",
    "PUBLISH_RESULTS",
    "RELAY_FRAMES",
    "CapabilityError",
    "ConfigurationError",
    "ConnectivityError",
    "Logger",
    "MetricsConfig",
    "MetricsServer",
    "ProtocolError",
    "PublishRejectedError",
    "PublishingError",
    "RelayConnectionError",
    "RelayTimeoutError",
    "ShelfstrError",
    "StructuredFormatter",
    "ValidationError",
    "format_kv_pairs",
    "load_yaml",
    "start_metrics_server",
]
