r"""Relay protocol layer: wire codec, transport, connection, routing, publishing.

```text
SubscriptionRouter   PublishTracker
          \             /
        ConnectionManager
                |
            Transport  --  codec (encode_frame / decode_frame)
```

Attributes:
    ConnectionManager: Owns the single transport and its state machine.
        See [ConnectionManager][shelfstr.relay.connection.ConnectionManager].
    SubscriptionRouter: Multiplexes subscriptions over the shared transport.
        See [SubscriptionRouter][shelfstr.relay.router.SubscriptionRouter].
    PublishTracker: Publishes events and awaits their acknowledgment.
        See [PublishTracker][shelfstr.relay.publisher.PublishTracker].
    ClientConfig: Root configuration model.
        See [ClientConfig][shelfstr.relay.configs.ClientConfig].
"""

from .codec import (
    ClosedFrame,
    CloseFrame,
    EoseFrame,
    EventFrame,
    Frame,
    FrameType,
    NoticeFrame,
    OkFrame,
    PublishFrame,
    ReqFrame,
    decode_frame,
    encode_frame,
)
from .configs import DEFAULT_RELAY_URL, CacheConfig, ClientConfig
from .connection import ConnectionManager
from .publisher import PendingPublish, PublishTracker
from .router import Subscription, SubscriptionRouter, generate_subscription_id
from .transport import Transport, TransportFactory, WebSocketTransport, open_websocket


__all__ = [
    "DEFAULT_RELAY_URL",
    "CacheConfig",
    "ClientConfig",
    "CloseFrame",
    "ClosedFrame",
    "ConnectionManager",
    "EoseFrame",
    "EventFrame",
    "Frame",
    "FrameType",
    "NoticeFrame",
    "OkFrame",
    "PendingPublish",
    "PublishFrame",
    "PublishTracker",
    "ReqFrame",
    "Subscription",
    "SubscriptionRouter",
    "Transport",
    "TransportFactory",
    "WebSocketTransport",
    "decode_frame",
    "encode_frame",
    "generate_subscription_id",
    "open_websocket",
]
