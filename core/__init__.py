"""Core domain layer for the book-ticker exporter.

This package provides the feed event models, the symbol filter, the
latest-value metric store, the event processor and the reconnect
supervisor. Nothing here performs network I/O directly; sessions are
injected through :data:`core.feed.SessionFactory`.
"""

from core.events import (
    FeedEvent,
    KeepaliveRequest,
    MidPriceSample,
    PriceUpdate,
    Unrecognized,
    mid_price,
)
from core.feed import (
    ConnectError,
    FeedError,
    FeedSession,
    StallTimeout,
    StreamEnded,
    TransportError,
)
from core.metric_store import MetricStore
from core.processor import EventProcessor, ProcessorStats
from core.supervisor import (
    ReconnectSupervisor,
    SupervisorConfig,
    SupervisorState,
    SupervisorStats,
)
from core.symbols import SymbolFilter

__all__: list[str] = [
    "ConnectError",
    "EventProcessor",
    "FeedError",
    "FeedEvent",
    "FeedSession",
    "KeepaliveRequest",
    "MetricStore",
    "MidPriceSample",
    "PriceUpdate",
    "ProcessorStats",
    "ReconnectSupervisor",
    "StallTimeout",
    "StreamEnded",
    "SupervisorConfig",
    "SupervisorState",
    "SupervisorStats",
    "SymbolFilter",
    "TransportError",
    "Unrecognized",
    "mid_price",
]
