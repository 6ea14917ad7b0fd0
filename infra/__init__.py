"""Infrastructure layer for the book-ticker exporter.

This package provides the Binance WebSocket transport and frame codec,
and the Prometheus scrape endpoint that exposes the metric store.
"""

from infra.binance_codec import decode_message, encode_pong
from infra.binance_ws import BinanceFeedConfig, BinanceFeedSession
from infra.metrics_server import (
    MetricsServer,
    MetricsServerConfig,
    MetricsServerError,
    MetricStoreCollector,
)

__all__: list[str] = [
    "BinanceFeedConfig",
    "BinanceFeedSession",
    "MetricStoreCollector",
    "MetricsServer",
    "MetricsServerConfig",
    "MetricsServerError",
    "decode_message",
    "encode_pong",
]
