"""Entry point: wire the store, feed supervisor and scrape endpoint.

Pipeline::

    BinanceFeedSession → EventProcessor → MetricStore ← MetricsServer
            ▲                                                (scrapes)
    ReconnectSupervisor (main thread)

The supervisor runs in the main thread until SIGTERM or Ctrl+C. The
metrics server runs on its own daemon threads; if it cannot bind, the
failure is logged at ERROR and the feed keeps running.

Usage:
    book-ticker-exporter --symbol BTCUSDT --symbol ETHUSDT --port 9090
    python -m app --timeout 30
"""

import logging
import signal
import sys
from collections.abc import Sequence
from types import FrameType

from prometheus_client import CollectorRegistry
from pydantic import ValidationError

from app.config import ConfigError, ExporterConfig, load_config
from core.metric_store import MetricStore
from core.processor import EventProcessor, ProcessorStats
from core.supervisor import ReconnectSupervisor, SupervisorConfig, SupervisorStats
from infra.binance_ws import BinanceFeedConfig, BinanceFeedSession
from infra.metrics_server import (
    MetricsServer,
    MetricsServerConfig,
    MetricsServerError,
    MetricStoreCollector,
)

logger: logging.Logger = logging.getLogger(__name__)

LOG_FORMAT: str = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"


def configure_logging(level: str = "INFO") -> None:
    """Configure root logging once for the process."""
    logging.basicConfig(level=level, format=LOG_FORMAT)
    # websockets logs every frame at DEBUG
    logging.getLogger("websockets").setLevel(logging.WARNING)


def build_supervisor(
    config: ExporterConfig,
    store: MetricStore,
) -> tuple[ReconnectSupervisor, EventProcessor]:
    """Create the processor and supervisor for ``config``."""
    feed_config: BinanceFeedConfig = BinanceFeedConfig(base_url=config.ws_url)
    processor: EventProcessor = EventProcessor(
        store=store,
        symbol_filter=config.symbols,
        source=config.source,
    )
    supervisor: ReconnectSupervisor = ReconnectSupervisor(
        config=SupervisorConfig(stall_timeout=config.timeout),
        session_factory=lambda: BinanceFeedSession.open(feed_config),
        processor=processor,
    )
    return supervisor, processor


def main(argv: Sequence[str] | None = None) -> int:
    """Run the exporter until interrupted.

    Returns:
        Process exit code. Configuration errors are logged and return
        ``0`` without starting the feed.
    """
    try:
        config: ExporterConfig = load_config(argv)
    except ValidationError as exc:
        configure_logging()
        logger.error("Invalid configuration: %s", exc)
        return 0

    configure_logging(config.log_level)
    try:
        config.check_policy()
    except ConfigError as exc:
        logger.error("%s", exc)
        return 0

    if config.symbols.is_empty:
        logger.info("No symbol filter configured, exporting every symbol")
    else:
        logger.info("Exporting symbols: %s", ", ".join(sorted(config.symbols.symbols)))

    store: MetricStore = MetricStore()
    try:
        supervisor, processor = build_supervisor(config, store)
    except ValidationError as exc:
        logger.error("Invalid feed configuration: %s", exc)
        return 0

    registry: CollectorRegistry = CollectorRegistry(auto_describe=False)
    registry.register(MetricStoreCollector(store, supervisor))
    server: MetricsServer = MetricsServer(
        MetricsServerConfig(port=config.port),
        registry,
    )
    try:
        server.start()
    except MetricsServerError:
        logger.error("[Server] Exit with error, feed keeps running without a scrape endpoint")

    def _on_sigterm(signum: int, frame: FrameType | None) -> None:
        logger.info("Received signal %d", signum)
        supervisor.stop()

    signal.signal(signal.SIGTERM, _on_sigterm)

    try:
        supervisor.run()
    except KeyboardInterrupt:
        logger.info("Shutting down (received KeyboardInterrupt)...")
        supervisor.stop()
    finally:
        server.shutdown()
        _log_final_stats(supervisor.stats(), processor.stats(), len(store))

    return 0


def _log_final_stats(
    supervisor_stats: SupervisorStats,
    processor_stats: ProcessorStats,
    tracked: int,
) -> None:
    logger.info("=" * 50)
    logger.info("Final Statistics")
    logger.info("-" * 50)
    logger.info(
        "Sessions: opened=%d, connect_failures=%d, stalls=%d, "
        "stream_ends=%d, transport_errors=%d",
        supervisor_stats.sessions_opened,
        supervisor_stats.connect_failures,
        supervisor_stats.stalls,
        supervisor_stats.stream_ends,
        supervisor_stats.transport_errors,
    )
    logger.info(
        "Events: published=%d, filtered=%d, keepalives=%d, unrecognized=%d",
        processor_stats.published,
        processor_stats.filtered,
        processor_stats.keepalives,
        processor_stats.unrecognized,
    )
    logger.info("Symbols tracked: %d", tracked)
    logger.info("=" * 50)


if __name__ == "__main__":
    sys.exit(main())
