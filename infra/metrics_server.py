"""Prometheus scrape endpoint backed by a :class:`~core.metric_store.MetricStore`.

The store is exposed through a custom ``prometheus_client`` collector
registered on a private :class:`~prometheus_client.CollectorRegistry`
(no process-global registry). Every scrape snapshots the store once,
under its lock, and renders one line per entry::

    # HELP price The price for a given symbol
    # TYPE price gauge
    price{exchange="Binance",symbol="BTCUSDT"} 50000.5

Architecture note:
    The ``prometheus_client`` WSGI app is served by its threading WSGI
    server in a daemon thread, one handler thread per scrape. Scrapes
    never touch the feed thread: the only shared state is the store,
    whose lock is held just long enough to copy it. Every request path
    and query string returns the full exposition text.

Failure domain:
    A bind failure is logged at ERROR and raised as
    :class:`MetricsServerError`. The caller decides what to do; the
    bootstrap keeps the feed loop running regardless.
"""

import logging
import threading
from collections.abc import Callable, Iterable, Iterator
from typing import Any, Protocol
from wsgiref.simple_server import WSGIRequestHandler, WSGIServer, make_server

from prometheus_client import CollectorRegistry, make_wsgi_app
from prometheus_client.core import CounterMetricFamily, GaugeMetricFamily
from prometheus_client.exposition import ThreadingWSGIServer
from prometheus_client.metrics_core import Metric
from prometheus_client.registry import Collector
from pydantic import BaseModel, ConfigDict, Field

from core.metric_store import MetricStore
from core.supervisor import SupervisorStats

logger: logging.Logger = logging.getLogger(__name__)

PRICE_METRIC: str = "price"
PRICE_HELP: str = "The price for a given symbol"
LABELS: list[str] = ["exchange", "symbol"]


class MetricsServerError(Exception):
    """Raised when the scrape endpoint cannot be started."""


class _StatsSource(Protocol):
    def stats(self) -> SupervisorStats: ...


# ---------------------------------------------------------------------------
# Collector
# ---------------------------------------------------------------------------


class MetricStoreCollector(Collector):
    """Render a :class:`MetricStore` (and optional feed stats) per scrape.

    Args:
        store: Store holding the latest mid-prices.
        supervisor: Optional object with a ``stats()`` method returning
            :class:`~core.supervisor.SupervisorStats`. When given, feed
            self-metrics are exported too.
    """

    def __init__(
        self,
        store: MetricStore,
        supervisor: _StatsSource | None = None,
    ) -> None:
        self._store: MetricStore = store
        self._supervisor: _StatsSource | None = supervisor

    def collect(self) -> Iterator[Metric]:
        entries: dict[tuple[str, str], tuple[float, float]] = (
            self._store.snapshot_with_ages()
        )

        price: GaugeMetricFamily = GaugeMetricFamily(
            PRICE_METRIC, PRICE_HELP, labels=LABELS
        )
        age: GaugeMetricFamily = GaugeMetricFamily(
            "price_last_update_age_seconds",
            "Seconds since the price for a given symbol was last updated",
            labels=LABELS,
        )
        for (source, symbol), (value, seconds) in sorted(entries.items()):
            price.add_metric([source, symbol], value)
            age.add_metric([source, symbol], seconds)
        yield price
        yield age

        if self._supervisor is not None:
            yield from self._collect_feed(self._supervisor.stats())

    @staticmethod
    def _collect_feed(stats: SupervisorStats) -> Iterator[Metric]:
        yield GaugeMetricFamily(
            "feed_connected",
            "Whether the feed session is currently streaming",
            value=1.0 if stats.connected else 0.0,
        )
        yield CounterMetricFamily(
            "feed_sessions",
            "Feed sessions opened",
            value=stats.sessions_opened,
        )
        yield CounterMetricFamily(
            "feed_connect_failures",
            "Failed feed connection attempts",
            value=stats.connect_failures,
        )
        yield CounterMetricFamily(
            "feed_stalls",
            "Feed sessions ended by the stall timeout",
            value=stats.stalls,
        )
        yield CounterMetricFamily(
            "feed_events",
            "Feed events processed",
            value=stats.events_processed,
        )


# ---------------------------------------------------------------------------
# Configuration
# ---------------------------------------------------------------------------


class MetricsServerConfig(BaseModel):
    """Configuration for :class:`MetricsServer`.

    Attributes:
        host: Address to bind. Default ``"0.0.0.0"``.
        port: TCP port to bind (1-65535). Default 9090. ``0`` picks a
            free port and is only meant for tests.
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    host: str = Field(default="0.0.0.0", min_length=1, description="Bind address")
    port: int = Field(default=9090, ge=0, le=65535, description="Bind port")


# ---------------------------------------------------------------------------
# Server
# ---------------------------------------------------------------------------

WSGIApp = Callable[[dict[str, Any], Callable[..., Any]], Iterable[bytes]]


def full_snapshot_app(app: WSGIApp) -> WSGIApp:
    """Serve the complete exposition for every request.

    ``make_wsgi_app`` answers ``/favicon.ico`` with an empty body and
    filters families on ``?name[]=...``; both are neutralised by
    rewriting the request to a plain ``/metrics``.
    """

    def wrapped(
        environ: dict[str, Any], start_response: Callable[..., Any]
    ) -> Iterable[bytes]:
        rewritten: dict[str, Any] = dict(environ)
        rewritten["PATH_INFO"] = "/metrics"
        rewritten["QUERY_STRING"] = ""
        return app(rewritten, start_response)

    return wrapped


class _QuietHandler(WSGIRequestHandler):
    """Request handler that does not write an access line per scrape."""

    def log_message(self, format: str, *args: Any) -> None:
        pass


class MetricsServer:
    """Threaded HTTP scrape endpoint for a registry.

    Args:
        config: Bind address and port.
        registry: Registry to expose. Typically holds a single
            :class:`MetricStoreCollector`.

    Example::

        registry = CollectorRegistry(auto_describe=False)
        registry.register(MetricStoreCollector(store, supervisor))
        server = MetricsServer(MetricsServerConfig(port=9090), registry)
        server.start()
        ...
        server.shutdown()
    """

    def __init__(
        self,
        config: MetricsServerConfig,
        registry: CollectorRegistry,
    ) -> None:
        self._config: MetricsServerConfig = config
        self._registry: CollectorRegistry = registry
        self._server: WSGIServer | None = None
        self._thread: threading.Thread | None = None
        self._lock: threading.Lock = threading.Lock()

    @property
    def running(self) -> bool:
        """Whether the server is bound and serving."""
        with self._lock:
            return self._server is not None

    @property
    def port(self) -> int | None:
        """Bound port, or ``None`` if not running."""
        with self._lock:
            return self._server.server_port if self._server is not None else None

    def start(self) -> None:
        """Bind and start serving in a daemon thread.

        Raises:
            RuntimeError: Already started.
            MetricsServerError: The address could not be bound.
        """
        with self._lock:
            if self._server is not None:
                raise RuntimeError("Metrics server already started")
            try:
                server: WSGIServer = make_server(
                    self._config.host,
                    self._config.port,
                    full_snapshot_app(make_wsgi_app(self._registry)),
                    ThreadingWSGIServer,
                    handler_class=_QuietHandler,
                )
            except OSError as exc:
                logger.error(
                    "[Server] Failed to bind %s:%d: %s",
                    self._config.host,
                    self._config.port,
                    exc,
                )
                raise MetricsServerError(
                    f"Cannot bind {self._config.host}:{self._config.port}"
                ) from exc
            thread: threading.Thread = threading.Thread(
                target=server.serve_forever,
                name="metrics-server",
                daemon=True,
            )
            thread.start()
            self._server = server
            self._thread = thread
            bound_port: int = server.server_port

        logger.info(
            "Prometheus exporter running on %s:%d",
            self._config.host,
            bound_port,
        )

    def shutdown(self) -> None:
        """Stop serving and release the socket. Idempotent."""
        with self._lock:
            server: WSGIServer | None = self._server
            thread: threading.Thread | None = self._thread
            self._server = None
            self._thread = None
        if server is None:
            return

        server.shutdown()
        server.server_close()
        if thread is not None:
            thread.join(timeout=5.0)
        logger.info("Prometheus exporter stopped")
