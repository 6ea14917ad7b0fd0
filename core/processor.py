"""Event processor: filter, derive mid-price, publish.

The processor runs inline in the supervisor's feed thread and handles
one event at a time, in arrival order. Its only side effects are the
store write for price updates and the keepalive reply for pings.

Dispatch:
    - :class:`~core.events.PriceUpdate`: dropped if the symbol filter
      rejects it, otherwise ``(bid + ask) / 2`` is written to the store
      under ``(source, symbol)``. Reprocessing the same event overwrites
      with the same value.
    - :class:`~core.events.KeepaliveRequest`: answered through the
      session exactly once. A :class:`~core.feed.TransportError` from
      the reply propagates to the supervisor and ends the session.
    - :class:`~core.events.Unrecognized`: logged and discarded.

Logging safety:
    Unrecognized frames are logged with rate limiting: the first 10 are
    logged with their content, then every 1000th occurrence.

Example:
    >>> from decimal import Decimal
    >>> from core.events import PriceUpdate
    >>> from core.metric_store import MetricStore
    >>> from core.symbols import SymbolFilter
    >>> store = MetricStore()
    >>> processor = EventProcessor(store, SymbolFilter.of("BTCUSDT"))
    >>> processor.process(
    ...     PriceUpdate(symbol="BTCUSDT", best_bid=Decimal("1"),
    ...                 best_ask=Decimal("2")),
    ...     session=None,
    ... )
    >>> store.get("Binance", "BTCUSDT")
    1.5
"""

import logging
import threading
from typing import assert_never

from pydantic import BaseModel, ConfigDict, Field

from core.events import (
    FeedEvent,
    KeepaliveRequest,
    MidPriceSample,
    PriceUpdate,
    Unrecognized,
)
from core.feed import FeedSession
from core.metric_store import MetricStore
from core.symbols import SymbolFilter

logger: logging.Logger = logging.getLogger(__name__)

DEFAULT_SOURCE: str = "Binance"
"""Exchange label used for the ``exchange`` metric label."""

# ---------------------------------------------------------------------------
# Rate-limited logging thresholds
# ---------------------------------------------------------------------------

_LOG_FIRST_N: int = 10
"""Log the content of the first N unrecognized frames."""

_LOG_EVERY_N: int = 1000
"""After the first N, log every Nth occurrence."""

_RAW_PREVIEW_CHARS: int = 200


# ---------------------------------------------------------------------------
# Stats Model
# ---------------------------------------------------------------------------


class ProcessorStats(BaseModel):
    """Immutable snapshot of processor counters.

    Attributes:
        published: Price updates written to the store.
        filtered: Price updates dropped by the symbol filter.
        keepalives: Keepalive requests acknowledged.
        unrecognized: Frames discarded as unrecognized.
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    published: int = Field(ge=0, description="Price updates written to the store.")
    filtered: int = Field(ge=0, description="Price updates rejected by the filter.")
    keepalives: int = Field(ge=0, description="Keepalive requests acknowledged.")
    unrecognized: int = Field(ge=0, description="Unrecognized frames discarded.")


# ---------------------------------------------------------------------------
# Processor
# ---------------------------------------------------------------------------


class EventProcessor:
    """Classify feed events and publish mid-prices into a store.

    Thread ownership:
        - ``process()``: feed thread only.
        - ``stats()``: any thread (lock-protected snapshot).

    Args:
        store: Destination store, shared with the metrics server.
        symbol_filter: Allow-list. Empty accepts every symbol.
        source: Exchange label written with every sample.
    """

    def __init__(
        self,
        store: MetricStore,
        symbol_filter: SymbolFilter,
        source: str = DEFAULT_SOURCE,
    ) -> None:
        self._store: MetricStore = store
        self._filter: SymbolFilter = symbol_filter
        self._source: str = source

        self._published: int = 0
        self._filtered: int = 0
        self._keepalives: int = 0
        self._unrecognized: int = 0
        self._counter_lock: threading.Lock = threading.Lock()

    @property
    def source(self) -> str:
        """Exchange label written with every sample."""
        return self._source

    def process(self, event: FeedEvent, session: FeedSession | None) -> None:
        """Handle a single event.

        Args:
            event: The event to handle.
            session: Session the event came from. Required for
                keepalive requests; may be ``None`` otherwise.

        Raises:
            TransportError: The keepalive reply failed.
        """
        if isinstance(event, PriceUpdate):
            self._on_price_update(event)
        elif isinstance(event, KeepaliveRequest):
            self._on_keepalive(event, session)
        elif isinstance(event, Unrecognized):
            self._on_unrecognized(event)
        else:
            assert_never(event)

    def stats(self) -> ProcessorStats:
        """Return processor counters. Thread-safe."""
        with self._counter_lock:
            return ProcessorStats(
                published=self._published,
                filtered=self._filtered,
                keepalives=self._keepalives,
                unrecognized=self._unrecognized,
            )

    # ------------------------------------------------------------------
    # Handlers
    # ------------------------------------------------------------------

    def _on_price_update(self, event: PriceUpdate) -> None:
        if not self._filter.accepts(event.symbol):
            with self._counter_lock:
                self._filtered += 1
            logger.debug("Filtered %s", event.symbol)
            return

        sample: MidPriceSample = MidPriceSample.from_update(self._source, event)
        self._store.set(sample.source, sample.symbol, sample.value)
        with self._counter_lock:
            self._published += 1

    def _on_keepalive(
        self,
        event: KeepaliveRequest,
        session: FeedSession | None,
    ) -> None:
        if session is None:
            raise ValueError("Keepalive request received without a session")
        session.acknowledge_keepalive(event)
        with self._counter_lock:
            self._keepalives += 1
        logger.debug("Acknowledged keepalive (payload=%r)", event.payload)

    def _on_unrecognized(self, event: Unrecognized) -> None:
        with self._counter_lock:
            self._unrecognized += 1
            count: int = self._unrecognized

        if count <= _LOG_FIRST_N:
            logger.warning(
                "Unknown message (%d/%d): %s",
                count,
                _LOG_FIRST_N,
                event.raw[:_RAW_PREVIEW_CHARS],
            )
        elif count % _LOG_EVERY_N == 0:
            logger.warning("Unknown messages ongoing: %d total", count)
