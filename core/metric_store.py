"""Latest-value store shared by the feed pipeline and the metrics server.

``MetricStore`` maps ``(source, symbol)`` to the most recently published
mid-price. It is constructed explicitly at startup and passed by
reference to both the :class:`~core.processor.EventProcessor` (the single
writer) and the metrics collector (any number of concurrent readers).

Thread safety:
    One coarse ``threading.Lock`` guards the value and timestamp dicts.
    Every operation holds it only for the dict access itself, so a slow
    scraper never stalls ingestion and vice versa. ``snapshot()`` copies
    under the lock and returns a consistent view; a scrape observes each
    entry either before or after a concurrent update, never half of one.

Lifecycle:
    Entries are created on first write, overwritten on every later
    write (last-write-wins, no history), and never deleted while the
    process runs.

Example:
    >>> from core.metric_store import MetricStore
    >>> store = MetricStore()
    >>> store.set("Binance", "BTCUSDT", 50000.5)
    >>> store.get("Binance", "BTCUSDT")
    50000.5
    >>> store.snapshot()
    {('Binance', 'BTCUSDT'): 50000.5}
"""

import threading
import time

MetricKey = tuple[str, str]
"""Store key: ``(source, symbol)``."""


class MetricStore:
    """Thread-safe ``(source, symbol) -> float`` latest-value map."""

    __slots__ = ("_values", "_updated_mono_ns", "_lock")

    def __init__(self) -> None:
        self._values: dict[MetricKey, float] = {}
        self._updated_mono_ns: dict[MetricKey, int] = {}
        self._lock: threading.Lock = threading.Lock()

    def set(self, source: str, symbol: str, value: float) -> None:
        """Publish ``value`` for ``(source, symbol)``, replacing any previous one."""
        key: MetricKey = (source, symbol)
        now: int = time.monotonic_ns()
        with self._lock:
            self._values[key] = value
            self._updated_mono_ns[key] = now

    def get(self, source: str, symbol: str) -> float | None:
        """Return the latest value, or ``None`` if never published."""
        with self._lock:
            return self._values.get((source, symbol))

    def snapshot(self) -> dict[MetricKey, float]:
        """Return a copy of all entries taken under a single lock hold."""
        with self._lock:
            return dict(self._values)

    def ages(self, now_ns: int | None = None) -> dict[MetricKey, float]:
        """Return seconds since each entry was last written.

        Args:
            now_ns: Optional pre-captured ``time.monotonic_ns()``.
        """
        with self._lock:
            updated: dict[MetricKey, int] = dict(self._updated_mono_ns)
        now: int = now_ns if now_ns is not None else time.monotonic_ns()
        return {
            key: max(0, now - ts) / 1_000_000_000 for key, ts in updated.items()
        }

    def snapshot_with_ages(
        self, now_ns: int | None = None
    ) -> dict[MetricKey, tuple[float, float]]:
        """Return ``{key: (value, age_seconds)}`` from a single lock hold.

        Values and ages always cover the same keys, even while a writer
        is adding entries.
        """
        with self._lock:
            values: dict[MetricKey, float] = dict(self._values)
            updated: dict[MetricKey, int] = dict(self._updated_mono_ns)
        now: int = now_ns if now_ns is not None else time.monotonic_ns()
        return {
            key: (value, max(0, now - updated[key]) / 1_000_000_000)
            for key, value in values.items()
        }

    def __contains__(self, key: object) -> bool:
        with self._lock:
            return key in self._values

    def __len__(self) -> int:
        with self._lock:
            return len(self._values)
