"""Reconnect supervisor: the feed-resilience loop.

The supervisor owns the session lifecycle and never gives up::

    CONNECTING ──ok──▶ STREAMING ──timeout / end / error──▶ RECOVERING
        ▲   │                                                  │
        │   └──────────────── connect error ──────────────────▶│
        └──────────────── wait backoff_seconds ◀───────────────┘

- **CONNECTING**: call the session factory. A
  :class:`~core.feed.ConnectError` moves straight to RECOVERING.
- **STREAMING**: pull events with ``next_event(stall_timeout)`` and hand
  each one to the :class:`~core.processor.EventProcessor`, strictly in
  arrival order. A stall timeout, stream end or transport error moves
  to RECOVERING.
- **RECOVERING**: close the session (exactly once, in a ``finally``),
  wait a fixed ``backoff_seconds``, reconnect.

Stall detection:
    A stalled but open connection looks exactly like an idle one. The
    stall timeout bounds the silence allowed on a book-ticker stream,
    which for actively traded symbols emits many updates per second.

Backoff:
    Fixed, no growth. The wait runs on the shutdown event so
    :meth:`ReconnectSupervisor.stop` interrupts it.

Thread ownership:
    - ``run()``: the feed thread (typically the main thread).
    - ``stop()`` / ``state`` / ``stats()``: any thread.

Failure isolation:
    No exception raised while connecting or streaming escapes
    ``run()``. Feed errors are logged at ERROR; anything unexpected is
    logged with its traceback and recovered from the same way.

Example:
    >>> supervisor = ReconnectSupervisor(
    ...     config=SupervisorConfig(stall_timeout=60.0),
    ...     session_factory=lambda: BinanceFeedSession.open(feed_config),
    ...     processor=processor,
    ... )
    >>> supervisor.run()  # blocks until supervisor.stop()
"""

import logging
import threading
import time
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field

from core.events import FeedEvent
from core.feed import (
    ConnectError,
    FeedSession,
    SessionFactory,
    StallTimeout,
    StreamEnded,
    TransportError,
)
from core.processor import EventProcessor

logger: logging.Logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------


class SupervisorState(str, Enum):
    """Lifecycle state of :class:`ReconnectSupervisor`.

    States:
        IDLE: Created, ``run()`` not yet called.
        CONNECTING: Opening a new session.
        STREAMING: Session open, events flowing.
        RECOVERING: Session discarded, waiting out the backoff.
        SHUTDOWN: ``stop()`` called, terminal state.
    """

    IDLE = "IDLE"
    CONNECTING = "CONNECTING"
    STREAMING = "STREAMING"
    RECOVERING = "RECOVERING"
    SHUTDOWN = "SHUTDOWN"


# ---------------------------------------------------------------------------
# Configuration
# ---------------------------------------------------------------------------


class SupervisorConfig(BaseModel):
    """Configuration for :class:`ReconnectSupervisor`.

    Attributes:
        stall_timeout: Maximum silence (seconds) on an open session
            before it is treated as dead. Default 60.
        backoff_seconds: Fixed wait (seconds) between a failed or
            ended session and the next connection attempt. Default 1.
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    stall_timeout: float = Field(
        default=60.0,
        gt=0.0,
        description="Maximum silence (seconds) before a session is treated as dead",
    )
    backoff_seconds: float = Field(
        default=1.0,
        ge=0.0,
        description="Fixed delay (seconds) before reconnecting",
    )


# ---------------------------------------------------------------------------
# Stats Model
# ---------------------------------------------------------------------------


class SupervisorStats(BaseModel):
    """Immutable snapshot of supervisor counters.

    Attributes:
        state: Current :class:`SupervisorState` value.
        connected: Whether a session is currently streaming.
        sessions_opened: Sessions successfully opened.
        connect_failures: Failed connection attempts.
        stalls: Sessions ended by the stall timeout.
        stream_ends: Sessions closed by the peer.
        transport_errors: Sessions ended by a transport failure.
        unexpected_errors: Sessions ended by any other exception.
        events_processed: Events handed to the processor.
        last_connect_ts: Wall-clock time of the last successful open
            (``0.0`` if never).
        last_disconnect_ts: Wall-clock time the last session ended
            (``0.0`` if never).
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    state: SupervisorState
    connected: bool
    sessions_opened: int = Field(ge=0)
    connect_failures: int = Field(ge=0)
    stalls: int = Field(ge=0)
    stream_ends: int = Field(ge=0)
    transport_errors: int = Field(ge=0)
    unexpected_errors: int = Field(ge=0)
    events_processed: int = Field(ge=0)
    last_connect_ts: float = Field(ge=0.0)
    last_disconnect_ts: float = Field(ge=0.0)


# ---------------------------------------------------------------------------
# Supervisor
# ---------------------------------------------------------------------------


class ReconnectSupervisor:
    """Keep a feed session alive forever and feed its events to a processor.

    Args:
        config: Stall timeout and backoff settings.
        session_factory: Opens a new, subscribed session. Must raise
            :class:`~core.feed.ConnectError` on failure.
        processor: Handles every event received.
    """

    def __init__(
        self,
        config: SupervisorConfig,
        session_factory: SessionFactory,
        processor: EventProcessor,
    ) -> None:
        self._config: SupervisorConfig = config
        self._session_factory: SessionFactory = session_factory
        self._processor: EventProcessor = processor

        # State machine
        self._state: SupervisorState = SupervisorState.IDLE
        # reentrant: stop() may run from a signal handler in the feed thread
        self._state_lock: threading.RLock = threading.RLock()
        self._shutdown_event: threading.Event = threading.Event()

        # Active session (guarded by _state_lock so stop() can close it)
        self._session: FeedSession | None = None

        # Counters (guarded by _counter_lock)
        self._sessions_opened: int = 0
        self._connect_failures: int = 0
        self._stalls: int = 0
        self._stream_ends: int = 0
        self._transport_errors: int = 0
        self._unexpected_errors: int = 0
        self._events_processed: int = 0
        self._counter_lock: threading.Lock = threading.Lock()

        # Timestamps
        self._last_connect_ts: float = 0.0
        self._last_disconnect_ts: float = 0.0

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    @property
    def state(self) -> SupervisorState:
        """Current lifecycle state."""
        with self._state_lock:
            return self._state

    @property
    def stopped(self) -> bool:
        """Whether :meth:`stop` has been called."""
        return self._shutdown_event.is_set()

    def run(self) -> None:
        """Run the reconnect loop until :meth:`stop` is called.

        Blocks the calling thread. Never raises for feed failures.
        """
        logger.info(
            "Feed supervisor started (stall_timeout=%.1fs, backoff=%.1fs)",
            self._config.stall_timeout,
            self._config.backoff_seconds,
        )
        while not self._shutdown_event.is_set():
            self._run_once()
            if self._shutdown_event.is_set():
                break
            self._set_state(SupervisorState.RECOVERING)
            self._shutdown_event.wait(timeout=self._config.backoff_seconds)

        self._set_state(SupervisorState.SHUTDOWN)
        stats: SupervisorStats = self.stats()
        logger.info(
            "Feed supervisor stopped (sessions=%d, connect_failures=%d, "
            "stalls=%d, events=%d)",
            stats.sessions_opened,
            stats.connect_failures,
            stats.stalls,
            stats.events_processed,
        )

    def stop(self) -> None:
        """Stop the loop and close the active session.

        Safe to call from any thread (including a signal handler
        running in the feed thread). Idempotent.
        """
        if self._shutdown_event.is_set():
            return
        logger.info("Stopping feed supervisor")
        self._shutdown_event.set()

        with self._state_lock:
            self._state = SupervisorState.SHUTDOWN
            session: FeedSession | None = self._session
        if session is not None:
            try:
                session.close()
            except Exception:
                logger.debug("Exception while closing session on stop", exc_info=True)

    def stats(self) -> SupervisorStats:
        """Return supervisor counters. Thread-safe."""
        with self._state_lock:
            state: SupervisorState = self._state
        with self._counter_lock:
            return SupervisorStats(
                state=state,
                connected=state == SupervisorState.STREAMING,
                sessions_opened=self._sessions_opened,
                connect_failures=self._connect_failures,
                stalls=self._stalls,
                stream_ends=self._stream_ends,
                transport_errors=self._transport_errors,
                unexpected_errors=self._unexpected_errors,
                events_processed=self._events_processed,
                last_connect_ts=self._last_connect_ts,
                last_disconnect_ts=self._last_disconnect_ts,
            )

    # ------------------------------------------------------------------
    # Loop body
    # ------------------------------------------------------------------

    def _run_once(self) -> None:
        """Connect, stream until the session fails, then close it."""
        self._set_state(SupervisorState.CONNECTING)
        session: FeedSession | None = self._connect()
        if session is None:
            return

        with self._state_lock:
            # stop() may have run between connect and registration
            registered: bool = not self._shutdown_event.is_set()
            if registered:
                self._session = session
                self._state = SupervisorState.STREAMING
        if not registered:
            session.close()
            return

        try:
            self._stream(session)
        finally:
            with self._state_lock:
                self._session = None
            with self._counter_lock:
                self._last_disconnect_ts = time.time()
            try:
                session.close()
            except Exception:
                logger.debug("Exception while closing session", exc_info=True)

    def _connect(self) -> FeedSession | None:
        try:
            session: FeedSession = self._session_factory()
        except ConnectError as exc:
            with self._counter_lock:
                self._connect_failures += 1
            logger.error("Feed connect failed: %s", exc)
            return None
        except Exception:
            with self._counter_lock:
                self._connect_failures += 1
            logger.exception("Unexpected error while opening feed session")
            return None

        with self._counter_lock:
            self._sessions_opened += 1
            self._last_connect_ts = time.time()
        logger.info("Feed session opened (total=%d)", self._sessions_opened)
        return session

    def _stream(self, session: FeedSession) -> None:
        """Process events until the session fails or shutdown is requested."""
        timeout: float = self._config.stall_timeout
        try:
            while not self._shutdown_event.is_set():
                event: FeedEvent = session.next_event(timeout)
                self._processor.process(event, session)
                with self._counter_lock:
                    self._events_processed += 1
        except StallTimeout:
            with self._counter_lock:
                self._stalls += 1
            logger.error("Timeout: no feed message within %.1fs", timeout)
        except StreamEnded as exc:
            if self._shutdown_event.is_set():
                return
            with self._counter_lock:
                self._stream_ends += 1
            logger.error("Websocket exited: %s", exc)
        except TransportError as exc:
            if self._shutdown_event.is_set():
                return
            with self._counter_lock:
                self._transport_errors += 1
            logger.error("Websocket exited: %s", exc)
        except Exception:
            with self._counter_lock:
                self._unexpected_errors += 1
            logger.exception("Unexpected error while streaming, recovering")

    def _set_state(self, state: SupervisorState) -> None:
        with self._state_lock:
            if self._state == SupervisorState.SHUTDOWN:
                return
            self._state = state
