"""Binance book-ticker stream session over a synchronous WebSocket.

This module provides :class:`BinanceFeedSession`, the concrete
:class:`~core.feed.FeedSession` used in production. One instance owns
exactly one WebSocket connection, opened already subscribed to the
configured raw streams (``/ws/<topic>`` or
``/stream?streams=<a>/<b>``), so no subscription handshake is needed.

Architecture note:
    Uses the synchronous ``websockets`` client so the supervisor can run
    a plain blocking loop in its own thread, with the metrics server on
    separate threads. ``recv(timeout=...)`` gives the stall bound
    directly; no watchdog thread is involved.

Keepalive:
    Protocol-level ping frames (Binance sends one every few minutes) are
    answered by ``websockets`` itself. Application-level
    ``{"ping": n}`` frames surface as
    :class:`~core.events.KeepaliveRequest` and are answered by
    :meth:`BinanceFeedSession.acknowledge_keepalive`.

Thread ownership:
    - ``next_event()`` / ``acknowledge_keepalive()``: feed thread only.
    - ``close()`` / ``stats()``: any thread. ``close()`` from another
      thread interrupts a blocked ``next_event()``.

Example:
    >>> config = BinanceFeedConfig()
    >>> session = BinanceFeedSession.open(config)
    >>> event = session.next_event(timeout=60.0)
    >>> session.close()
"""

import logging
import threading

from pydantic import BaseModel, ConfigDict, Field, field_validator
from websockets.exceptions import (
    ConnectionClosed,
    ConnectionClosedOK,
    WebSocketException,
)
from websockets.sync.client import ClientConnection, connect

from core.events import FeedEvent, KeepaliveRequest
from core.feed import ConnectError, StallTimeout, StreamEnded, TransportError
from infra.binance_codec import decode_message, encode_pong

logger: logging.Logger = logging.getLogger(__name__)

BOOK_TICKER_TOPIC: str = "!bookTicker"
"""All-symbols best bid/ask stream."""


# ---------------------------------------------------------------------------
# Configuration
# ---------------------------------------------------------------------------


class BinanceFeedConfig(BaseModel):
    """Configuration for :class:`BinanceFeedSession`.

    Attributes:
        base_url: WebSocket host. Default is the USD-M futures market
            stream host; use ``wss://stream.binance.com:9443`` for spot.
        topics: Raw stream names to subscribe to. Default
            ``("!bookTicker",)``.
        open_timeout: Seconds allowed for the opening handshake.
        close_timeout: Seconds allowed for the closing handshake.
        ping_interval: Seconds between protocol-level pings sent by the
            client. ``None`` disables client pings.
        ping_timeout: Seconds to wait for a pong before failing the
            connection. ``None`` disables the check.
        max_size: Maximum incoming message size in bytes.
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    base_url: str = Field(
        default="wss://fstream.binance.com",
        description="WebSocket market stream host",
    )
    topics: tuple[str, ...] = Field(
        default=(BOOK_TICKER_TOPIC,),
        min_length=1,
        description="Raw stream names to subscribe to",
    )
    open_timeout: float = Field(default=10.0, gt=0.0)
    close_timeout: float = Field(default=5.0, gt=0.0)
    ping_interval: float | None = Field(default=20.0, gt=0.0)
    ping_timeout: float | None = Field(default=20.0, gt=0.0)
    max_size: int = Field(default=2**20, gt=0)

    @field_validator("base_url")
    @classmethod
    def _validate_scheme(cls, v: str) -> str:
        """Require a ``ws://`` or ``wss://`` URL and drop trailing slashes."""
        v = v.strip().rstrip("/")
        if not v.startswith(("ws://", "wss://")):
            raise ValueError(f"base_url must start with ws:// or wss://, got {v!r}")
        return v

    def stream_url(self) -> str:
        """Return the URL that subscribes to :attr:`topics` on connect.

        Example:
            >>> BinanceFeedConfig().stream_url()
            'wss://fstream.binance.com/ws/!bookTicker'
            >>> BinanceFeedConfig(topics=("a", "b")).stream_url()
            'wss://fstream.binance.com/stream?streams=a/b'
        """
        if len(self.topics) == 1:
            return f"{self.base_url}/ws/{self.topics[0]}"
        return f"{self.base_url}/stream?streams={'/'.join(self.topics)}"


# ---------------------------------------------------------------------------
# Session
# ---------------------------------------------------------------------------


class BinanceFeedSession:
    """One subscribed Binance WebSocket connection.

    Create with :meth:`open`. The session is not reusable: once any
    operation raises, close it and open a new one.

    Args:
        connection: An open ``websockets`` client connection.
        url: URL the connection was opened on (for logging).
    """

    def __init__(self, connection: ClientConnection, url: str) -> None:
        self._connection: ClientConnection = connection
        self._url: str = url

        self._closed: bool = False
        self._close_lock: threading.Lock = threading.Lock()

        # Feed thread only
        self._messages_received: int = 0
        self._keepalives_sent: int = 0

    @classmethod
    def open(cls, config: BinanceFeedConfig) -> "BinanceFeedSession":
        """Connect and subscribe.

        Raises:
            ConnectError: The handshake or the network failed.
        """
        url: str = config.stream_url()
        logger.info("Connecting to %s", url)
        try:
            connection: ClientConnection = connect(
                url,
                open_timeout=config.open_timeout,
                close_timeout=config.close_timeout,
                ping_interval=config.ping_interval,
                ping_timeout=config.ping_timeout,
                max_size=config.max_size,
            )
        except (WebSocketException, OSError) as exc:
            raise ConnectError(
                f"Failed to connect: {exc!r}",
                details={"url": url},
            ) from exc
        logger.info("Connected to %s", url)
        return cls(connection=connection, url=url)

    @property
    def closed(self) -> bool:
        """Whether :meth:`close` has been called."""
        with self._close_lock:
            return self._closed

    def next_event(self, timeout: float) -> FeedEvent:
        """Block until the next frame and decode it.

        Raises:
            StallTimeout: No frame within ``timeout`` seconds.
            StreamEnded: The connection was closed normally.
            TransportError: The connection failed.
        """
        try:
            raw: str | bytes = self._connection.recv(timeout=timeout)
        except TimeoutError as exc:
            raise StallTimeout(
                f"No message within {timeout:.1f}s",
                details={"url": self._url},
            ) from exc
        except ConnectionClosedOK as exc:
            raise StreamEnded(
                f"Stream closed: {exc}",
                details={"url": self._url},
            ) from exc
        except ConnectionClosed as exc:
            raise TransportError(
                f"Connection lost: {exc}",
                details={"url": self._url},
            ) from exc
        except (WebSocketException, OSError) as exc:
            raise TransportError(
                f"Receive failed: {exc!r}",
                details={"url": self._url},
            ) from exc

        self._messages_received += 1
        return decode_message(raw)

    def acknowledge_keepalive(self, request: KeepaliveRequest) -> None:
        """Send ``{"pong": <payload>}``.

        Raises:
            TransportError: The reply could not be sent.
        """
        try:
            self._connection.send(encode_pong(request))
        except (WebSocketException, OSError) as exc:
            raise TransportError(
                f"Keepalive reply failed: {exc!r}",
                details={"url": self._url},
            ) from exc
        self._keepalives_sent += 1

    def close(self) -> None:
        """Close the connection. Idempotent, safe from any thread."""
        with self._close_lock:
            if self._closed:
                return
            self._closed = True

        try:
            self._connection.close()
        except Exception:
            logger.debug("Exception during websocket close", exc_info=True)
        logger.info(
            "Closed feed session %s (messages=%d, keepalives=%d)",
            self._url,
            self._messages_received,
            self._keepalives_sent,
        )

    def stats(self) -> dict[str, str | int | bool]:
        """Return session counters."""
        return {
            "url": self._url,
            "closed": self.closed,
            "messages_received": self._messages_received,
            "keepalives_sent": self._keepalives_sent,
        }
