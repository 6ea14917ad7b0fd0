"""Unit tests for infra.binance_ws module.

The ``websockets`` client is mocked, so these tests exercise URL
construction, config validation, exception mapping from the transport
to the feed error hierarchy, keepalive replies, and close idempotency.
"""

import json
from decimal import Decimal
from unittest.mock import MagicMock, patch

import pytest
from pydantic import ValidationError
from websockets.exceptions import (
    ConnectionClosedError,
    ConnectionClosedOK,
    InvalidURI,
)
from websockets.frames import Close

from core.events import KeepaliveRequest, PriceUpdate, Unrecognized
from core.feed import ConnectError, StallTimeout, StreamEnded, TransportError
from infra.binance_ws import BinanceFeedConfig, BinanceFeedSession


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture()
def connection() -> MagicMock:
    """Return a mocked websockets client connection."""
    return MagicMock()


@pytest.fixture()
def session(connection: MagicMock) -> BinanceFeedSession:
    """Return a session wrapping the mocked connection."""
    return BinanceFeedSession(connection=connection, url="wss://test/ws/!bookTicker")


# ---------------------------------------------------------------------------
# Configuration
# ---------------------------------------------------------------------------


class TestBinanceFeedConfig:
    """Tests for BinanceFeedConfig Pydantic model."""

    def test_default_url(self) -> None:
        """Default subscribes to the all-symbols book ticker."""
        assert (
            BinanceFeedConfig().stream_url()
            == "wss://fstream.binance.com/ws/!bookTicker"
        )

    def test_combined_stream_url(self) -> None:
        """Several topics use the combined-stream endpoint."""
        config: BinanceFeedConfig = BinanceFeedConfig(
            base_url="wss://stream.binance.com:9443/",
            topics=("btcusdt@bookTicker", "ethusdt@bookTicker"),
        )
        assert config.stream_url() == (
            "wss://stream.binance.com:9443/stream?streams="
            "btcusdt@bookTicker/ethusdt@bookTicker"
        )

    def test_http_url_rejected(self) -> None:
        """Only ws:// and wss:// are accepted."""
        with pytest.raises(ValidationError):
            BinanceFeedConfig(base_url="https://fstream.binance.com")

    def test_empty_topics_rejected(self) -> None:
        """At least one topic is required."""
        with pytest.raises(ValidationError):
            BinanceFeedConfig(topics=())

    def test_ping_interval_may_be_disabled(self) -> None:
        """None disables client pings."""
        assert BinanceFeedConfig(ping_interval=None).ping_interval is None


# ---------------------------------------------------------------------------
# Open
# ---------------------------------------------------------------------------


class TestOpen:
    """Tests for BinanceFeedSession.open()."""

    def test_open_passes_url_and_timeouts(self) -> None:
        """connect() is called with the stream URL and configured limits."""
        config: BinanceFeedConfig = BinanceFeedConfig(open_timeout=3.0)
        with patch("infra.binance_ws.connect") as mock_connect:
            session: BinanceFeedSession = BinanceFeedSession.open(config)

        mock_connect.assert_called_once()
        args, kwargs = mock_connect.call_args
        assert args[0] == "wss://fstream.binance.com/ws/!bookTicker"
        assert kwargs["open_timeout"] == 3.0
        assert kwargs["max_size"] == config.max_size
        assert session.closed is False

    @pytest.mark.parametrize(
        "error",
        [
            OSError("connection refused"),
            TimeoutError("timed out during opening handshake"),
            InvalidURI("bad", "not a websocket URI"),
        ],
    )
    def test_open_failure_raises_connect_error(self, error: Exception) -> None:
        """Network and handshake failures become ConnectError."""
        with patch("infra.binance_ws.connect", side_effect=error):
            with pytest.raises(ConnectError) as exc_info:
                BinanceFeedSession.open(BinanceFeedConfig())
        assert exc_info.value.details["url"].endswith("/ws/!bookTicker")
        assert exc_info.value.__cause__ is error


# ---------------------------------------------------------------------------
# Receive
# ---------------------------------------------------------------------------


class TestNextEvent:
    """Tests for next_event() decoding and error mapping."""

    def test_decodes_frame(
        self, session: BinanceFeedSession, connection: MagicMock
    ) -> None:
        """A received frame is decoded into an event."""
        connection.recv.return_value = '{"s":"BTCUSDT","b":"1","a":"3"}'
        event = session.next_event(timeout=5.0)
        connection.recv.assert_called_once_with(timeout=5.0)
        assert isinstance(event, PriceUpdate)
        assert event.best_ask == Decimal("3")
        assert session.stats()["messages_received"] == 1

    def test_unknown_frame(
        self, session: BinanceFeedSession, connection: MagicMock
    ) -> None:
        """Subscription acks and the like are Unrecognized."""
        connection.recv.return_value = '{"result":null,"id":1}'
        assert isinstance(session.next_event(timeout=1.0), Unrecognized)

    def test_timeout_is_stall(
        self, session: BinanceFeedSession, connection: MagicMock
    ) -> None:
        """No frame within the timeout raises StallTimeout."""
        connection.recv.side_effect = TimeoutError()
        with pytest.raises(StallTimeout):
            session.next_event(timeout=0.5)

    def test_clean_close_is_stream_end(
        self, session: BinanceFeedSession, connection: MagicMock
    ) -> None:
        """A normal close raises StreamEnded."""
        connection.recv.side_effect = ConnectionClosedOK(
            Close(1000, "bye"), Close(1000, "bye"), rcvd_then_sent=True
        )
        with pytest.raises(StreamEnded):
            session.next_event(timeout=1.0)

    def test_abnormal_close_is_transport_error(
        self, session: BinanceFeedSession, connection: MagicMock
    ) -> None:
        """An abnormal close raises TransportError."""
        connection.recv.side_effect = ConnectionClosedError(None, None)
        with pytest.raises(TransportError):
            session.next_event(timeout=1.0)

    def test_os_error_is_transport_error(
        self, session: BinanceFeedSession, connection: MagicMock
    ) -> None:
        """Socket errors raise TransportError."""
        connection.recv.side_effect = ConnectionResetError("reset by peer")
        with pytest.raises(TransportError):
            session.next_event(timeout=1.0)


# ---------------------------------------------------------------------------
# Keepalive
# ---------------------------------------------------------------------------


class TestAcknowledgeKeepalive:
    """Tests for acknowledge_keepalive()."""

    def test_sends_pong(
        self, session: BinanceFeedSession, connection: MagicMock
    ) -> None:
        """The pong echoes the ping payload."""
        session.acknowledge_keepalive(KeepaliveRequest(payload=42))
        connection.send.assert_called_once()
        assert json.loads(connection.send.call_args.args[0]) == {"pong": 42}
        assert session.stats()["keepalives_sent"] == 1

    def test_send_failure_is_transport_error(
        self, session: BinanceFeedSession, connection: MagicMock
    ) -> None:
        """A failed send raises TransportError."""
        connection.send.side_effect = ConnectionClosedError(None, None)
        with pytest.raises(TransportError):
            session.acknowledge_keepalive(KeepaliveRequest(payload=1))
        assert session.stats()["keepalives_sent"] == 0


# ---------------------------------------------------------------------------
# Close
# ---------------------------------------------------------------------------


class TestClose:
    """Tests for close()."""

    def test_close_idempotent(
        self, session: BinanceFeedSession, connection: MagicMock
    ) -> None:
        """The connection is closed once however often close() is called."""
        session.close()
        session.close()
        connection.close.assert_called_once()
        assert session.closed is True

    def test_close_swallows_transport_errors(
        self, session: BinanceFeedSession, connection: MagicMock
    ) -> None:
        """Errors while closing a dead connection are not raised."""
        connection.close.side_effect = OSError("already gone")
        session.close()
        assert session.closed is True
