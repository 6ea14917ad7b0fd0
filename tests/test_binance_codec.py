"""Unit tests for infra.binance_codec module.

Tests classification of raw frames: book-ticker updates (plain and
combined-stream envelopes), application pings, subscription acks,
malformed JSON and invalid prices. Also tests the pong reply.
"""

import json
from decimal import Decimal

import pytest

from core.events import KeepaliveRequest, PriceUpdate, Unrecognized
from infra.binance_codec import decode_message, encode_pong

BOOK_TICKER: str = (
    '{"e":"bookTicker","u":400900217,"E":1568014460893,"T":1568014460891,'
    '"s":"BNBUSDT","b":"25.35190000","B":"31.21000000",'
    '"a":"25.36520000","A":"40.66000000"}'
)


class TestBookTicker:
    """Tests for book-ticker frames."""

    def test_decodes_price_update(self) -> None:
        """Symbol and exact decimal prices are extracted."""
        event = decode_message(BOOK_TICKER)
        assert isinstance(event, PriceUpdate)
        assert event.symbol == "BNBUSDT"
        assert event.best_bid == Decimal("25.35190000")
        assert event.best_ask == Decimal("25.36520000")
        assert event.update_id == 400900217
        assert event.event_time_ms == 1568014460893

    def test_spot_frame_without_event_fields(self) -> None:
        """Spot frames carry only u/s/b/B/a/A."""
        event = decode_message(
            '{"u":1,"s":"BTCUSDT","b":"50000.0","B":"1","a":"50001.0","A":"1"}'
        )
        assert isinstance(event, PriceUpdate)
        assert event.symbol == "BTCUSDT"
        assert event.event_time_ms is None

    def test_combined_stream_envelope(self) -> None:
        """Combined-stream payloads are unwrapped from "data"."""
        raw: str = json.dumps(
            {"stream": "btcusdt@bookTicker", "data": json.loads(BOOK_TICKER)}
        )
        event = decode_message(raw)
        assert isinstance(event, PriceUpdate)
        assert event.symbol == "BNBUSDT"

    def test_bytes_frame(self) -> None:
        """Binary frames are decoded as UTF-8."""
        event = decode_message(BOOK_TICKER.encode("utf-8"))
        assert isinstance(event, PriceUpdate)

    def test_numeric_prices_accepted(self) -> None:
        """Numeric prices are converted via their decimal text."""
        event = decode_message('{"s":"BTCUSDT","b":25.35,"a":26}')
        assert isinstance(event, PriceUpdate)
        assert event.best_bid == Decimal("25.35")
        assert event.best_ask == Decimal("26")

    @pytest.mark.parametrize(
        "raw",
        [
            '{"s":"BTCUSDT","b":"abc","a":"1"}',
            '{"s":"BTCUSDT","b":null,"a":"1"}',
            '{"s":"BTCUSDT","b":true,"a":"1"}',
            '{"s":"","b":"1","a":"2"}',
            '{"s":42,"b":"1","a":"2"}',
        ],
    )
    def test_invalid_fields_unrecognized(self, raw: str) -> None:
        """Invalid field values never raise; the frame is unrecognized."""
        event = decode_message(raw)
        assert isinstance(event, Unrecognized)
        assert event.raw == raw


class TestKeepalive:
    """Tests for application-level pings."""

    def test_ping_decoded(self) -> None:
        """{"ping": n} becomes a keepalive request carrying n."""
        event = decode_message('{"ping": 1700000000123}')
        assert isinstance(event, KeepaliveRequest)
        assert event.payload == 1700000000123

    def test_pong_reply(self) -> None:
        """The reply echoes the payload under "pong"."""
        reply: str = encode_pong(KeepaliveRequest(payload=7))
        assert json.loads(reply) == {"pong": 7}


class TestUnrecognized:
    """Tests for frames that are neither updates nor pings."""

    @pytest.mark.parametrize(
        "raw",
        [
            '{"result":null,"id":1}',
            "not json",
            "[1, 2, 3]",
            '"just a string"',
            '{"stream":"x","data":[]}',
            "",
        ],
    )
    def test_classified_unrecognized(self, raw: str) -> None:
        """Anything else is kept as Unrecognized with its raw text."""
        event = decode_message(raw)
        assert isinstance(event, Unrecognized)
        assert event.raw == raw

    def test_raw_text_truncated(self) -> None:
        """Very long frames are truncated."""
        event = decode_message("x" * 5000)
        assert isinstance(event, Unrecognized)
        assert len(event.raw) == 1024
