"""Decoding of Binance WebSocket frames into feed events.

Binance book-ticker frames are JSON objects with prices encoded as
strings, which are parsed straight into :class:`~decimal.Decimal` so the
mid-price is computed without float rounding::

    {"e":"bookTicker","u":400900217,"E":1568014460893,"T":1568014460891,
     "s":"BNBUSDT","b":"25.35190000","B":"31.21000000",
     "a":"25.36520000","A":"40.66000000"}

Combined-stream URLs (``/stream?streams=...``) wrap each payload as
``{"stream": "<name>", "data": {...}}``; the envelope is unwrapped.

Application-level pings (``{"ping": <n>}``) decode to
:class:`~core.events.KeepaliveRequest` and are answered with
``{"pong": <n>}``. Protocol-level ping frames never reach the codec;
the WebSocket library answers them.

Error isolation:
    :func:`decode_message` never raises. Anything that is not a
    well-formed price update or ping becomes
    :class:`~core.events.Unrecognized`.
"""

import json
import logging
from decimal import Decimal, InvalidOperation
from typing import Any

from pydantic import ValidationError

from core.events import FeedEvent, KeepaliveRequest, PriceUpdate, Unrecognized

logger: logging.Logger = logging.getLogger(__name__)

_MAX_RAW_CHARS: int = 1024
"""Unrecognized frames keep at most this many characters."""


def decode_message(raw: str | bytes) -> FeedEvent:
    """Classify a raw text frame.

    Args:
        raw: Frame payload as received from the WebSocket.

    Returns:
        A :class:`PriceUpdate`, :class:`KeepaliveRequest` or
        :class:`Unrecognized` event.

    Example:
        >>> decode_message('{"s":"BTCUSDT","b":"1.0","a":"2.0"}').symbol
        'BTCUSDT'
        >>> decode_message('{"ping": 7}').payload
        7
        >>> decode_message('{"result":null,"id":1}')
        Unrecognized(raw='{"result":null,"id":1}')
    """
    text: str = _to_text(raw)
    try:
        message: Any = json.loads(text)
    except ValueError:
        return _unrecognized(text)

    if not isinstance(message, dict):
        return _unrecognized(text)

    if "ping" in message:
        return KeepaliveRequest(payload=message["ping"])

    data: Any = message.get("data") if "stream" in message else message
    if isinstance(data, dict) and _is_book_ticker(data):
        event: PriceUpdate | None = _parse_book_ticker(data)
        if event is not None:
            return event

    return _unrecognized(text)


def encode_pong(request: KeepaliveRequest) -> str:
    """Build the reply owed for ``request``.

    Example:
        >>> encode_pong(KeepaliveRequest(payload=7))
        '{"pong": 7}'
    """
    return json.dumps({"pong": request.payload})


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _to_text(raw: str | bytes) -> str:
    if isinstance(raw, bytes):
        return raw.decode("utf-8", errors="replace")
    return raw


def _unrecognized(text: str) -> Unrecognized:
    return Unrecognized(raw=text[:_MAX_RAW_CHARS])


def _is_book_ticker(data: dict[str, Any]) -> bool:
    return "s" in data and "b" in data and "a" in data


def _parse_book_ticker(data: dict[str, Any]) -> PriceUpdate | None:
    """Build a :class:`PriceUpdate`, or ``None`` if a field is invalid."""
    try:
        return PriceUpdate(
            symbol=data["s"],
            best_bid=_to_decimal(data["b"]),
            best_ask=_to_decimal(data["a"]),
            update_id=data.get("u"),
            event_time_ms=data.get("E", data.get("T")),
        )
    except (InvalidOperation, TypeError, ValueError, ValidationError):
        logger.debug("Invalid book ticker payload: %r", data)
        return None


def _to_decimal(value: Any) -> Decimal:
    # floats go through str() so 25.35 stays 25.35
    if isinstance(value, float):
        return Decimal(str(value))
    if isinstance(value, (str, int)) and not isinstance(value, bool):
        return Decimal(value)
    raise TypeError(f"price must be a string or number, got {type(value).__name__}")
