"""Normalized feed events and the mid-price derivation.

This module defines the closed set of events a feed session yields and
the sample type published into the metric store. All models are
Pydantic-based with ``frozen=True`` for immutability and thread safety.

Event variants:
    - :class:`PriceUpdate`: best bid/ask update for one symbol
      (a Binance ``bookTicker`` frame).
    - :class:`KeepaliveRequest`: application-level ping that must be
      answered before the next event is processed.
    - :class:`Unrecognized`: anything else. Logged and discarded by
      the processor, never fatal.

Price precision contract:
    Prices travel as :class:`~decimal.Decimal` parsed from the wire
    string, so the mid-price is computed exactly and converted to
    ``float`` only once, at publication time. Conversion failure
    degrades to ``0.0`` (see :func:`mid_price`).

Example:
    >>> from decimal import Decimal
    >>> from core.events import PriceUpdate, mid_price
    >>> event = PriceUpdate(
    ...     symbol="BTCUSDT",
    ...     best_bid=Decimal("50000.0"),
    ...     best_ask=Decimal("50001.0"),
    ... )
    >>> mid_price(event.best_bid, event.best_ask)
    50000.5
"""

import logging
import math
from decimal import Decimal
from typing import Union

from pydantic import BaseModel, ConfigDict, Field

logger: logging.Logger = logging.getLogger(__name__)

_TWO: Decimal = Decimal(2)

CONVERSION_FALLBACK: float = 0.0
"""Value published when a mid-price cannot be represented as ``float``."""


# ---------------------------------------------------------------------------
# Event Models
# ---------------------------------------------------------------------------


class PriceUpdate(BaseModel):
    """Top-of-book update for a single symbol.

    Attributes:
        symbol: Trading symbol as sent by the exchange (e.g.,
            ``"BTCUSDT"``). Non-empty.
        best_bid: Best bid price, exact decimal.
        best_ask: Best ask price, exact decimal.
        update_id: Order book update id (``u``), if present.
        event_time_ms: Exchange event/transaction time in milliseconds,
            if present. Informational only.

    Example:
        >>> PriceUpdate(symbol="ETHUSDT", best_bid=Decimal("1"),
        ...             best_ask=Decimal("2")).symbol
        'ETHUSDT'
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    symbol: str = Field(min_length=1, description="Trading symbol (e.g., 'BTCUSDT')")
    best_bid: Decimal = Field(description="Best bid price")
    best_ask: Decimal = Field(description="Best ask price")
    update_id: int | None = Field(
        default=None,
        description="Order book update id, if the feed provides one",
    )
    event_time_ms: int | None = Field(
        default=None,
        description="Exchange event time in milliseconds, if provided",
    )


class KeepaliveRequest(BaseModel):
    """Application-level ping. The reply echoes ``payload``."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    payload: object = Field(
        default=None,
        description="Opaque ping payload, echoed back in the pong",
    )


class Unrecognized(BaseModel):
    """A frame the codec could not classify."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    raw: str = Field(description="Raw frame text (possibly truncated)")


FeedEvent = Union[PriceUpdate, KeepaliveRequest, Unrecognized]
"""Closed union of events yielded by a feed session."""


class MidPriceSample(BaseModel):
    """Derived mid-price ready for publication.

    Attributes:
        source: Exchange label (e.g., ``"Binance"``).
        symbol: Trading symbol.
        value: ``(best_bid + best_ask) / 2`` as ``float``, or ``0.0``
            if the exact value could not be converted.
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    source: str = Field(min_length=1, description="Exchange label")
    symbol: str = Field(min_length=1, description="Trading symbol")
    value: float = Field(description="Mid-price as float")

    @classmethod
    def from_update(cls, source: str, event: PriceUpdate) -> "MidPriceSample":
        """Build a sample from a :class:`PriceUpdate`."""
        return cls(
            source=source,
            symbol=event.symbol,
            value=mid_price(event.best_bid, event.best_ask),
        )


# ---------------------------------------------------------------------------
# Mid-price
# ---------------------------------------------------------------------------


def mid_price(best_bid: Decimal, best_ask: Decimal) -> float:
    """Return ``(best_bid + best_ask) / 2`` as a ``float``.

    The sum and division run in :class:`~decimal.Decimal` arithmetic;
    only the final result is converted. If the arithmetic signals
    (e.g., ``sNaN`` operands, exponent overflow) or the converted value
    is not finite, :data:`CONVERSION_FALLBACK` is returned instead.

    Args:
        best_bid: Best bid price.
        best_ask: Best ask price.

    Returns:
        The mid-price, or ``0.0`` if it is not representable.

    Example:
        >>> mid_price(Decimal("1.5"), Decimal("2.5"))
        2.0
        >>> mid_price(Decimal("1e999999"), Decimal("1e999999"))
        0.0
    """
    try:
        value: float = float((best_bid + best_ask) / _TWO)
    except (ArithmeticError, ValueError):
        logger.warning(
            "Mid-price conversion failed (bid=%s, ask=%s), using fallback",
            best_bid,
            best_ask,
        )
        return CONVERSION_FALLBACK

    if not math.isfinite(value):
        logger.warning(
            "Mid-price not representable as float (bid=%s, ask=%s), "
            "using fallback",
            best_bid,
            best_ask,
        )
        return CONVERSION_FALLBACK
    return value
