"""Process configuration for the book-ticker exporter.

Every option can come from the command line or from an environment
variable (a ``.env`` file in the working directory is loaded first)::

    --symbol / SYMBOL                 repeatable, comma lists accepted
    --port / PORT                     scrape port, default 9090
    --timeout / TIMEOUT               stall timeout in seconds, default 60
    --require-symbols / REQUIRE_SYMBOLS
                                      refuse to start with an empty filter
    --ws-url / BINANCE_WS_URL         WebSocket host
    --log-level / LOG_LEVEL           default INFO

The command line wins over the environment.
"""

import argparse
import os
from collections.abc import Sequence

from dotenv import load_dotenv
from pydantic import BaseModel, ConfigDict, Field, field_validator

from core.processor import DEFAULT_SOURCE
from core.symbols import SymbolFilter

_TRUE_VALUES: frozenset[str] = frozenset({"1", "true", "yes", "on"})


class ConfigError(Exception):
    """Raised when the configuration cannot be used to start the feed."""


class ExporterConfig(BaseModel):
    """Validated, immutable process configuration.

    Attributes:
        symbols: Symbol allow-list. Empty accepts every symbol unless
            ``require_symbols`` is set.
        port: Metrics scrape port (1-65535).
        timeout: Stall timeout in seconds.
        require_symbols: Refuse to start when ``symbols`` is empty.
        source: Exchange label exported with every price.
        ws_url: WebSocket host for the market stream.
        log_level: Root logging level name.
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    symbols: SymbolFilter = Field(default_factory=SymbolFilter)
    port: int = Field(default=9090, ge=1, le=65535, description="Scrape port")
    timeout: float = Field(default=60.0, gt=0.0, description="Stall timeout (s)")
    require_symbols: bool = Field(
        default=False,
        description="Exit at startup when the symbol filter is empty",
    )
    source: str = Field(default=DEFAULT_SOURCE, min_length=1)
    ws_url: str = Field(default="wss://fstream.binance.com", min_length=1)
    log_level: str = Field(default="INFO")

    @field_validator("log_level")
    @classmethod
    def _validate_log_level(cls, v: str) -> str:
        v = v.strip().upper()
        if v not in {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}:
            raise ValueError(f"unknown log level {v!r}")
        return v

    def check_policy(self) -> None:
        """Apply deployment policy that is not a field constraint.

        Raises:
            ConfigError: ``require_symbols`` is set and no symbol was given.
        """
        if self.require_symbols and self.symbols.is_empty:
            raise ConfigError("symbol cannot be empty")


def build_parser() -> argparse.ArgumentParser:
    """Return the command-line parser. Defaults read the environment."""
    parser: argparse.ArgumentParser = argparse.ArgumentParser(
        prog="book-ticker-exporter",
        description="Export Binance book-ticker mid-prices for Prometheus",
    )
    parser.add_argument(
        "--symbol",
        action="append",
        default=None,
        help=(
            "Symbol to export (repeatable, comma lists accepted). "
            "Default: $SYMBOL, or every symbol if unset."
        ),
    )
    parser.add_argument(
        "--port",
        type=int,
        default=os.environ.get("PORT", "9090"),
        help="Metrics scrape port (default: $PORT or 9090)",
    )
    parser.add_argument(
        "--timeout",
        type=float,
        default=os.environ.get("TIMEOUT", "60"),
        help="Stall timeout in seconds (default: $TIMEOUT or 60)",
    )
    parser.add_argument(
        "--require-symbols",
        action="store_true",
        default=os.environ.get("REQUIRE_SYMBOLS", "").strip().lower() in _TRUE_VALUES,
        help="Exit at startup if no symbol is configured",
    )
    parser.add_argument(
        "--ws-url",
        type=str,
        default=os.environ.get("BINANCE_WS_URL", "wss://fstream.binance.com"),
        help="WebSocket host (default: $BINANCE_WS_URL or USD-M futures)",
    )
    parser.add_argument(
        "--log-level",
        type=str,
        default=os.environ.get("LOG_LEVEL", "INFO"),
        help="Logging level (default: $LOG_LEVEL or INFO)",
    )
    return parser


def load_config(argv: Sequence[str] | None = None) -> ExporterConfig:
    """Parse ``argv`` (and the environment) into an :class:`ExporterConfig`.

    Raises:
        SystemExit: ``argparse`` rejected the command line.
        pydantic.ValidationError: A value is out of range.
    """
    load_dotenv()
    args: argparse.Namespace = build_parser().parse_args(argv)

    symbols: list[str] = args.symbol if args.symbol is not None else []
    if not symbols:
        env_symbols: str = os.environ.get("SYMBOL", "").strip()
        if env_symbols:
            symbols = [env_symbols]

    return ExporterConfig(
        symbols=SymbolFilter(symbols=symbols),
        port=args.port,
        timeout=args.timeout,
        require_symbols=args.require_symbols,
        ws_url=args.ws_url,
        log_level=args.log_level,
    )
