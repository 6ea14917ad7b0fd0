"""Symbol allow-list applied to incoming price updates.

The filter is configured once at startup and never mutated. An empty
filter accepts every symbol; whether an empty filter is acceptable at
all is a deployment policy decided by the process configuration
(see ``app.config.ExporterConfig.require_symbols``), not by the filter.

Example:
    >>> from core.symbols import SymbolFilter
    >>> f = SymbolFilter.of("btcusdt", "ETHUSDT")
    >>> f.accepts("BTCUSDT")
    True
    >>> f.accepts("SOLUSDT")
    False
    >>> SymbolFilter().accepts("ANYTHING")
    True
"""

from collections.abc import Iterable

from pydantic import BaseModel, ConfigDict, Field, field_validator


class SymbolFilter(BaseModel):
    """Immutable set of uppercase trading symbols.

    Attributes:
        symbols: Allowed symbols. Values are stripped and uppercased
            on construction; comma-separated entries are split.
            Empty means "accept all".
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    symbols: frozenset[str] = Field(
        default_factory=frozenset,
        description="Allowed symbols (uppercase). Empty accepts all.",
    )

    @field_validator("symbols", mode="before")
    @classmethod
    def _normalize(cls, v: object) -> frozenset[str]:
        """Split comma lists, strip whitespace and uppercase.

        Raises:
            ValueError: If an entry is blank or input is not iterable.
        """
        if v is None:
            return frozenset()
        if isinstance(v, str):
            v = [v]
        if not isinstance(v, Iterable):
            raise ValueError("symbols must be a string or an iterable of strings")

        normalized: set[str] = set()
        for entry in v:
            if not isinstance(entry, str):
                raise ValueError(f"symbol must be a string, got {type(entry).__name__}")
            for part in entry.split(","):
                symbol: str = part.strip().upper()
                if not symbol:
                    raise ValueError(f"blank symbol in {entry!r}")
                normalized.add(symbol)
        return frozenset(normalized)

    @classmethod
    def of(cls, *symbols: str) -> "SymbolFilter":
        """Build a filter from positional symbols."""
        return cls(symbols=symbols)

    @property
    def is_empty(self) -> bool:
        """Whether the filter accepts every symbol."""
        return not self.symbols

    def accepts(self, symbol: str) -> bool:
        """Return ``True`` if ``symbol`` should be processed."""
        if not self.symbols:
            return True
        return symbol.upper() in self.symbols

    def __contains__(self, symbol: object) -> bool:
        return isinstance(symbol, str) and symbol.upper() in self.symbols
