from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass, field

from price_gateway.errors import InvalidSymbol, PriceError
from price_gateway.schemas.price import CacheEntry, PriceQuote


@dataclass
class BatchQuotes:
    """Quotes keyed by upper-cased input symbol, plus per-symbol failures."""

    quotes: dict[str, PriceQuote] = field(default_factory=dict)
    errors: dict[str, PriceError] = field(default_factory=dict)


def normalize_symbol(symbol: str | None) -> str:
    value = (symbol or "").strip().upper()
    if not value:
        raise InvalidSymbol("symbol cannot be empty")
    if len(value) > 32 or any(ch.isspace() for ch in value):
        raise InvalidSymbol(f"malformed symbol {value!r}", symbol=value)
    return value


def unique_symbols(symbols: list[str]) -> list[str]:
    out: list[str] = []
    seen: set[str] = set()
    for symbol in symbols:
        value = str(symbol or "").strip().upper()
        if not value or value in seen:
            continue
        seen.add(value)
        out.append(value)
    return out


class PriceProvider(ABC):
    """Abstract base class for price providers."""

    # Providers that answer many symbols in one round trip.
    supports_batch = False

    @abstractmethod
    def get_current_price(self, symbol: str, force: bool = False) -> PriceQuote:
        """Return a quote for one symbol or raise a PriceError."""

    @abstractmethod
    def get_multiple_prices(self, symbols: list[str], force: bool = False) -> BatchQuotes:
        """Return whatever quotes could be obtained; raise only if the whole batch failed."""

    @abstractmethod
    def name(self) -> str:
        pass

    def cache_entry(self, symbol: str) -> CacheEntry | None:
        """Latest cached entry for symbol, for providers that keep a cache."""
        return None
