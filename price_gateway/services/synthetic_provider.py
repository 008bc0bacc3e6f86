from __future__ import annotations

import random
import threading
from decimal import ROUND_DOWN, Decimal

from price_gateway.errors import PriceError
from price_gateway.schemas.price import CacheEntry, PriceQuote
from price_gateway.services.clock import Clock, utc_now
from price_gateway.services.price_cache import PriceCache
from price_gateway.services.providers import BatchQuotes, PriceProvider, normalize_symbol

BASE_PRICES: dict[str, float] = {
    "AAPL": 190.50,
    "MSFT": 380.25,
    "GOOGL": 140.75,
    "GOOG": 140.75,
    "AMZN": 155.30,
    "TSLA": 245.80,
    "META": 325.40,
    "NVDA": 450.60,
    "NFLX": 485.20,
    "CRM": 210.40,
    "ORCL": 115.80,
    "ADBE": 520.30,
    "INTC": 45.60,
    "AMD": 125.90,
    "IBM": 189.00,
    "JPM": 155.40,
    "BAC": 32.80,
    "WFC": 42.60,
    "GS": 365.20,
    "MS": 85.40,
    "COST": 720.80,
    "WMT": 165.20,
    "HD": 325.60,
    "PG": 155.90,
    "JNJ": 160.40,
    "V": 255.30,
    "MA": 425.80,
    "UNH": 520.90,
    "KO": 59.80,
    "PEP": 175.20,
}

JITTER = 0.02
UNKNOWN_MIN = 10.0
UNKNOWN_SPAN = 490.0
CENT = Decimal("0.01")


class SyntheticPriceProvider(PriceProvider):
    """Plausible prices for environments without provider credentials."""

    source = "synthetic"

    def __init__(
        self,
        base_prices: dict[str, float] | None = None,
        seed: int | None = None,
        clock: Clock | None = None,
        cache: PriceCache | None = None,
    ) -> None:
        self.base_prices = dict(BASE_PRICES if base_prices is None else base_prices)
        self.rand = random.Random(seed)
        self.clock = clock or utc_now
        self.cache = cache
        self._lock = threading.Lock()

    def name(self) -> str:
        return "Synthetic Price Provider"

    def cache_entry(self, symbol: str) -> CacheEntry | None:
        if self.cache is None:
            return None
        return self.cache.get(symbol.strip().upper())

    def get_current_price(self, symbol: str, force: bool = False) -> PriceQuote:
        value = normalize_symbol(symbol)
        with self._lock:
            base = self.base_prices.get(value)
            if base is None:
                base = UNKNOWN_MIN + self.rand.random() * UNKNOWN_SPAN
            variation = (self.rand.random() - 0.5) * 2 * JITTER
        price = Decimal(str(base * (1 + variation))).quantize(CENT, rounding=ROUND_DOWN)
        quote = PriceQuote(symbol=value, price=price, timestamp=self.clock(), source=self.source)
        if self.cache is not None:
            self.cache.put(quote, fetched_at=quote.timestamp)
        return quote

    def get_multiple_prices(self, symbols: list[str], force: bool = False) -> BatchQuotes:
        batch = BatchQuotes()
        for symbol in symbols:
            key = str(symbol or "").strip().upper()
            try:
                batch.quotes[key] = self.get_current_price(symbol, force=force)
            except PriceError as exc:
                batch.errors[key] = exc
        return batch
