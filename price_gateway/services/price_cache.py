from __future__ import annotations

from datetime import datetime

from price_gateway.schemas.price import CacheEntry, PriceQuote
from price_gateway.services.clock import Clock, utc_now
from price_gateway.services.price_store import PriceStore

EQUITY = "equity"
CRYPTO = "crypto"


class PriceCache:
    """Latest-known quote per symbol inside one namespace of a PriceStore.

    Writes always append; reads return the row with the greatest fetched_at.
    The cache does not check that writes move forward in time.
    """

    def __init__(self, store: PriceStore, namespace: str = EQUITY, clock: Clock | None = None) -> None:
        self.store = store
        self.namespace = namespace
        self.clock = clock or utc_now

    def get(self, symbol: str) -> CacheEntry | None:
        return self.store.latest_snapshot(symbol, self.namespace)

    def put(self, quote: PriceQuote, fetched_at: datetime | None = None) -> CacheEntry:
        stored = quote.model_copy(update={"origin": "api", "degraded": False, "degraded_reason": None})
        entry = CacheEntry(symbol=quote.symbol, quote=stored, fetched_at=fetched_at or self.clock())
        self.store.append_snapshot(entry, self.namespace)
        return entry

    def latest_fetch_time(self, symbols: list[str] | None = None) -> datetime | None:
        return self.store.latest_capture_time(self.namespace, symbols)
