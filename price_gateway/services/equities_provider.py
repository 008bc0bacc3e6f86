from __future__ import annotations

import logging
from datetime import timedelta
from typing import Protocol

from price_gateway.errors import NetworkError, PriceError, RateLimited
from price_gateway.schemas.price import CacheEntry, PriceQuote
from price_gateway.services.market_hours import MarketHoursService
from price_gateway.services.price_cache import PriceCache
from price_gateway.services.providers import BatchQuotes, PriceProvider, normalize_symbol
from price_gateway.services.quota import QuotaTracker
from price_gateway.services.single_flight import SingleFlight

logger = logging.getLogger(__name__)


class EquityQuoteClient(Protocol):
    """Clients that set `supports_intraday` also accept `get_quote(symbol, prefer_intraday=...)`."""

    source: str
    display_name: str

    def get_quote(self, symbol: str) -> PriceQuote: ...


class EquitiesPriceProvider(PriceProvider):
    """Single-symbol equities provider with market-aware caching.

    Per symbol: a fresh cache entry is served as-is; otherwise a quota slot is
    reserved and the client is called. Whenever the call is refused or fails
    and a cached entry exists, the cached entry is served flagged as degraded.
    """

    def __init__(
        self,
        client: EquityQuoteClient,
        cache: PriceCache,
        market_hours: MarketHoursService,
        quota: QuotaTracker,
        refresh_interval: timedelta = timedelta(minutes=15),
    ) -> None:
        self.client = client
        self.cache = cache
        self.market_hours = market_hours
        self.quota = quota
        self.refresh_interval = refresh_interval
        self._flights: SingleFlight[PriceQuote] = SingleFlight()

    @property
    def source(self) -> str:
        return self.client.source

    def name(self) -> str:
        return self.client.display_name

    def cache_entry(self, symbol: str) -> CacheEntry | None:
        return self.cache.get(symbol.strip().upper())

    def get_current_price(self, symbol: str, force: bool = False) -> PriceQuote:
        value = normalize_symbol(symbol)
        # Forced and regular lookups never share a flight.
        return self._flights.do(f"{value}:{int(force)}", lambda: self._resolve(value, force))

    def get_multiple_prices(self, symbols: list[str], force: bool = False) -> BatchQuotes:
        batch = BatchQuotes()
        for symbol in symbols:
            key = str(symbol or "").strip().upper()
            try:
                batch.quotes[key] = self.get_current_price(symbol, force=force)
            except PriceError as exc:
                logger.warning("[PRICE][batch_symbol_failed] symbol=%s error_type=%s error=%s", key, exc.error_type, exc)
                batch.errors[key] = exc
        return batch

    def _resolve(self, symbol: str, force: bool) -> PriceQuote:
        entry = self.cache.get(symbol)
        if entry is not None and not force:
            if not self.market_hours.should_refresh(entry.fetched_at, self.refresh_interval):
                logger.debug("[PRICE][cache_hit] symbol=%s fetched_at=%s", symbol, entry.fetched_at.isoformat())
                return entry.quote.served_from_cache()

        reservation = self.quota.reserve(self.source, force=force)
        if reservation is None:
            if entry is not None:
                logger.warning("[PRICE][degraded] symbol=%s reason=quota provider=%s", symbol, self.source)
                return entry.quote.served_from_cache(degraded_reason=RateLimited.error_type)
            raise RateLimited(
                f"rate limit exceeded and no cached price available for {symbol}; try again later",
                symbol=symbol,
            )

        with reservation:
            logger.info("[PRICE][fetch] symbol=%s provider=%s force=%s", symbol, self.source, force)
            try:
                quote = self._fetch(symbol, force)
            except NetworkError as exc:
                reservation.release()
                return self._degrade(symbol, entry, exc)
            except PriceError as exc:
                reservation.commit()
                return self._degrade(symbol, entry, exc)
            reservation.commit()

        try:
            self.cache.put(quote)
        except Exception:
            logger.exception("[PRICE][cache_write_failed] symbol=%s", symbol)
        return quote

    def _fetch(self, symbol: str, force: bool) -> PriceQuote:
        if getattr(self.client, "supports_intraday", False):
            return self.client.get_quote(symbol, prefer_intraday=force or self.market_hours.is_open())
        return self.client.get_quote(symbol)

    def _degrade(self, symbol: str, entry: CacheEntry | None, exc: PriceError) -> PriceQuote:
        if entry is None:
            logger.error("[PRICE][fetch_failed] symbol=%s error_type=%s error=%s", symbol, exc.error_type, exc)
            raise exc
        logger.warning(
            "[PRICE][degraded] symbol=%s reason=%s error=%s cached_price=%s",
            symbol,
            exc.error_type,
            exc,
            entry.quote.price,
        )
        return entry.quote.served_from_cache(degraded_reason=exc.error_type)
