from __future__ import annotations

import logging
from collections import defaultdict
from datetime import datetime, timedelta, timezone

from price_gateway.errors import InvalidSymbol, NetworkError, NoData, ParseError, PriceError, RateLimited
from price_gateway.integrations.coingecko import CoinGeckoClient, CoinGeckoPrice, symbol_to_id
from price_gateway.schemas.price import CacheEntry, PriceQuote
from price_gateway.services.clock import Clock, ensure_utc, utc_now
from price_gateway.services.price_cache import PriceCache
from price_gateway.services.providers import BatchQuotes, PriceProvider, normalize_symbol, unique_symbols
from price_gateway.services.quota import QuotaTracker
from price_gateway.services.single_flight import SingleFlight

logger = logging.getLogger(__name__)

FRESHNESS = timedelta(minutes=5)


class CryptoPriceProvider(PriceProvider):
    """Batch-oriented cryptocurrency prices from CoinGecko."""

    supports_batch = True

    def __init__(
        self,
        client: CoinGeckoClient,
        cache: PriceCache,
        quota: QuotaTracker,
        freshness: timedelta = FRESHNESS,
        clock: Clock | None = None,
    ) -> None:
        self.client = client
        self.cache = cache
        self.quota = quota
        self.freshness = freshness
        self.clock = clock or utc_now
        self._flights: SingleFlight[PriceQuote] = SingleFlight()

    def name(self) -> str:
        return self.client.display_name

    def cache_entry(self, symbol: str) -> CacheEntry | None:
        return self.cache.get(symbol.strip().upper())

    def get_current_price(self, symbol: str, force: bool = False) -> PriceQuote:
        value = normalize_symbol(symbol)
        # Forced and regular lookups never share a flight.
        return self._flights.do(f"{value}:{int(force)}", lambda: self._resolve(value, force))

    def get_multiple_prices(self, symbols: list[str], force: bool = False) -> BatchQuotes:
        wanted: list[str] = []
        rejected: dict[str, PriceError] = {}
        for symbol in unique_symbols(symbols):
            try:
                wanted.append(normalize_symbol(symbol))
            except InvalidSymbol as exc:
                logger.warning("[CRYPTO][invalid_symbol] symbol=%r error=%s", symbol, exc)
                rejected[symbol] = exc
        if not wanted:
            return BatchQuotes(errors=rejected)
        batch = self._fetch(wanted, force)
        batch.errors.update(rejected)
        return batch

    def _resolve(self, symbol: str, force: bool) -> PriceQuote:
        entry = self.cache.get(symbol)
        if entry is not None and not force:
            age = ensure_utc(self.clock()) - ensure_utc(entry.fetched_at)
            if age < self.freshness:
                return entry.quote.served_from_cache()

        try:
            batch = self._fetch([symbol], force)
        except PriceError as exc:
            return self._degrade(symbol, entry, exc)

        quote = batch.quotes.get(symbol)
        if quote is None:
            exc = batch.errors.get(symbol) or NoData(f"price data not found for symbol {symbol}", symbol=symbol)
            return self._degrade(symbol, entry, exc)
        return quote

    def _fetch(self, symbols: list[str], force: bool) -> BatchQuotes:
        by_id: dict[str, list[str]] = defaultdict(list)
        for symbol in symbols:
            by_id[symbol_to_id(symbol)].append(symbol)

        reservation = self.quota.reserve(self.client.source, force=force)
        if reservation is None:
            raise RateLimited("CoinGecko call budget exhausted; try again later")

        with reservation:
            logger.info("[CRYPTO][fetch] ids=%s force=%s", ",".join(by_id), force)
            try:
                response = self.client.simple_price(list(by_id))
            except NetworkError:
                reservation.release()
                raise
            except PriceError:
                reservation.commit()
                raise
            reservation.commit()

        fetched_at = self.clock()
        batch = BatchQuotes()
        for coin_id, owners in by_id.items():
            price = response.prices.get(coin_id)
            if price is None:
                for symbol in owners:
                    if coin_id in response.invalid:
                        batch.errors[symbol] = ParseError(
                            f"malformed CoinGecko entry for {symbol}: {response.invalid[coin_id]}", symbol=symbol
                        )
                    else:
                        batch.errors[symbol] = NoData(f"price data not found for symbol {symbol}", symbol=symbol)
                continue
            for symbol in owners:
                quote = self._to_quote(symbol, price, fetched_at)
                batch.quotes[symbol] = quote
                try:
                    self.cache.put(quote, fetched_at=fetched_at)
                except Exception:
                    logger.exception("[CRYPTO][cache_write_failed] symbol=%s", symbol)

        logger.info("[CRYPTO][batch_resolve] requested=%d resolved=%d missing=%d", len(symbols), len(batch.quotes), len(batch.errors))
        return batch

    def _to_quote(self, symbol: str, price: CoinGeckoPrice, fetched_at: datetime) -> PriceQuote:
        timestamp = fetched_at
        if price.last_updated_at:
            timestamp = datetime.fromtimestamp(int(price.last_updated_at), tz=timezone.utc)
        return PriceQuote(
            symbol=symbol,
            price=price.usd,
            price_btc=price.btc,
            market_cap=price.usd_market_cap,
            volume_24h=price.usd_24h_vol,
            change_24h=price.usd_24h_change,
            timestamp=timestamp,
            source=self.client.source,
        )

    def _degrade(self, symbol: str, entry: CacheEntry | None, exc: PriceError) -> PriceQuote:
        if entry is None:
            raise exc
        logger.warning("[CRYPTO][degraded] symbol=%s reason=%s error=%s", symbol, exc.error_type, exc)
        return entry.quote.served_from_cache(degraded_reason=exc.error_type)
