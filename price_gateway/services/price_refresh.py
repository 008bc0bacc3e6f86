from __future__ import annotations

import logging
import time
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Callable

from price_gateway.errors import PriceError, ProviderError
from price_gateway.schemas.price import CacheEntry, PriceQuote, PriceStatus, RefreshResult, RefreshSummary
from price_gateway.services.clock import Clock, ensure_utc, format_age, utc_now
from price_gateway.services.market_hours import MarketHoursService
from price_gateway.services.providers import PriceProvider, normalize_symbol, unique_symbols

logger = logging.getLogger(__name__)

PCT_QUANTUM = Decimal("0.0001")
BATCH_FAILURE_MESSAGE = "Failed to fetch price"


def reported_provider_name(results: list[RefreshResult], provider_name: str) -> str:
    """"Cache" when every price came from cache, "<name> + Cache" when mixed."""
    from_api = sum(1 for r in results if r.updated and r.source == "api")
    from_cache = sum(1 for r in results if r.updated and r.source == "cache")
    if from_cache and not from_api:
        return "Cache"
    if from_cache and from_api:
        return f"{provider_name} + Cache"
    return provider_name


class PriceRefreshService:
    """Turns provider lookups into RefreshResults and bulk RefreshSummaries.

    The provider is injected and can be swapped with set_provider(); the
    holdings source is any callable returning the tracked symbols.
    """

    def __init__(
        self,
        *,
        provider: PriceProvider,
        symbols_source: Callable[[], list[str]],
        market_hours: MarketHoursService,
        refresh_interval: timedelta = timedelta(minutes=15),
        force_refresh_multiplier: int = 6,
        clock: Clock | None = None,
    ) -> None:
        self.provider = provider
        self.symbols_source = symbols_source
        self.market_hours = market_hours
        self.refresh_interval = refresh_interval
        self.force_refresh_multiplier = force_refresh_multiplier
        self.clock = clock or utc_now

    def set_provider(self, provider: PriceProvider) -> None:
        logger.info("[REFRESH][provider_swap] old=%s new=%s", self.provider.name(), provider.name())
        self.provider = provider

    def tracked_symbols(self) -> list[str]:
        return unique_symbols(list(self.symbols_source()))

    def _snapshot(self, provider: PriceProvider, symbol: str) -> CacheEntry | None:
        try:
            return provider.cache_entry(symbol)
        except Exception:
            logger.exception("[REFRESH][snapshot_failed] symbol=%s", symbol)
            return None

    def _result(
        self,
        symbol: str,
        entry: CacheEntry | None,
        *,
        quote: PriceQuote | None = None,
        error: str | None = None,
        error_type: str | None = None,
    ) -> RefreshResult:
        now = self.clock()
        old_price = entry.quote.price if entry is not None else Decimal("0")
        fields: dict = {
            "symbol": symbol,
            "old_price": old_price,
            "timestamp": now,
            "cache_age": format_age(ensure_utc(now) - ensure_utc(entry.fetched_at)) if entry is not None else None,
        }
        if quote is None:
            fields.update(updated=False, error=error, error_type=error_type or ProviderError.error_type)
            return RefreshResult(**fields)

        fields.update(updated=True, new_price=quote.price, source=quote.origin, degraded=quote.degraded)
        if old_price > 0:
            change = quote.price - old_price
            fields["price_change"] = change
            fields["price_change_pct"] = (change / old_price * 100).quantize(PCT_QUANTUM)
        return RefreshResult(**fields)

    def refresh_symbol(self, symbol: str, force: bool = False) -> RefreshResult:
        provider = self.provider
        try:
            value = normalize_symbol(symbol)
        except PriceError as exc:
            return self._result(str(symbol or ""), None, error=str(exc), error_type=exc.error_type)

        entry = self._snapshot(provider, value)
        try:
            quote = provider.get_current_price(value, force=force)
        except PriceError as exc:
            return self._result(value, entry, error=str(exc), error_type=exc.error_type)
        return self._result(value, entry, quote=quote)

    def refresh_all(self, force: bool = False) -> RefreshSummary:
        started = time.perf_counter()
        provider = self.provider
        symbols = self.tracked_symbols()
        if not symbols:
            return RefreshSummary(
                total_symbols=0,
                updated_symbols=0,
                failed_symbols=0,
                results=[],
                provider_name=provider.name(),
                timestamp=self.clock(),
                duration_ms=0,
            )

        # Baseline for every symbol before any fetch starts.
        old = {symbol: self._snapshot(provider, symbol) for symbol in symbols}

        fresh: dict[str, PriceQuote] = {}
        failures: dict[str, str] = {}
        batch_failure: str | None = None

        if provider.supports_batch:
            try:
                batch = provider.get_multiple_prices(symbols, force=force)
                fresh = dict(batch.quotes)
                failures = {s: str(e) for s, e in batch.errors.items()}
            except Exception as exc:
                logger.error("[REFRESH][batch_failed] provider=%s error=%s", provider.name(), exc)
                batch_failure = str(exc) or type(exc).__name__
        else:
            for symbol in symbols:
                try:
                    fresh[symbol] = provider.get_current_price(symbol, force=force)
                except PriceError as exc:
                    failures[symbol] = str(exc)
                except Exception as exc:
                    logger.exception("[REFRESH][symbol_failed] symbol=%s", symbol)
                    failures[symbol] = str(exc) or type(exc).__name__

        # Bulk failures are reported as provider errors; the message keeps the detail.
        results: list[RefreshResult] = []
        for symbol in symbols:
            quote = fresh.get(symbol)
            if quote is not None:
                results.append(self._result(symbol, old[symbol], quote=quote))
                continue
            message = batch_failure if batch_failure is not None else failures.get(symbol, BATCH_FAILURE_MESSAGE)
            results.append(self._result(symbol, old[symbol], error=message, error_type=ProviderError.error_type))

        updated = sum(1 for r in results if r.updated)
        summary = RefreshSummary(
            total_symbols=len(symbols),
            updated_symbols=updated,
            failed_symbols=len(results) - updated,
            results=results,
            provider_name=reported_provider_name(results, provider.name()),
            timestamp=self.clock(),
            duration_ms=int((time.perf_counter() - started) * 1000),
        )
        logger.info(
            "[REFRESH][summary] provider=%s total=%d updated=%d failed=%d duration_ms=%d force=%s",
            summary.provider_name,
            summary.total_symbols,
            summary.updated_symbols,
            summary.failed_symbols,
            summary.duration_ms,
            force,
        )
        return summary

    def status(self, now: datetime | None = None) -> PriceStatus:
        current = ensure_utc(now or self.clock())
        provider = self.provider
        symbols = self.tracked_symbols()

        stale = 0
        last_updated: datetime | None = None
        for symbol in symbols:
            entry = self._snapshot(provider, symbol)
            if entry is None:
                stale += 1
                continue
            fetched_at = ensure_utc(entry.fetched_at)
            if current - fetched_at > self.refresh_interval:
                stale += 1
            if last_updated is None or fetched_at > last_updated:
                last_updated = fetched_at

        if last_updated is None:
            age = None
            cache_stale = force_needed = True
        else:
            age = max(current - last_updated, timedelta(0))
            cache_stale = age > self.refresh_interval
            force_needed = age > self.refresh_interval * self.force_refresh_multiplier

        return PriceStatus(
            last_updated=last_updated,
            stale_count=stale,
            total_count=len(symbols),
            provider_name=provider.name(),
            cache_stale=cache_stale,
            force_refresh_needed=force_needed,
            cache_age_minutes=int(age.total_seconds() // 60) if age is not None else 0,
            market_open=self.market_hours.is_open(current),
        )
