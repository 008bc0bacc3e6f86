from __future__ import annotations

import logging
from datetime import timedelta
from typing import Any, Optional

from price_gateway.config.settings import Settings
from price_gateway.integrations.alpha_vantage import AlphaVantageClient
from price_gateway.integrations.coingecko import CoinGeckoClient
from price_gateway.integrations.twelve_data import TwelveDataClient
from price_gateway.schemas.market import MarketSessionConfig
from price_gateway.services.crypto_provider import CryptoPriceProvider
from price_gateway.services.equities_provider import EquitiesPriceProvider, EquityQuoteClient
from price_gateway.services.market_hours import MarketHoursService
from price_gateway.services.price_cache import CRYPTO, EQUITY, PriceCache
from price_gateway.services.price_store import InMemoryPriceStore, PriceStore
from price_gateway.services.providers import PriceProvider
from price_gateway.services.quota import QuotaLimits, QuotaTracker
from price_gateway.services.synthetic_provider import SyntheticPriceProvider

logger = logging.getLogger(__name__)


def build_store(settings: Settings) -> PriceStore:
    if not settings.PRICE_DATABASE_URL:
        return InMemoryPriceStore()
    # Imported lazily so the in-memory setup does not touch SQLAlchemy.
    from price_gateway.services.sql_store import SqlPriceStore

    logger.info("[STORE][sql] dialect=%s", settings.PRICE_DATABASE_URL.split(":", 1)[0])
    return SqlPriceStore(settings.PRICE_DATABASE_URL)


def quota_limits(settings: Settings) -> dict[str, QuotaLimits]:
    return {
        TwelveDataClient.source: QuotaLimits(
            per_minute=settings.TWELVE_DATA_RATE_LIMIT,
            per_day=settings.TWELVE_DATA_DAILY_LIMIT,
        ),
        AlphaVantageClient.source: QuotaLimits(
            per_minute=settings.ALPHA_VANTAGE_RATE_LIMIT,
            per_day=settings.ALPHA_VANTAGE_DAILY_LIMIT,
        ),
        CoinGeckoClient.source: QuotaLimits(
            per_minute=settings.COINGECKO_RATE_LIMIT,
            per_day=settings.COINGECKO_DAILY_LIMIT,
        ),
    }


def market_session_config(settings: Settings) -> MarketSessionConfig:
    return MarketSessionConfig(
        open_time=settings.MARKET_OPEN_LOCAL,
        close_time=settings.MARKET_CLOSE_LOCAL,
        timezone=settings.MARKET_TIMEZONE,
        weekend_trading=settings.MARKET_WEEKEND_TRADES,
    )


def _equity_client(name: str, settings: Settings, session: Optional[Any]) -> EquityQuoteClient | None:
    timeout = settings.PRICE_HTTP_TIMEOUT_SEC
    if name == "twelvedata" and settings.TWELVE_DATA_API_KEY:
        return TwelveDataClient(api_key=settings.TWELVE_DATA_API_KEY, session=session, timeout=timeout)
    if name == "alphavantage" and settings.ALPHA_VANTAGE_API_KEY:
        return AlphaVantageClient(api_key=settings.ALPHA_VANTAGE_API_KEY, session=session, timeout=timeout)
    return None


def build_equities_provider(
    settings: Settings,
    store: PriceStore,
    market_hours: MarketHoursService,
    quota: QuotaTracker,
    session: Optional[Any] = None,
) -> PriceProvider:
    """Primary provider when its key is set, then the fallback, else synthetic."""
    for name in (settings.PRIMARY_PRICE_PROVIDER, settings.FALLBACK_PRICE_PROVIDER):
        if name == "synthetic":
            break
        client = _equity_client(name, settings, session)
        if client is None:
            logger.info("[PROVIDER][skip] name=%s reason=no_api_key", name)
            continue
        logger.info("[PROVIDER][selected] kind=equity name=%s", client.display_name)
        return EquitiesPriceProvider(
            client=client,
            cache=PriceCache(store, namespace=EQUITY),
            market_hours=market_hours,
            quota=quota,
            refresh_interval=timedelta(minutes=settings.CACHE_REFRESH_MINUTES),
        )

    logger.warning("[PROVIDER][selected] kind=equity name=synthetic")
    return SyntheticPriceProvider(cache=PriceCache(store, namespace=EQUITY))


def build_crypto_provider(
    settings: Settings,
    store: PriceStore,
    quota: QuotaTracker,
    session: Optional[Any] = None,
) -> CryptoPriceProvider:
    client = CoinGeckoClient(session=session, timeout=settings.PRICE_HTTP_TIMEOUT_SEC)
    return CryptoPriceProvider(client=client, cache=PriceCache(store, namespace=CRYPTO), quota=quota)
