from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from datetime import timedelta
from typing import Any, Optional

from fastapi import FastAPI

from price_gateway.api.routes import router
from price_gateway.config.settings import Settings, get_settings
from price_gateway.services.market_hours import MarketHoursService
from price_gateway.services.price_refresh import PriceRefreshService
from price_gateway.services.provider_factory import (
    build_crypto_provider,
    build_equities_provider,
    build_store,
    market_session_config,
    quota_limits,
)
from price_gateway.services.quota import QuotaTracker

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    equity = app.state.equity_refresh
    crypto = app.state.crypto_refresh
    logger.info(
        "[APP][startup] equity_provider=%s equity_symbols=%d crypto_symbols=%d",
        equity.provider.name(),
        len(equity.tracked_symbols()),
        len(crypto.tracked_symbols()),
    )
    try:
        yield
    finally:
        logger.info("[APP][shutdown]")


def create_app(settings: Optional[Settings] = None, session: Optional[Any] = None) -> FastAPI:
    """Wire store, quota, providers and refresh services onto app.state.

    `session` replaces `requests` in every provider client; tests pass a mock.
    """
    app = FastAPI(title="Price Refresh Gateway", version="0.1.0", lifespan=lifespan)
    app.include_router(router, prefix="/v1")

    # NOTE: settings are read lazily so tracked symbols follow the environment.
    app.state.get_settings = (lambda: settings) if settings is not None else get_settings
    current = app.state.get_settings()

    store = build_store(current)
    market_hours = MarketHoursService(market_session_config(current))
    quota = QuotaTracker(store, quota_limits(current))
    interval = timedelta(minutes=current.CACHE_REFRESH_MINUTES)

    app.state.store = store
    app.state.market_hours = market_hours
    app.state.quota_tracker = quota
    app.state.equity_refresh = PriceRefreshService(
        provider=build_equities_provider(current, store, market_hours, quota, session=session),
        symbols_source=lambda: app.state.get_settings().TRACKED_EQUITY_SYMBOLS,
        market_hours=market_hours,
        refresh_interval=interval,
        force_refresh_multiplier=current.FORCE_REFRESH_MULTIPLIER,
    )
    crypto = build_crypto_provider(current, store, quota, session=session)
    app.state.crypto_refresh = PriceRefreshService(
        provider=crypto,
        symbols_source=lambda: app.state.get_settings().TRACKED_CRYPTO_SYMBOLS,
        market_hours=market_hours,
        refresh_interval=crypto.freshness,
        force_refresh_multiplier=current.FORCE_REFRESH_MULTIPLIER,
    )
    return app


logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(name)s %(message)s")
app = create_app()
