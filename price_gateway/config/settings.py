import logging
import os
from functools import lru_cache
from typing import Literal

from pydantic import BaseModel

logger = logging.getLogger(__name__)

ProviderName = Literal["twelvedata", "alphavantage", "synthetic"]


def _split_symbols(raw: str | None) -> list[str]:
    if not raw:
        return []
    return [s.strip().upper() for s in raw.split(",") if s.strip()]


def _env_bool(name: str, default: bool = False) -> bool:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    return raw.strip().lower() in {"1", "true", "yes", "on"}


class Settings(BaseModel):
    PRIMARY_PRICE_PROVIDER: ProviderName = "twelvedata"
    FALLBACK_PRICE_PROVIDER: ProviderName = "alphavantage"

    TWELVE_DATA_API_KEY: str | None = None
    TWELVE_DATA_DAILY_LIMIT: int = 800
    TWELVE_DATA_RATE_LIMIT: int = 8

    ALPHA_VANTAGE_API_KEY: str | None = None
    ALPHA_VANTAGE_DAILY_LIMIT: int = 25
    ALPHA_VANTAGE_RATE_LIMIT: int = 5

    COINGECKO_DAILY_LIMIT: int = 10000
    COINGECKO_RATE_LIMIT: int = 30

    CACHE_REFRESH_MINUTES: int = 15
    FORCE_REFRESH_MULTIPLIER: int = 6
    PRICE_HTTP_TIMEOUT_SEC: float = 30.0

    MARKET_OPEN_LOCAL: str = "09:30"
    MARKET_CLOSE_LOCAL: str = "16:00"
    MARKET_TIMEZONE: str = "America/New_York"
    MARKET_WEEKEND_TRADES: bool = False

    TRACKED_EQUITY_SYMBOLS: list[str] = []
    TRACKED_CRYPTO_SYMBOLS: list[str] = []

    PRICE_DATABASE_URL: str | None = None

    @classmethod
    def from_env(cls) -> "Settings":
        raw = {
            "PRIMARY_PRICE_PROVIDER": os.getenv("PRIMARY_PRICE_PROVIDER"),
            "FALLBACK_PRICE_PROVIDER": os.getenv("FALLBACK_PRICE_PROVIDER"),
            "TWELVE_DATA_API_KEY": os.getenv("TWELVE_DATA_API_KEY") or None,
            "TWELVE_DATA_DAILY_LIMIT": os.getenv("TWELVE_DATA_DAILY_LIMIT"),
            "TWELVE_DATA_RATE_LIMIT": os.getenv("TWELVE_DATA_RATE_LIMIT"),
            "ALPHA_VANTAGE_API_KEY": os.getenv("ALPHA_VANTAGE_API_KEY") or None,
            "ALPHA_VANTAGE_DAILY_LIMIT": os.getenv("ALPHA_VANTAGE_DAILY_LIMIT"),
            "ALPHA_VANTAGE_RATE_LIMIT": os.getenv("ALPHA_VANTAGE_RATE_LIMIT"),
            "COINGECKO_DAILY_LIMIT": os.getenv("COINGECKO_DAILY_LIMIT"),
            "COINGECKO_RATE_LIMIT": os.getenv("COINGECKO_RATE_LIMIT"),
            "CACHE_REFRESH_MINUTES": os.getenv("CACHE_REFRESH_MINUTES"),
            "FORCE_REFRESH_MULTIPLIER": os.getenv("FORCE_REFRESH_MULTIPLIER"),
            "PRICE_HTTP_TIMEOUT_SEC": os.getenv("PRICE_HTTP_TIMEOUT_SEC"),
            "MARKET_OPEN_LOCAL": os.getenv("MARKET_OPEN_LOCAL"),
            "MARKET_CLOSE_LOCAL": os.getenv("MARKET_CLOSE_LOCAL"),
            "MARKET_TIMEZONE": os.getenv("MARKET_TIMEZONE"),
            "MARKET_WEEKEND_TRADES": _env_bool("MARKET_WEEKEND_TRADES"),
            "TRACKED_EQUITY_SYMBOLS": _split_symbols(os.getenv("TRACKED_EQUITY_SYMBOLS")),
            "TRACKED_CRYPTO_SYMBOLS": _split_symbols(os.getenv("TRACKED_CRYPTO_SYMBOLS")),
            "PRICE_DATABASE_URL": os.getenv("PRICE_DATABASE_URL") or None,
        }
        settings = cls.model_validate({k: v for k, v in raw.items() if v is not None})

        if not settings.TWELVE_DATA_API_KEY and not settings.ALPHA_VANTAGE_API_KEY:
            logger.warning("[CONFIG][no_api_keys] equities will use the synthetic provider")
        else:
            logger.info(
                "[CONFIG][providers] primary=%s fallback=%s twelvedata_key_len=%d alphavantage_key_len=%d",
                settings.PRIMARY_PRICE_PROVIDER,
                settings.FALLBACK_PRICE_PROVIDER,
                len(settings.TWELVE_DATA_API_KEY or ""),
                len(settings.ALPHA_VANTAGE_API_KEY or ""),
            )
        return settings


@lru_cache
def get_settings() -> Settings:
    return Settings.from_env()
