import os
import unittest
from unittest.mock import MagicMock, patch

from pydantic import ValidationError

from price_gateway.config.settings import Settings
from price_gateway.services.equities_provider import EquitiesPriceProvider
from price_gateway.services.market_hours import MarketHoursService
from price_gateway.services.price_store import InMemoryPriceStore
from price_gateway.services.provider_factory import (
    build_crypto_provider,
    build_equities_provider,
    build_store,
    market_session_config,
    quota_limits,
)
from price_gateway.services.quota import QuotaTracker
from price_gateway.services.sql_store import SqlPriceStore
from price_gateway.services.synthetic_provider import SyntheticPriceProvider


class TestPriceSettings(unittest.TestCase):
    def test_defaults_without_env(self):
        with patch.dict(os.environ, {}, clear=True):
            settings = Settings.from_env()

        self.assertEqual(settings.PRIMARY_PRICE_PROVIDER, "twelvedata")
        self.assertEqual(settings.FALLBACK_PRICE_PROVIDER, "alphavantage")
        self.assertIsNone(settings.TWELVE_DATA_API_KEY)
        self.assertEqual(settings.TWELVE_DATA_DAILY_LIMIT, 800)
        self.assertEqual(settings.TWELVE_DATA_RATE_LIMIT, 8)
        self.assertEqual(settings.ALPHA_VANTAGE_DAILY_LIMIT, 25)
        self.assertEqual(settings.ALPHA_VANTAGE_RATE_LIMIT, 5)
        self.assertEqual(settings.CACHE_REFRESH_MINUTES, 15)
        self.assertEqual(settings.MARKET_TIMEZONE, "America/New_York")
        self.assertFalse(settings.MARKET_WEEKEND_TRADES)
        self.assertEqual(settings.TRACKED_EQUITY_SYMBOLS, [])
        self.assertIsNone(settings.PRICE_DATABASE_URL)

    def test_env_overrides(self):
        env = {
            "TWELVE_DATA_API_KEY": "td-key",
            "TWELVE_DATA_DAILY_LIMIT": "1000",
            "CACHE_REFRESH_MINUTES": "5",
            "MARKET_WEEKEND_TRADES": "true",
            "TRACKED_EQUITY_SYMBOLS": " aapl, MSFT ,,nvda ",
            "TRACKED_CRYPTO_SYMBOLS": "btc,eth",
            "PRICE_DATABASE_URL": "sqlite://",
        }
        with patch.dict(os.environ, env, clear=True):
            settings = Settings.from_env()

        self.assertEqual(settings.TWELVE_DATA_API_KEY, "td-key")
        self.assertEqual(settings.TWELVE_DATA_DAILY_LIMIT, 1000)
        self.assertEqual(settings.CACHE_REFRESH_MINUTES, 5)
        self.assertTrue(settings.MARKET_WEEKEND_TRADES)
        self.assertEqual(settings.TRACKED_EQUITY_SYMBOLS, ["AAPL", "MSFT", "NVDA"])
        self.assertEqual(settings.TRACKED_CRYPTO_SYMBOLS, ["BTC", "ETH"])
        self.assertEqual(settings.PRICE_DATABASE_URL, "sqlite://")

    def test_invalid_values_fail_validation(self):
        with patch.dict(os.environ, {"TWELVE_DATA_DAILY_LIMIT": "lots"}, clear=True):
            with self.assertRaises(ValidationError):
                Settings.from_env()
        with patch.dict(os.environ, {"PRIMARY_PRICE_PROVIDER": "bloomberg"}, clear=True):
            with self.assertRaises(ValidationError):
                Settings.from_env()


class TestProviderFactory(unittest.TestCase):
    def setUp(self):
        self.store = InMemoryPriceStore()
        self.market_hours = MarketHoursService()

    def build(self, settings: Settings):
        quota = QuotaTracker(self.store, quota_limits(settings))
        return build_equities_provider(settings, self.store, self.market_hours, quota, session=MagicMock())

    def test_without_keys_uses_synthetic(self):
        provider = self.build(Settings())

        self.assertIsInstance(provider, SyntheticPriceProvider)

    def test_primary_key_selects_primary(self):
        provider = self.build(Settings(TWELVE_DATA_API_KEY="td", ALPHA_VANTAGE_API_KEY="av"))

        self.assertIsInstance(provider, EquitiesPriceProvider)
        self.assertEqual(provider.name(), "Twelve Data")

    def test_missing_primary_key_falls_back(self):
        provider = self.build(Settings(ALPHA_VANTAGE_API_KEY="av"))

        self.assertIsInstance(provider, EquitiesPriceProvider)
        self.assertEqual(provider.name(), "Alpha Vantage")

    def test_synthetic_primary_wins_over_keys(self):
        provider = self.build(Settings(PRIMARY_PRICE_PROVIDER="synthetic", TWELVE_DATA_API_KEY="td"))

        self.assertIsInstance(provider, SyntheticPriceProvider)

    def test_quota_limits_follow_settings(self):
        limits = quota_limits(Settings(ALPHA_VANTAGE_DAILY_LIMIT=50, COINGECKO_RATE_LIMIT=10))

        self.assertEqual(limits["alphavantage"].per_day, 50)
        self.assertEqual(limits["coingecko"].per_minute, 10)
        self.assertEqual(limits["twelvedata"].per_minute, 8)

    def test_store_selection(self):
        self.assertIsInstance(build_store(Settings()), InMemoryPriceStore)
        self.assertIsInstance(build_store(Settings(PRICE_DATABASE_URL="sqlite://")), SqlPriceStore)

    def test_market_session_config(self):
        config = market_session_config(Settings(MARKET_OPEN_LOCAL="08:00", MARKET_WEEKEND_TRADES=True))

        self.assertEqual(config.open_time, "08:00")
        self.assertEqual(config.close_time, "16:00")
        self.assertTrue(config.weekend_trading)

    def test_crypto_provider_is_batch_capable(self):
        settings = Settings()
        quota = QuotaTracker(self.store, quota_limits(settings))

        provider = build_crypto_provider(settings, self.store, quota, session=MagicMock())

        self.assertTrue(provider.supports_batch)
        self.assertEqual(provider.name(), "CoinGecko")


if __name__ == "__main__":
    unittest.main()
