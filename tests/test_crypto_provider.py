import unittest
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from unittest.mock import MagicMock

import requests

from price_gateway.errors import InvalidSymbol, NetworkError, NoData, RateLimited
from price_gateway.integrations.coingecko import CoinGeckoClient
from price_gateway.schemas.price import PriceQuote
from price_gateway.services.crypto_provider import CryptoPriceProvider
from price_gateway.services.price_cache import CRYPTO, PriceCache
from price_gateway.services.price_store import InMemoryPriceStore
from price_gateway.services.quota import QuotaLimits, QuotaTracker

NOW = datetime(2026, 1, 10, 12, 0, tzinfo=timezone.utc)

PAYLOAD = {
    "bitcoin": {
        "usd": Decimal("43250.5"),
        "btc": 1,
        "usd_market_cap": Decimal("850000000000"),
        "usd_24h_vol": Decimal("21000000000"),
        "usd_24h_change": Decimal("1.5"),
        "last_updated_at": 1768046000,
    },
    "ethereum": {
        "usd": Decimal("2310.12"),
        "btc": Decimal("0.0534"),
        "last_updated_at": 1768046010,
    },
}


class FakeClock:
    def __init__(self, now: datetime) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now += timedelta(**kwargs)


class TestCryptoPriceProvider(unittest.TestCase):
    def setUp(self):
        self.clock = FakeClock(NOW)
        self.store = InMemoryPriceStore()
        self.cache = PriceCache(self.store, namespace=CRYPTO, clock=self.clock)
        self.quota = QuotaTracker(
            self.store,
            {"coingecko": QuotaLimits(per_minute=30, per_day=10000)},
            clock=self.clock,
        )
        self.session = MagicMock()
        self.response = MagicMock()
        self.response.status_code = 200
        self.response.json.return_value = PAYLOAD
        self.session.get.return_value = self.response
        self.provider = CryptoPriceProvider(
            client=CoinGeckoClient(session=self.session),
            cache=self.cache,
            quota=self.quota,
            clock=self.clock,
        )

    def charged_calls(self) -> int:
        return self.store.count_calls("coingecko", since=self.clock() - timedelta(days=1))

    def test_batch_issues_one_request_and_reports_missing_symbols(self):
        batch = self.provider.get_multiple_prices(["BTC", "ETH", "XYZ"])

        self.assertEqual(self.session.get.call_count, 1)
        _, kwargs = self.session.get.call_args
        self.assertEqual(kwargs["params"]["ids"], "bitcoin,ethereum,xyz")
        self.assertEqual(sorted(batch.quotes), ["BTC", "ETH"])
        self.assertIsInstance(batch.errors["XYZ"], NoData)
        self.assertEqual(self.charged_calls(), 1)
        self.assertEqual(self.cache.get("BTC").quote.price, Decimal("43250.5"))
        self.assertEqual(self.cache.get("ETH").quote.price, Decimal("2310.12"))
        self.assertIsNone(self.cache.get("XYZ"))

    def test_batch_quotes_carry_btc_and_market_fields(self):
        batch = self.provider.get_multiple_prices(["btc"])
        quote = batch.quotes["BTC"]

        self.assertEqual(quote.price, Decimal("43250.5"))
        self.assertEqual(quote.price_btc, Decimal("1"))
        self.assertEqual(quote.change_24h, Decimal("1.5"))
        self.assertEqual(quote.source, "coingecko")
        self.assertEqual(quote.timestamp, datetime.fromtimestamp(1768046000, tz=timezone.utc))
        self.assertEqual(self.cache.get("BTC").fetched_at, NOW)

    def test_recent_cache_is_served_without_request(self):
        self.provider.get_current_price("BTC")
        self.clock.advance(minutes=4)

        quote = self.provider.get_current_price("BTC")

        self.assertEqual(quote.origin, "cache")
        self.assertEqual(self.session.get.call_count, 1)

    def test_cache_older_than_five_minutes_is_refetched(self):
        self.provider.get_current_price("BTC")
        self.clock.advance(minutes=6)

        quote = self.provider.get_current_price("BTC")

        self.assertEqual(quote.origin, "api")
        self.assertEqual(self.session.get.call_count, 2)

    def test_unknown_symbol_without_cache_is_no_data(self):
        with self.assertRaises(NoData):
            self.provider.get_current_price("XYZ")

    def test_network_failure_with_cache_degrades_and_is_not_charged(self):
        self.cache.put(
            PriceQuote(symbol="ETH", price=Decimal("2300"), timestamp=NOW - timedelta(hours=1), source="coingecko"),
            fetched_at=NOW - timedelta(hours=1),
        )
        self.session.get.side_effect = requests.ConnectionError("refused")

        quote = self.provider.get_current_price("ETH")

        self.assertTrue(quote.degraded)
        self.assertEqual(quote.degraded_reason, "network_error")
        self.assertEqual(quote.price, Decimal("2300"))
        self.assertEqual(self.charged_calls(), 0)

    def test_network_failure_fails_whole_batch(self):
        self.session.get.side_effect = requests.Timeout("slow")

        with self.assertRaises(NetworkError):
            self.provider.get_multiple_prices(["BTC", "ETH"])

    def test_exhausted_budget_fails_batch(self):
        self.quota.limits["coingecko"] = QuotaLimits(per_minute=0, per_day=0)

        with self.assertRaises(RateLimited):
            self.provider.get_multiple_prices(["BTC"])
        self.session.get.assert_not_called()

    def test_malformed_symbol_is_rejected_before_request(self):
        batch = self.provider.get_multiple_prices(["BRK B"])

        self.session.get.assert_not_called()
        self.assertEqual(batch.quotes, {})
        self.assertIsInstance(batch.errors["BRK B"], InvalidSymbol)
        self.assertEqual(self.charged_calls(), 0)

    def test_malformed_symbol_is_left_out_of_ids(self):
        batch = self.provider.get_multiple_prices(["BTC", "BRK B"])

        _, kwargs = self.session.get.call_args
        self.assertEqual(kwargs["params"]["ids"], "bitcoin")
        self.assertEqual(list(batch.quotes), ["BTC"])
        self.assertIsInstance(batch.errors["BRK B"], InvalidSymbol)

    def test_duplicate_symbols_are_fetched_once(self):
        batch = self.provider.get_multiple_prices(["BTC", "btc", " BTC "])

        self.assertEqual(list(batch.quotes), ["BTC"])
        _, kwargs = self.session.get.call_args
        self.assertEqual(kwargs["params"]["ids"], "bitcoin")


if __name__ == "__main__":
    unittest.main()
