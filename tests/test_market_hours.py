import unittest
from datetime import datetime, timedelta, timezone
from zoneinfo import ZoneInfo

from price_gateway.schemas.market import MarketSessionConfig
from price_gateway.services.market_hours import MarketHoursService, format_duration

NY = ZoneInfo("America/New_York")


class TestMarketHoursPolicy(unittest.TestCase):
    def setUp(self):
        self.service = MarketHoursService()

    def test_open_at_10am_new_york_on_monday(self):
        self.assertTrue(self.service.is_open(datetime(2026, 1, 5, 10, 0, tzinfo=NY)))

    def test_open_boundary_inclusive_close_boundary_exclusive(self):
        self.assertFalse(self.service.is_open(datetime(2026, 1, 5, 9, 29, tzinfo=NY)))
        self.assertTrue(self.service.is_open(datetime(2026, 1, 5, 9, 30, tzinfo=NY)))
        self.assertTrue(self.service.is_open(datetime(2026, 1, 5, 15, 59, tzinfo=NY)))
        self.assertFalse(self.service.is_open(datetime(2026, 1, 5, 16, 0, tzinfo=NY)))

    def test_utc_instant_is_converted_to_market_timezone(self):
        # 15:00 UTC is 10:00 EST.
        self.assertTrue(self.service.is_open(datetime(2026, 1, 5, 15, 0, tzinfo=timezone.utc)))
        self.assertFalse(self.service.is_open(datetime(2026, 1, 5, 10, 0, tzinfo=timezone.utc)))

    def test_closed_on_weekend_unless_weekend_trading(self):
        saturday = datetime(2026, 1, 3, 11, 0, tzinfo=NY)
        self.assertFalse(self.service.is_open(saturday))

        weekend = MarketHoursService(MarketSessionConfig(weekend_trading=True))
        self.assertTrue(weekend.is_open(saturday))

    def test_unknown_timezone_falls_back_to_utc(self):
        service = MarketHoursService(MarketSessionConfig(timezone="Mars/Olympus_Mons"))

        self.assertEqual(service.zone, timezone.utc)
        self.assertTrue(service.is_open(datetime(2026, 1, 5, 10, 0, tzinfo=timezone.utc)))

    def test_timezone_directory_key_falls_back_to_utc(self):
        for name in ("America", "Etc"):
            service = MarketHoursService(MarketSessionConfig(timezone=name))

            self.assertEqual(service.zone, timezone.utc)

    def test_unparseable_boundary_keeps_market_closed(self):
        service = MarketHoursService(MarketSessionConfig(open_time="half past nine"))

        for hour in (0, 9, 12, 15, 23):
            self.assertFalse(service.is_open(datetime(2026, 1, 5, hour, 45, tzinfo=NY)))


class TestMarketSessionStatus(unittest.TestCase):
    def setUp(self):
        self.service = MarketHoursService()

    def test_pre_market(self):
        status = self.service.session_status(datetime(2026, 1, 5, 8, 0, tzinfo=NY))

        self.assertFalse(status.is_open)
        self.assertEqual(status.status, "pre_market")
        self.assertEqual(status.next_open, datetime(2026, 1, 5, 9, 30, tzinfo=NY))
        self.assertEqual(status.time_to_next, "1h 30m")

    def test_open_reports_time_to_close(self):
        status = self.service.session_status(datetime(2026, 1, 5, 15, 15, tzinfo=NY))

        self.assertTrue(status.is_open)
        self.assertEqual(status.status, "open")
        self.assertEqual(status.next_close, datetime(2026, 1, 5, 16, 0, tzinfo=NY))
        self.assertEqual(status.time_to_next, "45m")

    def test_after_hours_on_friday_points_to_monday(self):
        status = self.service.session_status(datetime(2026, 1, 9, 17, 0, tzinfo=NY))

        self.assertEqual(status.status, "after_hours")
        self.assertEqual(status.next_open, datetime(2026, 1, 12, 9, 30, tzinfo=NY))

    def test_weekend_is_closed(self):
        status = self.service.session_status(datetime(2026, 1, 10, 12, 0, tzinfo=NY))

        self.assertEqual(status.status, "closed")
        self.assertEqual(status.next_open, datetime(2026, 1, 12, 9, 30, tzinfo=NY))
        self.assertEqual(status.next_close, datetime(2026, 1, 12, 16, 0, tzinfo=NY))

    def test_format_duration(self):
        self.assertEqual(format_duration(timedelta(minutes=5)), "5m")
        self.assertEqual(format_duration(timedelta(hours=2, minutes=3)), "2h 3m")
        self.assertEqual(format_duration(timedelta(seconds=-30)), "0m")


class TestStalenessPolicy(unittest.TestCase):
    def setUp(self):
        self.service = MarketHoursService()
        self.open_now = datetime(2026, 1, 5, 15, 0, tzinfo=timezone.utc)
        self.closed_now = datetime(2026, 1, 6, 2, 0, tzinfo=timezone.utc)
        self.interval = timedelta(minutes=15)

    def test_never_updated_always_refreshes(self):
        self.assertTrue(self.service.should_refresh(None, self.interval, now=self.open_now))
        self.assertTrue(self.service.should_refresh(None, self.interval, now=self.closed_now))

    def test_open_market_uses_interval(self):
        self.assertFalse(self.service.should_refresh(self.open_now - timedelta(minutes=10), self.interval, now=self.open_now))
        self.assertTrue(self.service.should_refresh(self.open_now - timedelta(minutes=20), self.interval, now=self.open_now))

    def test_closed_market_tolerates_twelve_hours(self):
        self.assertFalse(self.service.should_refresh(self.closed_now - timedelta(hours=2), self.interval, now=self.closed_now))
        self.assertFalse(self.service.should_refresh(self.closed_now - timedelta(hours=11), self.interval, now=self.closed_now))
        self.assertTrue(self.service.should_refresh(self.closed_now - timedelta(hours=13), self.interval, now=self.closed_now))

    def test_naive_last_update_is_treated_as_utc(self):
        naive = (self.open_now - timedelta(minutes=5)).replace(tzinfo=None)
        self.assertFalse(self.service.should_refresh(naive, self.interval, now=self.open_now))

    def test_seconds_until_next_refresh(self):
        last = self.open_now - timedelta(minutes=10)

        self.assertEqual(self.service.seconds_until_next_refresh(last, self.interval, now=self.open_now), 300)
        self.assertEqual(self.service.seconds_until_next_refresh(None, self.interval, now=self.open_now), 0)
        self.assertEqual(self.service.seconds_until_next_refresh(last, self.interval, now=self.closed_now), 0)
        self.assertEqual(
            self.service.seconds_until_next_refresh(self.open_now - timedelta(hours=1), self.interval, now=self.open_now),
            0,
        )


if __name__ == "__main__":
    unittest.main()
