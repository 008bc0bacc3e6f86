from __future__ import annotations

import logging
from datetime import date, datetime, time, timedelta, timezone
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from price_gateway.schemas.market import MarketSessionConfig, MarketStatus
from price_gateway.services.clock import Clock, ensure_utc, utc_now

logger = logging.getLogger(__name__)

CLOSED_MARKET_MAX_AGE = timedelta(hours=12)


def _resolve_zone(name: str):
    try:
        return ZoneInfo(name)
    except (ZoneInfoNotFoundError, ValueError, OSError):
        logger.warning("[MARKET][timezone_fallback] timezone=%r fallback=UTC", name)
        return timezone.utc


def _parse_boundary(value: str) -> time | None:
    try:
        parsed = datetime.strptime(value.strip(), "%H:%M").time()
    except ValueError:
        logger.warning("[MARKET][boundary_parse_failed] value=%r", value)
        return None
    return time(parsed.hour, parsed.minute)


def format_duration(delta: timedelta) -> str:
    if delta.total_seconds() < 0:
        return "0m"
    total_minutes = int(delta.total_seconds() // 60)
    hours, minutes = divmod(total_minutes, 60)
    if hours > 0:
        return f"{hours}h {minutes}m"
    return f"{minutes}m"


class MarketHoursService:
    """Trading-session awareness and the staleness policy built on it.

    Session boundaries are "HH:MM" strings in the configured timezone. An
    unparseable boundary keeps the session closed and an unusable timezone
    falls back to UTC, so bad settings never fail startup.
    """

    def __init__(self, config: MarketSessionConfig | None = None, clock: Clock | None = None) -> None:
        self.config = config or MarketSessionConfig()
        self.clock = clock or utc_now
        self.zone = _resolve_zone(self.config.timezone)
        self._open = _parse_boundary(self.config.open_time)
        self._close = _parse_boundary(self.config.close_time)

    def _local(self, now: datetime | None) -> datetime:
        current = now or self.clock()
        if current.tzinfo is None:
            return current.replace(tzinfo=self.zone)
        return current.astimezone(self.zone)

    def _at(self, day: date, boundary: time | None, fallback: datetime) -> datetime:
        if boundary is None:
            return fallback
        return datetime.combine(day, boundary, tzinfo=self.zone)

    def is_business_day(self, day: date) -> bool:
        if self.config.weekend_trading:
            return True
        return day.weekday() < 5

    def _next_business_day(self, day: date) -> date:
        nxt = day + timedelta(days=1)
        while not self.is_business_day(nxt):
            nxt += timedelta(days=1)
        return nxt

    def is_open(self, now: datetime | None = None) -> bool:
        local = self._local(now)
        if self._open is None or self._close is None:
            return False
        if not self.is_business_day(local.date()):
            return False
        open_at = self._at(local.date(), self._open, local)
        close_at = self._at(local.date(), self._close, local)
        return open_at <= local < close_at

    def session_status(self, now: datetime | None = None) -> MarketStatus:
        local = self._local(now)
        today = local.date()
        open_at = self._at(today, self._open, local)
        close_at = self._at(today, self._close, local)
        is_open = self.is_open(local)

        if is_open:
            status = "open"
            next_day = self._next_business_day(today)
            next_open = self._at(next_day, self._open, local)
            next_close = close_at
        elif not self.is_business_day(today):
            status = "closed"
            next_day = self._next_business_day(today)
            next_open = self._at(next_day, self._open, local)
            next_close = self._at(next_day, self._close, local)
        elif local < open_at:
            status = "pre_market"
            next_open = open_at
            next_close = close_at
        else:
            status = "after_hours"
            next_day = self._next_business_day(today)
            next_open = self._at(next_day, self._open, local)
            next_close = self._at(next_day, self._close, local)

        target = next_close if is_open else next_open
        return MarketStatus(
            is_open=is_open,
            open_time=open_at,
            close_time=close_at,
            next_open=next_open,
            next_close=next_close,
            time_to_next=format_duration(target - local),
            status=status,
        )

    def should_refresh(
        self,
        last_update: datetime | None,
        interval: timedelta,
        now: datetime | None = None,
    ) -> bool:
        if last_update is None:
            return True
        current = ensure_utc(now or self.clock())
        age = current - ensure_utc(last_update)
        if not self.is_open(current):
            return age > CLOSED_MARKET_MAX_AGE
        return age > interval

    def seconds_until_next_refresh(
        self,
        last_update: datetime | None,
        interval: timedelta,
        now: datetime | None = None,
    ) -> int:
        current = ensure_utc(now or self.clock())
        if last_update is None or not self.is_open(current):
            return 0
        remaining = ensure_utc(last_update) + interval - current
        if remaining.total_seconds() <= 0:
            return 0
        return int(remaining.total_seconds())
