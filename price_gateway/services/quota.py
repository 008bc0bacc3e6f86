from __future__ import annotations

import logging
import math
import threading
from collections import defaultdict
from datetime import datetime, timedelta

from pydantic import BaseModel

from price_gateway.schemas.price import QuotaWindow
from price_gateway.services.clock import Clock, ensure_utc, utc_now
from price_gateway.services.price_store import PriceStore

logger = logging.getLogger(__name__)

MINUTE = timedelta(seconds=60)
FORCE_DAILY_FACTOR = 1.5
FORCE_MINUTE_FACTOR = 2


class QuotaLimits(BaseModel):
    per_minute: int
    per_day: int

    def relaxed(self) -> "QuotaLimits":
        return QuotaLimits(
            per_minute=self.per_minute * FORCE_MINUTE_FACTOR,
            per_day=int(math.floor(self.per_day * FORCE_DAILY_FACTOR)),
        )


class QuotaReservation:
    """A held call slot. Commit once the provider answered; release otherwise."""

    def __init__(self, tracker: "QuotaTracker", provider: str) -> None:
        self.tracker = tracker
        self.provider = provider
        self.done = False

    def commit(self, at: datetime | None = None) -> None:
        if self.done:
            return
        self.done = True
        self.tracker._settle(self.provider, record_at=at or self.tracker.clock())

    def release(self) -> None:
        if self.done:
            return
        self.done = True
        self.tracker._settle(self.provider, record_at=None)

    def __enter__(self) -> "QuotaReservation":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.release()


class QuotaTracker:
    """Per-provider call budget derived from the persisted call log.

    Counts are recomputed from the log on every decision. Slots handed out by
    reserve() but not yet committed are counted as in flight, which keeps two
    concurrent callers from both taking the last slot.
    """

    def __init__(
        self,
        store: PriceStore,
        limits: dict[str, QuotaLimits] | None = None,
        clock: Clock | None = None,
    ) -> None:
        self.store = store
        self.limits = dict(limits or {})
        self.clock = clock or utc_now
        self._locks: dict[str, threading.Lock] = defaultdict(threading.Lock)
        self._registry_lock = threading.Lock()
        self._in_flight: dict[str, int] = defaultdict(int)

    def _lock_for(self, provider: str) -> threading.Lock:
        with self._registry_lock:
            return self._locks[provider]

    @staticmethod
    def _day_start(now: datetime) -> datetime:
        return now.replace(hour=0, minute=0, second=0, microsecond=0)

    def _counts(self, provider: str, now: datetime) -> tuple[int, int]:
        daily = self.store.count_calls(provider, since=self._day_start(now), until=now)
        recent = self.store.count_calls(provider, since=now - MINUTE, until=now)
        return daily, recent

    def _allowed(self, provider: str, now: datetime, force: bool, pending: int) -> bool:
        limits = self.limits.get(provider)
        if limits is None:
            return True
        if force:
            limits = limits.relaxed()
        daily, recent = self._counts(provider, now)
        daily += pending
        recent += pending
        allowed = daily < limits.per_day and recent < limits.per_minute
        if not allowed:
            logger.info(
                "[QUOTA][denied] provider=%s daily=%d/%d minute=%d/%d force=%s",
                provider,
                daily,
                limits.per_day,
                recent,
                limits.per_minute,
                force,
            )
        return allowed

    def can_call(self, provider: str, now: datetime | None = None, force: bool = False) -> bool:
        current = ensure_utc(now or self.clock())
        return self._allowed(provider, current, force, pending=0)

    def reserve(self, provider: str, force: bool = False) -> QuotaReservation | None:
        with self._lock_for(provider):
            current = ensure_utc(self.clock())
            if not self._allowed(provider, current, force, pending=self._in_flight[provider]):
                return None
            self._in_flight[provider] += 1
        return QuotaReservation(self, provider)

    def _settle(self, provider: str, record_at: datetime | None) -> None:
        with self._lock_for(provider):
            if record_at is not None:
                self.store.record_call(provider, record_at)
            self._in_flight[provider] = max(self._in_flight[provider] - 1, 0)

    def windows(self, provider: str, now: datetime | None = None) -> list[QuotaWindow]:
        current = ensure_utc(now or self.clock())
        limits = self.limits.get(provider)
        daily, recent = self._counts(provider, current)
        return [
            QuotaWindow(
                provider=provider,
                kind="minute",
                call_count=recent,
                limit=limits.per_minute if limits else None,
                window_start=current - MINUTE,
            ),
            QuotaWindow(
                provider=provider,
                kind="day",
                call_count=daily,
                limit=limits.per_day if limits else None,
                window_start=self._day_start(current),
            ),
        ]
