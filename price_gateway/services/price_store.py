from __future__ import annotations

import threading
from collections import defaultdict
from datetime import datetime
from typing import Protocol

from price_gateway.schemas.price import CacheEntry
from price_gateway.services.clock import ensure_utc


class PriceStore(Protocol):
    """Append-only snapshot rows plus the provider call log."""

    def append_snapshot(self, entry: CacheEntry, namespace: str) -> None: ...

    def latest_snapshot(self, symbol: str, namespace: str) -> CacheEntry | None: ...

    def latest_capture_time(self, namespace: str, symbols: list[str] | None = None) -> datetime | None: ...

    def record_call(self, provider: str, at: datetime) -> None: ...

    def count_calls(self, provider: str, since: datetime, until: datetime | None = None) -> int: ...


class InMemoryPriceStore:
    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._rows: dict[tuple[str, str], list[CacheEntry]] = defaultdict(list)
        self._calls: dict[str, list[datetime]] = defaultdict(list)

    def append_snapshot(self, entry: CacheEntry, namespace: str) -> None:
        with self._lock:
            self._rows[(namespace, entry.symbol)].append(entry)

    def latest_snapshot(self, symbol: str, namespace: str) -> CacheEntry | None:
        with self._lock:
            rows = list(self._rows.get((namespace, symbol), ()))
        latest: CacheEntry | None = None
        for row in rows:
            if latest is None or row.fetched_at >= latest.fetched_at:
                latest = row
        return latest

    def latest_capture_time(self, namespace: str, symbols: list[str] | None = None) -> datetime | None:
        wanted = set(symbols) if symbols is not None else None
        with self._lock:
            stamps = [
                row.fetched_at
                for (ns, symbol), rows in self._rows.items()
                if ns == namespace and (wanted is None or symbol in wanted)
                for row in rows
            ]
        return max(stamps) if stamps else None

    def record_call(self, provider: str, at: datetime) -> None:
        with self._lock:
            self._calls[provider].append(ensure_utc(at))

    def count_calls(self, provider: str, since: datetime, until: datetime | None = None) -> int:
        lower = ensure_utc(since)
        upper = ensure_utc(until) if until is not None else None
        with self._lock:
            stamps = list(self._calls.get(provider, ()))
        return sum(1 for t in stamps if t >= lower and (upper is None or t <= upper))
