from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Annotated, Literal

from pydantic import BaseModel, ConfigDict, PlainSerializer, model_validator

# Decimal internally, plain JSON numbers on the wire.
Money = Annotated[Decimal, PlainSerializer(float, return_type=float, when_used="json")]

Origin = Literal["api", "cache"]


class PriceQuote(BaseModel):
    model_config = ConfigDict(frozen=True)

    symbol: str
    price: Money
    price_btc: Money | None = None
    market_cap: Money | None = None
    volume_24h: Money | None = None
    change_24h: Money | None = None
    timestamp: datetime
    source: str
    origin: Origin = "api"
    degraded: bool = False
    degraded_reason: str | None = None

    def served_from_cache(self, *, degraded_reason: str | None = None) -> "PriceQuote":
        return self.model_copy(
            update={
                "origin": "cache",
                "degraded": degraded_reason is not None,
                "degraded_reason": degraded_reason,
            }
        )


class CacheEntry(BaseModel):
    model_config = ConfigDict(frozen=True)

    symbol: str
    quote: PriceQuote
    fetched_at: datetime


class QuotaWindow(BaseModel):
    provider: str
    kind: Literal["minute", "day"]
    call_count: int
    limit: int | None
    window_start: datetime


class RefreshResult(BaseModel):
    symbol: str
    old_price: Money = Decimal("0")
    new_price: Money = Decimal("0")
    updated: bool = False
    error: str | None = None
    error_type: str | None = None
    timestamp: datetime
    source: Origin | None = None
    price_change: Money = Decimal("0")
    price_change_pct: Money = Decimal("0")
    cache_age: str | None = None
    degraded: bool = False

    @model_validator(mode="after")
    def _failed_result_has_error_type(self) -> "RefreshResult":
        if not self.updated and not self.error_type:
            raise ValueError("a result that was not updated must carry an error_type")
        return self


class RefreshSummary(BaseModel):
    total_symbols: int
    updated_symbols: int
    failed_symbols: int
    results: list[RefreshResult]
    provider_name: str
    timestamp: datetime
    duration_ms: int


class PriceStatus(BaseModel):
    last_updated: datetime | None
    stale_count: int
    total_count: int
    provider_name: str
    cache_stale: bool
    force_refresh_needed: bool
    cache_age_minutes: int
    market_open: bool
