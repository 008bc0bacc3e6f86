from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from typing import Any, Callable, Optional
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

import requests
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from price_gateway.errors import NoData, ParseError, PriceError, RateLimited
from price_gateway.integrations.http_common import DEFAULT_TIMEOUT_SEC, get_json, redact
from price_gateway.schemas.price import PriceQuote

logger = logging.getLogger(__name__)


class GlobalQuote(BaseModel):
    model_config = ConfigDict(extra="ignore")

    symbol: str = Field(alias="01. symbol")
    price: Decimal = Field(alias="05. price")
    volume: Optional[Decimal] = Field(default=None, alias="06. volume")
    latest_trading_day: Optional[str] = Field(default=None, alias="07. latest trading day")
    change_percent: Optional[str] = Field(default=None, alias="10. change percent")

    def change_pct(self) -> Decimal | None:
        if not self.change_percent:
            return None
        try:
            return Decimal(self.change_percent.strip().rstrip("%"))
        except ArithmeticError:
            return None


class IntradayBar(BaseModel):
    model_config = ConfigDict(extra="ignore")

    close: Decimal = Field(alias="4. close")
    volume: Optional[Decimal] = Field(default=None, alias="5. volume")


INTRADAY_SERIES_KEY = "Time Series (1min)"
INTRADAY_TIMESTAMP_FORMAT = "%Y-%m-%d %H:%M:%S"
INTRADAY_STALE_AFTER = timedelta(hours=4)


def _series_zone(meta: Any):
    name = meta.get("6. Time Zone") if isinstance(meta, dict) else None
    try:
        return ZoneInfo(name or "US/Eastern")
    except (ZoneInfoNotFoundError, ValueError, OSError):
        return timezone.utc


def latest_intraday_bar(series: dict[str, Any], zone) -> tuple[datetime, IntradayBar] | None:
    """Newest bar with a positive close; unparseable timestamps and bars are skipped."""
    latest: tuple[datetime, IntradayBar] | None = None
    for stamp, raw in series.items():
        try:
            at = datetime.strptime(stamp, INTRADAY_TIMESTAMP_FORMAT).replace(tzinfo=zone)
            bar = IntradayBar.model_validate(raw)
        except (ValueError, TypeError, ValidationError):
            continue
        if bar.close <= 0:
            continue
        if latest is None or at > latest[0]:
            latest = (at, bar)
    return latest


class AlphaVantageClient:
    """Alpha Vantage quotes: TIME_SERIES_INTRADAY (1min) when asked, else GLOBAL_QUOTE."""

    source = "alphavantage"
    display_name = "Alpha Vantage"
    supports_intraday = True

    def __init__(
        self,
        api_key: str,
        session: Optional[Any] = None,
        base_url: str = "https://www.alphavantage.co/query",
        timeout: float = DEFAULT_TIMEOUT_SEC,
        clock: Optional[Callable[[], datetime]] = None,
    ) -> None:
        self.api_key = api_key
        self.session = session or requests
        self.base_url = base_url
        self.timeout = timeout
        self.clock = clock or (lambda: datetime.now(timezone.utc))

    def _query(self, symbol: str, **params: str) -> dict:
        params = {**params, "symbol": symbol, "apikey": self.api_key}
        logger.debug("[ALPHAVANTAGE][request] url=%s params=%s", self.base_url, redact(params))
        payload = get_json(
            self.session,
            self.base_url,
            params=params,
            timeout=self.timeout,
            provider=self.display_name,
            symbol=symbol,
        )
        if not isinstance(payload, dict):
            raise ParseError(f"Alpha Vantage response for {symbol} is not an object", symbol=symbol)

        # Throttled responses come back as HTTP 200 with a Note/Information body.
        for key in ("Note", "Information"):
            if key in payload:
                raise RateLimited(f"Alpha Vantage limit reached: {payload[key]}", symbol=symbol)
        if "Error Message" in payload:
            raise NoData(f"Alpha Vantage does not know {symbol}: {payload['Error Message']}", symbol=symbol)
        return payload

    def get_quote(self, symbol: str, prefer_intraday: bool = False) -> PriceQuote:
        """Quote for symbol.

        With prefer_intraday the latest 1-minute bar is tried first; any failure
        other than a rate limit falls back to GLOBAL_QUOTE.
        """
        if prefer_intraday:
            try:
                return self.get_intraday_quote(symbol)
            except RateLimited:
                raise
            except PriceError as exc:
                logger.warning("[ALPHAVANTAGE][intraday_fallback] symbol=%s error_type=%s error=%s", symbol, exc.error_type, exc)
        return self.get_global_quote(symbol)

    def get_intraday_quote(self, symbol: str) -> PriceQuote:
        payload = self._query(symbol, function="TIME_SERIES_INTRADAY", interval="1min")

        series = payload.get(INTRADAY_SERIES_KEY)
        if not isinstance(series, dict):
            raise ParseError(f"Alpha Vantage response for {symbol} has no '{INTRADAY_SERIES_KEY}'", symbol=symbol)
        latest = latest_intraday_bar(series, _series_zone(payload.get("Meta Data")))
        if latest is None:
            raise NoData(f"Alpha Vantage has no intraday price for {symbol}", symbol=symbol)

        at, bar = latest
        at = at.astimezone(timezone.utc)
        age = self.clock() - at
        if age > INTRADAY_STALE_AFTER:
            logger.warning("[ALPHAVANTAGE][intraday_stale] symbol=%s bar_at=%s age_hours=%.1f", symbol, at.isoformat(), age.total_seconds() / 3600)

        return PriceQuote(
            symbol=symbol,
            price=bar.close,
            volume_24h=bar.volume,
            timestamp=at,
            source=self.source,
        )

    def get_global_quote(self, symbol: str) -> PriceQuote:
        payload = self._query(symbol, function="GLOBAL_QUOTE")

        raw = payload.get("Global Quote")
        if not isinstance(raw, dict):
            raise ParseError(f"Alpha Vantage response for {symbol} has no 'Global Quote'", symbol=symbol)
        if not raw or not raw.get("05. price"):
            raise NoData(f"Alpha Vantage has no price for {symbol}", symbol=symbol)

        try:
            body = GlobalQuote.model_validate(raw)
        except ValidationError as exc:
            raise ParseError(f"unexpected Alpha Vantage response for {symbol}: {exc.errors()[0]['msg']}", symbol=symbol) from exc

        return PriceQuote(
            symbol=symbol,
            price=body.price,
            volume_24h=body.volume,
            change_24h=body.change_pct(),
            timestamp=self.clock(),
            source=self.source,
        )
