from __future__ import annotations

import logging
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Callable, Optional

import requests
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from price_gateway.errors import HTTPStatusError, NoData, ParseError, RateLimited
from price_gateway.integrations.http_common import DEFAULT_TIMEOUT_SEC, get_json, redact
from price_gateway.schemas.price import PriceQuote

logger = logging.getLogger(__name__)


class TwelveDataQuote(BaseModel):
    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    symbol: str
    close: Decimal
    percent_change: Optional[Decimal] = None
    volume: Optional[Decimal] = None
    unix_time: Optional[float] = Field(default=None, alias="timestamp")


class TwelveDataClient:
    """Twelve Data /quote endpoint, one symbol per request."""

    source = "twelvedata"
    display_name = "Twelve Data"

    def __init__(
        self,
        api_key: str,
        session: Optional[Any] = None,
        base_url: str = "https://api.twelvedata.com",
        timeout: float = DEFAULT_TIMEOUT_SEC,
        clock: Optional[Callable[[], datetime]] = None,
    ) -> None:
        self.api_key = api_key
        self.session = session or requests
        self.base_url = base_url
        self.timeout = timeout
        self.clock = clock or (lambda: datetime.now(timezone.utc))

    @staticmethod
    def _raise_for_error_body(payload: dict, symbol: str) -> None:
        if payload.get("status") != "error" and "code" not in payload:
            return
        code = payload.get("code")
        message = str(payload.get("message") or "unknown error")
        if code == 429 or "limit" in message.lower():
            raise RateLimited(f"Twelve Data rate limit: {message}", symbol=symbol)
        if code in (400, 404) and "symbol" in message.lower():
            raise NoData(f"Twelve Data has no data for {symbol}: {message}", symbol=symbol)
        status = code if isinstance(code, int) else 502
        raise HTTPStatusError(f"Twelve Data error for {symbol}: {message}", status_code=status, symbol=symbol)

    def get_quote(self, symbol: str) -> PriceQuote:
        params = {"symbol": symbol, "apikey": self.api_key}
        logger.debug("[TWELVEDATA][request] url=%s/quote params=%s", self.base_url, redact(params))
        payload = get_json(
            self.session,
            f"{self.base_url}/quote",
            params=params,
            timeout=self.timeout,
            provider=self.display_name,
            symbol=symbol,
        )
        if not isinstance(payload, dict):
            raise ParseError(f"Twelve Data response for {symbol} is not an object", symbol=symbol)
        self._raise_for_error_body(payload, symbol)
        if payload.get("close") in (None, ""):
            raise NoData(f"Twelve Data response for {symbol} has no price", symbol=symbol)

        try:
            body = TwelveDataQuote.model_validate(payload)
        except ValidationError as exc:
            raise ParseError(f"unexpected Twelve Data response for {symbol}: {exc.errors()[0]['msg']}", symbol=symbol) from exc

        timestamp = self.clock()
        if body.unix_time:
            timestamp = datetime.fromtimestamp(int(body.unix_time), tz=timezone.utc)

        return PriceQuote(
            symbol=symbol,
            price=body.close,
            change_24h=body.percent_change,
            volume_24h=body.volume,
            timestamp=timestamp,
            source=self.source,
        )
