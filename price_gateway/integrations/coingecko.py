from __future__ import annotations

import logging
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any, Optional

import requests
from pydantic import BaseModel, ConfigDict, ValidationError

from price_gateway.errors import ParseError
from price_gateway.integrations.http_common import DEFAULT_TIMEOUT_SEC, get_json

logger = logging.getLogger(__name__)

# Friendly ticker -> CoinGecko coin id. Unknown tickers are sent as-is.
SYMBOL_TO_ID: dict[str, str] = {
    "btc": "bitcoin",
    "eth": "ethereum",
    "ada": "cardano",
    "dot": "polkadot",
    "sol": "solana",
    "matic": "polygon",
    "avax": "avalanche-2",
    "link": "chainlink",
    "uni": "uniswap",
    "ltc": "litecoin",
    "bch": "bitcoin-cash",
    "xlm": "stellar",
    "xrp": "ripple",
    "doge": "dogecoin",
    "shib": "shiba-inu",
    "bnb": "binancecoin",
    "usdc": "usd-coin",
    "usdt": "tether",
    "busd": "binance-usd",
    "dai": "dai",
}


def symbol_to_id(symbol: str) -> str:
    value = symbol.strip().lower()
    return SYMBOL_TO_ID.get(value, value)


class CoinGeckoPrice(BaseModel):
    model_config = ConfigDict(extra="ignore")

    usd: Decimal
    btc: Optional[Decimal] = None
    usd_market_cap: Optional[Decimal] = None
    usd_24h_vol: Optional[Decimal] = None
    usd_24h_change: Optional[Decimal] = None
    last_updated_at: Optional[Decimal] = None


@dataclass
class SimplePriceBatch:
    prices: dict[str, CoinGeckoPrice] = field(default_factory=dict)
    invalid: dict[str, str] = field(default_factory=dict)


class CoinGeckoClient:
    """CoinGecko /simple/price, many coin ids per request."""

    source = "coingecko"
    display_name = "CoinGecko"

    def __init__(
        self,
        session: Optional[Any] = None,
        base_url: str = "https://api.coingecko.com/api/v3",
        timeout: float = DEFAULT_TIMEOUT_SEC,
    ) -> None:
        self.session = session or requests
        self.base_url = base_url
        self.timeout = timeout

    def simple_price(self, coin_ids: list[str]) -> SimplePriceBatch:
        params = {
            "ids": ",".join(coin_ids),
            "vs_currencies": "usd,btc",
            "include_market_cap": "true",
            "include_24hr_vol": "true",
            "include_24hr_change": "true",
            "include_last_updated_at": "true",
        }
        payload = get_json(
            self.session,
            f"{self.base_url}/simple/price",
            params=params,
            timeout=self.timeout,
            provider=self.display_name,
        )
        if not isinstance(payload, dict):
            raise ParseError("CoinGecko response is not an object")

        batch = SimplePriceBatch()
        for coin_id, raw in payload.items():
            try:
                batch.prices[coin_id] = CoinGeckoPrice.model_validate(raw)
            except ValidationError as exc:
                logger.warning("[COINGECKO][invalid_entry] id=%s error=%s", coin_id, exc.errors()[0]["msg"])
                batch.invalid[coin_id] = exc.errors()[0]["msg"]
        return batch
