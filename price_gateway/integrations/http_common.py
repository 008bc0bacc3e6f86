from __future__ import annotations

import logging
from decimal import Decimal
from typing import Any, Mapping

import requests

from price_gateway.errors import HTTPStatusError, NetworkError, ParseError, RateLimited

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT_SEC = 30.0


def get_json(
    session: Any,
    url: str,
    *,
    params: Mapping[str, Any],
    timeout: float,
    provider: str,
    symbol: str | None = None,
) -> Any:
    """GET url and decode the body with Decimal floats, raising typed errors.

    Connection failures and timeouts raise NetworkError. Any other error means
    the provider answered.
    """
    try:
        response = session.get(url, params=dict(params), timeout=timeout)
    except requests.Timeout as exc:
        raise NetworkError(f"{provider} request timed out after {timeout:.0f}s", symbol=symbol) from exc
    except requests.RequestException as exc:
        raise NetworkError(f"{provider} request failed: {exc}", symbol=symbol) from exc

    status = response.status_code
    if status == 429:
        raise RateLimited(f"{provider} rejected the request with HTTP 429", symbol=symbol)
    if not 200 <= status < 300:
        raise HTTPStatusError(f"{provider} returned HTTP {status}", status_code=status, symbol=symbol)

    try:
        return response.json(parse_float=Decimal)
    except ValueError as exc:
        raise ParseError(f"{provider} returned a body that is not valid JSON", symbol=symbol) from exc


def redact(params: Mapping[str, Any], secret_keys: tuple[str, ...] = ("apikey", "token")) -> dict[str, Any]:
    return {k: ("***" if k in secret_keys else v) for k, v in params.items()}
