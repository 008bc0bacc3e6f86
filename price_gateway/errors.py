from __future__ import annotations


class PriceError(Exception):
    """Base class for every failure the pricing engine reports to callers."""

    error_type = "unknown"

    def __init__(self, message: str, *, symbol: str | None = None) -> None:
        super().__init__(message)
        self.symbol = symbol


class InvalidSymbol(PriceError):
    error_type = "invalid_symbol"


class RateLimited(PriceError):
    error_type = "rate_limited"


class NoData(PriceError):
    error_type = "no_data"


class ParseError(PriceError):
    error_type = "parse_error"


class ProviderError(PriceError):
    error_type = "provider_error"


class NetworkError(ProviderError):
    error_type = "network_error"


class HTTPStatusError(ProviderError):
    error_type = "http_error"

    def __init__(self, message: str, *, status_code: int, symbol: str | None = None) -> None:
        super().__init__(message, symbol=symbol)
        self.status_code = status_code
