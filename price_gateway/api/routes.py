from fastapi import APIRouter, HTTPException, Request
from fastapi.responses import JSONResponse

from price_gateway.errors import PriceError

router = APIRouter()

_STATUS_BY_ERROR_TYPE = {
    'invalid_symbol': 400,
    'no_data': 404,
    'rate_limited': 503,
}


def _http_status(error_type: str | None) -> int:
    return _STATUS_BY_ERROR_TYPE.get(error_type or '', 502)


def _summary_status(summary) -> int:
    if summary.total_symbols and summary.updated_symbols == 0:
        return 500
    if summary.failed_symbols:
        return 206
    return 200


def _quote_or_error(provider, symbol: str) -> dict:
    try:
        quote = provider.get_current_price(symbol)
    except PriceError as exc:
        raise HTTPException(
            status_code=_http_status(exc.error_type),
            detail={'error_type': exc.error_type, 'message': str(exc)},
        ) from exc
    return quote.model_dump(mode='json')


@router.get('/prices/status')
def get_price_status(request: Request):
    return request.app.state.equity_refresh.status().model_dump(mode='json')


@router.post('/prices/refresh')
def refresh_prices(request: Request, force: bool = False):
    summary = request.app.state.equity_refresh.refresh_all(force=force)
    return JSONResponse(status_code=_summary_status(summary), content=summary.model_dump(mode='json'))


@router.post('/prices/refresh/{symbol}')
def refresh_symbol_price(symbol: str, request: Request, force: bool = False):
    result = request.app.state.equity_refresh.refresh_symbol(symbol, force=force)
    status_code = 200 if result.updated else _http_status(result.error_type)
    return JSONResponse(status_code=status_code, content=result.model_dump(mode='json'))


@router.get('/prices/{symbol}')
def get_price(symbol: str, request: Request):
    return _quote_or_error(request.app.state.equity_refresh.provider, symbol)


@router.get('/crypto/prices/{symbol}')
def get_crypto_price(symbol: str, request: Request):
    return _quote_or_error(request.app.state.crypto_refresh.provider, symbol)


@router.post('/crypto/prices/refresh')
def refresh_crypto_prices(request: Request, force: bool = False):
    summary = request.app.state.crypto_refresh.refresh_all(force=force)
    return JSONResponse(status_code=_summary_status(summary), content=summary.model_dump(mode='json'))


@router.get('/market/status')
def get_market_status(request: Request):
    return request.app.state.market_hours.session_status().model_dump(mode='json')


@router.get('/metrics/quota')
def quota_metrics(request: Request):
    tracker = request.app.state.quota_tracker
    return {
        provider: [window.model_dump(mode='json') for window in tracker.windows(provider)]
        for provider in sorted(tracker.limits)
    }
