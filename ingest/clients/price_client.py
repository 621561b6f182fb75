"""
Yahoo Finance chart client
Fetches intraday quotes and daily bars and normalizes them.
"""
import logging
from datetime import date, datetime, timezone
from typing import Any, Dict, List, Optional, Tuple

from common.config.settings import DEFAULT_RANGE_PARAMS, TIME_RANGE_PARAMS
from common.models.data_models import DailyBar, PricePoint, PriceQuote
from ingest.errors import MalformedResponseError, UpstreamNotFoundError

from .http_client import UpstreamClient

logger = logging.getLogger(__name__)


def range_params(time_range: Optional[str]) -> Tuple[str, str]:
    """Map a logical time range token ('1H', '7D', ...) to (range, interval)."""
    return TIME_RANGE_PARAMS.get((time_range or '').upper(), DEFAULT_RANGE_PARAMS)


# (max calendar days back, provider range); each bound leaves slack for the
# provider trimming the first days of its window
DAILY_RANGES = (
    (25, '1mo'),
    (85, '3mo'),
    (175, '6mo'),
    (360, '1y'),
    (725, '2y'),
)


def daily_range_for(day: date, today: date) -> str:
    """Smallest provider range whose daily bars still include ``day``."""
    days_back = (today - day).days
    for limit, range_ in DAILY_RANGES:
        if days_back <= limit:
            return range_
    return 'max'


def _round(value: Optional[float]) -> Optional[float]:
    return round(float(value), 2) if value is not None else None


SHAPE_ERRORS = (AttributeError, TypeError, ValueError, IndexError, KeyError, OverflowError)


def _malformed(symbol: str, detail: str) -> MalformedResponseError:
    return MalformedResponseError(f"Unexpected chart payload for {symbol}: {detail}",
                                  upstream='yahoo-finance')


def _chart_result(payload: Any, symbol: str) -> Dict[str, Any]:
    chart = payload.get('chart') if isinstance(payload, dict) else None
    if not isinstance(chart, dict):
        raise _malformed(symbol, "missing chart object")
    results = chart.get('result') or []
    if not results:
        raise UpstreamNotFoundError(f"No data found for symbol {symbol}", upstream='yahoo-finance')
    if not isinstance(results, list) or not isinstance(results[0], dict):
        raise _malformed(symbol, "chart.result is not a list of objects")
    return results[0]


def _series(result: Dict[str, Any]) -> Tuple[List[int], Dict[str, List]]:
    timestamps = result.get('timestamp') or []
    quotes = (result.get('indicators') or {}).get('quote') or [{}]
    return timestamps, quotes[0] or {}


def _at(series: Dict[str, List], key: str, i: int):
    values = series.get(key) or []
    return values[i] if i < len(values) else None


def normalize_chart(payload: Any, symbol: str) -> PriceQuote:
    """
    Normalize a chart API payload into a PriceQuote.

    Points with a null close (market closed) are skipped; missing
    open/high/low fall back to the close.

    Raises:
        UpstreamNotFoundError: If the payload has no chart result
        MalformedResponseError: If the payload does not have the chart shape
    """
    result = _chart_result(payload, symbol)
    try:
        return _build_quote(result, symbol)
    except SHAPE_ERRORS as e:
        raise _malformed(symbol, str(e)) from e


def _build_quote(result: Dict[str, Any], symbol: str) -> PriceQuote:
    meta = result.get('meta') or {}
    timestamps, quote = _series(result)

    prices = []
    for i, ts in enumerate(timestamps):
        close = _at(quote, 'close', i)
        if close is None:
            continue
        prices.append(PricePoint(
            timestamp=datetime.fromtimestamp(ts, tz=timezone.utc).isoformat().replace('+00:00', 'Z'),
            price=_round(close),
            open=_round(_at(quote, 'open', i) if _at(quote, 'open', i) is not None else close),
            high=_round(_at(quote, 'high', i) if _at(quote, 'high', i) is not None else close),
            low=_round(_at(quote, 'low', i) if _at(quote, 'low', i) is not None else close),
            volume=int(_at(quote, 'volume', i) or 0),
        ))

    current = meta.get('regularMarketPrice')
    previous = meta.get('previousClose')
    if previous is None:
        previous = meta.get('chartPreviousClose')

    change = change_percent = None
    if current and previous:
        change = round(current - previous, 2)
        change_percent = round((current - previous) / previous * 100, 2)

    return PriceQuote(
        symbol=meta.get('symbol') or symbol,
        prices=prices,
        current_price=current,
        previous_close=previous,
        change=change,
        change_percent=change_percent,
        market_state=meta.get('marketState') or 'UNKNOWN',
    )


def normalize_daily_bars(payload: Any, symbol: str) -> List[DailyBar]:
    """Convert a daily chart payload into weekday DailyBar rows keyed by UTC date."""
    result = _chart_result(payload, symbol)
    try:
        return _build_daily_bars(result, symbol)
    except SHAPE_ERRORS as e:
        raise _malformed(symbol, str(e)) from e


def _build_daily_bars(result: Dict[str, Any], symbol: str) -> List[DailyBar]:
    timestamps, quote = _series(result)

    bars = []
    for i, ts in enumerate(timestamps):
        close = _at(quote, 'close', i)
        if close is None:
            continue
        day = datetime.fromtimestamp(ts, tz=timezone.utc)
        if day.weekday() >= 5:
            continue
        volume = _at(quote, 'volume', i)
        bars.append(DailyBar(
            symbol=symbol,
            date=day.date().isoformat(),
            close=_round(close),
            open=_round(_at(quote, 'open', i)),
            high=_round(_at(quote, 'high', i)),
            low=_round(_at(quote, 'low', i)),
            volume=int(volume) if volume is not None else None,
        ))
    return bars


class PriceClient:
    """
    Client for the Yahoo Finance chart endpoint.

    Endpoint:
    - {base}/{symbol}?range=&interval=&includePrePost=false
    """

    def __init__(self, client: UpstreamClient):
        """
        Initialize price client.

        Args:
            client: UpstreamClient pointed at the chart API root
        """
        self.client = client

    def get_chart(self, symbol: str, range_: str, interval: str) -> Dict[str, Any]:
        """Raw chart payload for a symbol."""
        return self.client.get(symbol.upper(), params={
            'range': range_,
            'interval': interval,
            'includePrePost': 'false',
        })

    def get_quote(self, symbol: str, time_range: Optional[str] = None) -> PriceQuote:
        """
        Get a normalized quote for a symbol.

        Args:
            symbol: Ticker symbol (e.g., 'AAPL')
            time_range: Logical range token ('1H', '6H', '1D', '24H', '7D', '30D')

        Returns:
            PriceQuote with intraday points
        """
        range_, interval = range_params(time_range)
        payload = self.get_chart(symbol, range_, interval)
        quote = normalize_chart(payload, symbol.upper())
        logger.debug(f"Fetched {len(quote.prices)} price points for {symbol} ({range_}/{interval})")
        return quote

    def get_daily_bars(self, symbol: str, range_: str = '1mo') -> List[DailyBar]:
        """
        Get daily closes for a symbol.

        Args:
            symbol: Ticker symbol
            range_: Provider range token ('1mo', '3mo', ...)

        Returns:
            List of DailyBar rows, weekends excluded
        """
        payload = self.get_chart(symbol, range_, '1d')
        return normalize_daily_bars(payload, symbol.upper())

    async def fetch_quote(self, symbol: str, time_range: Optional[str] = None) -> PriceQuote:
        return await self.client._call(self.get_quote, symbol, time_range)

    async def fetch_daily_bars(self, symbol: str, range_: str = '1mo') -> List[DailyBar]:
        return await self.client._call(self.get_daily_bars, symbol, range_)
