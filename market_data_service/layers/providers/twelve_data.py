"""
Twelve Data 数据源
- 报价：/quote 支持逗号分隔的多个股票，多股票时按代码分组返回
- K 线：/time_series 返回 values 数组（最新在前），数值为字符串
错误以 HTTP 200 + {"status": "error", "code": ...} 的形式返回
"""

import logging
from typing import Any, Dict, List, Optional, Tuple

import httpx
import pandas as pd

from market_data_service.layers.processing import ProcessingLayer
from market_data_service.layers.providers.base import (
    FORBIDDEN_STATUSES,
    CandleProvider,
    HttpProvider,
    ProviderForbiddenError,
    ProviderUnavailableError,
    QuoteProvider,
    to_float,
)
from market_data_service.models.market import CandleSeries, Period, Quote

logger = logging.getLogger(__name__)

DEFAULT_BASE_URL = "https://api.twelvedata.com"

# 周期 → (interval, outputsize)
_INTERVALS: Dict[Period, Tuple[str, int]] = {
    Period.ONE_HOUR: ("5min", 288),
    Period.ONE_DAY: ("5min", 288),
    Period.ONE_WEEK: ("1h", 200),
    Period.ONE_MONTH: ("1day", 50),
    Period.THREE_MONTHS: ("1day", 140),
    Period.ONE_YEAR: ("1day", 320),
    Period.MAX: ("1week", 320),
}


def interval_for(period: Period) -> Tuple[str, int]:
    return _INTERVALS[period]


def _is_error(data: Any) -> bool:
    return isinstance(data, dict) and (data.get("status") == "error" or "code" in data)


def _raise_for_error(provider: str, data: Any) -> None:
    if not _is_error(data):
        return
    code = data.get("code")
    message = data.get("message") or "unknown error"
    if code in FORBIDDEN_STATUSES:
        raise ProviderForbiddenError(provider, f"拒绝访问: {code} {message}")
    raise ProviderUnavailableError(provider, f"{code} {message}")


def normalize_quote(symbol: str, data: Any) -> Optional[Quote]:
    if not isinstance(data, dict) or _is_error(data):
        return None
    price = to_float(data.get("close"))
    if price <= 0:
        return None
    return Quote(
        symbol=symbol,
        price=price,
        change=to_float(data.get("change")),
        change_percent=to_float(data.get("percent_change")),
        day_high=to_float(data.get("high")) or price,
        day_low=to_float(data.get("low")) or price,
        day_open=to_float(data.get("open")) or price,
        previous_close=to_float(data.get("previous_close")) or price,
        is_fallback=False,
    )


def demultiplex_quotes(symbols: List[str], data: Any) -> Dict[str, Quote]:
    """单股票返回平铺对象，多股票返回 {代码: 对象}"""
    if not isinstance(data, dict):
        return {}
    if len(symbols) == 1 and symbols[0] not in data:
        per_symbol = {symbols[0]: data}
    else:
        per_symbol = {s: data.get(s) for s in symbols}
    quotes: Dict[str, Quote] = {}
    for symbol, payload in per_symbol.items():
        quote = normalize_quote(symbol, payload)
        if quote is not None:
            quotes[symbol] = quote
    return quotes


def _to_epoch_ms(value: Any) -> Optional[int]:
    ts = pd.to_datetime(value, errors="coerce")
    if ts is None or pd.isna(ts):
        return None
    return int(ts.timestamp() * 1000)


def normalize_candles(data: Any) -> List[Dict[str, Any]]:
    values = data.get("values") if isinstance(data, dict) else None
    if not isinstance(values, list):
        return []
    return [
        {
            "timestamp": _to_epoch_ms(v.get("datetime")),
            "open": v.get("open"),
            "high": v.get("high"),
            "low": v.get("low"),
            "close": v.get("close"),
            "volume": v.get("volume"),
        }
        for v in values
        if isinstance(v, dict)
    ]


class TwelveDataQuoteProvider(HttpProvider, QuoteProvider):
    name = "twelve_data"

    def __init__(
        self,
        client: httpx.AsyncClient,
        api_key: str,
        base_url: str = DEFAULT_BASE_URL,
        chunk_size: int = 8,
        timeout: Optional[float] = None,
    ):
        HttpProvider.__init__(self, client, api_key, base_url, timeout)
        self.chunk_size = chunk_size

    async def fetch_quotes(self, symbols: List[str]) -> Dict[str, Quote]:
        data = await self._get_json(
            "/quote", {"symbol": ",".join(symbols), "apikey": self._api_key}
        )
        if not isinstance(data, dict):
            raise ProviderUnavailableError(self.name, "报价响应格式无效")
        # 单股票请求时顶层即为错误对象
        if len(symbols) == 1 or not any(s in data for s in symbols):
            _raise_for_error(self.name, data)
        return demultiplex_quotes(symbols, data)


class TwelveDataCandleProvider(HttpProvider, CandleProvider):
    name = "twelve_data"

    def __init__(
        self,
        client: httpx.AsyncClient,
        api_key: str,
        base_url: str = DEFAULT_BASE_URL,
        processing: Optional[ProcessingLayer] = None,
        timeout: Optional[float] = None,
    ):
        HttpProvider.__init__(self, client, api_key, base_url, timeout)
        CandleProvider.__init__(self, processing)

    async def fetch_candles(self, symbol: str, period: Period) -> CandleSeries:
        interval, outputsize = interval_for(period)
        data = await self._get_json(
            "/time_series",
            {
                "symbol": symbol,
                "interval": interval,
                "outputsize": outputsize,
                "format": "JSON",
                "apikey": self._api_key,
            },
        )
        _raise_for_error(self.name, data)
        series = self._require_series(symbol, normalize_candles(data))
        logger.info(f"Twelve Data K 线获取成功 {symbol}（{period.value}），共 {len(series)} 条")
        return series
