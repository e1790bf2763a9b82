"""
Finnhub 数据源
- 报价：/quote 每次仅支持单个股票，按批并发请求
- K 线：/stock/candle 返回并行数组 t/o/h/l/c/v（秒级时间戳）
"""

import asyncio
import logging
import time
from typing import Any, Callable, Dict, List, Optional, Tuple

import httpx

from market_data_service.layers.processing import ProcessingLayer
from market_data_service.layers.providers.base import (
    CandleProvider,
    HttpProvider,
    ProviderForbiddenError,
    ProviderUnavailableError,
    QuoteProvider,
    to_float,
)
from market_data_service.models.market import CandleSeries, Period, Quote

logger = logging.getLogger(__name__)

DEFAULT_BASE_URL = "https://finnhub.io/api/v1"

# 周期 → (resolution, 回看天数)
_RESOLUTIONS: Dict[Period, Tuple[str, int]] = {
    Period.ONE_HOUR: ("5", 1),
    Period.ONE_DAY: ("5", 1),
    Period.ONE_WEEK: ("60", 7),
    Period.ONE_MONTH: ("D", 30),
    Period.THREE_MONTHS: ("D", 90),
    Period.ONE_YEAR: ("D", 365),
    Period.MAX: ("W", 365 * 5),
}


def resolution_for(period: Period) -> Tuple[str, int]:
    return _RESOLUTIONS[period]


def normalize_quote(symbol: str, data: Any) -> Optional[Quote]:
    """c 当前价 / d 涨跌额 / dp 涨跌幅 / h l o 日内高低开 / pc 昨收；c <= 0 视为无数据"""
    if not isinstance(data, dict):
        return None
    price = to_float(data.get("c"))
    if price <= 0:
        return None
    return Quote(
        symbol=symbol,
        price=price,
        change=to_float(data.get("d")),
        change_percent=to_float(data.get("dp")),
        day_high=to_float(data.get("h")) or price,
        day_low=to_float(data.get("l")) or price,
        day_open=to_float(data.get("o")) or price,
        previous_close=to_float(data.get("pc")) or price,
        is_fallback=False,
    )


def normalize_candles(data: Any) -> List[Dict[str, Any]]:
    """并行数组 → 记录列表；s == no_data 或收盘价为空时返回空列表"""
    if not isinstance(data, dict) or data.get("s") == "no_data":
        return []
    closes = data.get("c") or []
    timestamps = data.get("t") or []
    if not closes or not timestamps:
        return []
    opens = data.get("o") or []
    highs = data.get("h") or []
    lows = data.get("l") or []
    volumes = data.get("v") or []

    def _at(values: list, i: int) -> Any:
        return values[i] if i < len(values) else None

    return [
        {
            "timestamp": int(ts) * 1000,
            "open": _at(opens, i),
            "high": _at(highs, i),
            "low": _at(lows, i),
            "close": _at(closes, i),
            "volume": _at(volumes, i),
        }
        for i, ts in enumerate(timestamps)
    ]


class FinnhubQuoteProvider(HttpProvider, QuoteProvider):
    name = "finnhub"

    def __init__(
        self,
        client: httpx.AsyncClient,
        api_key: str,
        base_url: str = DEFAULT_BASE_URL,
        chunk_size: int = 10,
        timeout: Optional[float] = None,
    ):
        HttpProvider.__init__(self, client, api_key, base_url, timeout)
        self.chunk_size = chunk_size

    async def fetch_quotes(self, symbols: List[str]) -> Dict[str, Quote]:
        results = await asyncio.gather(
            *(self._fetch_one(s) for s in symbols), return_exceptions=True
        )
        quotes: Dict[str, Quote] = {}
        forbidden: Optional[ProviderForbiddenError] = None
        failures = 0
        for symbol, result in zip(symbols, results):
            if isinstance(result, Quote):
                quotes[symbol] = result
            elif isinstance(result, ProviderForbiddenError):
                forbidden = result
            elif isinstance(result, BaseException):
                failures += 1
                logger.warning(f"Finnhub 报价获取失败 {symbol}: {result}")
            else:
                logger.debug(f"Finnhub 无有效报价: {symbol}")

        if forbidden is not None:
            raise ProviderForbiddenError(self.name, str(forbidden), partial=quotes)
        if failures == len(symbols) and symbols:
            raise ProviderUnavailableError(self.name, f"{len(symbols)} 个报价请求全部失败")
        return quotes

    async def _fetch_one(self, symbol: str) -> Optional[Quote]:
        data = await self._get_json("/quote", {"symbol": symbol, "token": self._api_key})
        return normalize_quote(symbol, data)


class FinnhubCandleProvider(HttpProvider, CandleProvider):
    name = "finnhub"

    def __init__(
        self,
        client: httpx.AsyncClient,
        api_key: str,
        base_url: str = DEFAULT_BASE_URL,
        processing: Optional[ProcessingLayer] = None,
        clock: Callable[[], float] = time.time,
        timeout: Optional[float] = None,
    ):
        HttpProvider.__init__(self, client, api_key, base_url, timeout)
        CandleProvider.__init__(self, processing)
        self._clock = clock

    async def fetch_candles(self, symbol: str, period: Period) -> CandleSeries:
        resolution, days = resolution_for(period)
        to_ts = int(self._clock())
        from_ts = to_ts - days * 24 * 60 * 60
        data = await self._get_json(
            "/stock/candle",
            {
                "symbol": symbol,
                "resolution": resolution,
                "from": from_ts,
                "to": to_ts,
                "token": self._api_key,
            },
        )
        series = self._require_series(symbol, normalize_candles(data))
        logger.info(f"Finnhub K 线获取成功 {symbol}（{period.value}），共 {len(series)} 条")
        return series
