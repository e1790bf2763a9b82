"""
Alpha Vantage 数据源（仅 K 线）
返回以时间字符串为键的时间序列字典，字段名带序号前缀（"1. open" ...）
限流 / 权限提示以 "Note" / "Information" 字段返回，HTTP 状态仍为 200
"""

import logging
import time
from typing import Any, Callable, Dict, List, Optional, Tuple

import httpx
import pandas as pd

from market_data_service.layers.processing import ProcessingLayer
from market_data_service.layers.providers.base import (
    CandleProvider,
    HttpProvider,
    ProviderForbiddenError,
    ProviderUnavailableError,
)
from market_data_service.models.market import CandleSeries, Period

logger = logging.getLogger(__name__)

DEFAULT_BASE_URL = "https://www.alphavantage.co/query"

# 周期 → (function, interval, outputsize, 回看天数)
_FUNCTIONS: Dict[Period, Tuple[str, Optional[str], Optional[str], int]] = {
    Period.ONE_HOUR: ("TIME_SERIES_INTRADAY", "5min", "compact", 1),
    Period.ONE_DAY: ("TIME_SERIES_INTRADAY", "5min", "compact", 1),
    Period.ONE_WEEK: ("TIME_SERIES_INTRADAY", "60min", "compact", 7),
    Period.ONE_MONTH: ("TIME_SERIES_DAILY", None, "compact", 30),
    Period.THREE_MONTHS: ("TIME_SERIES_DAILY", None, "compact", 90),
    Period.ONE_YEAR: ("TIME_SERIES_DAILY", None, "full", 365),
    Period.MAX: ("TIME_SERIES_WEEKLY", None, None, 365 * 5),
}


def function_for(period: Period) -> Tuple[str, Optional[str], Optional[str], int]:
    return _FUNCTIONS[period]


def _series_key(data: Dict[str, Any]) -> Optional[str]:
    for key in data:
        if "Time Series" in key:
            return key
    return None


def _intraday_time_zone(data: Dict[str, Any], key: str) -> Optional[str]:
    """日内序列的时间为交易所本地时间，时区写在 Meta Data 中；日线按 UTC 日期处理"""
    if "min" not in key:
        return None
    meta = data.get("Meta Data")
    if not isinstance(meta, dict):
        return None
    for name, value in meta.items():
        if "Time Zone" in name and value:
            return str(value)
    return None


def normalize_candles(data: Any) -> List[Dict[str, Any]]:
    if not isinstance(data, dict):
        return []
    key = _series_key(data)
    if key is None or not isinstance(data[key], dict):
        return []
    tz = _intraday_time_zone(data, key)
    records = []
    for stamp, bar in data[key].items():
        ts = pd.to_datetime(stamp, errors="coerce")
        if pd.isna(ts) or not isinstance(bar, dict):
            continue
        if tz is not None and ts.tzinfo is None:
            ts = ts.tz_localize(tz, ambiguous=True, nonexistent="shift_forward")
        records.append({
            "timestamp": int(ts.timestamp() * 1000),
            "open": bar.get("1. open"),
            "high": bar.get("2. high"),
            "low": bar.get("3. low"),
            "close": bar.get("4. close"),
            "volume": bar.get("5. volume"),
        })
    return records


class AlphaVantageCandleProvider(HttpProvider, CandleProvider):
    name = "alpha_vantage"

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
        function, interval, outputsize, days = function_for(period)
        params: Dict[str, Any] = {
            "function": function,
            "symbol": symbol,
            "apikey": self._api_key,
        }
        if interval:
            params["interval"] = interval
        if outputsize:
            params["outputsize"] = outputsize

        data = await self._get_json("", params)
        self._raise_for_notice(data)

        series = self._require_series(symbol, normalize_candles(data))
        since_ms = int((self._clock() - days * 24 * 60 * 60) * 1000)
        trimmed = self._processing.trim_to_window(series, since_ms)
        # 日内数据在休市时可能全部落在窗口外，此时保留原序列
        series = trimmed or series
        logger.info(f"Alpha Vantage K 线获取成功 {symbol}（{period.value}），共 {len(series)} 条")
        return series

    def _raise_for_notice(self, data: Any) -> None:
        if not isinstance(data, dict):
            raise ProviderUnavailableError(self.name, "响应格式无效")
        if "Error Message" in data:
            raise ProviderUnavailableError(self.name, str(data["Error Message"]))
        notice = data.get("Information") or data.get("Note")
        if notice and _series_key(data) is None:
            if "premium" in str(notice).lower():
                raise ProviderForbiddenError(self.name, str(notice))
            raise ProviderUnavailableError(self.name, str(notice))
