"""
K 线服务
整合缓存、在途去重、数据源回退链与分析层，提供 K 线 + 技术指标接口
"""

import logging
import re
from typing import Optional, Union

from market_data_service.exceptions import ProviderConfigurationError
from market_data_service.layers.acquisition import AcquisitionLayer
from market_data_service.layers.analysis import MIN_CANDLES, AnalysisLayer
from market_data_service.layers.cache import TTLCache, make_key
from market_data_service.layers.coalescer import RequestCoalescer
from market_data_service.models.market import (
    CandleResult,
    CandleSeries,
    IndicatorSnapshot,
    Period,
)
from market_data_service.services.quote_service import normalize_symbol

logger = logging.getLogger(__name__)

_CANDLE_CACHE_NS = "candles"
_INDICATOR_CACHE_NS = "indicators"

# 短周期 K 线为日内粒度，指标改用约 3 个月的日线计算
INDICATOR_LOOKBACK_PERIOD = Period.THREE_MONTHS


class CandleService:
    """K 线业务服务"""

    def __init__(
        self,
        acquisition: AcquisitionLayer,
        cache: TTLCache,
        analysis: Optional[AnalysisLayer] = None,
    ):
        self._acq = acquisition
        self._cache = cache
        self._analysis = analysis or AnalysisLayer()
        self._coalescer: RequestCoalescer[str, Optional[CandleSeries]] = RequestCoalescer(
            name="candles"
        )

    @property
    def coalescer(self) -> RequestCoalescer:
        return self._coalescer

    async def get_candles(
        self,
        symbol: str,
        period: Union[str, Period] = Period.ONE_DAY,
        include_indicators: bool = False,
    ) -> CandleResult:
        """
        获取 K 线（可选附带技术指标）

        Args:
            symbol: 股票代码，空代码抛出 InvalidSymbolError
            period: 1H / 1D / 1W / 1M / 3M / 1Y / MAX
            include_indicators: 是否计算技术指标

        Returns:
            CandleResult；candles 与 indicators 均为 None 表示暂无数据
        """
        symbol = normalize_symbol(symbol)
        period = Period.parse(period)
        if not self._acq.candle_provider_names:
            raise ProviderConfigurationError(
                "未配置 K 线数据源（FINNHUB_API_KEY / TWELVE_DATA_API_KEY / ALPHA_VANTAGE_API_KEY）"
            )

        candles = await self.get_series(symbol, period)
        if not candles:
            return CandleResult()

        indicators = None
        if include_indicators:
            indicators = await self.get_indicators(symbol, period, candles)

        logger.info(f"返回 {symbol}（{period.value}）K 线 {len(candles)} 条")
        return CandleResult(candles=candles, indicators=indicators)

    async def get_series(self, symbol: str, period: Period) -> Optional[CandleSeries]:
        """带缓存与在途去重的 K 线序列"""
        key = make_key(_CANDLE_CACHE_NS, symbol, period.value)
        cached = self._cache.get(key)
        if cached is not None:
            return cached

        async def _fetch() -> Optional[CandleSeries]:
            series = await self._acq.fetch_candles(symbol, period)
            if series:
                self._cache.set(key, series)
            return series

        return await self._coalescer.get_or_fetch(key, _fetch)

    async def get_indicators(
        self, symbol: str, period: Period, candles: CandleSeries
    ) -> Optional[IndicatorSnapshot]:
        """
        技术指标，独立缓存

        长周期且 K 线足够时直接复用已获取的序列，避免额外的上游请求；
        否则使用 3 个月日线序列（同样走缓存）。
        """
        key = make_key(_INDICATOR_CACHE_NS, symbol, period.value)
        cached = self._cache.get(key)
        if cached is not None:
            return cached

        if period.is_long_horizon and len(candles) >= MIN_CANDLES:
            series, source_period = candles, period
            provenance = f"series:{period.value}"
        else:
            series = await self.get_series(symbol, INDICATOR_LOOKBACK_PERIOD)
            source_period = INDICATOR_LOOKBACK_PERIOD
            provenance = f"lookback:{INDICATOR_LOOKBACK_PERIOD.value}"

        if not series:
            return None
        snapshot = self._analysis.compute(series, provenance=provenance)
        if snapshot is None:
            return None

        # 指标的缓存时间不超过其来源 K 线的剩余有效期；来源已不在缓存中时不缓存
        source_key = make_key(_CANDLE_CACHE_NS, symbol, source_period.value)
        ttl = self._cache.remaining_ttl(source_key)
        if ttl is None:
            return snapshot
        self._cache.set(key, snapshot, ttl=ttl)
        return snapshot

    def invalidate(self, symbol: Optional[str] = None) -> int:
        """清除 K 线与指标缓存，返回删除的条目数"""
        if symbol is None:
            pattern = f"^({_CANDLE_CACHE_NS}|{_INDICATOR_CACHE_NS}):"
        else:
            pattern = f"^({_CANDLE_CACHE_NS}|{_INDICATOR_CACHE_NS}):{re.escape(normalize_symbol(symbol))}:"
        return self._cache.invalidate_pattern(pattern)
