"""
报价服务
缓存 → 请求合并 → 数据源回退链 → 写缓存，对外提供统一的报价接口
"""

import asyncio
import logging
from typing import Dict, List, Optional, Sequence

from market_data_service.exceptions import InvalidSymbolError, ProviderConfigurationError
from market_data_service.layers.acquisition import AcquisitionLayer
from market_data_service.layers.cache import TTLCache, make_key
from market_data_service.layers.coalescer import RequestBatcher
from market_data_service.models.market import Quote

logger = logging.getLogger(__name__)

_QUOTE_CACHE_NS = "quote"


def normalize_symbol(symbol: object) -> str:
    """去除空白并转大写；空代码视为无效输入"""
    normalized = str(symbol or "").strip().upper()
    if not normalized:
        raise InvalidSymbolError("股票代码不能为空")
    return normalized


class QuoteService:
    """报价业务服务"""

    def __init__(
        self,
        acquisition: AcquisitionLayer,
        cache: TTLCache,
        max_batch_size: int = 50,
        batch_delay: float = 0.05,
    ):
        self._acq = acquisition
        self._cache = cache
        self._batcher: RequestBatcher[str, Quote] = RequestBatcher(
            self._fetch_batch,
            max_batch_size=max_batch_size,
            batch_delay=batch_delay,
            name="quotes",
        )

    @property
    def batcher(self) -> RequestBatcher:
        return self._batcher

    async def get_quotes(self, symbols: Sequence[str]) -> List[Quote]:
        """
        获取一组股票报价

        返回列表与输入等长、同序；重复代码在各自位置上返回同一报价，
        无数据的代码返回 is_fallback=True 的占位报价。
        """
        if not self._acq.quote_provider_names:
            raise ProviderConfigurationError(
                "未配置报价数据源（FINNHUB_API_KEY 或 TWELVE_DATA_API_KEY）"
            )
        normalized = [normalize_symbol(s) for s in symbols]
        if not normalized:
            return []

        unique = list(dict.fromkeys(normalized))
        found: Dict[str, Quote] = {}
        misses: List[str] = []
        for symbol in unique:
            cached = self._cache.get(make_key(_QUOTE_CACHE_NS, symbol))
            if cached is not None:
                found[symbol] = cached
            else:
                misses.append(symbol)

        logger.info(f"报价请求 {len(unique)} 个代码：{len(found)} 条命中缓存，{len(misses)} 条需要获取")

        if misses:
            fetched = await asyncio.gather(*(self._batcher.add(s) for s in misses))
            for symbol, quote in zip(misses, fetched):
                if quote is not None:
                    found[symbol] = quote

        return [found.get(s) or Quote.placeholder(s) for s in normalized]

    async def get_quote(self, symbol: str) -> Quote:
        quotes = await self.get_quotes([symbol])
        return quotes[0]

    def invalidate(self, symbol: Optional[str] = None) -> int:
        """清除报价缓存，返回删除的条目数"""
        if symbol is None:
            return self._cache.invalidate_pattern(f"^{_QUOTE_CACHE_NS}:")
        key = make_key(_QUOTE_CACHE_NS, normalize_symbol(symbol))
        existed = self._cache.remaining_ttl(key) is not None
        self._cache.delete(key)
        return int(existed)

    async def _fetch_batch(self, symbols: List[str]) -> Dict[str, Quote]:
        quotes = await self._acq.fetch_quotes(symbols)
        # 只缓存真实数据，占位报价下次请求时重新获取
        for symbol, quote in quotes.items():
            if not quote.is_fallback:
                self._cache.set(make_key(_QUOTE_CACHE_NS, symbol), quote)
        return quotes
