"""
Layer 1 – 数据获取层
按优先级依次尝试多个数据提供商（Finnhub / Twelve Data / Alpha Vantage），
单个数据源失败只影响本次回退，不向调用方抛出异常。
"""

import asyncio
import logging
from typing import Dict, Iterable, List, Optional, Sequence

from market_data_service.layers.circuit_breaker import CircuitBreakerRegistry
from market_data_service.layers.providers.base import (
    OPERATION_CANDLES,
    OPERATION_QUOTES,
    CandleProvider,
    ProviderForbiddenError,
    QuoteProvider,
)
from market_data_service.models.market import CandleSeries, Period, Quote

logger = logging.getLogger(__name__)


class AcquisitionLayer:
    """数据获取层：多数据源回退链 + 熔断 + 超时"""

    def __init__(
        self,
        quote_providers: Sequence[QuoteProvider],
        candle_providers: Sequence[CandleProvider],
        breakers: CircuitBreakerRegistry,
        quote_timeout: float = 8.0,
        candle_timeout: float = 10.0,
        chunk_delay: float = 0.1,
        etf_symbols: Iterable[str] = (),
        etf_primary: str = "twelve_data",
    ):
        self._quote_providers = list(quote_providers)
        self._candle_providers = list(candle_providers)
        self._breakers = breakers
        self._quote_timeout = quote_timeout
        self._candle_timeout = candle_timeout
        self._chunk_delay = chunk_delay
        self._etf_symbols = frozenset(s.upper() for s in etf_symbols)
        self._etf_primary = etf_primary

    @property
    def quote_provider_names(self) -> List[str]:
        return [p.name for p in self._quote_providers]

    @property
    def candle_provider_names(self) -> List[str]:
        return [p.name for p in self._candle_providers]

    # ── 报价 ──────────────────────────────────────────────

    async def fetch_quotes(self, symbols: Sequence[str]) -> Dict[str, Quote]:
        """
        获取一批股票报价

        所有数据源都无法给出结果的股票返回 is_fallback=True 的占位报价，
        因此返回字典总是覆盖全部输入代码。
        """
        unique = list(dict.fromkeys(symbols))
        resolved: Dict[str, Quote] = {}

        for provider in self._quote_providers:
            pending = [s for s in unique if s not in resolved]
            if not pending:
                break
            resolved.update(await self._quotes_from(provider, pending))

        missing = [s for s in unique if s not in resolved]
        for symbol in missing:
            resolved[symbol] = Quote.placeholder(symbol)

        logger.info(
            f"报价获取完成：{len(unique) - len(missing)} 条真实数据，{len(missing)} 条无数据"
        )
        return resolved

    async def _quotes_from(
        self, provider: QuoteProvider, symbols: List[str]
    ) -> Dict[str, Quote]:
        results: Dict[str, Quote] = {}
        size = max(1, provider.chunk_size)

        for start in range(0, len(symbols), size):
            if self._breakers.is_open(provider.name, OPERATION_QUOTES):
                logger.info(f"数据源 {provider.name} 处于熔断期，跳过报价请求")
                break

            chunk = symbols[start:start + size]
            try:
                results.update(
                    await asyncio.wait_for(provider.fetch_quotes(chunk), self._quote_timeout)
                )
            except ProviderForbiddenError as exc:
                results.update(exc.partial)
                self._breakers.trip(provider.name, OPERATION_QUOTES)
                break
            except asyncio.TimeoutError:
                logger.warning(f"报价请求超时（来源：{provider.name}）: {','.join(chunk)}")
            except Exception as exc:
                logger.warning(f"报价获取失败（来源：{provider.name}）: {exc}")

            # 批次间短暂等待，避免触发上游限流
            if start + size < len(symbols):
                await asyncio.sleep(self._chunk_delay)

        return results

    # ── K 线 ──────────────────────────────────────────────

    def candle_providers_for(self, symbol: str) -> List[CandleProvider]:
        """K 线数据源顺序；ETF 优先使用对其覆盖更好的数据源"""
        providers = list(self._candle_providers)
        if symbol.upper() in self._etf_symbols:
            preferred = [p for p in providers if p.name == self._etf_primary]
            providers = preferred + [p for p in providers if p.name != self._etf_primary]
        return providers

    async def fetch_candles(self, symbol: str, period: Period) -> Optional[CandleSeries]:
        """按优先级获取 K 线，全部失败返回 None"""
        for provider in self.candle_providers_for(symbol):
            if self._breakers.is_open(provider.name, OPERATION_CANDLES):
                logger.info(f"数据源 {provider.name} 处于熔断期，跳过 K 线请求")
                continue
            try:
                series = await asyncio.wait_for(
                    provider.fetch_candles(symbol, period), self._candle_timeout
                )
            except ProviderForbiddenError as exc:
                logger.warning(f"K 线获取被拒绝（来源：{provider.name}）: {exc}")
                self._breakers.trip(provider.name, OPERATION_CANDLES)
                continue
            except asyncio.TimeoutError:
                logger.warning(f"K 线请求超时（来源：{provider.name}）: {symbol}")
                continue
            except Exception as exc:
                logger.warning(f"K 线获取失败（来源：{provider.name}）: {exc}")
                continue
            if series:
                return series

        logger.warning(f"所有数据源均无法提供 K 线: {symbol}（{period.value}）")
        return None
