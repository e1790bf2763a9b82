"""
数据提供商适配器
  Finnhub      : 报价（逐个请求）+ K 线（并行数组）
  Twelve Data  : 报价（逗号分隔批量）+ K 线（values 数组）
  Alpha Vantage: K 线（时间序列字典）
"""

from market_data_service.layers.providers.alpha_vantage import AlphaVantageCandleProvider
from market_data_service.layers.providers.base import (
    OPERATION_CANDLES,
    OPERATION_QUOTES,
    CandleProvider,
    ProviderError,
    ProviderForbiddenError,
    ProviderUnavailableError,
    QuoteProvider,
)
from market_data_service.layers.providers.finnhub import (
    FinnhubCandleProvider,
    FinnhubQuoteProvider,
)
from market_data_service.layers.providers.twelve_data import (
    TwelveDataCandleProvider,
    TwelveDataQuoteProvider,
)

__all__ = [
    "OPERATION_CANDLES",
    "OPERATION_QUOTES",
    "AlphaVantageCandleProvider",
    "CandleProvider",
    "FinnhubCandleProvider",
    "FinnhubQuoteProvider",
    "ProviderError",
    "ProviderForbiddenError",
    "ProviderUnavailableError",
    "QuoteProvider",
    "TwelveDataCandleProvider",
    "TwelveDataQuoteProvider",
]
