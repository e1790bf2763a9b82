"""
数据提供商适配器接口
每个数据源实现自己的请求与 normalize 逻辑，回退链只依赖这里的抽象
"""

import asyncio
import logging
from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional

import httpx

from market_data_service.layers.processing import ProcessingLayer
from market_data_service.models.market import CandleSeries, Period, Quote

logger = logging.getLogger(__name__)

# 拒绝访问类状态码：触发熔断
FORBIDDEN_STATUSES = frozenset({401, 403})

OPERATION_QUOTES = "quotes"
OPERATION_CANDLES = "candles"


class ProviderError(RuntimeError):
    """数据源调用失败基类"""

    def __init__(self, provider: str, message: str):
        super().__init__(f"[{provider}] {message}")
        self.provider = provider


class ProviderUnavailableError(ProviderError):
    """网络错误、超时、非成功状态码或数据源声明无数据"""


class ProviderForbiddenError(ProviderError):
    """数据源拒绝访问（套餐/权限限制）"""

    def __init__(self, provider: str, message: str, partial: Optional[Dict[str, Quote]] = None):
        super().__init__(provider, message)
        # 同批次中已成功解析的报价
        self.partial = partial or {}


class HttpProvider:
    """基于共享 httpx.AsyncClient 的数据源基类"""

    name: str = "http"

    def __init__(
        self,
        client: httpx.AsyncClient,
        api_key: str,
        base_url: str,
        timeout: Optional[float] = None,
    ):
        self._client = client
        self._api_key = api_key
        self._base_url = base_url.rstrip("/")
        # 单次上游请求的超时；None 表示只受调用方的整体超时约束
        self._timeout = timeout

    async def _get_json(self, path: str, params: Dict[str, Any]) -> Any:
        url = f"{self._base_url}{path}" if path else self._base_url
        try:
            response = await asyncio.wait_for(
                self._client.get(url, params=params), self._timeout
            )
        except asyncio.TimeoutError as exc:
            raise ProviderUnavailableError(self.name, f"请求超时（{self._timeout}s）") from exc
        except httpx.HTTPError as exc:
            raise ProviderUnavailableError(self.name, f"请求失败: {exc!r}") from exc

        if response.status_code in FORBIDDEN_STATUSES:
            raise ProviderForbiddenError(self.name, f"拒绝访问: HTTP {response.status_code}")
        if response.status_code >= 400:
            raise ProviderUnavailableError(self.name, f"HTTP {response.status_code}")
        try:
            return response.json()
        except ValueError as exc:
            raise ProviderUnavailableError(self.name, "响应不是合法 JSON") from exc


class QuoteProvider(ABC):
    """报价数据源"""

    name: str = "quote"
    # 单次调用最多处理的股票数量
    chunk_size: int = 10

    @abstractmethod
    async def fetch_quotes(self, symbols: List[str]) -> Dict[str, Quote]:
        """
        获取一批股票的报价

        返回已解析成功的部分；整批失败时抛出 ProviderError。
        """


class CandleProvider(ABC):
    """K 线数据源"""

    name: str = "candle"

    def __init__(self, processing: Optional[ProcessingLayer] = None):
        self._processing = processing or ProcessingLayer()

    @abstractmethod
    async def fetch_candles(self, symbol: str, period: Period) -> CandleSeries:
        """获取 K 线；无数据或失败时抛出 ProviderError，不返回空序列"""

    def _require_series(self, symbol: str, records: List[Dict[str, Any]]) -> CandleSeries:
        series = self._processing.normalize_candles(records)
        if not series:
            raise ProviderUnavailableError(self.name, f"{symbol} 无 K 线数据")
        return series


def to_float(value: Any, default: float = 0.0) -> float:
    try:
        if value is None or value == "":
            return default
        return float(value)
    except (TypeError, ValueError):
        return default
