"""
行情数据模型
所有记录创建后不可变；JSON 输出使用 camelCase 字段名
"""

from enum import Enum
from typing import Optional, Tuple

from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel

from market_data_service.exceptions import InvalidRequestError


class _FrozenModel(BaseModel):
    model_config = ConfigDict(
        frozen=True,
        alias_generator=to_camel,
        populate_by_name=True,
    )

    def to_dict(self) -> dict:
        return self.model_dump(by_alias=True)


class Period(str, Enum):
    """K 线时间窗口"""

    ONE_HOUR = "1H"
    ONE_DAY = "1D"
    ONE_WEEK = "1W"
    ONE_MONTH = "1M"
    THREE_MONTHS = "3M"
    ONE_YEAR = "1Y"
    MAX = "MAX"

    @classmethod
    def parse(cls, value: "str | Period") -> "Period":
        if isinstance(value, Period):
            return value
        try:
            return cls(str(value).strip().upper())
        except ValueError:
            raise InvalidRequestError(
                f"不支持的周期: {value}，支持: {[p.value for p in cls]}"
            ) from None

    @property
    def is_long_horizon(self) -> bool:
        """日线及以上粒度的周期，其 K 线可直接用于计算指标"""
        return self in _LONG_HORIZON


_LONG_HORIZON = frozenset({Period.ONE_MONTH, Period.THREE_MONTHS, Period.ONE_YEAR, Period.MAX})


class Quote(_FrozenModel):
    """单个股票的实时报价快照"""

    symbol: str
    price: float
    change: float
    change_percent: float
    day_high: float
    day_low: float
    day_open: float
    previous_close: float
    is_fallback: bool = False

    @classmethod
    def placeholder(cls, symbol: str) -> "Quote":
        """无可用数据时的占位报价，数值字段全部为 0"""
        return cls(
            symbol=symbol,
            price=0.0,
            change=0.0,
            change_percent=0.0,
            day_high=0.0,
            day_low=0.0,
            day_open=0.0,
            previous_close=0.0,
            is_fallback=True,
        )


class Candle(_FrozenModel):
    timestamp: int              # epoch 毫秒
    open: float
    high: float
    low: float
    close: float
    volume: Optional[float] = None


CandleSeries = Tuple[Candle, ...]


class IndicatorSnapshot(_FrozenModel):
    """由一条 K 线序列计算得到的技术指标快照"""

    sma20: float
    sma50: Optional[float]
    ema12: float
    ema26: float
    rsi14: float
    macd_line: float
    macd_signal: float
    macd_histogram: float
    upper_band: float
    lower_band: float
    middle_band: float
    current_price: float
    provenance: str


class CandleResult(BaseModel):
    """K 线请求结果：两者皆为空表示数据暂不可用"""

    model_config = ConfigDict(frozen=True)

    candles: Optional[CandleSeries] = None
    indicators: Optional[IndicatorSnapshot] = None

    def to_dict(self) -> dict:
        return {
            "candles": [c.to_dict() for c in self.candles] if self.candles else None,
            "indicators": self.indicators.to_dict() if self.indicators else None,
        }
