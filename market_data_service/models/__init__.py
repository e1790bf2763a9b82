from market_data_service.models.market import (
    Candle,
    CandleResult,
    CandleSeries,
    IndicatorSnapshot,
    Period,
    Quote,
)
from market_data_service.models.response import ApiResponse

__all__ = [
    "ApiResponse",
    "Candle",
    "CandleResult",
    "CandleSeries",
    "IndicatorSnapshot",
    "Period",
    "Quote",
]
