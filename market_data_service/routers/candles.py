"""
K 线路由
POST /api/candles            - 获取 K 线（请求体）
GET  /api/candles/{symbol}   - 获取 K 线（查询参数）

两个接口语义相同；candles 与 indicators 均为 null 表示数据暂不可用
"""

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel

from market_data_service.container import RATE_TIER_CANDLES, ServiceContainer
from market_data_service.models.market import CandleResult
from market_data_service.models.response import ApiResponse
from market_data_service.routers.deps import get_container, rate_limited

router = APIRouter(prefix="/api/candles", tags=["K线与技术指标"])


class CandlesRequest(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    symbol: str
    period: str = "1D"
    include_indicators: bool = False


def _response(result: CandleResult) -> ApiResponse:
    if result.candles is None:
        return ApiResponse.ok(data=result.to_dict(), message="暂无数据")
    meta = None
    if result.indicators is not None:
        meta = {"indicatorSource": result.indicators.provenance}
    return ApiResponse.ok(data=result.to_dict(), message=f"共 {len(result.candles)} 条 K 线", meta=meta)


@router.post("", response_model=ApiResponse, dependencies=[Depends(rate_limited(RATE_TIER_CANDLES))])
async def post_candles(body: CandlesRequest, container: ServiceContainer = Depends(get_container)):
    result = await container.candle_service.get_candles(
        body.symbol, body.period, include_indicators=body.include_indicators
    )
    return _response(result)


@router.get(
    "/{symbol}", response_model=ApiResponse, dependencies=[Depends(rate_limited(RATE_TIER_CANDLES))]
)
async def get_candles(
    symbol: str,
    period: str = Query("1D", description="1H / 1D / 1W / 1M / 3M / 1Y / MAX"),
    include_indicators: bool = Query(False, description="是否计算技术指标"),
    container: ServiceContainer = Depends(get_container),
):
    result = await container.candle_service.get_candles(
        symbol, period, include_indicators=include_indicators
    )
    return _response(result)
