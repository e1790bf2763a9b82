"""
报价路由
POST /api/quotes            - 批量获取报价
GET  /api/quotes/{symbol}   - 获取单个报价
"""

from typing import List

from fastapi import APIRouter, Depends
from pydantic import BaseModel

from market_data_service.container import RATE_TIER_QUOTES, ServiceContainer
from market_data_service.models.response import ApiResponse
from market_data_service.routers.deps import get_container, rate_limited

router = APIRouter(prefix="/api/quotes", tags=["实时报价"])


class QuotesRequest(BaseModel):
    symbols: List[str]


@router.post("", response_model=ApiResponse, dependencies=[Depends(rate_limited(RATE_TIER_QUOTES))])
async def get_quotes(body: QuotesRequest, container: ServiceContainer = Depends(get_container)):
    """批量获取报价；无数据的代码返回 isFallback=true 的占位报价"""
    quotes = await container.quote_service.get_quotes(body.symbols)
    fallback = sum(1 for q in quotes if q.is_fallback)
    return ApiResponse.ok(
        data=[q.to_dict() for q in quotes],
        message=f"共 {len(quotes)} 条报价",
        meta={"fallbackCount": fallback},
    )


@router.get(
    "/{symbol}", response_model=ApiResponse, dependencies=[Depends(rate_limited(RATE_TIER_QUOTES))]
)
async def get_quote(symbol: str, container: ServiceContainer = Depends(get_container)):
    quote = await container.quote_service.get_quote(symbol)
    return ApiResponse.ok(data=quote.to_dict())
