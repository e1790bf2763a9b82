"""
缓存管理路由
GET  /api/cache/stats     - 缓存、请求合并与熔断状态统计
POST /api/cache/clear     - 清理缓存（需要认证）
"""

import logging
from typing import Literal, Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel

from market_data_service.container import ServiceContainer
from market_data_service.models.response import ApiResponse
from market_data_service.routers.deps import get_container, get_current_user

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/cache", tags=["缓存管理"])


class ClearRequest(BaseModel):
    scope: Literal["quotes", "candles", "all"] = "all"
    symbol: Optional[str] = None
    reset_breakers: bool = False
    reset_rate_limits: bool = False
    rate_limit_identity: Optional[str] = None   # 只重置该调用方，如 "ip:1.2.3.4"


@router.get("/stats", response_model=ApiResponse)
async def cache_stats(container: ServiceContainer = Depends(get_container)):
    """获取缓存命中统计、批量请求状态与熔断中的数据源"""
    return ApiResponse.ok(data={
        "caches": {
            "quotes": container.quote_cache.stats(),
            "candles": container.candle_cache.stats(),
        },
        "batcher": container.quote_service.batcher.stats(),
        "candleInFlight": container.candle_service.coalescer.in_flight(),
        "breakers": container.breakers.snapshot(),
        "rateLimits": {
            tier: {"limit": limiter.max_requests, "trackedClients": limiter.tracked_identities()}
            for tier, limiter in container.rate_limiters.items()
        },
    })


@router.post("/clear", response_model=ApiResponse)
async def clear_cache(
    body: ClearRequest,
    current_user: dict = Depends(get_current_user),
    container: ServiceContainer = Depends(get_container),
):
    """清理报价 / K 线缓存，可选同时重置熔断与限流状态"""
    removed = 0
    if body.scope in ("quotes", "all"):
        removed += container.quote_service.invalidate(body.symbol)
    if body.scope in ("candles", "all"):
        removed += container.candle_service.invalidate(body.symbol)
    if body.reset_breakers:
        container.breakers.reset()
    if body.reset_rate_limits:
        for limiter in container.rate_limiters.values():
            limiter.reset(body.rate_limit_identity)

    target = body.symbol or "*"
    logger.info(f"{current_user['username']} 清理缓存 {body.scope}:{target}，共 {removed} 条")
    return ApiResponse.ok(
        data={
            "removed": removed,
            "breakersReset": body.reset_breakers,
            "rateLimitsReset": body.reset_rate_limits,
        },
        message=f"缓存已清理: {body.scope}:{target}",
    )
