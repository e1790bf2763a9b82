"""健康检查路由"""

import time

from fastapi import APIRouter, Depends

from market_data_service import __version__
from market_data_service.container import ServiceContainer
from market_data_service.routers.deps import get_container

router = APIRouter(tags=["健康检查"])


@router.get("/health")
async def health(container: ServiceContainer = Depends(get_container)):
    """服务健康检查：数据源配置、熔断状态与缓存容量"""
    acq = container.acquisition
    breakers = container.breakers.snapshot()
    configured = bool(acq.quote_provider_names or acq.candle_provider_names)
    return {
        "success": True,
        "data": {
            "status": "ok" if configured and not breakers else "degraded",
            "version": __version__,
            "timestamp": int(time.time()),
            "service": "Market Data Service",
            "providers": {
                "quotes": acq.quote_provider_names,
                "candles": acq.candle_provider_names,
            },
            "breakers": breakers,
            "cache": {
                "quotes": len(container.quote_cache),
                "candles": len(container.candle_cache),
            },
        },
        "message": "服务运行正常" if configured else "未配置任何数据源",
    }


@router.get("/healthz")
async def healthz():
    """Kubernetes liveness probe"""
    return {"status": "ok"}


@router.get("/readyz")
async def readyz(container: ServiceContainer = Depends(get_container)):
    """Kubernetes readiness probe：至少配置一个数据源"""
    acq = container.acquisition
    return {"ready": bool(acq.quote_provider_names or acq.candle_provider_names)}
