"""
Market Data Service 行情数据服务
独立 FastAPI 应用程序入口

启动方式:
    uvicorn market_data_service.main:app --host 0.0.0.0 --port 8002
    python -m market_data_service.main
"""

import logging
import time
from contextlib import asynccontextmanager
from typing import Optional

import uvicorn
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from market_data_service import __version__
from market_data_service.config import settings
from market_data_service.container import ServiceContainer, build_container
from market_data_service.exceptions import InvalidRequestError, ProviderConfigurationError
from market_data_service.models.response import ApiResponse
from market_data_service.routers import cache, candles, health, quotes

# ── 日志配置 ──────────────────────────────────────────────
logging.basicConfig(
    level=getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO),
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)


# ── 生命周期管理 ──────────────────────────────────────────
@asynccontextmanager
async def lifespan(app: FastAPI):
    """应用启动/关闭生命周期钩子"""
    logger.info("=" * 60)
    logger.info(f"🚀 Market Data Service v{__version__} 启动中")
    logger.info("=" * 60)

    owned = getattr(app.state, "container", None) is None
    if owned:
        app.state.container = build_container(settings)
    container: ServiceContainer = app.state.container
    logger.info(
        f"✅ 数据源就绪: 报价 {container.acquisition.quote_provider_names}，"
        f"K线 {container.acquisition.candle_provider_names}"
    )

    yield

    logger.info("🔄 行情数据服务正在关闭...")
    await container.quote_service.batcher.drain()
    if owned:
        await container.close()
        app.state.container = None
    logger.info("✅ 行情数据服务已关闭")


def create_app(container: Optional[ServiceContainer] = None) -> FastAPI:
    """创建应用实例；传入 container 时使用外部装配的组件（测试用）"""
    app = FastAPI(
        title="Market Data Service 行情数据服务",
        description=(
            "为仪表盘提供行情数据的独立微服务：\n"
            "- 💹 实时报价（批量、保序，缺失代码返回占位报价）\n"
            "- 📊 K 线 + 技术指标（SMA / EMA / RSI / MACD / BOLL）\n"
            "- 🔁 多数据源回退链（Finnhub / Twelve Data / Alpha Vantage）+ 拒绝访问熔断\n"
            "- 🗄️ 进程内 TTL 缓存 + 请求合并\n"
            "- 🚦 按调用方身份的固定窗口限流\n\n"
            "**分层架构**\n"
            "```\n"
            "Acquisition Layer  ← 数据源回退链与熔断\n"
            "Coalescer          ← 批量合并与在途去重\n"
            "Cache Layer        ← 进程内 TTL 缓存\n"
            "Processing Layer   ← K 线清洗、排序、去重\n"
            "Analysis Layer     ← 技术指标计算\n"
            "```"
        ),
        version=__version__,
        lifespan=lifespan,
        docs_url="/docs",
        redoc_url="/redoc",
    )
    app.state.container = container

    # ── CORS 中间件 ───────────────────────────────────────
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.ALLOWED_ORIGINS,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # ── 请求计时中间件 ─────────────────────────────────────
    @app.middleware("http")
    async def add_process_time(request: Request, call_next):
        start = time.time()
        response = await call_next(request)
        response.headers["X-Process-Time"] = f"{(time.time() - start) * 1000:.1f}ms"
        return response

    # ── 异常处理 ──────────────────────────────────────────
    @app.exception_handler(InvalidRequestError)
    async def invalid_request_handler(request: Request, exc: InvalidRequestError):
        return JSONResponse(
            status_code=400,
            content=ApiResponse.fail(error="请求参数无效", message=str(exc)).body(),
        )

    @app.exception_handler(ProviderConfigurationError)
    async def configuration_error_handler(request: Request, exc: ProviderConfigurationError):
        logger.error(f"数据源配置错误: {exc}")
        return JSONResponse(
            status_code=500,
            content=ApiResponse.fail(error="数据源未配置", message=str(exc)).body(),
        )

    @app.exception_handler(Exception)
    async def global_exception_handler(request: Request, exc: Exception):
        logger.error(f"未处理的异常: {exc}", exc_info=True)
        return JSONResponse(
            status_code=500,
            content={"success": False, "error": "内部服务错误", "message": str(exc)},
        )

    # ── 注册路由 ──────────────────────────────────────────
    app.include_router(health.router)
    app.include_router(quotes.router)
    app.include_router(candles.router)
    app.include_router(cache.router)

    # ── 根路由 ───────────────────────────────────────────
    @app.get("/", include_in_schema=False)
    async def root():
        return {
            "service": "Market Data Service",
            "version": __version__,
            "docs": "/docs",
            "health": "/health",
        }

    return app


app = create_app()


# ── 直接运行入口 ──────────────────────────────────────────
if __name__ == "__main__":
    uvicorn.run(
        "market_data_service.main:app",
        host=settings.HOST,
        port=settings.PORT,
        reload=settings.DEBUG,
        log_level=settings.LOG_LEVEL.lower(),
    )
