"""
服务组件装配
统一创建共享的 HTTP 连接、缓存、限流器、熔断注册表与业务服务，
由应用生命周期持有并注入到路由，测试中可按需替换任意组件
"""

import logging
from dataclasses import dataclass, field
from typing import Dict, List, Optional

import httpx

from market_data_service.config import MarketDataSettings, get_settings
from market_data_service.layers.acquisition import AcquisitionLayer
from market_data_service.layers.analysis import AnalysisLayer
from market_data_service.layers.cache import TTLCache
from market_data_service.layers.circuit_breaker import CircuitBreakerRegistry
from market_data_service.layers.processing import ProcessingLayer
from market_data_service.layers.providers import (
    AlphaVantageCandleProvider,
    CandleProvider,
    FinnhubCandleProvider,
    FinnhubQuoteProvider,
    QuoteProvider,
    TwelveDataCandleProvider,
    TwelveDataQuoteProvider,
)
from market_data_service.layers.rate_limit import RateLimiter
from market_data_service.services.auth_service import AuthService
from market_data_service.services.candle_service import CandleService
from market_data_service.services.quote_service import QuoteService

logger = logging.getLogger(__name__)

RATE_TIER_QUOTES = "quotes"
RATE_TIER_CANDLES = "candles"


@dataclass
class ServiceContainer:
    settings: MarketDataSettings
    quote_cache: TTLCache
    candle_cache: TTLCache
    breakers: CircuitBreakerRegistry
    acquisition: AcquisitionLayer
    quote_service: QuoteService
    candle_service: CandleService
    auth: AuthService
    rate_limiters: Dict[str, RateLimiter] = field(default_factory=dict)
    http_client: Optional[httpx.AsyncClient] = None

    def rate_limiter(self, tier: str) -> RateLimiter:
        return self.rate_limiters[tier]

    async def close(self) -> None:
        if self.http_client is not None:
            await self.http_client.aclose()
            self.http_client = None


def build_quote_providers(
    settings: MarketDataSettings, client: httpx.AsyncClient
) -> List[QuoteProvider]:
    providers: List[QuoteProvider] = []
    if settings.FINNHUB_API_KEY:
        providers.append(FinnhubQuoteProvider(
            client,
            settings.FINNHUB_API_KEY,
            base_url=settings.FINNHUB_BASE_URL,
            chunk_size=settings.FINNHUB_QUOTE_CHUNK_SIZE,
            timeout=settings.QUOTE_TIMEOUT_SECONDS,
        ))
    if settings.TWELVE_DATA_API_KEY:
        providers.append(TwelveDataQuoteProvider(
            client,
            settings.TWELVE_DATA_API_KEY,
            base_url=settings.TWELVE_DATA_BASE_URL,
            chunk_size=settings.TWELVE_DATA_QUOTE_CHUNK_SIZE,
            timeout=settings.QUOTE_TIMEOUT_SECONDS,
        ))
    return providers


def build_candle_providers(
    settings: MarketDataSettings,
    client: httpx.AsyncClient,
    processing: Optional[ProcessingLayer] = None,
) -> List[CandleProvider]:
    processing = processing or ProcessingLayer()
    providers: List[CandleProvider] = []
    if settings.FINNHUB_API_KEY:
        providers.append(FinnhubCandleProvider(
            client, settings.FINNHUB_API_KEY,
            base_url=settings.FINNHUB_BASE_URL, processing=processing,
            timeout=settings.CANDLE_TIMEOUT_SECONDS,
        ))
    if settings.TWELVE_DATA_API_KEY:
        providers.append(TwelveDataCandleProvider(
            client, settings.TWELVE_DATA_API_KEY,
            base_url=settings.TWELVE_DATA_BASE_URL, processing=processing,
            timeout=settings.CANDLE_TIMEOUT_SECONDS,
        ))
    if settings.ALPHA_VANTAGE_API_KEY:
        providers.append(AlphaVantageCandleProvider(
            client, settings.ALPHA_VANTAGE_API_KEY,
            base_url=settings.ALPHA_VANTAGE_BASE_URL, processing=processing,
            timeout=settings.CANDLE_TIMEOUT_SECONDS,
        ))
    return providers


def build_container(
    settings: Optional[MarketDataSettings] = None,
    http_client: Optional[httpx.AsyncClient] = None,
    quote_providers: Optional[List[QuoteProvider]] = None,
    candle_providers: Optional[List[CandleProvider]] = None,
) -> ServiceContainer:
    """按配置装配全部组件；显式传入的数据源优先于按 API Key 自动创建的数据源"""
    settings = settings or get_settings()

    if http_client is None and (quote_providers is None or candle_providers is None):
        # 单次请求超时由各数据源自行控制，这里只给连接层一个上限
        http_client = httpx.AsyncClient(
            timeout=max(settings.QUOTE_TIMEOUT_SECONDS, settings.CANDLE_TIMEOUT_SECONDS),
            headers={"User-Agent": settings.PROVIDER_USER_AGENT},
        )

    if quote_providers is None:
        quote_providers = build_quote_providers(settings, http_client)
    if candle_providers is None:
        candle_providers = build_candle_providers(settings, http_client)

    if not quote_providers and not candle_providers:
        logger.warning("⚠️ 未配置任何数据源 API Key，行情接口将返回配置错误")

    breakers = CircuitBreakerRegistry(backoff_seconds=settings.PROVIDER_FORBIDDEN_BACKOFF_SECONDS)
    acquisition = AcquisitionLayer(
        quote_providers,
        candle_providers,
        breakers,
        quote_timeout=settings.QUOTE_CHUNK_TIMEOUT_SECONDS,  # 整批上限
        candle_timeout=settings.CANDLE_TIMEOUT_SECONDS,
        chunk_delay=settings.QUOTE_CHUNK_DELAY_SECONDS,
        etf_symbols=settings.ETF_SYMBOLS,
    )

    quote_cache = TTLCache(
        default_ttl=settings.QUOTE_CACHE_TTL,
        max_entries=settings.QUOTE_CACHE_MAX_ENTRIES,
        name="quotes",
    )
    candle_cache = TTLCache(
        default_ttl=settings.CANDLE_CACHE_TTL,
        max_entries=settings.CANDLE_CACHE_MAX_ENTRIES,
        name="candles",
    )

    return ServiceContainer(
        settings=settings,
        quote_cache=quote_cache,
        candle_cache=candle_cache,
        breakers=breakers,
        acquisition=acquisition,
        quote_service=QuoteService(
            acquisition,
            quote_cache,
            max_batch_size=settings.BATCH_MAX_SIZE,
            batch_delay=settings.BATCH_DELAY_SECONDS,
        ),
        candle_service=CandleService(acquisition, candle_cache, AnalysisLayer()),
        auth=AuthService(settings),
        rate_limiters={
            RATE_TIER_QUOTES: RateLimiter(
                settings.QUOTE_RATE_LIMIT,
                settings.RATE_LIMIT_WINDOW_SECONDS,
                name=RATE_TIER_QUOTES,
            ),
            RATE_TIER_CANDLES: RateLimiter(
                settings.CANDLE_RATE_LIMIT,
                settings.RATE_LIMIT_WINDOW_SECONDS,
                name=RATE_TIER_CANDLES,
            ),
        },
        http_client=http_client,
    )
