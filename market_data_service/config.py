"""
行情数据服务配置模块
支持从环境变量 / .env 读取配置
"""

from functools import lru_cache
from typing import List

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class MarketDataSettings(BaseSettings):
    """行情数据服务配置"""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # ── 基础配置 ──────────────────────────────────────────
    HOST: str = Field(default="0.0.0.0")
    PORT: int = Field(default=8002)
    DEBUG: bool = Field(default=False)
    ALLOWED_ORIGINS: List[str] = Field(
        default_factory=lambda: ["*"]
    )

    # ── JWT（仅用于解析调用方身份） ─────────────────────────
    JWT_SECRET: str = Field(default="change-me-in-production")
    JWT_ALGORITHM: str = Field(default="HS256")

    # ── 数据源配置 ─────────────────────────────────────────
    FINNHUB_API_KEY: str = Field(default="")
    TWELVE_DATA_API_KEY: str = Field(default="")
    ALPHA_VANTAGE_API_KEY: str = Field(default="")
    FINNHUB_BASE_URL: str = Field(default="https://finnhub.io/api/v1")
    TWELVE_DATA_BASE_URL: str = Field(default="https://api.twelvedata.com")
    ALPHA_VANTAGE_BASE_URL: str = Field(default="https://www.alphavantage.co/query")
    PROVIDER_USER_AGENT: str = Field(default="MarketDataService/1.0")

    # 默认主数据源覆盖不好的 ETF，K 线优先走 Twelve Data
    ETF_SYMBOLS: List[str] = Field(
        default_factory=lambda: [
            "SPY", "QQQ", "DIA", "IWM", "VTI", "VOO", "GLD", "SLV", "TLT", "ARKK",
            "XLK", "XLF", "XLV", "XLE", "XLI", "XLP", "XLU", "XLB", "XLRE",
        ]
    )

    # ── 超时 / 分批 ───────────────────────────────────────
    QUOTE_TIMEOUT_SECONDS: float = Field(default=8.0)         # 单次上游请求
    QUOTE_CHUNK_TIMEOUT_SECONDS: float = Field(default=12.0) # 整批报价
    CANDLE_TIMEOUT_SECONDS: float = Field(default=10.0)
    QUOTE_CHUNK_DELAY_SECONDS: float = Field(default=0.1)   # 分批请求间隔
    FINNHUB_QUOTE_CHUNK_SIZE: int = Field(default=10)
    TWELVE_DATA_QUOTE_CHUNK_SIZE: int = Field(default=8)

    # ── 熔断配置 ──────────────────────────────────────────
    PROVIDER_FORBIDDEN_BACKOFF_SECONDS: float = Field(default=600.0)

    # ── 请求合并配置 ──────────────────────────────────────
    BATCH_DELAY_SECONDS: float = Field(default=0.05)
    BATCH_MAX_SIZE: int = Field(default=50)

    # ── 缓存配置 ──────────────────────────────────────────
    QUOTE_CACHE_TTL: float = Field(default=30.0)         # 报价 TTL（秒）
    CANDLE_CACHE_TTL: float = Field(default=300.0)       # K 线 / 指标 TTL
    QUOTE_CACHE_MAX_ENTRIES: int = Field(default=1000)
    CANDLE_CACHE_MAX_ENTRIES: int = Field(default=500)

    # ── 限流配置 ──────────────────────────────────────────
    RATE_LIMIT_WINDOW_SECONDS: float = Field(default=60.0)
    QUOTE_RATE_LIMIT: int = Field(default=30)
    CANDLE_RATE_LIMIT: int = Field(default=15)

    # ── 日志配置 ──────────────────────────────────────────
    LOG_LEVEL: str = Field(default="INFO")


@lru_cache
def get_settings() -> MarketDataSettings:
    """获取全局配置（单例）"""
    return MarketDataSettings()


settings = get_settings()
