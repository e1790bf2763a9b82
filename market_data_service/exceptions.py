"""服务异常定义"""


class MarketDataError(Exception):
    """行情服务异常基类"""


class InvalidRequestError(MarketDataError, ValueError):
    """请求参数结构无效，直接返回客户端错误，不重试、不缓存"""


class InvalidSymbolError(InvalidRequestError):
    """股票代码为空或无效"""


class ProviderConfigurationError(MarketDataError):
    """未配置任何可用数据源，属于部署配置错误"""
