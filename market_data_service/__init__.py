"""
Market Data Service 行情数据服务
独立的行情数据微服务，为仪表盘提供报价、K 线与技术指标

架构分层：
  数据获取层 (Acquisition)  → 多数据提供商回退链 + 熔断
  合并层     (Coalescer)    → 请求合并与在途去重
  缓存层     (Cache)        → 进程内 TTL 缓存
  处理层     (Processing)   → K 线清洗、排序、标准化
  分析层     (Analysis)     → 技术指标计算
"""

__version__ = "1.0.0"
