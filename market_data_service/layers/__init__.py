"""
数据流分层架构
  Layer 1 – Acquisition  : 多数据源回退链（Finnhub / Twelve Data / Alpha Vantage）+ 熔断
  Layer 2 – Cache        : 进程内 TTL 缓存
  Layer 3 – Processing   : K 线清洗与标准化
  Layer 4 – Analysis     : 技术指标计算
  辅助组件                : 请求合并（coalescer）、入站限流（rate_limit）
"""
