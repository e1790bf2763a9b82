"""
基础层单元测试

覆盖范围：
  - 缓存层（TTL 边界、容量淘汰、副本隔离、模式失效）
  - 入站限流（固定窗口、窗口重置、响应头）
  - 数据源熔断（打开、退避到期自动关闭）
  - 数据处理层（K 线清洗、排序、去重）
  - 技术分析层（SMA / EMA / RSI / MACD / BOLL）
"""

import math

import pandas as pd
import pytest

from fakes import FakeClock, make_candles


# ─────────────────────────────────────────────────────────
# 1. 缓存层测试
# ─────────────────────────────────────────────────────────

class TestTTLCache:
    def setup_method(self):
        from market_data_service.layers.cache import TTLCache
        self.clock = FakeClock()
        self.cache = TTLCache(default_ttl=30, max_entries=5, evict_batch=2, clock=self.clock)

    def test_ttl_boundary(self):
        self.cache.set("quote:AAPL", "v")
        self.clock.now = 1029.999
        assert self.cache.get("quote:AAPL") == "v"
        self.clock.now = 1030.0
        assert self.cache.get("quote:AAPL") == "v"
        self.clock.now = 1030.001
        assert self.cache.get("quote:AAPL") is None

    def test_unset_and_expired_indistinguishable(self):
        self.cache.set("a", 1, ttl=1)
        self.clock.advance(2)
        assert self.cache.get("a") is None
        assert self.cache.get("never-set") is None
        assert self.cache.stats()["misses"] == 2

    def test_explicit_ttl_overrides_default(self):
        self.cache.set("short", 1, ttl=5)
        self.cache.set("long", 2)
        self.clock.advance(10)
        assert self.cache.get("short") is None
        assert self.cache.get("long") == 2

    def test_capacity_evicts_earliest_expiry(self):
        for i in range(5):
            self.cache.set(f"k{i}", i, ttl=10 + i)
        self.cache.set("k5", 5, ttl=100)
        # 超出 1 条，按批量 2 条淘汰过期时间最早的
        assert len(self.cache) == 4
        assert self.cache.get("k0") is None
        assert self.cache.get("k1") is None
        assert self.cache.get("k5") == 5
        assert self.cache.stats()["evictions"] == 2

    def test_expired_entries_dropped_before_eviction(self):
        for i in range(5):
            self.cache.set(f"k{i}", i, ttl=1 if i == 0 else 50)
        self.clock.advance(2)
        self.cache.set("k5", 5)
        assert len(self.cache) == 5
        assert self.cache.stats()["evictions"] == 0

    def test_mutable_values_are_copied(self):
        payload = {"symbols": ["AAPL"]}
        self.cache.set("k", payload)
        payload["symbols"].append("MSFT")
        fetched = self.cache.get("k")
        assert fetched == {"symbols": ["AAPL"]}
        fetched["symbols"].append("TSLA")
        assert self.cache.get("k") == {"symbols": ["AAPL"]}

    def test_invalidate_pattern(self):
        self.cache.set("quote:AAPL", 1)
        self.cache.set("quote:MSFT", 2)
        self.cache.set("candles:AAPL:1D", 3)
        assert self.cache.invalidate_pattern("^quote:") == 2
        assert self.cache.get("candles:AAPL:1D") == 3

    def test_remaining_ttl(self):
        self.cache.set("k", 1, ttl=30)
        self.clock.advance(10)
        assert self.cache.remaining_ttl("k") == pytest.approx(20)
        assert self.cache.remaining_ttl("missing") is None


class TestMakeKey:
    def test_simple(self):
        from market_data_service.layers.cache import make_key
        assert make_key("candles", "AAPL", "1D") == "candles:AAPL:1D"

    def test_long_key_hashed(self):
        from market_data_service.layers.cache import make_key
        key = make_key("quote", "X" * 300)
        assert key.startswith("quote:")
        assert len(key) < 60


# ─────────────────────────────────────────────────────────
# 2. 入站限流测试
# ─────────────────────────────────────────────────────────

class TestRateLimiter:
    def setup_method(self):
        from market_data_service.layers.rate_limit import RateLimiter
        self.clock = FakeClock()
        self.limiter = RateLimiter(15, 60, clock=self.clock, name="candles")

    def test_sixteenth_request_rejected(self):
        results = [self.limiter.check_and_consume("ip:1.2.3.4") for _ in range(15)]
        assert all(r.allowed for r in results)
        assert [r.remaining for r in results] == list(range(14, -1, -1))

        self.clock.advance(10)
        rejected = self.limiter.check_and_consume("ip:1.2.3.4")
        assert not rejected.allowed
        assert 0 < rejected.retry_after <= 60
        assert rejected.headers()["Retry-After"] == "50"

    def test_window_resets(self):
        for _ in range(16):
            self.limiter.check_and_consume("user:alice")
        self.clock.advance(60.001)
        result = self.limiter.check_and_consume("user:alice")
        assert result.allowed
        assert result.remaining == 14

    def test_rejection_does_not_extend_window(self):
        for _ in range(20):
            self.limiter.check_and_consume("user:bob")
        self.clock.advance(60.5)
        assert self.limiter.check_and_consume("user:bob").allowed

    def test_identities_independent(self):
        for _ in range(15):
            self.limiter.check_and_consume("a")
        assert not self.limiter.check_and_consume("a").allowed
        assert self.limiter.check_and_consume("b").allowed

    def test_headers(self):
        result = self.limiter.check_and_consume("a")
        headers = result.headers()
        assert headers["X-RateLimit-Limit"] == "15"
        assert headers["X-RateLimit-Remaining"] == "14"
        assert "Retry-After" not in headers

    def test_reset(self):
        for _ in range(15):
            self.limiter.check_and_consume("a")
        self.limiter.reset("a")
        assert self.limiter.check_and_consume("a").allowed

    def test_invalid_limit(self):
        from market_data_service.layers.rate_limit import RateLimiter
        with pytest.raises(ValueError):
            RateLimiter(0)


# ─────────────────────────────────────────────────────────
# 3. 熔断测试
# ─────────────────────────────────────────────────────────

class TestCircuitBreaker:
    def setup_method(self):
        from market_data_service.layers.circuit_breaker import CircuitBreakerRegistry
        self.clock = FakeClock()
        self.breakers = CircuitBreakerRegistry(backoff_seconds=600, clock=self.clock)

    def test_closed_by_default(self):
        assert not self.breakers.is_open("finnhub", "quotes")

    def test_trip_and_recover(self):
        self.breakers.trip("finnhub", "candles")
        assert self.breakers.is_open("finnhub", "candles")
        assert not self.breakers.is_open("finnhub", "quotes")
        self.clock.advance(599)
        assert self.breakers.is_open("finnhub", "candles")
        self.clock.advance(1)
        assert not self.breakers.is_open("finnhub", "candles")

    def test_snapshot(self):
        self.breakers.trip("twelve_data", "quotes", backoff=120)
        self.clock.advance(20)
        snap = self.breakers.snapshot()
        assert snap == {"twelve_data/quotes": {"open": True, "retry_in_seconds": 100.0}}

    def test_reset_provider(self):
        self.breakers.trip("finnhub", "quotes")
        self.breakers.trip("finnhub", "candles")
        self.breakers.trip("twelve_data", "quotes")
        self.breakers.reset("finnhub")
        assert not self.breakers.is_open("finnhub", "quotes")
        assert self.breakers.is_open("twelve_data", "quotes")


# ─────────────────────────────────────────────────────────
# 4. 数据处理层测试
# ─────────────────────────────────────────────────────────

class TestProcessingLayer:
    def setup_method(self):
        from market_data_service.layers.processing import ProcessingLayer
        self.proc = ProcessingLayer()

    def test_empty(self):
        assert self.proc.normalize_candles([]) == ()

    def test_sort_dedupe_and_clean(self):
        records = [
            {"timestamp": 3000, "open": "3", "high": "3.5", "low": "2.5", "close": "3.2", "volume": "10"},
            {"timestamp": 1000, "open": 1, "high": 1.5, "low": 0.5, "close": 1.1, "volume": None},
            {"timestamp": 2000, "open": 2, "high": 2.5, "low": 1.5, "close": None, "volume": 5},
            {"timestamp": 1000, "open": 1, "high": 1.6, "low": 0.6, "close": 1.3, "volume": 7},
            {"timestamp": None, "open": 1, "high": 1, "low": 1, "close": 1, "volume": 1},
        ]
        series = self.proc.normalize_candles(records)
        assert [c.timestamp for c in series] == [1000, 3000]
        assert series[0].close == 1.3          # 重复时间戳保留最后一条
        assert series[1].close == 3.2
        assert series[1].volume == 10.0

    def test_missing_volume_is_none(self):
        series = self.proc.normalize_candles(
            [{"timestamp": 1, "open": 1, "high": 1, "low": 1, "close": 1}]
        )
        assert series[0].volume is None

    def test_missing_ohl_filled_with_close(self):
        series = self.proc.normalize_candles([{"timestamp": 1, "close": 5}])
        assert (series[0].open, series[0].high, series[0].low) == (5.0, 5.0, 5.0)

    def test_trim_to_window(self):
        series = make_candles(5, start_ts=0)
        trimmed = self.proc.trim_to_window(series, series[3].timestamp)
        assert len(trimmed) == 2


# ─────────────────────────────────────────────────────────
# 5. 技术分析层测试
# ─────────────────────────────────────────────────────────

class TestAnalysisLayer:
    def setup_method(self):
        from market_data_service.layers.analysis import AnalysisLayer
        self.analysis = AnalysisLayer()

    def test_insufficient_candles(self):
        assert self.analysis.compute(make_candles(25)) is None

    def test_minimum_candles(self):
        snap = self.analysis.compute(make_candles(26), provenance="series:1M")
        assert snap is not None
        assert snap.provenance == "series:1M"
        assert snap.sma50 is None
        assert snap.current_price == 125.0

    def test_sma20_uses_last_twenty(self):
        # 收盘价 100..129
        snap = self.analysis.compute(make_candles(30))
        assert snap.sma20 == pytest.approx(119.5)

    def test_sma50_when_available(self):
        snap = self.analysis.compute(make_candles(60))
        assert snap.sma50 == pytest.approx(sum(range(110, 160)) / 50)

    def test_bollinger_population_std(self):
        snap = self.analysis.compute(make_candles(30))
        std = math.sqrt((20 ** 2 - 1) / 12)
        assert snap.middle_band == pytest.approx(119.5)
        assert snap.upper_band == pytest.approx(119.5 + 2 * std)
        assert snap.lower_band == pytest.approx(119.5 - 2 * std)

    def test_rsi_all_gains(self):
        snap = self.analysis.compute(make_candles(30))
        assert snap.rsi14 == 100.0

    def test_rsi_balanced(self):
        closes = pd.Series([1.0, 2.0] * 7 + [1.0])
        assert self.analysis.rsi(closes) == pytest.approx(50.0)

    def test_rsi_short_series_neutral(self):
        assert self.analysis.rsi(pd.Series([1.0, 2.0, 3.0])) == 50.0

    def test_ema_seeded_with_first_close(self):
        closes = pd.Series([10.0, 20.0])
        ema = self.analysis.ema_series(closes, 3)
        # k = 2 / (3 + 1) = 0.5
        assert ema.iloc[0] == 10.0
        assert ema.iloc[-1] == pytest.approx(15.0)

    def test_macd_histogram(self):
        snap = self.analysis.compute(make_candles(40))
        assert snap.macd_line == pytest.approx(snap.ema12 - snap.ema26)
        assert snap.macd_histogram == pytest.approx(snap.macd_line - snap.macd_signal)
        # 单边上涨时快线在慢线之上
        assert snap.macd_line > 0

    def test_macd_signal_on_recent_differences(self):
        closes = [100 + 5 * math.sin(i / 3) + (i % 4) for i in range(40)]

        def ema(values, period):
            k = 2 / (period + 1)
            out = [values[0]]
            for v in values[1:]:
                out.append(v * k + out[-1] * (1 - k))
            return out

        diffs = [f - s for f, s in zip(ema(closes, 12), ema(closes, 26))]
        expected_signal = ema(diffs[-9:], 9)[-1]

        line, signal, hist = self.analysis.macd(pd.Series(closes))

        assert line == pytest.approx(diffs[-1])
        assert signal == pytest.approx(expected_signal)
        assert hist == pytest.approx(diffs[-1] - expected_signal)

    def test_camel_case_output(self):
        data = self.analysis.compute(make_candles(30)).to_dict()
        assert {"sma20", "macdLine", "upperBand", "currentPrice"} <= set(data)
