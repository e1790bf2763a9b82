"""
数据获取层与请求合并层测试

覆盖范围：
  - 报价回退链（顺序、分批、超时、占位报价、拒绝访问熔断）
  - K 线回退链（超时回退、熔断跳过、ETF 数据源顺序）
  - RequestBatcher / RequestCoalescer
"""

import asyncio

import httpx
import pytest

from fakes import FakeCandleProvider, FakeClock, FakeQuoteProvider, make_candles, make_quote
from market_data_service.layers.acquisition import AcquisitionLayer
from market_data_service.layers.circuit_breaker import CircuitBreakerRegistry
from market_data_service.layers.coalescer import RequestBatcher, RequestCoalescer
from market_data_service.layers.providers import (
    FinnhubQuoteProvider,
    ProviderForbiddenError,
    ProviderUnavailableError,
)
from market_data_service.models.market import Period


def _acquisition(quote_providers=(), candle_providers=(), clock=None, **kwargs):
    breakers = CircuitBreakerRegistry(backoff_seconds=600, clock=clock or FakeClock())
    kwargs.setdefault("chunk_delay", 0)
    return AcquisitionLayer(quote_providers, candle_providers, breakers, **kwargs)


# ─────────────────────────────────────────────────────────
# 1. 报价回退链
# ─────────────────────────────────────────────────────────

class TestQuoteFallback:
    @pytest.mark.asyncio
    async def test_secondary_used_after_primary_failure(self):
        primary = FakeQuoteProvider("a", error=ProviderUnavailableError("a", "down"))
        secondary = FakeQuoteProvider("b", prices={"AAPL": 190.0})
        acq = _acquisition([primary, secondary])

        quotes = await acq.fetch_quotes(["AAPL"])

        assert quotes["AAPL"].price == 190.0
        assert not quotes["AAPL"].is_fallback
        assert len(primary.calls) == 1
        assert secondary.calls == [["AAPL"]]

    @pytest.mark.asyncio
    async def test_only_unresolved_symbols_go_to_next_provider(self):
        primary = FakeQuoteProvider("a", prices={"AAPL": 190.0})
        secondary = FakeQuoteProvider("b", prices={"MSFT": 410.0})
        acq = _acquisition([primary, secondary])

        quotes = await acq.fetch_quotes(["AAPL", "MSFT", "ZZZZ"])

        assert secondary.calls == [["MSFT", "ZZZZ"]]
        assert quotes["MSFT"].price == 410.0
        assert quotes["ZZZZ"].is_fallback
        assert quotes["ZZZZ"].price == 0.0

    @pytest.mark.asyncio
    async def test_chunking(self):
        provider = FakeQuoteProvider("a", prices={}, chunk_size=2)
        acq = _acquisition([provider])
        await acq.fetch_quotes(["A", "B", "C", "D", "E"])
        assert provider.calls == [["A", "B"], ["C", "D"], ["E"]]

    @pytest.mark.asyncio
    async def test_timeout_falls_through(self):
        slow = FakeQuoteProvider("a", prices={"AAPL": 1.0}, delay=0.5)
        fast = FakeQuoteProvider("b", prices={"AAPL": 2.0})
        acq = _acquisition([slow, fast], quote_timeout=0.05)

        quotes = await acq.fetch_quotes(["AAPL"])

        assert quotes["AAPL"].price == 2.0

    @pytest.mark.asyncio
    async def test_slow_symbol_only_loses_itself(self):
        async def handler(request):
            symbol = request.url.params.get("symbol")
            if symbol == "SLOW":
                await asyncio.sleep(1.0)
            return httpx.Response(200, json={"c": 100.0, "d": 1.0, "dp": 1.0, "pc": 99.0})

        async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
            provider = FinnhubQuoteProvider(client, "key", base_url="http://finnhub.test", timeout=0.1)
            acq = _acquisition([provider], quote_timeout=0.5)
            quotes = await acq.fetch_quotes(["AAPL", "MSFT", "SLOW"])

        assert not quotes["AAPL"].is_fallback
        assert not quotes["MSFT"].is_fallback
        assert quotes["SLOW"].is_fallback

    @pytest.mark.asyncio
    async def test_forbidden_trips_breaker_and_keeps_partial(self):
        clock = FakeClock()
        primary = FakeQuoteProvider(
            "a",
            error=ProviderForbiddenError("a", "HTTP 403", partial={"AAPL": make_quote("AAPL", 1.0)}),
        )
        secondary = FakeQuoteProvider("b", prices={"AAPL": 2.0, "MSFT": 3.0})
        acq = _acquisition([primary, secondary], clock=clock)

        quotes = await acq.fetch_quotes(["AAPL", "MSFT"])
        assert quotes["AAPL"].price == 1.0
        assert quotes["MSFT"].price == 3.0

        # 熔断期内不再调用 primary
        await acq.fetch_quotes(["AAPL"])
        assert len(primary.calls) == 1

        clock.advance(600)
        await acq.fetch_quotes(["AAPL"])
        assert len(primary.calls) == 2

    @pytest.mark.asyncio
    async def test_no_providers_yields_placeholders(self):
        acq = _acquisition([])
        quotes = await acq.fetch_quotes(["AAPL"])
        assert quotes["AAPL"].is_fallback


# ─────────────────────────────────────────────────────────
# 2. K 线回退链
# ─────────────────────────────────────────────────────────

class TestCandleFallback:
    @pytest.mark.asyncio
    async def test_primary_timeout_secondary_serves(self):
        primary = FakeCandleProvider("a", series=make_candles(30), delay=0.5)
        secondary = FakeCandleProvider("b", series=make_candles(22))
        acq = _acquisition(candle_providers=[primary, secondary], candle_timeout=0.05)

        series = await acq.fetch_candles("AAPL", Period.ONE_MONTH)

        assert len(series) == 22
        assert len(primary.calls) == 1

    @pytest.mark.asyncio
    async def test_empty_series_falls_through(self):
        primary = FakeCandleProvider("a", series=())
        secondary = FakeCandleProvider("b", series=make_candles(5))
        acq = _acquisition(candle_providers=[primary, secondary])
        series = await acq.fetch_candles("AAPL", Period.ONE_DAY)
        assert len(series) == 5

    @pytest.mark.asyncio
    async def test_all_fail_returns_none(self):
        acq = _acquisition(candle_providers=[
            FakeCandleProvider("a", error=ProviderUnavailableError("a", "down")),
            FakeCandleProvider("b", error=RuntimeError("boom")),
        ])
        assert await acq.fetch_candles("AAPL", Period.ONE_DAY) is None

    @pytest.mark.asyncio
    async def test_forbidden_skipped_until_backoff_elapses(self):
        clock = FakeClock()
        primary = FakeCandleProvider("a", error=ProviderForbiddenError("a", "HTTP 403"))
        secondary = FakeCandleProvider("b", series=make_candles(5))
        acq = _acquisition(candle_providers=[primary, secondary], clock=clock)

        await acq.fetch_candles("AAPL", Period.ONE_DAY)
        await acq.fetch_candles("MSFT", Period.ONE_DAY)
        assert len(primary.calls) == 1
        assert len(secondary.calls) == 2

        clock.advance(600)
        await acq.fetch_candles("AAPL", Period.ONE_DAY)
        assert len(primary.calls) == 2

    def test_etf_provider_order(self):
        acq = _acquisition(
            candle_providers=[FakeCandleProvider("finnhub"), FakeCandleProvider("twelve_data")],
            etf_symbols=["SPY"],
        )
        assert [p.name for p in acq.candle_providers_for("SPY")] == ["twelve_data", "finnhub"]
        assert [p.name for p in acq.candle_providers_for("AAPL")] == ["finnhub", "twelve_data"]


# ─────────────────────────────────────────────────────────
# 3. 请求合并
# ─────────────────────────────────────────────────────────

class TestRequestBatcher:
    @pytest.mark.asyncio
    async def test_concurrent_adds_share_one_batch(self):
        calls = []

        async def batch_fn(keys):
            calls.append(list(keys))
            return {k: k.lower() for k in keys}

        batcher = RequestBatcher(batch_fn, max_batch_size=50, batch_delay=0.01)
        results = await asyncio.gather(batcher.add("AAPL"), batcher.add("MSFT"), batcher.add("AAPL"))

        assert results == ["aapl", "msft", "aapl"]
        assert calls == [["AAPL", "MSFT"]]
        assert batcher.stats()["batches"] == 1

    @pytest.mark.asyncio
    async def test_flush_at_max_size(self):
        calls = []

        async def batch_fn(keys):
            calls.append(list(keys))
            return {k: 1 for k in keys}

        batcher = RequestBatcher(batch_fn, max_batch_size=2, batch_delay=0.01)
        await asyncio.gather(*(batcher.add(k) for k in ["A", "B", "C"]))
        assert calls == [["A", "B"], ["C"]]

    @pytest.mark.asyncio
    async def test_missing_key_resolves_none(self):
        async def batch_fn(keys):
            return {}

        batcher = RequestBatcher(batch_fn, batch_delay=0.01)
        assert await batcher.add("X") is None

    @pytest.mark.asyncio
    async def test_failure_propagates_to_all_waiters(self):
        async def batch_fn(keys):
            raise RuntimeError("upstream exploded")

        batcher = RequestBatcher(batch_fn, batch_delay=0.01)
        results = await asyncio.gather(batcher.add("A"), batcher.add("B"), return_exceptions=True)
        assert all(isinstance(r, RuntimeError) for r in results)
        assert batcher.stats()["in_flight"] == 0

    @pytest.mark.asyncio
    async def test_drain(self):
        async def batch_fn(keys):
            return {k: 1 for k in keys}

        batcher = RequestBatcher(batch_fn, batch_delay=10)
        task = asyncio.ensure_future(batcher.add("A"))
        await asyncio.sleep(0)
        await batcher.drain()
        assert await task == 1


class TestRequestCoalescer:
    @pytest.mark.asyncio
    async def test_single_flight(self):
        coalescer = RequestCoalescer()
        calls = []

        async def fetcher():
            calls.append(1)
            await asyncio.sleep(0.01)
            return "series"

        results = await asyncio.gather(
            coalescer.get_or_fetch("candles:AAPL:1D", fetcher),
            coalescer.get_or_fetch("candles:AAPL:1D", fetcher),
        )
        assert results == ["series", "series"]
        assert len(calls) == 1
        assert coalescer.in_flight() == 0

        await coalescer.get_or_fetch("candles:AAPL:1D", fetcher)
        assert len(calls) == 2

    @pytest.mark.asyncio
    async def test_failure_not_retained(self):
        coalescer = RequestCoalescer()

        async def failing():
            raise RuntimeError("boom")

        with pytest.raises(RuntimeError):
            await coalescer.get_or_fetch("k", failing)
        assert coalescer.in_flight() == 0
