"""Tests for the Oracle data collector."""

import asyncio

import pytest

from oracle.collector import Collector
from oracle.registry import SourceRegistry
from oracle.sources import PriceSource, StaticPriceSource
from shared import OracleDataSource, Price, PriceDataPoint, RateLimit, ValidatorConfig


class FlakySource(PriceSource):
    """Fails a fixed number of times before answering."""

    def __init__(self, source_id: str, failures: int, clock, price: int = 100):
        super().__init__(OracleDataSource(id=source_id))
        self.failures = failures
        self.calls = 0
        self.clock = clock
        self.price = price

    async def fetch(self, symbol: str) -> list[PriceDataPoint]:
        self.calls += 1
        if self.calls <= self.failures:
            raise ConnectionError(f"{self.id} unavailable")
        return [PriceDataPoint(symbol, self.id, Price(self.price, 0), self.clock())]


class SlowSource(PriceSource):
    """Answers after a real delay and tracks overlapping calls."""

    active = 0
    peak = 0

    def __init__(self, source: OracleDataSource, clock, delay: float = 0.01):
        super().__init__(source)
        self.clock = clock
        self.delay = delay
        self.calls = 0

    async def fetch(self, symbol: str) -> list[PriceDataPoint]:
        self.calls += 1
        SlowSource.active += 1
        SlowSource.peak = max(SlowSource.peak, SlowSource.active)
        try:
            await asyncio.sleep(self.delay)
        finally:
            SlowSource.active -= 1
        return [PriceDataPoint(symbol, self.id, Price(100, 0), self.clock())]


def static_source(source_id: str, clock, price: int = 100, **kwargs) -> StaticPriceSource:
    return StaticPriceSource(
        OracleDataSource(id=source_id, **kwargs),
        {"BTC": Price(price, 0), "ETH": Price(price * 10, 0)},
        clock=clock,
    )


def make_collector(sources, clock, sleep, **config) -> Collector:
    return Collector(SourceRegistry(sources), ValidatorConfig(**config), clock=clock, sleep=sleep)


class TestCollector:
    """Test suite for Collector."""

    @pytest.mark.asyncio
    async def test_collects_from_all_sources(self, clock, sleep):
        """Every source contributes observations for every symbol."""
        sources = [static_source(s, clock) for s in ("a", "b", "c")]
        collector = make_collector(sources, clock, sleep)

        result = await collector.collect(["BTC", "ETH"])

        assert len(result.observations) == 6
        assert result.sources_for("BTC") == {"a", "b", "c"}
        assert result.failed_sources == []
        assert result.metadata.success_rate == 1.0
        assert collector.last_fetch_times() == {"a": clock(), "b": clock(), "c": clock()}

    @pytest.mark.asyncio
    async def test_retry_with_linear_backoff(self, clock, sleep):
        """Failed attempts wait retry_delay * attempt before retrying."""
        flaky = FlakySource("flaky", failures=2, clock=clock)
        collector = make_collector([flaky], clock, sleep, retry_attempts=3, retry_delay_ms=1000)

        result = await collector.collect(["BTC"])

        assert flaky.calls == 3
        assert sleep.delays == [1.0, 2.0]
        assert result.failed_sources == []
        assert len(result.observations) == 1

    @pytest.mark.asyncio
    async def test_exhausted_source_is_recorded(self, clock, sleep):
        """A source that never answers is failed; the others still count."""
        broken = FlakySource("broken", failures=99, clock=clock)
        sources = [broken, static_source("a", clock), static_source("b", clock)]
        collector = make_collector(sources, clock, sleep, retry_attempts=3, retry_delay_ms=500)

        result = await collector.collect(["BTC"])

        assert broken.calls == 3
        assert sleep.delays == [0.5, 1.0]
        assert result.failed_source_ids == ["broken"]
        assert "ConnectionError" in result.failed_sources[0].error
        assert result.sources_for("BTC") == {"a", "b"}
        assert "broken" not in collector.last_fetch_times()
        assert collector.get_stats()["fetches_failed"] == 1

    @pytest.mark.asyncio
    async def test_rate_limit_skips_recent_source(self, clock, sleep):
        """A source fetched within its interval is skipped, not failed."""
        limited = static_source("limited", clock, rate_limit=RateLimit(interval_ms=60_000))
        collector = make_collector([limited, static_source("a", clock)], clock, sleep)

        await collector.collect(["BTC"])
        clock.advance(10_000)
        second = await collector.collect(["BTC"])

        assert limited.fetch_count == 1
        assert second.skipped_sources == ["limited"]
        assert second.failed_sources == []
        assert second.sources_for("BTC") == {"a"}

        clock.advance(50_000)
        third = await collector.collect(["BTC"])
        assert limited.fetch_count == 2
        assert third.sources_for("BTC") == {"a", "limited"}

    @pytest.mark.asyncio
    async def test_concurrent_rounds_share_rate_limit(self, clock, sleep):
        """Two overlapping rounds cannot both pass the same rate-limit window."""
        slow = SlowSource(
            OracleDataSource(id="slow", rate_limit=RateLimit(interval_ms=60_000)),
            clock,
        )
        collector = make_collector([slow], clock, sleep)

        first, second = await asyncio.gather(
            collector.collect(["BTC"]),
            collector.collect(["BTC"]),
        )

        assert slow.calls == 1
        assert sorted([len(first.observations), len(second.observations)]) == [0, 1]
        assert first.skipped_sources + second.skipped_sources == ["slow"]

    @pytest.mark.asyncio
    async def test_deadline_fails_pending_sources(self, clock, sleep):
        """Sources still running at the deadline are recorded as failed."""
        hanging = SlowSource(OracleDataSource(id="hanging"), clock, delay=10)
        sources = [hanging, static_source("a", clock), static_source("b", clock)]
        collector = make_collector(sources, clock, sleep, collection_deadline_ms=50)

        result = await collector.collect(["BTC"])

        assert result.failed_source_ids == ["hanging"]
        assert "deadline" in result.failed_sources[0].error
        assert result.sources_for("BTC") == {"a", "b"}

    @pytest.mark.asyncio
    async def test_request_timeout_counts_as_attempt(self, clock, sleep):
        """A fetch exceeding the request timeout is retried, then failed."""
        hanging = SlowSource(OracleDataSource(id="hanging"), clock, delay=10)
        collector = make_collector(
            [hanging], clock, sleep,
            request_timeout_ms=20, retry_attempts=2, retry_delay_ms=1000,
        )

        result = await collector.collect(["BTC"])

        assert hanging.calls == 2
        assert sleep.delays == [1.0]
        assert result.failed_source_ids == ["hanging"]

    @pytest.mark.asyncio
    async def test_request_timeout_is_per_symbol(self, clock, sleep):
        """Several quick requests may together exceed the request timeout."""
        steady = SlowSource(OracleDataSource(id="steady"), clock, delay=0.04)
        collector = make_collector(
            [steady], clock, sleep,
            request_timeout_ms=100, retry_attempts=1,
        )

        result = await collector.collect(["A", "B", "C", "D"])

        assert result.failed_sources == []
        assert steady.calls == 4
        assert sorted(p.symbol for p in result.observations) == ["A", "B", "C", "D"]

    @pytest.mark.asyncio
    async def test_max_concurrency(self, clock, sleep):
        """No more than max_concurrency fetches run at once."""
        SlowSource.active = 0
        SlowSource.peak = 0
        sources = [SlowSource(OracleDataSource(id=f"s{i}"), clock) for i in range(5)]
        collector = make_collector(sources, clock, sleep, max_concurrency=2)

        result = await collector.collect(["BTC"])

        assert len(result.observations) == 5
        assert SlowSource.peak <= 2

    @pytest.mark.asyncio
    async def test_unrequested_symbols_dropped(self, clock, sleep):
        """Observations for symbols nobody asked for are discarded."""

        class ChattySource(PriceSource):
            async def fetch(self, symbol):
                return [
                    PriceDataPoint(symbol, self.id, Price(100, 0), clock()),
                    PriceDataPoint("DOGE", self.id, Price(1, 0), clock()),
                ]

        collector = make_collector([ChattySource(OracleDataSource(id="chatty"))], clock, sleep)

        result = await collector.collect(["BTC"])

        assert [p.symbol for p in result.observations] == ["BTC"]

    @pytest.mark.asyncio
    async def test_empty_registry(self, clock, sleep):
        """A round with no sources returns nothing and does not fail."""
        collector = make_collector([], clock, sleep)

        result = await collector.collect(["BTC"])

        assert result.observations == []
        assert result.failed_sources == []
        assert result.metadata.success_rate == 0.0
