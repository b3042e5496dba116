"""Unit tests for the price aggregator — cache, discrepancy and failure handling."""
from __future__ import annotations

import asyncio
from unittest.mock import AsyncMock

import pytest

from conftest import USDC, WETH
from liquidator.config import PricesConfig
from liquidator.errors import ReadError, SourceUnavailable
from liquidator.services.price_aggregator import PriceAggregator, compute_discrepancy


class FakeClock:
    def __init__(self) -> None:
        self.now = 1_000.0

    def __call__(self) -> float:
        return self.now


@pytest.fixture()
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture()
def oracle() -> AsyncMock:
    oracle = AsyncMock()
    oracle.read_oracle_price.return_value = 2000 * 10**8
    oracle.read_oracle_prices.side_effect = lambda assets: [
        {WETH: 2000 * 10**8, USDC: 1 * 10**8}[a] for a in assets
    ]
    return oracle


@pytest.fixture()
def external() -> AsyncMock:
    external = AsyncMock()
    external.read_external_price.return_value = 1900 * 10**8
    return external


@pytest.fixture()
def aggregator(oracle: AsyncMock, external: AsyncMock, clock: FakeClock) -> PriceAggregator:
    return PriceAggregator(
        oracle,
        external,
        PricesConfig(cache_ttl_seconds=15.0, discrepancy_threshold_pct=2.0, native_asset=WETH),
        clock=clock,
    )


class TestComputeDiscrepancy:
    def test_percentage_of_external(self) -> None:
        assert compute_discrepancy(105, 100) == pytest.approx(5.0)
        assert compute_discrepancy(95, 100) == pytest.approx(5.0)

    def test_undefined_without_positive_external(self) -> None:
        assert compute_discrepancy(100, None) is None
        assert compute_discrepancy(100, 0) is None


class TestQuote:
    @pytest.mark.asyncio
    async def test_quote_combines_sources(self, aggregator: PriceAggregator) -> None:
        quote = await aggregator.quote(WETH)
        assert quote.oracle_price == 2000 * 10**8
        assert quote.external_price == 1900 * 10**8
        assert quote.market_price is None
        assert quote.discrepancy_pct == pytest.approx(100 / 19)

    @pytest.mark.asyncio
    async def test_cache_hit_within_ttl(
        self, aggregator: PriceAggregator, oracle: AsyncMock, clock: FakeClock
    ) -> None:
        await aggregator.quote(WETH)
        clock.now += 10
        await aggregator.quote(WETH.upper().replace("0X", "0x"))
        assert oracle.read_oracle_price.await_count == 1

    @pytest.mark.asyncio
    async def test_refetch_after_ttl(
        self, aggregator: PriceAggregator, oracle: AsyncMock, clock: FakeClock
    ) -> None:
        await aggregator.quote(WETH)
        clock.now += 16
        await aggregator.quote(WETH)
        assert oracle.read_oracle_price.await_count == 2

    @pytest.mark.asyncio
    async def test_concurrent_fetches_coalesce(
        self, aggregator: PriceAggregator, oracle: AsyncMock
    ) -> None:
        await asyncio.gather(*(aggregator.quote(WETH) for _ in range(5)))
        assert oracle.read_oracle_price.await_count == 1

    @pytest.mark.asyncio
    async def test_oracle_failure_raises_source_unavailable(
        self, aggregator: PriceAggregator, oracle: AsyncMock
    ) -> None:
        oracle.read_oracle_price.side_effect = ReadError("down")
        with pytest.raises(SourceUnavailable):
            await aggregator.quote(WETH)

    @pytest.mark.asyncio
    async def test_external_failure_is_tolerated(
        self, aggregator: PriceAggregator, external: AsyncMock
    ) -> None:
        external.read_external_price.side_effect = RuntimeError("rate limited")
        quote = await aggregator.quote(WETH)
        assert quote.oracle_price == 2000 * 10**8
        assert quote.external_price is None
        assert quote.discrepancy_pct is None

    @pytest.mark.asyncio
    async def test_without_external_source(self, oracle: AsyncMock, clock: FakeClock) -> None:
        aggregator = PriceAggregator(oracle, None, PricesConfig(), clock=clock)
        quote = await aggregator.quote(USDC)
        assert quote.external_price is None


class TestQuotes:
    @pytest.mark.asyncio
    async def test_batched_oracle_read(
        self, aggregator: PriceAggregator, oracle: AsyncMock
    ) -> None:
        quotes = await aggregator.quotes([WETH, USDC, WETH])
        assert set(quotes) == {WETH, USDC}
        assert quotes[USDC].oracle_price == 1 * 10**8
        oracle.read_oracle_prices.assert_awaited_once_with([WETH, USDC])

    @pytest.mark.asyncio
    async def test_only_stale_assets_refetched(
        self, aggregator: PriceAggregator, oracle: AsyncMock
    ) -> None:
        await aggregator.quote(WETH)
        await aggregator.quotes([WETH, USDC])
        oracle.read_oracle_prices.assert_awaited_once_with([USDC])

    @pytest.mark.asyncio
    async def test_batched_failure_raises(
        self, aggregator: PriceAggregator, oracle: AsyncMock
    ) -> None:
        oracle.read_oracle_prices.side_effect = ReadError("timeout")
        with pytest.raises(SourceUnavailable):
            await aggregator.quotes([WETH])


class TestMarketPrice:
    @pytest.fixture()
    def market(self) -> AsyncMock:
        market = AsyncMock()
        market.read_market_price.side_effect = lambda asset: {WETH: 2013 * 10**8}.get(asset)
        return market

    @pytest.fixture()
    def with_market(
        self, oracle: AsyncMock, external: AsyncMock, market: AsyncMock, clock: FakeClock
    ) -> PriceAggregator:
        return PriceAggregator(oracle, external, PricesConfig(), clock=clock, market=market)

    @pytest.mark.asyncio
    async def test_market_price_filled(self, with_market: PriceAggregator) -> None:
        quote = await with_market.quote(WETH)
        assert quote.market_price == 2013 * 10**8
        assert quote.external_price == 1900 * 10**8

    @pytest.mark.asyncio
    async def test_batched_quotes_carry_market_price(
        self, with_market: PriceAggregator, market: AsyncMock
    ) -> None:
        quotes = await with_market.quotes([WETH, USDC])
        assert quotes[WETH].market_price == 2013 * 10**8
        assert quotes[USDC].market_price is None
        assert market.read_market_price.await_count == 2

    @pytest.mark.asyncio
    async def test_market_failure_is_tolerated(
        self, with_market: PriceAggregator, market: AsyncMock
    ) -> None:
        market.read_market_price.side_effect = ReadError("quoter reverted")
        quote = await with_market.quote(WETH)
        assert quote.market_price is None
        assert quote.oracle_price == 2000 * 10**8
        assert quote.external_price == 1900 * 10**8


class TestDiscrepancy:
    def test_no_quote_means_no_discrepancy(self, aggregator: PriceAggregator) -> None:
        assert aggregator.has_discrepancy(WETH) is False
        assert aggregator.discrepancy(WETH) is None

    @pytest.mark.asyncio
    async def test_above_threshold(self, aggregator: PriceAggregator) -> None:
        await aggregator.quote(WETH)
        assert aggregator.has_discrepancy(WETH) is True

    @pytest.mark.asyncio
    async def test_below_threshold(
        self, aggregator: PriceAggregator, external: AsyncMock
    ) -> None:
        external.read_external_price.return_value = 1990 * 10**8
        await aggregator.quote(WETH)
        assert aggregator.has_discrepancy(WETH) is False

    @pytest.mark.asyncio
    async def test_stale_quote_still_answers(
        self, aggregator: PriceAggregator, clock: FakeClock
    ) -> None:
        await aggregator.quote(WETH)
        clock.now += 3_600
        assert aggregator.has_discrepancy(WETH) is True

    @pytest.mark.asyncio
    async def test_invalidate(self, aggregator: PriceAggregator) -> None:
        await aggregator.quote(WETH)
        aggregator.invalidate(WETH)
        assert aggregator.cached(WETH) is None
        assert aggregator.has_discrepancy(WETH) is False
