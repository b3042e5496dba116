"""Price aggregation — canonical oracle plus an independent source, with a TTL cache."""
from __future__ import annotations

import asyncio
import logging
import time
from collections import defaultdict
from typing import Callable

from ..config import PricesConfig
from ..errors import ReadError, SourceUnavailable
from ..interfaces.price_oracle import CanonicalOracle, ExternalPriceSource, MarketPriceSource
from ..models import PriceQuote

logger = logging.getLogger(__name__)


def compute_discrepancy(oracle_price: int, external_price: int | None) -> float | None:
    """Percentage deviation of the oracle price from the external price.

    Defined only when the external price is present and positive.
    """
    if external_price is None or external_price <= 0:
        return None
    return abs(oracle_price - external_price) / external_price * 100


class PriceAggregator:
    """Fetches and caches ``PriceQuote`` objects keyed by asset address.

    The canonical oracle is mandatory: its failure raises ``SourceUnavailable``.
    The external source is best-effort: its failure only leaves the quote's
    external price and discrepancy empty. The on-chain market source, when
    given, is best-effort in the same way and fills ``market_price``.
    """

    def __init__(
        self,
        oracle: CanonicalOracle,
        external: ExternalPriceSource | None,
        config: PricesConfig,
        max_concurrency: int = 8,
        clock: Callable[[], float] = time.monotonic,
        market: MarketPriceSource | None = None,
    ) -> None:
        self._oracle = oracle
        self._external = external
        self._market = market
        self._ttl = config.cache_ttl_seconds
        self._threshold = config.discrepancy_threshold_pct
        self._clock = clock
        self._semaphore = asyncio.Semaphore(max_concurrency)
        self._cache: dict[str, PriceQuote] = {}
        self._locks: defaultdict[str, asyncio.Lock] = defaultdict(asyncio.Lock)

    # ------------------------------------------------------------------
    # Cache helpers
    # ------------------------------------------------------------------

    def _is_fresh(self, quote: PriceQuote | None) -> bool:
        return quote is not None and self._clock() - quote.observed_at < self._ttl

    def _store(self, quote: PriceQuote) -> PriceQuote:
        """Keep whichever quote for the asset was observed last."""
        current = self._cache.get(quote.asset)
        if current is not None and current.observed_at > quote.observed_at:
            return current
        self._cache[quote.asset] = quote
        return quote

    def cached(self, asset: str) -> PriceQuote | None:
        """Latest cached quote, fresh or not."""
        return self._cache.get(asset.lower())

    def invalidate(self, asset: str | None = None) -> None:
        if asset is None:
            self._cache.clear()
        else:
            self._cache.pop(asset.lower(), None)

    # ------------------------------------------------------------------
    # Fetching
    # ------------------------------------------------------------------

    async def _read_external(self, asset: str) -> int | None:
        if self._external is None:
            return None
        async with self._semaphore:
            try:
                return await self._external.read_external_price(asset)
            except Exception as e:
                logger.warning("External price for %s unavailable: %s", asset, e)
                return None

    async def _read_market(self, asset: str) -> int | None:
        if self._market is None:
            return None
        async with self._semaphore:
            try:
                return await self._market.read_market_price(asset)
            except Exception as e:
                logger.debug("Market price for %s unavailable: %s", asset, e)
                return None

    async def _read_secondary(self, asset: str) -> tuple[int | None, int | None]:
        external, market = await asyncio.gather(
            self._read_external(asset), self._read_market(asset)
        )
        return external, market

    def _build(
        self,
        asset: str,
        oracle_price: int,
        external_price: int | None,
        market_price: int | None = None,
    ) -> PriceQuote:
        discrepancy = compute_discrepancy(oracle_price, external_price)
        if discrepancy is not None and discrepancy > self._threshold:
            logger.info(
                "Price discrepancy for %s: %.2f%% (oracle %d, external %d)",
                asset, discrepancy, oracle_price, external_price,
            )
        return PriceQuote(
            asset=asset,
            oracle_price=oracle_price,
            external_price=external_price,
            market_price=market_price,
            observed_at=self._clock(),
            discrepancy_pct=discrepancy,
        )

    async def quote(self, asset: str) -> PriceQuote:
        """Return a fresh quote for one asset, fetching it if the cache is stale.

        Raises:
            SourceUnavailable: the canonical oracle could not be read.
        """
        asset = asset.lower()
        async with self._locks[asset]:
            cached = self._cache.get(asset)
            if self._is_fresh(cached):
                return cached

            try:
                oracle_price = await self._oracle.read_oracle_price(asset)
            except ReadError as e:
                raise SourceUnavailable(f"Oracle price for {asset} unavailable: {e}") from e

            external_price, market_price = await self._read_secondary(asset)
            return self._store(self._build(asset, oracle_price, external_price, market_price))

    async def quotes(self, assets: list[str]) -> dict[str, PriceQuote]:
        """Quotes for many assets: one batched oracle read for the stale ones.

        Raises:
            SourceUnavailable: the canonical oracle could not be read.
        """
        wanted = list(dict.fromkeys(a.lower() for a in assets))
        stale = [a for a in wanted if not self._is_fresh(self._cache.get(a))]

        if stale:
            try:
                oracle_prices = await self._oracle.read_oracle_prices(stale)
            except ReadError as e:
                raise SourceUnavailable(f"Batched oracle read failed: {e}") from e

            secondary = await asyncio.gather(*(self._read_secondary(a) for a in stale))
            for asset, oracle_price, (external_price, market_price) in zip(
                stale, oracle_prices, secondary
            ):
                self._store(self._build(asset, oracle_price, external_price, market_price))
            logger.debug("Refreshed %d of %d quotes", len(stale), len(wanted))

        return {a: self._cache[a] for a in wanted}

    # ------------------------------------------------------------------
    # Discrepancy queries
    # ------------------------------------------------------------------

    def discrepancy(self, asset: str) -> float | None:
        quote = self._cache.get(asset.lower())
        return quote.discrepancy_pct if quote else None

    def has_discrepancy(self, asset: str) -> bool:
        """True when the latest cached quote deviates beyond the threshold."""
        discrepancy = self.discrepancy(asset)
        if discrepancy is None:
            return False
        return discrepancy > self._threshold

    @property
    def threshold(self) -> float:
        return self._threshold
