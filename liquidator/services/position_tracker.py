"""Position tracking — monitored borrowers, health factors and exposures."""
from __future__ import annotations

import asyncio
import logging
from dataclasses import replace

from ..config import ThresholdsConfig
from ..errors import ReadError
from ..interfaces.lending_pool import LendingPool
from ..models import AssetExposure, Position, PositionStatus, ReserveConfig, to_wad

logger = logging.getLogger(__name__)


class PositionTracker:
    """Maintains the monitored set and classifies positions by health factor.

    The monitored set grows only through ``scan_watchlist`` and ``subscribe``.
    ``liquidatable_positions`` may shrink it (healthy-streak eviction) but
    never adds to it.
    """

    def __init__(
        self,
        pool: LendingPool,
        thresholds: ThresholdsConfig,
        max_concurrency: int = 8,
    ) -> None:
        self._pool = pool
        self._watch_hf = to_wad(thresholds.watch_health_factor)
        self._liquidation_hf = to_wad(thresholds.liquidation_health_factor)
        self._eviction_cycles = thresholds.healthy_cycles_before_eviction
        self._semaphore = asyncio.Semaphore(max_concurrency)
        self._lock = asyncio.Lock()

        self._reserves: list[str] = []
        self._reserve_configs: dict[str, ReserveConfig] = {}
        self._monitored: dict[str, Position] = {}
        self._healthy_streak: dict[str, int] = {}

    # ------------------------------------------------------------------
    # Reserve configuration table
    # ------------------------------------------------------------------

    async def initialize(self) -> None:
        """Load the reserves list and per-asset configuration once."""
        await self.reload_reserves()

    async def _load_config(self, asset: str) -> ReserveConfig | None:
        async with self._semaphore:
            try:
                return await self._pool.read_reserve_config(asset)
            except ReadError as e:
                logger.warning("Skipping reserve %s: %s", asset, e)
                return None

    async def reload_reserves(self) -> None:
        """Re-read the reserves list and configuration table.

        Raises:
            ReadError: the reserves list itself could not be read.
        """
        reserves = await self._pool.read_reserves_list()
        configs = await asyncio.gather(*(self._load_config(a) for a in reserves))
        self._reserve_configs = {c.asset: c for c in configs if c is not None}
        self._reserves = [a for a in reserves if a in self._reserve_configs]
        logger.info(
            "Reserve table loaded: %d of %d reserves configured",
            len(self._reserves), len(reserves),
        )

    @property
    def reserves(self) -> list[str]:
        return list(self._reserves)

    @property
    def reserve_configs(self) -> dict[str, ReserveConfig]:
        return dict(self._reserve_configs)

    # ------------------------------------------------------------------
    # Classification
    # ------------------------------------------------------------------

    def classify(self, health_factor: int) -> PositionStatus:
        if health_factor < self._liquidation_hf:
            return PositionStatus.LIQUIDATABLE
        if health_factor < self._watch_hf:
            return PositionStatus.WATCH
        return PositionStatus.HEALTHY

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    async def refresh_account_summary(self, address: str) -> Position:
        """Aggregate collateral, debt and health factor, without exposures.

        Raises:
            ReadError: on data-source failure.
        """
        async with self._semaphore:
            summary = await self._pool.read_account_summary(address)
        return Position(
            address=address.lower(),
            health_factor=summary.health_factor,
            total_collateral_base=summary.collateral_base,
            total_debt_base=summary.debt_base,
        )

    async def build_detailed_position(self, address: str) -> Position:
        """Summary plus one ``AssetExposure`` per nonzero reserve balance.

        Raises:
            ReadError: on data-source failure.
        """
        base = await self.refresh_account_summary(address)
        emode = await self._pool.read_user_emode(address)
        user_reserves = await self._pool.read_detailed_reserves(address, self._reserves)

        collateral: list[AssetExposure] = []
        debt: list[AssetExposure] = []
        for reserve in user_reserves:
            cfg = self._reserve_configs.get(reserve.asset)
            if cfg is None:
                continue

            if reserve.collateral_balance > 0 and reserve.usage_as_collateral:
                collateral.append(
                    AssetExposure(
                        asset=reserve.asset,
                        symbol=cfg.symbol,
                        amount=reserve.collateral_balance,
                        decimals=cfg.decimals,
                        is_collateral=True,
                        liquidation_bonus_bps=cfg.liquidation_bonus_bps or None,
                        liquidation_threshold_bps=cfg.liquidation_threshold_bps or None,
                    )
                )
            if reserve.total_debt > 0:
                debt.append(
                    AssetExposure(
                        asset=reserve.asset,
                        symbol=cfg.symbol,
                        amount=reserve.total_debt,
                        decimals=cfg.decimals,
                        is_collateral=False,
                    )
                )

        return replace(
            base,
            collateral_assets=tuple(collateral),
            debt_assets=tuple(debt),
            emode_category=emode,
        )

    # ------------------------------------------------------------------
    # Monitored set
    # ------------------------------------------------------------------

    @property
    def monitored(self) -> dict[str, Position]:
        return dict(self._monitored)

    async def _track(self, position: Position) -> None:
        async with self._lock:
            self._monitored[position.address] = position
            self._healthy_streak[position.address] = 0

    async def _forget(self, address: str) -> None:
        async with self._lock:
            self._monitored.pop(address, None)
            self._healthy_streak.pop(address, None)

    async def subscribe(self, address: str) -> Position:
        """Add an address to the monitored set regardless of its health factor."""
        position = await self.refresh_account_summary(address)
        await self._track(position)
        logger.info("Subscribed %s (HF %.4f)", position.address, position.health_factor_ratio)
        return position

    async def unsubscribe(self, address: str) -> None:
        await self._forget(address.lower())
        logger.info("Unsubscribed %s", address)

    async def _scan_one(self, address: str) -> Position | None:
        try:
            summary = await self.refresh_account_summary(address)
            if summary.health_factor >= self._watch_hf:
                return None
            position = await self.build_detailed_position(address)
        except ReadError as e:
            logger.error("Error scanning health factor for %s: %s", address, e)
            return None
        await self._track(position)
        return position

    async def scan_watchlist(self, addresses: list[str] | tuple[str, ...]) -> list[Position]:
        """Detailed positions for addresses below the watch threshold."""
        results = await asyncio.gather(*(self._scan_one(a) for a in addresses))
        positions = [p for p in results if p is not None]
        logger.info(
            "Watchlist scan: %d of %d addresses below HF %.4f",
            len(positions), len(addresses), self._watch_hf / 10**18,
        )
        return positions

    async def _check_one(self, address: str) -> Position | None:
        try:
            summary = await self.refresh_account_summary(address)
        except ReadError as e:
            logger.error("Error updating health factor for %s: %s", address, e)
            return None

        status = self.classify(summary.health_factor)

        if status is PositionStatus.HEALTHY:
            async with self._lock:
                if address not in self._monitored:
                    return None
                streak = self._healthy_streak.get(address, 0) + 1
                self._healthy_streak[address] = streak
                if streak >= self._eviction_cycles:
                    self._monitored.pop(address, None)
                    self._healthy_streak.pop(address, None)
                    logger.info("Evicted %s after %d healthy cycles", address, streak)
            return None

        if status is PositionStatus.WATCH:
            async with self._lock:
                current = self._monitored.get(address)
                if current is not None:
                    self._monitored[address] = replace(
                        current,
                        health_factor=summary.health_factor,
                        total_collateral_base=summary.total_collateral_base,
                        total_debt_base=summary.total_debt_base,
                        updated_at=summary.updated_at,
                    )
                    self._healthy_streak[address] = 0
            return None

        try:
            position = await self.build_detailed_position(address)
        except ReadError as e:
            logger.error("Error refreshing detailed position for %s: %s", address, e)
            return None

        async with self._lock:
            if address in self._monitored:
                self._monitored[address] = position
                self._healthy_streak[address] = 0
        return position

    async def liquidatable_positions(self) -> list[Position]:
        """Re-read every monitored address; return those below the liquidation boundary."""
        async with self._lock:
            addresses = list(self._monitored)

        results = await asyncio.gather(*(self._check_one(a) for a in addresses))
        positions = [p for p in results if p is not None]
        logger.info(
            "Liquidatable: %d of %d monitored positions", len(positions), len(addresses)
        )
        return positions

    async def refresh_after_execution(self, address: str) -> Position | None:
        """Re-read a position after an execution; drop it once its debt is gone."""
        address = address.lower()
        try:
            position = await self.refresh_account_summary(address)
        except ReadError as e:
            logger.warning("Post-execution refresh for %s failed: %s", address, e)
            return None

        if position.total_debt_base == 0:
            await self._forget(address)
            logger.info("Dropped %s: no outstanding debt", address)
            return None

        async with self._lock:
            current = self._monitored.get(address)
            if current is not None:
                self._monitored[address] = replace(
                    current,
                    health_factor=position.health_factor,
                    total_collateral_base=position.total_collateral_base,
                    total_debt_base=position.total_debt_base,
                    updated_at=position.updated_at,
                )
        return position
