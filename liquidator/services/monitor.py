"""Monitoring orchestration — one cycle: scan, price, estimate, rank, execute."""
from __future__ import annotations

import asyncio
import logging
from dataclasses import replace
from datetime import datetime, timezone
from typing import Any

from ..chains.evm import EvmClient
from ..config import AppConfig
from ..interfaces.notifier import Notifier
from ..interfaces.price_oracle import ExternalPriceSource
from ..models import (
    ExecutionResult,
    MarketSnapshot,
    Position,
    PositionStatus,
    ProfitEstimate,
    category_name,
)
from ..notifications import EmailNotifier, TelegramNotifier
from ..oracles import CoinGeckoPriceSource, PythPriceSource
from ..protocols.aave import AaveExecutor, AaveV3Adapter
from .orchestrator import ExecutionOrchestrator
from .position_tracker import PositionTracker
from .price_aggregator import PriceAggregator
from .profit_calculator import ProfitCalculator
from .strategies import StrategySelector, analyze_emode

logger = logging.getLogger(__name__)

# Registry of independent price source factories keyed by provider name.
_EXTERNAL_SOURCES: dict[str, Any] = {
    "coingecko": lambda prices: CoinGeckoPriceSource(prices.coingecko),
    "pyth": lambda prices: PythPriceSource(prices.pyth),
}

_STATUS_LABELS = {
    PositionStatus.LIQUIDATABLE: "🚨 Liquidatable",
    PositionStatus.WATCH: "⚠️ Watch",
    PositionStatus.HEALTHY: "✅ Healthy",
}


class Monitor:
    """Builds every service once and drives the monitoring loop."""

    def __init__(self, config: AppConfig, dry_run: bool | None = None) -> None:
        self._config = config
        self.dry_run = config.monitor.dry_run if dry_run is None else dry_run
        concurrency = config.monitor.max_concurrency

        self.chain_client = EvmClient(config.chain)
        self.adapter = AaveV3Adapter(self.chain_client, config.protocol, concurrency)

        factory = _EXTERNAL_SOURCES.get(config.prices.external_provider)
        external: ExternalPriceSource | None = factory(config.prices) if factory else None

        self.aggregator = PriceAggregator(
            self.adapter,
            external,
            config.prices,
            concurrency,
            market=self.adapter if self.adapter.has_quoter else None,
        )
        self.tracker = PositionTracker(self.adapter, config.thresholds, concurrency)
        self.calculator = ProfitCalculator(
            config.profit, config.thresholds, config.execution.financing
        )
        self.selector = StrategySelector(self.aggregator, config.strategies)
        self.ranker = self.selector.ranker()

        executor = None
        if config.wallet.private_key:
            executor = AaveExecutor(
                self.chain_client,
                config.protocol,
                config.wallet,
                config.execution,
                config.profit,
                config.chain.chain_id,
            )
        self.orchestrator = ExecutionOrchestrator(
            executor, config.execution, dry_run=self.dry_run
        )

        self._notifiers: list[Notifier] = []
        if config.notifications.telegram.enabled:
            self._notifiers.append(TelegramNotifier(config.notifications.telegram))
        if config.notifications.email.enabled:
            self._notifiers.append(EmailNotifier(config.notifications.email))

        self._alerted: set[str] = set()
        self._stop = asyncio.Event()
        self._initialized = False

    # ------------------------------------------------------------------
    # Formatting helpers
    # ------------------------------------------------------------------

    @staticmethod
    def _format_wallet(address: str) -> str:
        if len(address) > 16:
            return f"{address[:10]}...{address[-6:]}"
        return address

    @staticmethod
    def _now_str() -> str:
        return datetime.now(timezone.utc).strftime("%Y-%m-%d %H:%M:%S")

    @staticmethod
    def _symbols(position: Position, collateral: bool) -> str:
        assets = position.collateral_assets if collateral else position.debt_assets
        return ", ".join(a.symbol for a in assets) if assets else "—"

    def _build_liquidatable_alert(self, position: Position) -> str:
        return (
            f"🚨 LIQUIDATABLE — HF {position.health_factor_ratio:.4f}\n"
            f"\n"
            f"Borrower: {self._format_wallet(position.address)}\n"
            f"E-Mode: {category_name(position.emode)}\n"
            f"\n"
            f"Collateral: {self._symbols(position, True)}\n"
            f"  ${position.collateral_value:,.2f}\n"
            f"Debt: {self._symbols(position, False)}\n"
            f"  ${position.debt_value:,.2f}\n"
            f"\n"
            f"{self._now_str()} UTC"
        )

    def _build_execution_message(
        self, estimate: ProfitEstimate | None, result: ExecutionResult
    ) -> str:
        status = "✅ SETTLED" if result.success else f"❌ FAILED ({result.error})"
        lines = [
            f"⚡ Liquidation {status}",
            "",
            f"Borrower: {self._format_wallet(result.user)}",
            f"Financing: {result.financing.value if result.financing else '—'}",
        ]
        if estimate is not None:
            lines += [
                f"Pair: {estimate.debt_asset.symbol} → {estimate.collateral_asset.symbol}",
                f"Expected net: ${estimate.net_profit:,.2f}",
            ]
        if result.reference:
            lines.append(f"Tx: {result.reference}")
        if result.gas_used:
            lines.append(f"Gas used: {result.gas_used:,}")
        lines += ["", f"{self._now_str()} UTC"]
        return "\n".join(lines)

    # ------------------------------------------------------------------
    # Notification dispatch
    # ------------------------------------------------------------------

    async def _send_log(self, message: str, silent: bool = False) -> None:
        for notifier in self._notifiers:
            try:
                await notifier.send_log(message, silent=silent)
            except Exception as e:
                logger.error("Notifier send_log failed: %s", e)

    async def _send_alert(self, message: str, subject: str = "") -> None:
        for notifier in self._notifiers:
            try:
                await notifier.send_alert(message, subject=subject)
            except Exception as e:
                logger.error("Notifier send_alert failed: %s", e)

    # ------------------------------------------------------------------
    # Core workflows
    # ------------------------------------------------------------------

    async def initialize(self) -> None:
        """Load the reserve table and seed the monitored set from the watchlist.

        Raises:
            ReadError: the protocol could not be reached.
        """
        await self.tracker.initialize()
        await self.tracker.scan_watchlist(self._config.watchlist.addresses)
        self._initialized = True

    async def subscribe(self, address: str) -> Position:
        """Monitor ``address`` from now on, whatever its health factor."""
        return await self.tracker.subscribe(address)

    async def unsubscribe(self, address: str) -> None:
        await self.tracker.unsubscribe(address)
        self._alerted.discard(address.lower())

    async def snapshot(self, positions: list[Position]) -> MarketSnapshot:
        """Quotes for every asset in ``positions`` plus one gas price read."""
        native = self._config.prices.native_asset
        assets = [native]
        for position in positions:
            assets.extend(a.asset for a in position.collateral_assets)
            assets.extend(a.asset for a in position.debt_assets)

        quotes, gas_price = await asyncio.gather(
            self.aggregator.quotes(assets), self.chain_client.gas_price()
        )
        return MarketSnapshot(quotes=quotes, gas_price=gas_price, native_asset=native)

    def evaluate(self, positions: list[Position], market: MarketSnapshot) -> list[ProfitEstimate]:
        estimates: list[ProfitEstimate] = []
        for position in positions:
            estimates.extend(self.calculator.estimate_position(position, market))
        ranked = self.ranker.rank(estimates)
        logger.info(
            "Evaluated %d pairs across %d positions; %d profitable",
            len(ranked), len(positions), sum(1 for e in ranked if e.profitable),
        )
        return ranked

    async def _alert_new(self, positions: list[Position]) -> None:
        current = {p.address for p in positions}
        for position in positions:
            if position.address in self._alerted:
                continue
            await self._send_alert(
                self._build_liquidatable_alert(position),
                subject="🚨 Liquidatable position",
            )
        self._alerted = current

    async def run_cycle(self) -> ExecutionResult | None:
        """One monitoring cycle. Returns the execution result, if any."""
        if not self._initialized:
            await self.initialize()
        else:
            await self.tracker.scan_watchlist(self._config.watchlist.addresses)

        self.orchestrator.begin_scan()
        try:
            positions = await self.tracker.liquidatable_positions()
            await self._alert_new(positions)
            if not positions:
                return await self.orchestrator.execute_best([])

            market = await self.snapshot(positions)
            ranked = self.evaluate(positions, market)
            best = ranked[0] if ranked else None
            await self._send_log(
                f"📊 {len(positions)} liquidatable · {len(ranked)} pairs · "
                f"best net ${best.net_profit:,.2f}" if best else
                f"📊 {len(positions)} liquidatable · no priced pairs",
                silent=True,
            )
            result = await self.orchestrator.execute_best(ranked)
        finally:
            # A cycle that fails before execution must not stay in SCANNING.
            self.orchestrator.end_scan()

        if result is None:
            return None

        estimate = next(
            (
                e for e in ranked
                if e.position.address == result.user
                and e.debt_asset.asset == result.debt_asset
                and e.collateral_asset.asset == result.collateral_asset
            ),
            None,
        )
        await self._send_alert(
            self._build_execution_message(estimate, result),
            subject="⚡ Liquidation executed" if result.success else "❌ Liquidation failed",
        )
        if result.success:
            await self.tracker.refresh_after_execution(result.user)
            self.aggregator.invalidate()
        return result

    # ------------------------------------------------------------------
    # Reports
    # ------------------------------------------------------------------

    async def position_statuses(self) -> list[tuple[Position, PositionStatus]]:
        """Current summary and classification for watchlist and monitored addresses."""
        addresses = list(
            dict.fromkeys(
                [a.lower() for a in self._config.watchlist.addresses]
                + list(self.tracker.monitored)
            )
        )

        async def read(address: str) -> Position | None:
            try:
                return await self.tracker.refresh_account_summary(address)
            except Exception as e:
                logger.error("Error reading position %s: %s", address, e)
                return None

        results = await asyncio.gather(*(read(a) for a in addresses))
        statuses = []
        for position in results:
            if position is None:
                continue
            monitored = self.tracker.monitored.get(position.address)
            if monitored is not None:
                position = replace(monitored, health_factor=position.health_factor)
            statuses.append((position, self.tracker.classify(position.health_factor)))
        statuses.sort(key=lambda item: item[0].health_factor)
        return statuses

    def format_positions(self, statuses: list[tuple[Position, PositionStatus]]) -> str:
        if not statuses:
            return "No positions found."
        lines = []
        for position, status in statuses:
            lines.append(
                f"{_STATUS_LABELS[status]} · {self._format_wallet(position.address)}\n"
                f"  HF: {position.health_factor_ratio:.4f} · "
                f"E-Mode: {category_name(position.emode)}\n"
                f"  Collateral: ${position.collateral_value:,.2f} · "
                f"Debt: ${position.debt_value:,.2f}"
            )
        return "\n\n".join(lines)

    def _format_history(self) -> str:
        history = self.orchestrator.history
        if not history:
            return "No executions yet."
        settled = [r for r in history if r.success]
        failed = [r for r in history if not r.success]
        gas_wei = sum(r.gas_cost_wei for r in history)
        lines = [
            f"Executions: {len(history)} · Settled: {len(settled)} · Failed: {len(failed)}",
            f"Gas spent: {gas_wei / 1e18:.6f} native",
        ]
        for result in history[-5:]:
            outcome = "✅" if result.success else f"❌ {result.error}"
            lines.append(
                f"  {result.timestamp:%Y-%m-%d %H:%M:%S} {outcome} "
                f"{self._format_wallet(result.user)}"
            )
        return "\n".join(lines)

    async def generate_report(self, send: bool = True) -> str:
        """Positions grouped by status, E-Mode analysis and execution history."""
        if not self._initialized:
            await self.initialize()

        statuses = await self.position_statuses()
        sections = [self.format_positions(statuses)]

        emode_lines = []
        for position in self.tracker.monitored.values():
            try:
                analysis = await analyze_emode(position, self.aggregator)
            except Exception as e:
                logger.warning("E-Mode analysis for %s failed: %s", position.address, e)
                continue
            if analysis is None:
                continue
            flagged = ", ".join(
                f"{a.symbol} {a.discrepancy_pct:.2f}%" for a in analysis.assets if a.flagged
            )
            emode_lines.append(
                f"{self._format_wallet(analysis.address)} · {analysis.category_name} · "
                f"HF {analysis.health_factor:.4f}"
                + (f" · deviation: {flagged}" if flagged else "")
            )
        if emode_lines:
            sections.append("E-Mode positions\n" + "\n".join(emode_lines))

        sections.append(self._format_history())

        report = (
            f"📋 Liquidation Engine Report\n"
            f"\n"
            + "\n\n".join(sections)
            + f"\n\n{self._now_str()} UTC"
        )
        if send:
            await self._send_alert(report, subject="📋 Liquidation Engine Report")
            logger.info("Report sent")
        return report

    # ------------------------------------------------------------------
    # Loop control
    # ------------------------------------------------------------------

    def stop(self) -> None:
        """Stop scheduling cycles; the current cycle finishes first."""
        self._stop.set()

    async def run_continuous(self, check_interval_seconds: int | None = None) -> None:
        """Run the monitoring loop until ``stop`` is called."""
        interval = check_interval_seconds or self._config.monitor.check_interval_seconds
        backoff = self._config.monitor.error_backoff_seconds
        logger.info(
            "Starting continuous monitoring (every %ds%s)",
            interval, ", dry-run" if self.dry_run else "",
        )

        while not self._stop.is_set():
            try:
                await self.run_cycle()
                delay = interval
            except Exception as e:
                logger.error("Error in monitoring loop: %s", e)
                delay = backoff

            try:
                await asyncio.wait_for(self._stop.wait(), timeout=delay)
            except asyncio.TimeoutError:
                pass

        await self.orchestrator.drain()
        logger.info("Monitoring stopped")
