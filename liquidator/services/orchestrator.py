"""Execution orchestration — gating, financing paths and settlement tracking."""
from __future__ import annotations

import asyncio
import logging
import time
from typing import Callable, Sequence

from ..config import ExecutionConfig
from ..errors import GasPriceTooHigh, InsufficientBalance, LiquidatorError, SettlementFailed
from ..interfaces.executor import LiquidationExecutor
from ..models import (
    ExecutionResult,
    FinancingMode,
    LiquidationParams,
    OrchestratorState,
    ProfitEstimate,
    SettlementHandle,
)
from ..protocols.aave import abi

logger = logging.getLogger(__name__)


class ExecutionOrchestrator:
    """Executes at most one liquidation at a time, subject to a cooldown.

    States: IDLE -> SCANNING -> (NO_OPPORTUNITY -> IDLE)
                              | (EXECUTING -> SETTLED | FAILED -> IDLE)

    ``execute`` returns None without side effects while an execution is in
    flight or the cooldown has not elapsed. Pre-flight aborts (gas ceiling,
    insufficient balance, failed pre-flight reads) come back as a failed
    ``ExecutionResult`` but never enter EXECUTING or ``history``. Everything
    past pre-flight, reverted transactions included, is appended to
    ``history``.
    """

    def __init__(
        self,
        executor: LiquidationExecutor | None,
        config: ExecutionConfig,
        dry_run: bool = False,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._executor = executor
        self._config = config
        self._dry_run = dry_run
        self._clock = clock

        self._lock = asyncio.Lock()
        self._state = OrchestratorState.IDLE
        self._in_flight = False
        self._last_execution: float | None = None
        self._task: asyncio.Task | None = None
        self._submitted = False
        self._history: list[ExecutionResult] = []

    # ------------------------------------------------------------------
    # State
    # ------------------------------------------------------------------

    @property
    def state(self) -> OrchestratorState:
        return self._state

    @property
    def history(self) -> list[ExecutionResult]:
        return list(self._history)

    @property
    def last_execution_at(self) -> float | None:
        return self._last_execution

    @property
    def in_flight(self) -> bool:
        return self._in_flight

    def _transition(self, state: OrchestratorState) -> None:
        logger.debug("Orchestrator %s -> %s", self._state.value, state.value)
        self._state = state

    def cooldown_remaining(self) -> float:
        if self._last_execution is None:
            return 0.0
        elapsed = self._clock() - self._last_execution
        return max(0.0, self._config.cooldown_seconds - elapsed)

    def begin_scan(self) -> None:
        """Mark the start of a cycle's candidate evaluation."""
        if self._state is OrchestratorState.IDLE:
            self._transition(OrchestratorState.SCANNING)

    def end_scan(self) -> None:
        """Return to IDLE from a scan that did not reach execution."""
        if self._state is OrchestratorState.SCANNING:
            self._transition(OrchestratorState.IDLE)

    async def _acquire(self) -> bool:
        async with self._lock:
            if self._in_flight:
                logger.info("Execution already in flight; skipping")
                return False
            if self.cooldown_remaining() > 0:
                logger.info("Cooldown active (%.0fs left); skipping", self.cooldown_remaining())
                return False
            self._in_flight = True
            return True

    def _abort(self) -> None:
        self._in_flight = False
        self._transition(OrchestratorState.IDLE)

    async def _release(self, result: ExecutionResult, reset_cooldown: bool) -> None:
        async with self._lock:
            if reset_cooldown:
                self._last_execution = self._clock()
            self._history.append(result)
            self._in_flight = False
            self._transition(
                OrchestratorState.SETTLED if result.success else OrchestratorState.FAILED
            )
            self._transition(OrchestratorState.IDLE)

    # ------------------------------------------------------------------
    # Execution
    # ------------------------------------------------------------------

    def _params(self, estimate: ProfitEstimate) -> LiquidationParams:
        return LiquidationParams(
            collateral_asset=estimate.collateral_asset.asset,
            debt_asset=estimate.debt_asset.asset,
            user=estimate.position.address,
            debt_to_cover=estimate.debt_to_cover,
            receive_a_token=self._config.receive_a_token,
        )

    async def _preflight(self, params: LiquidationParams, financing: FinancingMode) -> int:
        """Gas ceiling and, on the direct path, balance checks. Returns the gas price."""
        gas_price = await self._executor.current_gas_price()
        if gas_price > self._config.max_gas_price_wei:
            raise GasPriceTooHigh(
                f"Gas price {gas_price / 1e9:.1f} gwei above ceiling "
                f"{self._config.max_gas_price_gwei:.1f} gwei"
            )
        if financing is FinancingMode.DIRECT:
            balance = await self._executor.balance_of(params.debt_asset)
            if balance < params.debt_to_cover:
                raise InsufficientBalance(
                    f"Balance {balance} below debt to cover {params.debt_to_cover}"
                )
        return gas_price

    async def _submit_direct(self, params: LiquidationParams, gas_price: int) -> SettlementHandle:
        approval = await self._executor.approve(params.debt_asset, params.debt_to_cover, gas_price)
        self._submitted = True
        receipt = await self._executor.await_settlement(approval)
        if not receipt.success:
            raise SettlementFailed(f"Approval {approval.reference} reverted")

        return await self._executor.submit_liquidation(params, gas_price)

    async def _submit_flash_loan(self, params: LiquidationParams, gas_price: int) -> SettlementHandle:
        encoded = abi.encode_liquidation_params(params)
        return await self._executor.submit_flash_loan_liquidation(
            params.debt_asset, params.debt_to_cover, encoded, gas_price
        )

    @staticmethod
    def _fields(params: LiquidationParams, financing: FinancingMode) -> dict:
        return {
            "user": params.user,
            "debt_asset": params.debt_asset,
            "collateral_asset": params.collateral_asset,
            "financing": financing,
        }

    async def _run(
        self, estimate: ProfitEstimate, params: LiquidationParams, gas_price: int
    ) -> ExecutionResult:
        base = self._fields(params, estimate.financing)
        self._submitted = False
        handle: SettlementHandle | None = None

        try:
            if estimate.financing is FinancingMode.DIRECT:
                handle = await self._submit_direct(params, gas_price)
            else:
                handle = await self._submit_flash_loan(params, gas_price)
            self._submitted = True

            receipt = await self._executor.await_settlement(handle)
            if receipt.success:
                logger.info(
                    "Liquidation of %s settled: %s (gas used %d)",
                    params.user, receipt.reference, receipt.gas_used,
                )
            else:
                logger.error("Liquidation of %s reverted: %s", params.user, receipt.reference)
            result = ExecutionResult(
                success=receipt.success,
                reference=receipt.reference,
                error=None if receipt.success else SettlementFailed.reason,
                gas_used=receipt.gas_used,
                gas_cost_wei=receipt.gas_used * receipt.effective_gas_price,
                **base,
            )
        except LiquidatorError as e:
            logger.error("Execution for %s failed: %s", params.user, e)
            result = ExecutionResult(
                success=False,
                reference=handle.reference if handle else None,
                error=e.reason,
                **base,
            )
        except Exception as e:
            logger.exception("Unexpected execution error for %s", params.user)
            result = ExecutionResult(
                success=False,
                reference=handle.reference if handle else None,
                error=type(e).__name__,
                **base,
            )

        await self._release(result, reset_cooldown=self._submitted)
        return result

    async def execute(self, estimate: ProfitEstimate) -> ExecutionResult | None:
        """Execute one estimate, or return None when gated by cooldown or in-flight work."""
        if self._dry_run or self._executor is None:
            logger.info(
                "[dry-run] Would liquidate %s: cover %d %s for %d %s (net $%.2f, %s)",
                estimate.position.address,
                estimate.debt_to_cover, estimate.debt_asset.symbol,
                estimate.collateral_to_receive, estimate.collateral_asset.symbol,
                estimate.net_profit, estimate.financing.value,
            )
            self.end_scan()
            return None

        if not await self._acquire():
            if not self._in_flight:
                self.end_scan()
            return None

        params = self._params(estimate)
        try:
            gas_price = await self._preflight(params, estimate.financing)
        except asyncio.CancelledError:
            self._abort()
            raise
        except LiquidatorError as e:
            logger.warning("Execution for %s aborted: %s", params.user, e)
            self._abort()
            return ExecutionResult(
                success=False, error=e.reason, **self._fields(params, estimate.financing)
            )
        except Exception as e:
            logger.exception("Unexpected pre-flight error for %s", params.user)
            self._abort()
            return ExecutionResult(
                success=False, error=type(e).__name__, **self._fields(params, estimate.financing)
            )

        self._transition(OrchestratorState.EXECUTING)
        self._task = asyncio.ensure_future(self._run(estimate, params, gas_price))
        # Cancelling the caller must not abandon a submitted transaction.
        return await asyncio.shield(self._task)

    async def execute_best(self, ranked: Sequence[ProfitEstimate]) -> ExecutionResult | None:
        """Execute the first profitable candidate of a ranked list."""
        self.begin_scan()
        best = next((e for e in ranked if e.profitable), None)
        if best is None:
            if self._state is OrchestratorState.SCANNING:
                self._transition(OrchestratorState.NO_OPPORTUNITY)
                self._transition(OrchestratorState.IDLE)
            return None

        logger.info(
            "Best opportunity: %s %s/%s net $%.2f priority %.2f",
            best.position.address, best.debt_asset.symbol,
            best.collateral_asset.symbol, best.net_profit, best.priority,
        )
        return await self.execute(best)

    async def drain(self) -> None:
        """Wait for an in-flight execution to reach a terminal state."""
        task = self._task
        if task is not None and not task.done():
            logger.info("Waiting for in-flight execution to settle")
            await task
