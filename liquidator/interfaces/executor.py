"""Liquidation executor protocol — transaction submission and settlement."""
from typing import Protocol

from ..models import LiquidationParams, SettlementHandle, SettlementReceipt


class LiquidationExecutor(Protocol):
    """Two-phase submit / await interface over the settlement protocol."""

    async def current_gas_price(self) -> int: ...

    async def balance_of(self, asset: str) -> int: ...

    async def approve(
        self, asset: str, amount: int, gas_price: int
    ) -> SettlementHandle: ...

    async def submit_liquidation(
        self, params: LiquidationParams, gas_price: int
    ) -> SettlementHandle: ...

    async def submit_flash_loan_liquidation(
        self, asset: str, amount: int, encoded_params: bytes, gas_price: int
    ) -> SettlementHandle: ...

    async def await_settlement(self, handle: SettlementHandle) -> SettlementReceipt: ...
