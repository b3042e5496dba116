"""Aave V3 liquidation executor — signs, submits and tracks transactions."""
from __future__ import annotations

import asyncio
import logging
from typing import Any

from eth_account import Account
from eth_utils import to_checksum_address, to_hex

from ...config import ExecutionConfig, ProfitConfig, ProtocolConfig, WalletConfig
from ...errors import ReadError, SettlementFailed
from ...interfaces.chain import ChainClient
from ...models import LiquidationParams, SettlementHandle, SettlementReceipt
from . import abi

logger = logging.getLogger(__name__)


class AaveExecutor:
    """Submits liquidation transactions and waits for their settlement.

    Implements the ``LiquidationExecutor`` protocol. Transactions are legacy
    (``gasPrice``) transactions signed locally with the operator key.
    """

    def __init__(
        self,
        chain_client: ChainClient,
        protocol: ProtocolConfig,
        wallet: WalletConfig,
        execution: ExecutionConfig,
        profit: ProfitConfig,
        chain_id: int,
    ) -> None:
        self._client = chain_client
        self._pool = to_checksum_address(protocol.pool)
        self._flash_loan_executor = protocol.flash_loan_executor
        self._account = Account.from_key(wallet.private_key)
        self._execution = execution
        self._profit = profit
        self._chain_id = chain_id
        self._nonce_lock = asyncio.Lock()

    @property
    def address(self) -> str:
        return self._account.address

    def _gas_limit(self, estimate: int) -> int:
        return int(estimate * self._execution.gas_limit_buffer)

    async def _send(self, to: str, data: bytes, gas_limit: int, gas_price: int) -> SettlementHandle:
        async with self._nonce_lock:
            nonce = await self._client.get_transaction_count(self.address, "pending")
            tx: dict[str, Any] = {
                "to": to_checksum_address(to),
                "data": data,
                "value": 0,
                "gas": gas_limit,
                "gasPrice": gas_price,
                "nonce": nonce,
                "chainId": self._chain_id,
            }
            signed = self._account.sign_transaction(tx)
            local_hash = to_hex(signed.hash)
            try:
                tx_hash = await self._client.send_raw_transaction(signed.raw_transaction)
            except ReadError as e:
                # A node may have accepted the transaction before the error
                # surfaced ("already known"); settlement is tracked by hash.
                logger.warning(
                    "Broadcast of %s reported an error, tracking by hash: %s", local_hash, e
                )
                tx_hash = local_hash
        logger.info("Transaction sent: %s (nonce %d)", tx_hash, nonce)
        return SettlementHandle(reference=tx_hash, gas_price=gas_price)

    # ------------------------------------------------------------------
    # LiquidationExecutor
    # ------------------------------------------------------------------

    async def current_gas_price(self) -> int:
        return await self._client.gas_price()

    async def balance_of(self, asset: str) -> int:
        raw = await self._client.eth_call(asset, abi.encode_balance_of(self.address))
        if not raw:
            raise ReadError(f"Empty balanceOf return for {asset}")
        return abi.decode_uint(raw)

    async def approve(self, asset: str, amount: int, gas_price: int) -> SettlementHandle:
        logger.info("Approving %d of %s to pool %s", amount, asset, self._pool)
        return await self._send(
            asset,
            abi.encode_approve(self._pool, amount),
            self._execution.approve_gas_limit,
            gas_price,
        )

    async def submit_liquidation(
        self, params: LiquidationParams, gas_price: int
    ) -> SettlementHandle:
        return await self._send(
            self._pool,
            abi.encode_liquidation_call(params),
            self._gas_limit(self._profit.direct_gas_limit),
            gas_price,
        )

    async def submit_flash_loan_liquidation(
        self, asset: str, amount: int, encoded_params: bytes, gas_price: int
    ) -> SettlementHandle:
        data = abi.encode_flash_loan(
            receiver=self._flash_loan_executor,
            asset=asset,
            amount=amount,
            on_behalf_of=self.address,
            params=encoded_params,
        )
        return await self._send(
            self._pool,
            data,
            self._gas_limit(self._profit.flash_loan_gas_limit),
            gas_price,
        )

    async def await_settlement(self, handle: SettlementHandle) -> SettlementReceipt:
        """Poll for the receipt until it has the configured confirmations.

        Raises:
            SettlementFailed: when no confirmed receipt appears before the
                settlement timeout.
        """
        loop = asyncio.get_running_loop()
        deadline = loop.time() + self._execution.settlement_timeout_seconds
        confirmations = self._execution.confirmations

        while loop.time() < deadline:
            try:
                receipt = await self._client.get_transaction_receipt(handle.reference)
                if receipt is not None:
                    head = await self._client.block_number()
                    if head - receipt["blockNumber"] + 1 >= confirmations:
                        return SettlementReceipt(
                            success=receipt["status"] == 1,
                            gas_used=receipt["gasUsed"],
                            effective_gas_price=receipt["effectiveGasPrice"]
                            or handle.gas_price,
                            reference=receipt["transactionHash"],
                            block_number=receipt["blockNumber"],
                        )
            except ReadError as e:
                logger.warning("Receipt poll for %s failed: %s", handle.reference, e)
            await asyncio.sleep(self._execution.poll_interval_seconds)

        raise SettlementFailed(
            f"No confirmed receipt for {handle.reference} within "
            f"{self._execution.settlement_timeout_seconds:.0f}s"
        )
