"""Chain client protocol — EVM JSON-RPC abstraction."""
from typing import Any, Protocol


class ChainClient(Protocol):
    """Abstract interface for the JSON-RPC calls the adapters need."""

    async def eth_call(self, to: str, data: bytes, block: str = "latest") -> bytes: ...

    async def gas_price(self) -> int: ...

    async def block_number(self) -> int: ...

    async def get_transaction_count(self, address: str, block: str = "pending") -> int: ...

    async def send_raw_transaction(self, raw_tx: bytes) -> str: ...

    async def get_transaction_receipt(self, tx_hash: str) -> dict[str, Any] | None: ...
