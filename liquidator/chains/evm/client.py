"""EVM JSON-RPC client with fallback support."""
import logging
import ssl
from typing import Any

import aiohttp
import certifi

from ...config import ChainConfig
from ...errors import ReadError

logger = logging.getLogger(__name__)


def _hex_to_int(value: str | None) -> int:
    if not value:
        return 0
    return int(value, 16)


class EvmClient:
    """EVM RPC client with automatic endpoint fallback."""

    def __init__(self, config: ChainConfig) -> None:
        self.endpoints = list(config.rpc_endpoints)
        self.timeout = config.rpc_timeout
        self.chain_id = config.chain_id
        self.current_rpc_index = 0

    async def rpc_call(self, method: str, params: list[Any]) -> Any:
        """Make RPC call with fallback to alternative endpoints.

        Raises:
            ReadError: when every endpoint failed.
        """
        payload = {"jsonrpc": "2.0", "id": 1, "method": method, "params": params}

        ssl_context = ssl.create_default_context(cafile=certifi.where())

        last_error: Exception | None = None
        for attempt in range(len(self.endpoints)):
            rpc_index = (self.current_rpc_index + attempt) % len(self.endpoints)
            rpc_url = self.endpoints[rpc_index]

            try:
                connector = aiohttp.TCPConnector(ssl=ssl_context)
                async with aiohttp.ClientSession(connector=connector) as session:
                    async with session.post(
                        rpc_url,
                        json=payload,
                        timeout=aiohttp.ClientTimeout(total=self.timeout),
                    ) as response:
                        result = await response.json()
                        if "error" in result:
                            raise RuntimeError(f"RPC Error: {result['error']}")

                        if rpc_index != self.current_rpc_index:
                            logger.info("Switched to RPC endpoint: %s", rpc_url)
                            self.current_rpc_index = rpc_index

                        return result.get("result")
            except Exception as e:
                last_error = e
                logger.warning("RPC endpoint %s failed on %s: %s", rpc_url, method, e)
                if attempt < len(self.endpoints) - 1:
                    logger.info("Trying next endpoint...")
                continue

        raise ReadError(f"All RPC endpoints failed. Last error: {last_error}")

    async def eth_call(self, to: str, data: bytes, block: str = "latest") -> bytes:
        """Execute a read-only contract call and return the raw return data."""
        result = await self.rpc_call(
            "eth_call", [{"to": to, "data": "0x" + data.hex()}, block]
        )
        if not result:
            return b""
        return bytes.fromhex(result[2:] if result.startswith("0x") else result)

    async def gas_price(self) -> int:
        return _hex_to_int(await self.rpc_call("eth_gasPrice", []))

    async def block_number(self) -> int:
        return _hex_to_int(await self.rpc_call("eth_blockNumber", []))

    async def get_transaction_count(self, address: str, block: str = "pending") -> int:
        return _hex_to_int(
            await self.rpc_call("eth_getTransactionCount", [address, block])
        )

    async def send_raw_transaction(self, raw_tx: bytes) -> str:
        """Broadcast a signed transaction and return its hash."""
        return await self.rpc_call("eth_sendRawTransaction", ["0x" + raw_tx.hex()])

    async def get_transaction_receipt(self, tx_hash: str) -> dict[str, Any] | None:
        """Return the decoded receipt, or None while the transaction is pending."""
        receipt = await self.rpc_call("eth_getTransactionReceipt", [tx_hash])
        if not receipt:
            return None
        return {
            "transactionHash": receipt.get("transactionHash", tx_hash),
            "status": _hex_to_int(receipt.get("status")),
            "blockNumber": _hex_to_int(receipt.get("blockNumber")),
            "gasUsed": _hex_to_int(receipt.get("gasUsed")),
            "effectiveGasPrice": _hex_to_int(receipt.get("effectiveGasPrice")),
        }
