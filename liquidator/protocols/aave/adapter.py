"""Aave V3 protocol adapter — read-only pool, data provider and oracle access."""
from __future__ import annotations

import asyncio
import logging

from ...config import ProtocolConfig
from ...errors import ReadError
from ...interfaces.chain import ChainClient
from ...models import PRICE_DECIMALS, AccountSummary, ReserveConfig, UserReserve
from . import abi

logger = logging.getLogger(__name__)


class AaveV3Adapter:
    """Reads positions, reserve configuration and oracle prices from Aave V3.

    Implements the ``LendingPool``, ``CanonicalOracle`` and ``MarketPriceSource``
    protocols.
    """

    def __init__(
        self,
        chain_client: ChainClient,
        config: ProtocolConfig,
        max_concurrency: int = 8,
    ) -> None:
        self._client = chain_client
        self._pool = config.pool
        self._data_provider = config.data_provider
        self._oracle = config.oracle
        self._quoter = config.quoter
        self._quoter_fee = config.quoter_fee
        self._quote_asset = config.quote_asset.lower()
        self._quote_decimals = config.quote_asset_decimals
        self._decimals: dict[str, int] = {}
        self._semaphore = asyncio.Semaphore(max_concurrency)

    @property
    def protocol_name(self) -> str:
        return "aave-v3"

    async def _call(self, to: str, data: bytes, what: str) -> bytes:
        async with self._semaphore:
            raw = await self._client.eth_call(to, data)
        if not raw:
            raise ReadError(f"Empty return data for {what}")
        return raw

    # ------------------------------------------------------------------
    # LendingPool
    # ------------------------------------------------------------------

    async def read_reserves_list(self) -> list[str]:
        raw = await self._call(
            self._pool, abi.encode_get_reserves_list(), "getReservesList"
        )
        reserves = abi.decode_address_list(raw)
        logger.info("Loaded %d reserves from pool", len(reserves))
        return reserves

    async def read_account_summary(self, address: str) -> AccountSummary:
        raw = await self._call(
            self._pool,
            abi.encode_get_user_account_data(address),
            f"getUserAccountData({address})",
        )
        try:
            return abi.decode_account_summary(raw)
        except Exception as e:
            raise ReadError(f"Undecodable account data for {address}: {e}") from e

    async def read_user_emode(self, address: str) -> int:
        raw = await self._call(
            self._pool, abi.encode_get_user_emode(address), f"getUserEMode({address})"
        )
        return abi.decode_uint(raw)

    async def _read_user_reserve(self, asset: str, address: str) -> UserReserve:
        raw = await self._call(
            self._data_provider,
            abi.encode_get_user_reserve_data(asset, address),
            f"getUserReserveData({asset}, {address})",
        )
        try:
            return abi.decode_user_reserve(asset, raw)
        except Exception as e:
            raise ReadError(f"Undecodable reserve data for {asset}: {e}") from e

    async def read_detailed_reserves(
        self, address: str, assets: list[str]
    ) -> list[UserReserve]:
        """Read the user's balances in every given reserve (one call per asset)."""
        return list(
            await asyncio.gather(
                *(self._read_user_reserve(asset, address) for asset in assets)
            )
        )

    async def read_reserve_config(self, asset: str) -> ReserveConfig:
        config_raw = await self._call(
            self._data_provider,
            abi.encode_get_reserve_configuration_data(asset),
            f"getReserveConfigurationData({asset})",
        )
        symbol_raw = await self._call(asset, abi.encode_symbol(), f"symbol({asset})")
        try:
            symbol = abi.decode_symbol(symbol_raw)
            return abi.decode_reserve_config(asset, symbol, config_raw)
        except Exception as e:
            raise ReadError(f"Undecodable reserve config for {asset}: {e}") from e

    # ------------------------------------------------------------------
    # CanonicalOracle
    # ------------------------------------------------------------------

    async def read_oracle_price(self, asset: str) -> int:
        raw = await self._call(
            self._oracle, abi.encode_get_asset_price(asset), f"getAssetPrice({asset})"
        )
        return abi.decode_uint(raw)

    async def read_oracle_prices(self, assets: list[str]) -> list[int]:
        if not assets:
            return []
        raw = await self._call(
            self._oracle, abi.encode_get_assets_prices(assets), "getAssetsPrices"
        )
        prices = abi.decode_uint_list(raw)
        if len(prices) != len(assets):
            raise ReadError(
                f"Oracle returned {len(prices)} prices for {len(assets)} assets"
            )
        return prices

    # ------------------------------------------------------------------
    # MarketPriceSource
    # ------------------------------------------------------------------

    @property
    def has_quoter(self) -> bool:
        return bool(self._quoter)

    async def _token_decimals(self, asset: str) -> int:
        if asset not in self._decimals:
            raw = await self._call(asset, abi.encode_decimals(), f"decimals({asset})")
            self._decimals[asset] = abi.decode_uint(raw)
        return self._decimals[asset]

    async def read_market_price(self, asset: str) -> int | None:
        """DEX price of one whole unit of ``asset`` in the quote asset, 8 decimals.

        Returns None when no quoter is configured or for the quote asset itself.

        Raises:
            ReadError: the quoter call reverted or returned nothing.
        """
        asset = asset.lower()
        if not self._quoter or asset == self._quote_asset:
            return None

        decimals = await self._token_decimals(asset)
        raw = await self._call(
            self._quoter,
            abi.encode_quote_exact_input_single(
                asset, self._quote_asset, self._quoter_fee, 10**decimals
            ),
            f"quoteExactInputSingle({asset})",
        )
        amount_out = abi.decode_uint(raw)
        return amount_out * 10**PRICE_DECIMALS // 10**self._quote_decimals
