"""Price source protocols — canonical oracle and independent feeds."""
from typing import Protocol


class CanonicalOracle(Protocol):
    """The lending protocol's own oracle. Prices are 8-decimal ints.

    Failures raise ``ReadError``.
    """

    async def read_oracle_price(self, asset: str) -> int: ...

    async def read_oracle_prices(self, assets: list[str]) -> list[int]: ...


class ExternalPriceSource(Protocol):
    """Independent, best-effort price feed.

    Returns an 8-decimal int price or ``None``; never raises.
    """

    async def read_external_price(self, asset: str) -> int | None: ...


class MarketPriceSource(Protocol):
    """On-chain DEX price read. Prices are 8-decimal ints.

    Returns None when the asset cannot be quoted; failures raise ``ReadError``.
    """

    async def read_market_price(self, asset: str) -> int | None: ...
