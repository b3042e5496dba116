"""Lending pool protocol — read-only access to the settlement protocol."""
from typing import Protocol

from ..models import AccountSummary, ReserveConfig, UserReserve


class LendingPool(Protocol):
    """Abstract interface for reading positions from a lending protocol.

    Every method raises ``ReadError`` when the data source fails.
    """

    async def read_reserves_list(self) -> list[str]: ...

    async def read_account_summary(self, address: str) -> AccountSummary: ...

    async def read_user_emode(self, address: str) -> int: ...

    async def read_detailed_reserves(
        self, address: str, assets: list[str]
    ) -> list[UserReserve]: ...

    async def read_reserve_config(self, asset: str) -> ReserveConfig: ...
