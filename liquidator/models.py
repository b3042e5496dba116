"""Data models — all frozen (immutable).

On-chain quantities stay as ``int``: raw token amounts, 8-decimal oracle
prices and 18-decimal (WAD) health factors. Values in the common unit of
account (USD) are ``float``.
"""
from __future__ import annotations

import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum, IntEnum

WAD = 10**18
PRICE_DECIMALS = 8
BPS = 10_000


def to_wad(ratio: float) -> int:
    """Convert a float ratio such as ``0.95`` to an 18-decimal int."""
    return int(round(ratio * 10**9)) * 10**9


def wad_to_float(value: int) -> float:
    return value / WAD


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------


class FinancingMode(str, Enum):
    FLASH_LOAN = "flash_loan"
    DIRECT = "direct"


class PositionStatus(str, Enum):
    HEALTHY = "healthy"
    WATCH = "watch"
    LIQUIDATABLE = "liquidatable"


class OrchestratorState(str, Enum):
    IDLE = "idle"
    SCANNING = "scanning"
    NO_OPPORTUNITY = "no_opportunity"
    EXECUTING = "executing"
    SETTLED = "settled"
    FAILED = "failed"


class EModeCategory(IntEnum):
    """Known E-Mode categories. Unrecognised ids map to ``UNKNOWN``."""

    UNKNOWN = -1
    NONE = 0
    STABLECOINS = 1
    ETH = 2
    BTC = 3

    @classmethod
    def from_id(cls, category_id: int) -> "EModeCategory":
        try:
            return cls(category_id)
        except ValueError:
            return cls.UNKNOWN


def category_name(category: EModeCategory) -> str:
    """Human-readable E-Mode category name."""
    if category is EModeCategory.NONE:
        return "None"
    if category is EModeCategory.STABLECOINS:
        return "Stablecoins"
    if category is EModeCategory.ETH:
        return "ETH"
    if category is EModeCategory.BTC:
        return "BTC"
    return "Unknown"


# ---------------------------------------------------------------------------
# Protocol reads
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class AccountSummary:
    """Aggregate figures from ``getUserAccountData``."""

    collateral_base: int
    debt_base: int
    health_factor: int


@dataclass(frozen=True)
class UserReserve:
    """A user's balances in one reserve."""

    asset: str
    collateral_balance: int
    stable_debt: int
    variable_debt: int
    usage_as_collateral: bool

    @property
    def total_debt(self) -> int:
        return self.stable_debt + self.variable_debt


@dataclass(frozen=True)
class ReserveConfig:
    """Per-asset reserve configuration. Safe to cache until reload."""

    asset: str
    symbol: str
    decimals: int
    ltv_bps: int
    liquidation_threshold_bps: int
    liquidation_bonus_bps: int
    collateral_enabled: bool


# ---------------------------------------------------------------------------
# Positions
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class AssetExposure:
    """Single asset within a position (collateral or debt)."""

    asset: str
    symbol: str
    amount: int
    decimals: int
    is_collateral: bool
    liquidation_bonus_bps: int | None = None
    liquidation_threshold_bps: int | None = None


@dataclass(frozen=True)
class Position:
    """A borrower's full exposure at one point in time."""

    address: str
    health_factor: int
    total_collateral_base: int = 0
    total_debt_base: int = 0
    collateral_assets: tuple[AssetExposure, ...] = ()
    debt_assets: tuple[AssetExposure, ...] = ()
    emode_category: int = 0
    updated_at: datetime = field(default_factory=_utcnow)

    @property
    def health_factor_ratio(self) -> float:
        return wad_to_float(self.health_factor)

    @property
    def collateral_value(self) -> float:
        return self.total_collateral_base / 10**PRICE_DECIMALS

    @property
    def debt_value(self) -> float:
        return self.total_debt_base / 10**PRICE_DECIMALS

    @property
    def emode(self) -> EModeCategory:
        return EModeCategory.from_id(self.emode_category)


# ---------------------------------------------------------------------------
# Prices
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class PriceQuote:
    """A price observation for one asset. Prices are 8-decimal ints."""

    asset: str
    oracle_price: int
    external_price: int | None = None
    market_price: int | None = None
    observed_at: float = field(default_factory=time.monotonic)
    discrepancy_pct: float | None = None


@dataclass(frozen=True)
class MarketSnapshot:
    """Every price input one cycle's estimates are computed against."""

    quotes: dict[str, PriceQuote]
    gas_price: int
    native_asset: str

    @property
    def native_price(self) -> int | None:
        quote = self.quotes.get(self.native_asset)
        return quote.oracle_price if quote else None


# ---------------------------------------------------------------------------
# Profit and execution
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class ProfitEstimate:
    """Evaluation of liquidating one (debt, collateral) pair."""

    position: Position
    debt_asset: AssetExposure
    collateral_asset: AssetExposure
    debt_to_cover: int
    collateral_to_receive: int
    liquidation_bonus_bps: int
    financing: FinancingMode
    debt_value: float
    collateral_value: float
    gross_profit: float
    financing_cost: float
    gas_cost: float
    net_profit: float
    profitable: bool
    priority: float


@dataclass(frozen=True)
class LiquidationParams:
    """Arguments of the protocol's liquidation call."""

    collateral_asset: str
    debt_asset: str
    user: str
    debt_to_cover: int
    receive_a_token: bool = False


@dataclass(frozen=True)
class SettlementHandle:
    """Opaque reference to a submitted transaction."""

    reference: str
    gas_price: int


@dataclass(frozen=True)
class SettlementReceipt:
    success: bool
    gas_used: int
    effective_gas_price: int
    reference: str
    block_number: int = 0


@dataclass(frozen=True)
class ExecutionResult:
    """Outcome of one execution attempt."""

    success: bool
    reference: str | None = None
    error: str | None = None
    gas_used: int = 0
    gas_cost_wei: int = 0
    timestamp: datetime = field(default_factory=_utcnow)
    user: str = ""
    debt_asset: str = ""
    collateral_asset: str = ""
    financing: FinancingMode | None = None
