"""Profit calculation for a (debt asset, collateral asset) liquidation pair.

Pure and deterministic: every price input comes from the cycle's
``MarketSnapshot``, so estimates computed in one cycle are comparable.
"""
from __future__ import annotations

import logging

from ..config import ProfitConfig, ThresholdsConfig
from ..errors import DataUnavailable
from ..models import (
    BPS,
    PRICE_DECIMALS,
    AssetExposure,
    FinancingMode,
    MarketSnapshot,
    Position,
    ProfitEstimate,
    to_wad,
)

logger = logging.getLogger(__name__)

FULL_CLOSE_FACTOR_BPS = 10_000
HALF_CLOSE_FACTOR_BPS = 5_000


def close_factor_bps(health_factor: int, close_factor_health_factor: int) -> int:
    """100% below the close-factor threshold, 50% otherwise."""
    if health_factor < close_factor_health_factor:
        return FULL_CLOSE_FACTOR_BPS
    return HALF_CLOSE_FACTOR_BPS


def max_debt_to_cover(debt_amount: int, health_factor: int, close_factor_health_factor: int) -> int:
    return debt_amount * close_factor_bps(health_factor, close_factor_health_factor) // BPS


def apply_safety_margin(amount: int, safety_margin_bps: int) -> int:
    return amount * safety_margin_bps // BPS


def collateral_receivable(
    debt_to_cover: int,
    debt_price: int,
    debt_decimals: int,
    collateral_price: int,
    collateral_decimals: int,
    bonus_bps: int,
) -> int:
    """Raw collateral units seized for ``debt_to_cover`` raw debt units."""
    numerator = debt_price * debt_to_cover * 10**collateral_decimals * bonus_bps
    denominator = collateral_price * 10**debt_decimals * BPS
    return numerator // denominator


def to_usd(amount: int, decimals: int, price: int) -> float:
    """Value of a raw token amount at an 8-decimal price."""
    return amount * price / 10**decimals / 10**PRICE_DECIMALS


def _price(market: MarketSnapshot, asset: str) -> int:
    quote = market.quotes.get(asset)
    if quote is None:
        raise DataUnavailable(f"No price quote for {asset}")
    if quote.oracle_price <= 0:
        raise DataUnavailable(f"Zero oracle price for {asset}")
    return quote.oracle_price


class ProfitCalculator:
    """Estimates net profit of liquidating one pair under a financing mode."""

    def __init__(
        self,
        config: ProfitConfig,
        thresholds: ThresholdsConfig,
        financing: FinancingMode = FinancingMode.FLASH_LOAN,
    ) -> None:
        self.config = config
        self.financing = financing
        self._close_factor_hf = to_wad(thresholds.close_factor_health_factor)

    def gas_limit(self, financing: FinancingMode) -> int:
        if financing is FinancingMode.FLASH_LOAN:
            return self.config.flash_loan_gas_limit
        return self.config.direct_gas_limit

    def financing_cost(self, debt_value: float, financing: FinancingMode) -> float:
        if financing is FinancingMode.FLASH_LOAN:
            return debt_value * self.config.flash_loan_premium_bps / BPS
        return 0.0

    def gas_cost(self, gas_price: int, native_price: int, financing: FinancingMode) -> float:
        """Gas cost in USD: wei spent converted through the native asset price."""
        return to_usd(gas_price * self.gas_limit(financing), 18, native_price)

    def estimate(
        self,
        position: Position,
        debt_asset: AssetExposure,
        collateral_asset: AssetExposure,
        market: MarketSnapshot,
        financing: FinancingMode | None = None,
    ) -> ProfitEstimate:
        """Evaluate one pair.

        Raises:
            DataUnavailable: a quote is missing, a price is zero, or the
                native asset price is absent.
        """
        financing = financing or self.financing
        debt_price = _price(market, debt_asset.asset)
        collateral_price = _price(market, collateral_asset.asset)
        native_price = market.native_price
        if not native_price:
            raise DataUnavailable(f"No native asset price for {market.native_asset}")

        capped = max_debt_to_cover(
            debt_asset.amount, position.health_factor, self._close_factor_hf
        )
        debt_to_cover = apply_safety_margin(capped, self.config.safety_margin_bps)

        bonus_bps = (
            collateral_asset.liquidation_bonus_bps
            or self.config.default_liquidation_bonus_bps
        )
        collateral_amount = collateral_receivable(
            debt_to_cover,
            debt_price,
            debt_asset.decimals,
            collateral_price,
            collateral_asset.decimals,
            bonus_bps,
        )

        debt_value = to_usd(debt_to_cover, debt_asset.decimals, debt_price)
        collateral_value = to_usd(collateral_amount, collateral_asset.decimals, collateral_price)
        gross_profit = collateral_value - debt_value
        financing_cost = self.financing_cost(debt_value, financing)
        gas_cost = self.gas_cost(market.gas_price, native_price, financing)
        net_profit = gross_profit - financing_cost - gas_cost

        profitable = net_profit > self.config.min_profit_usd
        priority = net_profit / debt_value * 100 if profitable and debt_value > 0 else 0.0

        return ProfitEstimate(
            position=position,
            debt_asset=debt_asset,
            collateral_asset=collateral_asset,
            debt_to_cover=debt_to_cover,
            collateral_to_receive=collateral_amount,
            liquidation_bonus_bps=bonus_bps,
            financing=financing,
            debt_value=debt_value,
            collateral_value=collateral_value,
            gross_profit=gross_profit,
            financing_cost=financing_cost,
            gas_cost=gas_cost,
            net_profit=net_profit,
            profitable=profitable,
            priority=priority,
        )

    def estimate_position(self, position: Position, market: MarketSnapshot) -> list[ProfitEstimate]:
        """Estimates for every (debt, collateral) pair of a position.

        Pairs lacking price data are logged and skipped.
        """
        estimates: list[ProfitEstimate] = []
        for debt in position.debt_assets:
            for collateral in position.collateral_assets:
                try:
                    estimates.append(self.estimate(position, debt, collateral, market))
                except DataUnavailable as e:
                    logger.warning(
                        "Skipping %s/%s for %s: %s",
                        debt.symbol, collateral.symbol, position.address, e,
                    )
        return estimates
