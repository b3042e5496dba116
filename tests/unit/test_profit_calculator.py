"""Unit tests for profit calculation."""
from __future__ import annotations

from dataclasses import replace

import pytest

from conftest import USDC, WETH
from liquidator.config import ProfitConfig, ThresholdsConfig
from liquidator.errors import DataUnavailable
from liquidator.models import (
    WAD,
    AssetExposure,
    FinancingMode,
    MarketSnapshot,
    Position,
    PriceQuote,
)
from liquidator.services.profit_calculator import (
    ProfitCalculator,
    apply_safety_margin,
    close_factor_bps,
    collateral_receivable,
    max_debt_to_cover,
    to_usd,
)

CLOSE_FACTOR_HF = WAD * 95 // 100


@pytest.fixture()
def calculator() -> ProfitCalculator:
    return ProfitCalculator(ProfitConfig(), ThresholdsConfig())


class TestCloseFactor:
    def test_full_below_threshold(self) -> None:
        assert close_factor_bps(WAD * 90 // 100, CLOSE_FACTOR_HF) == 10_000

    def test_half_at_or_above_threshold(self) -> None:
        assert close_factor_bps(WAD * 98 // 100, CLOSE_FACTOR_HF) == 5_000
        assert close_factor_bps(CLOSE_FACTOR_HF, CLOSE_FACTOR_HF) == 5_000

    def test_max_debt_to_cover(self) -> None:
        debt = 1_000 * 10**6
        assert max_debt_to_cover(debt, WAD * 90 // 100, CLOSE_FACTOR_HF) == debt
        assert max_debt_to_cover(debt, WAD * 98 // 100, CLOSE_FACTOR_HF) == debt // 2

    def test_safety_margin(self) -> None:
        assert apply_safety_margin(1_000, 9500) == 950


class TestCollateralReceivable:
    def test_reference_scenario(self) -> None:
        # Debt priced 2000, collateral priced 1, 1000 units of a 6-decimal
        # debt token, 5% bonus, 18-decimal collateral.
        debt_to_cover = 1_000 * 10**6
        amount = collateral_receivable(
            debt_to_cover=debt_to_cover,
            debt_price=2000 * 10**8,
            debt_decimals=6,
            collateral_price=1 * 10**8,
            collateral_decimals=18,
            bonus_bps=10500,
        )
        assert amount == 2_100_000 * 10**18
        assert amount == (
            2000 * 10**8 * debt_to_cover * 10**18 * 10500
        ) // (1 * 10**8 * 10**6 * 10_000)

    def test_to_usd(self) -> None:
        assert to_usd(2_100_000 * 10**18, 18, 1 * 10**8) == pytest.approx(2_100_000.0)
        assert to_usd(1_000 * 10**6, 6, 2000 * 10**8) == pytest.approx(2_000_000.0)


class TestEstimate:
    def test_reference_scenario_estimate(self, calculator: ProfitCalculator) -> None:
        debt = AssetExposure(
            asset=USDC, symbol="DEBT", amount=1_000 * 10**6, decimals=6, is_collateral=False
        )
        collateral = AssetExposure(
            asset=WETH, symbol="COLL", amount=10**25, decimals=18, is_collateral=True
        )
        position = Position(
            address="0xabc", health_factor=WAD * 90 // 100,
            collateral_assets=(collateral,), debt_assets=(debt,),
        )
        market = MarketSnapshot(
            quotes={
                USDC: PriceQuote(asset=USDC, oracle_price=2000 * 10**8),
                WETH: PriceQuote(asset=WETH, oracle_price=1 * 10**8),
            },
            gas_price=0,
            native_asset=WETH,
        )

        est = calculator.estimate(position, debt, collateral, market)

        assert est.debt_to_cover == 950 * 10**6
        assert est.liquidation_bonus_bps == 10500  # default when reserve has none
        assert est.collateral_to_receive == 1_995_000 * 10**18
        assert est.debt_value == pytest.approx(1_900_000.0)
        assert est.collateral_value == pytest.approx(1_995_000.0)
        assert est.gross_profit == pytest.approx(95_000.0)
        assert est.financing_cost == pytest.approx(1_900_000.0 * 9 / 10_000)
        assert est.gas_cost == 0.0
        assert est.net_profit == pytest.approx(95_000.0 - 1_710.0)
        assert est.profitable is True
        assert est.priority == pytest.approx(est.net_profit / est.debt_value * 100)

    def test_close_factor_applied_to_position_hf(
        self,
        calculator: ProfitCalculator,
        liquidatable_position: Position,
        usdc_debt: AssetExposure,
        weth_collateral: AssetExposure,
        market_snapshot: MarketSnapshot,
    ) -> None:
        full = calculator.estimate(liquidatable_position, usdc_debt, weth_collateral, market_snapshot)
        half_position = replace(liquidatable_position, health_factor=WAD * 98 // 100)
        half = calculator.estimate(half_position, usdc_debt, weth_collateral, market_snapshot)

        assert full.debt_to_cover == usdc_debt.amount * 95 // 100
        assert half.debt_to_cover == usdc_debt.amount // 2 * 95 // 100

    def test_gas_cost_uses_native_price(
        self,
        calculator: ProfitCalculator,
        liquidatable_position: Position,
        usdc_debt: AssetExposure,
        weth_collateral: AssetExposure,
        market_snapshot: MarketSnapshot,
    ) -> None:
        est = calculator.estimate(liquidatable_position, usdc_debt, weth_collateral, market_snapshot)
        # 20 gwei * 1,000,000 gas = 0.02 ETH at $2000
        assert est.gas_cost == pytest.approx(40.0)

    def test_direct_financing_has_no_fee(
        self,
        liquidatable_position: Position,
        usdc_debt: AssetExposure,
        weth_collateral: AssetExposure,
        market_snapshot: MarketSnapshot,
    ) -> None:
        calc = ProfitCalculator(ProfitConfig(), ThresholdsConfig(), FinancingMode.DIRECT)
        est = calc.estimate(liquidatable_position, usdc_debt, weth_collateral, market_snapshot)
        assert est.financing is FinancingMode.DIRECT
        assert est.financing_cost == 0.0

    def test_net_profit_decreases_with_gas_price(
        self,
        calculator: ProfitCalculator,
        liquidatable_position: Position,
        usdc_debt: AssetExposure,
        weth_collateral: AssetExposure,
        market_snapshot: MarketSnapshot,
    ) -> None:
        nets = [
            calculator.estimate(
                liquidatable_position, usdc_debt, weth_collateral,
                replace(market_snapshot, gas_price=gwei * 10**9),
            ).net_profit
            for gwei in (1, 10, 50, 200)
        ]
        assert nets == sorted(nets, reverse=True)
        assert len(set(nets)) == len(nets)

    def test_net_profit_decreases_with_fee(
        self,
        liquidatable_position: Position,
        usdc_debt: AssetExposure,
        weth_collateral: AssetExposure,
        market_snapshot: MarketSnapshot,
    ) -> None:
        nets = [
            ProfitCalculator(
                ProfitConfig(flash_loan_premium_bps=fee), ThresholdsConfig()
            ).estimate(liquidatable_position, usdc_debt, weth_collateral, market_snapshot).net_profit
            for fee in (0, 5, 9, 30)
        ]
        assert nets == sorted(nets, reverse=True)
        assert len(set(nets)) == len(nets)

    def test_not_profitable_below_floor(
        self,
        liquidatable_position: Position,
        usdc_debt: AssetExposure,
        weth_collateral: AssetExposure,
        market_snapshot: MarketSnapshot,
    ) -> None:
        calc = ProfitCalculator(ProfitConfig(min_profit_usd=1_000_000), ThresholdsConfig())
        est = calc.estimate(liquidatable_position, usdc_debt, weth_collateral, market_snapshot)
        assert est.profitable is False
        assert est.priority == 0.0

    def test_missing_quote_raises(
        self,
        calculator: ProfitCalculator,
        liquidatable_position: Position,
        usdc_debt: AssetExposure,
        weth_collateral: AssetExposure,
        market_snapshot: MarketSnapshot,
    ) -> None:
        market = replace(market_snapshot, quotes={WETH: market_snapshot.quotes[WETH]})
        with pytest.raises(DataUnavailable):
            calculator.estimate(liquidatable_position, usdc_debt, weth_collateral, market)

    def test_zero_price_raises(
        self,
        calculator: ProfitCalculator,
        liquidatable_position: Position,
        usdc_debt: AssetExposure,
        weth_collateral: AssetExposure,
        market_snapshot: MarketSnapshot,
    ) -> None:
        quotes = dict(market_snapshot.quotes)
        quotes[USDC] = PriceQuote(asset=USDC, oracle_price=0)
        with pytest.raises(DataUnavailable):
            calculator.estimate(
                liquidatable_position, usdc_debt, weth_collateral,
                replace(market_snapshot, quotes=quotes),
            )

    def test_missing_native_price_raises(
        self,
        calculator: ProfitCalculator,
        liquidatable_position: Position,
        usdc_debt: AssetExposure,
        weth_collateral: AssetExposure,
        market_snapshot: MarketSnapshot,
    ) -> None:
        market = replace(market_snapshot, native_asset="0xnative")
        with pytest.raises(DataUnavailable, match="native"):
            calculator.estimate(liquidatable_position, usdc_debt, weth_collateral, market)


class TestEstimatePosition:
    def test_skips_unpriced_pairs(
        self,
        calculator: ProfitCalculator,
        liquidatable_position: Position,
        market_snapshot: MarketSnapshot,
    ) -> None:
        unpriced = AssetExposure(
            asset="0x9999999999999999999999999999999999999999", symbol="XYZ",
            amount=10**18, decimals=18, is_collateral=True,
        )
        position = replace(
            liquidatable_position,
            collateral_assets=liquidatable_position.collateral_assets + (unpriced,),
        )
        estimates = calculator.estimate_position(position, market_snapshot)
        assert len(estimates) == 1
        assert estimates[0].collateral_asset.symbol == "WETH"
