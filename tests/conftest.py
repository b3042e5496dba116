"""Shared test fixtures and sample data."""
from __future__ import annotations

import textwrap
from pathlib import Path
from typing import Callable

import pytest

from liquidator.config import (
    AppConfig,
    ChainConfig,
    EmailConfig,
    ExecutionConfig,
    MonitorConfig,
    NotificationsConfig,
    PricesConfig,
    ProfitConfig,
    ProtocolConfig,
    TelegramConfig,
    ThresholdsConfig,
    WatchlistConfig,
)
from liquidator.models import (
    WAD,
    AssetExposure,
    FinancingMode,
    MarketSnapshot,
    Position,
    PriceQuote,
    ProfitEstimate,
)

WETH = "0xc02aaa39b223fe8d0a0e5c4f27ead9083c756cc2"
USDC = "0xa0b86991c6218b36c1d19d4a2e9eb0ce3606eb48"
WBTC = "0x2260fac5e5542a773aa44fbcfedf7c193bc2c599"
BORROWER = "0x1111111111111111111111111111111111111111"
OTHER_BORROWER = "0x2222222222222222222222222222222222222222"
POOL = "0x87870bca3f3fd6335c3f4ce8392d69350b4fa4e2"
DATA_PROVIDER = "0x7b4eb56e7cd4b454ba8ff71e4518426369a138a3"
ORACLE = "0x54586be62e3c3580375ae3723c145253060ca0c2"
EXECUTOR_CONTRACT = "0x3333333333333333333333333333333333333333"

# Well-known throwaway key (hardhat account #0); never holds funds.
TEST_PRIVATE_KEY = "0xac0974bec39a17e36ba4a6b4d238ff944bacb478cbed5efcae784d7bf4f2ff80"


# ---------------------------------------------------------------------------
# Config fixtures
# ---------------------------------------------------------------------------


@pytest.fixture()
def sample_thresholds() -> ThresholdsConfig:
    return ThresholdsConfig()


@pytest.fixture()
def sample_profit_config() -> ProfitConfig:
    return ProfitConfig()


@pytest.fixture()
def sample_execution_config() -> ExecutionConfig:
    return ExecutionConfig(cooldown_seconds=60.0, poll_interval_seconds=0.0)


@pytest.fixture()
def sample_chain_config() -> ChainConfig:
    return ChainConfig(
        rpc_endpoints=("https://rpc1.example.com", "https://rpc2.example.com"),
        rpc_timeout=10,
    )


@pytest.fixture()
def sample_protocol_config() -> ProtocolConfig:
    return ProtocolConfig(
        pool=POOL,
        data_provider=DATA_PROVIDER,
        oracle=ORACLE,
        flash_loan_executor=EXECUTOR_CONTRACT,
    )


@pytest.fixture()
def sample_prices_config() -> PricesConfig:
    return PricesConfig(
        cache_ttl_seconds=15.0,
        discrepancy_threshold_pct=2.0,
        native_asset=WETH,
        external_provider="none",
    )


@pytest.fixture()
def sample_app_config(
    sample_thresholds: ThresholdsConfig,
    sample_chain_config: ChainConfig,
    sample_protocol_config: ProtocolConfig,
    sample_prices_config: PricesConfig,
) -> AppConfig:
    return AppConfig(
        monitor=MonitorConfig(check_interval_seconds=30, dry_run=True),
        thresholds=sample_thresholds,
        chain=sample_chain_config,
        protocol=sample_protocol_config,
        prices=sample_prices_config,
        watchlist=WatchlistConfig(addresses=(BORROWER, OTHER_BORROWER)),
        notifications=NotificationsConfig(
            telegram=TelegramConfig(
                enabled=True,
                alert_bot_token="fake-alert-token",
                log_bot_token="fake-log-token",
                chat_id="12345",
            ),
            email=EmailConfig(enabled=False),
        ),
    )


# ---------------------------------------------------------------------------
# Model fixtures
# ---------------------------------------------------------------------------


@pytest.fixture()
def usdc_debt() -> AssetExposure:
    return AssetExposure(
        asset=USDC, symbol="USDC", amount=10_000 * 10**6, decimals=6, is_collateral=False
    )


@pytest.fixture()
def weth_collateral() -> AssetExposure:
    return AssetExposure(
        asset=WETH,
        symbol="WETH",
        amount=5 * 10**18,
        decimals=18,
        is_collateral=True,
        liquidation_bonus_bps=10500,
        liquidation_threshold_bps=8250,
    )


@pytest.fixture()
def liquidatable_position(usdc_debt: AssetExposure, weth_collateral: AssetExposure) -> Position:
    return Position(
        address=BORROWER,
        health_factor=WAD * 90 // 100,
        total_collateral_base=10_000 * 10**8,
        total_debt_base=10_000 * 10**8,
        collateral_assets=(weth_collateral,),
        debt_assets=(usdc_debt,),
    )


@pytest.fixture()
def market_snapshot() -> MarketSnapshot:
    return MarketSnapshot(
        quotes={
            WETH: PriceQuote(asset=WETH, oracle_price=2000 * 10**8),
            USDC: PriceQuote(asset=USDC, oracle_price=1 * 10**8),
        },
        gas_price=20 * 10**9,
        native_asset=WETH,
    )


@pytest.fixture()
def make_estimate(
    liquidatable_position: Position,
    usdc_debt: AssetExposure,
    weth_collateral: AssetExposure,
) -> Callable[..., ProfitEstimate]:
    """Factory for estimates with a chosen priority / profitability."""

    def _make(
        priority: float = 1.0,
        profitable: bool = True,
        net_profit: float = 100.0,
        position: Position | None = None,
        financing: FinancingMode = FinancingMode.FLASH_LOAN,
        debt: AssetExposure | None = None,
        collateral: AssetExposure | None = None,
    ) -> ProfitEstimate:
        return ProfitEstimate(
            position=position or liquidatable_position,
            debt_asset=debt or usdc_debt,
            collateral_asset=collateral or weth_collateral,
            debt_to_cover=1_000 * 10**6,
            collateral_to_receive=525 * 10**15,
            liquidation_bonus_bps=10500,
            financing=financing,
            debt_value=1_000.0,
            collateral_value=1_050.0,
            gross_profit=50.0,
            financing_cost=0.9,
            gas_cost=1.0,
            net_profit=net_profit,
            profitable=profitable,
            priority=priority,
        )

    return _make


# ---------------------------------------------------------------------------
# Config YAML fixture
# ---------------------------------------------------------------------------

SAMPLE_YAML = textwrap.dedent(f"""\
    monitor:
      check_interval_seconds: 15
      dry_run: true
    thresholds:
      watch_health_factor: 1.1
    profit:
      min_profit_usd: 25
    execution:
      financing: direct
      max_gas_price_gwei: 80
    strategies:
      enabled: [baseline, emode]
    prices:
      native_asset: "{WETH.upper().replace('0X', '0x')}"
      external:
        provider: pyth
        pyth:
          hermes_url: "https://hermes.example.com"
          feeds:
            "{WETH}": "0xaaa"
    chain:
      chain_id: 8453
      rpc_endpoints: ["https://rpc.example.com", ""]
    protocol:
      pool: "{POOL}"
      data_provider: "{DATA_PROVIDER}"
      oracle: "{ORACLE}"
    watchlist:
      addresses: ["{BORROWER}"]
    notifications:
      telegram:
        enabled: true
        alert_bot_token: "tok1"
        log_bot_token: "tok2"
        chat_id: 999
      email:
        enabled: false
""")


@pytest.fixture()
def sample_yaml_path(tmp_path: Path) -> Path:
    cfg_file = tmp_path / "config.yaml"
    cfg_file.write_text(SAMPLE_YAML)
    return cfg_file
