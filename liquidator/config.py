"""Configuration loader — reads config.yaml, interpolates env vars, validates."""
from __future__ import annotations

import logging
import os
import re
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Any

import yaml
from dotenv import load_dotenv

from .errors import ConfigurationError
from .models import FinancingMode

logger = logging.getLogger(__name__)

KNOWN_STRATEGIES = ("baseline", "oracle_discrepancy", "emode")
KNOWN_PRICE_PROVIDERS = ("coingecko", "pyth", "none")

# ---------------------------------------------------------------------------
# Frozen config dataclasses
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class MonitorConfig:
    check_interval_seconds: int = 30
    error_backoff_seconds: int = 60
    max_concurrency: int = 8
    dry_run: bool = False


@dataclass(frozen=True)
class ThresholdsConfig:
    watch_health_factor: float = 1.05
    liquidation_health_factor: float = 1.0
    close_factor_health_factor: float = 0.95
    healthy_cycles_before_eviction: int = 3


@dataclass(frozen=True)
class ProfitConfig:
    min_profit_usd: float = 50.0
    safety_margin_bps: int = 9500
    default_liquidation_bonus_bps: int = 10500
    flash_loan_premium_bps: int = 9
    flash_loan_gas_limit: int = 1_000_000
    direct_gas_limit: int = 1_000_000


@dataclass(frozen=True)
class ExecutionConfig:
    financing: FinancingMode = FinancingMode.FLASH_LOAN
    max_gas_price_gwei: float = 100.0
    cooldown_seconds: float = 60.0
    confirmations: int = 1
    settlement_timeout_seconds: float = 180.0
    poll_interval_seconds: float = 2.0
    receive_a_token: bool = False
    gas_limit_buffer: float = 1.2
    approve_gas_limit: int = 100_000

    @property
    def max_gas_price_wei(self) -> int:
        return int(self.max_gas_price_gwei * 10**9)


@dataclass(frozen=True)
class StrategyConfig:
    enabled: tuple[str, ...] = KNOWN_STRATEGIES
    emode_multiplier: float = 1.2


@dataclass(frozen=True)
class CoinGeckoConfig:
    api_url: str = "https://api.coingecko.com/api/v3/simple/price"
    api_key: str = ""
    token_ids: dict[str, str] = field(default_factory=dict)


@dataclass(frozen=True)
class PythConfig:
    hermes_url: str = "https://hermes.pyth.network/v2/updates/price/latest"
    feeds: dict[str, str] = field(default_factory=dict)


@dataclass(frozen=True)
class PricesConfig:
    cache_ttl_seconds: float = 15.0
    discrepancy_threshold_pct: float = 2.0
    native_asset: str = ""
    external_provider: str = "coingecko"
    coingecko: CoinGeckoConfig = field(default_factory=CoinGeckoConfig)
    pyth: PythConfig = field(default_factory=PythConfig)


@dataclass(frozen=True)
class ChainConfig:
    rpc_endpoints: tuple[str, ...] = ()
    rpc_timeout: int = 30
    chain_id: int = 1


@dataclass(frozen=True)
class ProtocolConfig:
    pool: str = ""
    data_provider: str = ""
    oracle: str = ""
    flash_loan_executor: str = ""
    quoter: str = ""
    quoter_fee: int = 3000
    quote_asset: str = ""
    quote_asset_decimals: int = 6


@dataclass(frozen=True)
class WalletConfig:
    address: str = ""
    private_key: str = field(default="", repr=False)


@dataclass(frozen=True)
class WatchlistConfig:
    addresses: tuple[str, ...] = ()


@dataclass(frozen=True)
class TelegramConfig:
    enabled: bool = False
    alert_bot_token: str = ""
    log_bot_token: str = ""
    chat_id: str = ""


@dataclass(frozen=True)
class EmailConfig:
    enabled: bool = False
    alert_email: str = ""
    smtp_server: str = "smtp.gmail.com"
    smtp_port: int = 587
    sender_email: str = ""
    sender_password: str = ""


@dataclass(frozen=True)
class NotificationsConfig:
    telegram: TelegramConfig = field(default_factory=TelegramConfig)
    email: EmailConfig = field(default_factory=EmailConfig)


@dataclass(frozen=True)
class AppConfig:
    monitor: MonitorConfig = field(default_factory=MonitorConfig)
    thresholds: ThresholdsConfig = field(default_factory=ThresholdsConfig)
    profit: ProfitConfig = field(default_factory=ProfitConfig)
    execution: ExecutionConfig = field(default_factory=ExecutionConfig)
    strategies: StrategyConfig = field(default_factory=StrategyConfig)
    prices: PricesConfig = field(default_factory=PricesConfig)
    chain: ChainConfig = field(default_factory=ChainConfig)
    protocol: ProtocolConfig = field(default_factory=ProtocolConfig)
    wallet: WalletConfig = field(default_factory=WalletConfig)
    watchlist: WatchlistConfig = field(default_factory=WatchlistConfig)
    notifications: NotificationsConfig = field(default_factory=NotificationsConfig)


# ---------------------------------------------------------------------------
# Env interpolation
# ---------------------------------------------------------------------------

_ENV_VAR_RE = re.compile(r"\$\{([^}]+)}")


def _interpolate_env(value: Any) -> Any:
    """Recursively replace ${VAR} references with environment variable values."""
    if isinstance(value, str):
        return _ENV_VAR_RE.sub(lambda m: os.environ.get(m.group(1), ""), value)
    if isinstance(value, dict):
        return {k: _interpolate_env(v) for k, v in value.items()}
    if isinstance(value, list):
        return [_interpolate_env(item) for item in value]
    return value


def _as_bool(value: Any) -> bool:
    if isinstance(value, str):
        return value.strip().lower() in ("1", "true", "yes", "on")
    return bool(value)


def _lower_keys(raw: dict[str, Any]) -> dict[str, str]:
    """Asset addresses are matched case-insensitively."""
    return {str(k).lower(): str(v) for k, v in raw.items()}


# ---------------------------------------------------------------------------
# YAML → dataclass builders
# ---------------------------------------------------------------------------


def _build_monitor(raw: dict[str, Any]) -> MonitorConfig:
    return MonitorConfig(
        check_interval_seconds=int(raw.get("check_interval_seconds", 30)),
        error_backoff_seconds=int(raw.get("error_backoff_seconds", 60)),
        max_concurrency=int(raw.get("max_concurrency", 8)),
        dry_run=_as_bool(raw.get("dry_run", False)),
    )


def _build_thresholds(raw: dict[str, Any]) -> ThresholdsConfig:
    return ThresholdsConfig(
        watch_health_factor=float(raw.get("watch_health_factor", 1.05)),
        liquidation_health_factor=float(raw.get("liquidation_health_factor", 1.0)),
        close_factor_health_factor=float(raw.get("close_factor_health_factor", 0.95)),
        healthy_cycles_before_eviction=int(
            raw.get("healthy_cycles_before_eviction", 3)
        ),
    )


def _build_profit(raw: dict[str, Any]) -> ProfitConfig:
    return ProfitConfig(
        min_profit_usd=float(raw.get("min_profit_usd", 50.0)),
        safety_margin_bps=int(raw.get("safety_margin_bps", 9500)),
        default_liquidation_bonus_bps=int(
            raw.get("default_liquidation_bonus_bps", 10500)
        ),
        flash_loan_premium_bps=int(raw.get("flash_loan_premium_bps", 9)),
        flash_loan_gas_limit=int(raw.get("flash_loan_gas_limit", 1_000_000)),
        direct_gas_limit=int(raw.get("direct_gas_limit", 1_000_000)),
    )


def _build_execution(raw: dict[str, Any]) -> ExecutionConfig:
    financing = raw.get("financing", FinancingMode.FLASH_LOAN.value)
    try:
        mode = FinancingMode(financing)
    except ValueError:
        raise ConfigurationError(f"Unknown financing mode '{financing}'") from None
    return ExecutionConfig(
        financing=mode,
        max_gas_price_gwei=float(raw.get("max_gas_price_gwei", 100.0)),
        cooldown_seconds=float(raw.get("cooldown_seconds", 60.0)),
        confirmations=int(raw.get("confirmations", 1)),
        settlement_timeout_seconds=float(raw.get("settlement_timeout_seconds", 180.0)),
        poll_interval_seconds=float(raw.get("poll_interval_seconds", 2.0)),
        receive_a_token=_as_bool(raw.get("receive_a_token", False)),
        gas_limit_buffer=float(raw.get("gas_limit_buffer", 1.2)),
        approve_gas_limit=int(raw.get("approve_gas_limit", 100_000)),
    )


def _build_strategies(raw: dict[str, Any]) -> StrategyConfig:
    return StrategyConfig(
        enabled=tuple(raw.get("enabled", KNOWN_STRATEGIES)),
        emode_multiplier=float(raw.get("emode_multiplier", 1.2)),
    )


def _build_prices(raw: dict[str, Any]) -> PricesConfig:
    external = raw.get("external", {})
    cg_raw = external.get("coingecko", {})
    pyth_raw = external.get("pyth", {})
    return PricesConfig(
        cache_ttl_seconds=float(raw.get("cache_ttl_seconds", 15.0)),
        discrepancy_threshold_pct=float(raw.get("discrepancy_threshold_pct", 2.0)),
        native_asset=str(raw.get("native_asset", "")).lower(),
        external_provider=external.get("provider", "coingecko"),
        coingecko=CoinGeckoConfig(
            api_url=cg_raw.get("api_url", CoinGeckoConfig.api_url),
            api_key=cg_raw.get("api_key", ""),
            token_ids=_lower_keys(cg_raw.get("token_ids", {})),
        ),
        pyth=PythConfig(
            hermes_url=pyth_raw.get("hermes_url", PythConfig.hermes_url),
            feeds=_lower_keys(pyth_raw.get("feeds", {})),
        ),
    )


def _build_chain(raw: dict[str, Any]) -> ChainConfig:
    return ChainConfig(
        rpc_endpoints=tuple(e for e in raw.get("rpc_endpoints", []) if e),
        rpc_timeout=int(raw.get("rpc_timeout", 30)),
        chain_id=int(raw.get("chain_id", 1)),
    )


def _build_protocol(raw: dict[str, Any]) -> ProtocolConfig:
    return ProtocolConfig(
        pool=raw.get("pool", ""),
        data_provider=raw.get("data_provider", ""),
        oracle=raw.get("oracle", ""),
        flash_loan_executor=raw.get("flash_loan_executor", ""),
        quoter=raw.get("quoter", ""),
        quoter_fee=int(raw.get("quoter_fee", 3000)),
        quote_asset=str(raw.get("quote_asset", "")).lower(),
        quote_asset_decimals=int(raw.get("quote_asset_decimals", 6)),
    )


def _build_wallet(raw: dict[str, Any]) -> WalletConfig:
    return WalletConfig(
        address=raw.get("address", ""),
        private_key=raw.get("private_key", ""),
    )


def _build_watchlist(raw: dict[str, Any]) -> WatchlistConfig:
    return WatchlistConfig(
        addresses=tuple(a for a in raw.get("addresses", []) if a),
    )


def _build_notifications(raw: dict[str, Any]) -> NotificationsConfig:
    tg = raw.get("telegram", {})
    em = raw.get("email", {})
    return NotificationsConfig(
        telegram=TelegramConfig(
            enabled=_as_bool(tg.get("enabled", False)),
            alert_bot_token=tg.get("alert_bot_token", ""),
            log_bot_token=tg.get("log_bot_token", ""),
            chat_id=str(tg.get("chat_id", "")),
        ),
        email=EmailConfig(
            enabled=_as_bool(em.get("enabled", False)),
            alert_email=em.get("alert_email", ""),
            smtp_server=em.get("smtp_server", "smtp.gmail.com"),
            smtp_port=int(em.get("smtp_port", 587)),
            sender_email=em.get("sender_email", ""),
            sender_password=em.get("sender_password", ""),
        ),
    )


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------


def load_config(
    config_path: str | Path | None = None, dry_run: bool | None = None
) -> AppConfig:
    """Load and validate application configuration from YAML + .env.

    Args:
        config_path: Path to config.yaml. Defaults to ``config.yaml`` in the
            project root (one level up from this package).
        dry_run: Overrides ``monitor.dry_run`` before validation.

    Raises:
        ConfigurationError: when the file is missing or fails validation.
    """
    load_dotenv()

    if config_path is None:
        config_path = Path(__file__).resolve().parent.parent / "config.yaml"
    config_path = Path(config_path)

    if not config_path.exists():
        raise ConfigurationError(f"Config file not found: {config_path}")

    with open(config_path) as f:
        raw = yaml.safe_load(f) or {}

    raw = _interpolate_env(raw)

    cfg = AppConfig(
        monitor=_build_monitor(raw.get("monitor", {})),
        thresholds=_build_thresholds(raw.get("thresholds", {})),
        profit=_build_profit(raw.get("profit", {})),
        execution=_build_execution(raw.get("execution", {})),
        strategies=_build_strategies(raw.get("strategies", {})),
        prices=_build_prices(raw.get("prices", {})),
        chain=_build_chain(raw.get("chain", {})),
        protocol=_build_protocol(raw.get("protocol", {})),
        wallet=_build_wallet(raw.get("wallet", {})),
        watchlist=_build_watchlist(raw.get("watchlist", {})),
        notifications=_build_notifications(raw.get("notifications", {})),
    )

    if dry_run is not None:
        cfg = replace(cfg, monitor=replace(cfg.monitor, dry_run=dry_run))

    validate(cfg)
    logger.info("Configuration loaded from %s", config_path)
    return cfg


def validate(cfg: AppConfig) -> None:
    """Raise ConfigurationError on invalid configuration."""
    if not cfg.chain.rpc_endpoints:
        raise ConfigurationError("At least one RPC endpoint must be configured")

    for name in ("pool", "data_provider", "oracle"):
        if not getattr(cfg.protocol, name):
            raise ConfigurationError(f"Protocol address '{name}' is not configured")

    if not cfg.prices.native_asset:
        raise ConfigurationError("prices.native_asset must be configured")

    if cfg.prices.external_provider not in KNOWN_PRICE_PROVIDERS:
        raise ConfigurationError(
            f"Unknown external price provider '{cfg.prices.external_provider}'"
        )

    for name in cfg.strategies.enabled:
        if name not in KNOWN_STRATEGIES:
            raise ConfigurationError(f"Unknown strategy '{name}'")

    t = cfg.thresholds
    if not (
        t.close_factor_health_factor
        < t.liquidation_health_factor
        < t.watch_health_factor
    ):
        raise ConfigurationError(
            "Thresholds must satisfy close_factor < liquidation < watch"
        )

    if cfg.profit.safety_margin_bps <= 0 or cfg.profit.safety_margin_bps > 10_000:
        raise ConfigurationError("safety_margin_bps must be in (0, 10000]")

    if cfg.protocol.quoter and not cfg.protocol.quote_asset:
        raise ConfigurationError("protocol.quote_asset is required when a quoter is set")

    if cfg.execution.confirmations < 1:
        raise ConfigurationError("execution.confirmations must be at least 1")

    if cfg.monitor.dry_run:
        return

    if not cfg.wallet.private_key:
        raise ConfigurationError("wallet.private_key is required unless dry_run is set")

    if (
        cfg.execution.financing is FinancingMode.FLASH_LOAN
        and not cfg.protocol.flash_loan_executor
    ):
        raise ConfigurationError(
            "protocol.flash_loan_executor is required for flash_loan financing"
        )
