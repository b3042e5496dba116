"""Error taxonomy for the liquidation engine.

Each error carries a short ``reason`` string. The orchestrator copies it into
``ExecutionResult.error`` so that execution failures surface as data.
"""
from __future__ import annotations


class LiquidatorError(Exception):
    """Base class for all engine errors."""

    reason = "LiquidatorError"


class ReadError(LiquidatorError):
    """Transient data-source failure. Skip for this cycle, retry next cycle."""

    reason = "ReadError"


class SourceUnavailable(ReadError):
    """The canonical price oracle could not be reached."""

    reason = "SourceUnavailable"


class DataUnavailable(LiquidatorError):
    """A price quote or reserve configuration is missing for one pair."""

    reason = "DataUnavailable"


class GasPriceTooHigh(LiquidatorError):
    """Current gas price is above the configured ceiling."""

    reason = "GasPriceTooHigh"


class InsufficientBalance(LiquidatorError):
    """Operator balance does not cover the debt on the direct path."""

    reason = "InsufficientBalance"


class SettlementFailed(LiquidatorError):
    """A submitted transaction reverted or never confirmed."""

    reason = "SettlementFailed"


class ConfigurationError(LiquidatorError):
    """Invalid or incomplete configuration. Fatal at startup only."""

    reason = "ConfigurationError"
