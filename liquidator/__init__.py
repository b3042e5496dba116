"""Liquidation opportunity engine for Aave-V3-style lending protocols."""

__version__ = "0.1.0"
