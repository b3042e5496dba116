"""Aave V3 protocol integration."""
from .adapter import AaveV3Adapter
from .executor import AaveExecutor

__all__ = ["AaveV3Adapter", "AaveExecutor"]
