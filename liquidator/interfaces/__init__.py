"""Protocol interfaces for the liquidation engine's collaborators."""
from .chain import ChainClient
from .executor import LiquidationExecutor
from .lending_pool import LendingPool
from .notifier import Notifier
from .price_oracle import CanonicalOracle, ExternalPriceSource, MarketPriceSource

__all__ = [
    "CanonicalOracle",
    "ChainClient",
    "ExternalPriceSource",
    "LendingPool",
    "LiquidationExecutor",
    "MarketPriceSource",
    "Notifier",
]
