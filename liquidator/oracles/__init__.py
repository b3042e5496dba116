"""Independent price sources."""
from .coingecko import CoinGeckoPriceSource
from .pyth import PythPriceSource

__all__ = ["CoinGeckoPriceSource", "PythPriceSource"]
