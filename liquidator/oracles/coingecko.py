"""CoinGecko price source (simple/price endpoint)."""
import logging
import ssl
from decimal import Decimal

import aiohttp
import certifi

from ..config import CoinGeckoConfig
from ..models import PRICE_DECIMALS

logger = logging.getLogger(__name__)


class CoinGeckoPriceSource:
    """Fetch independent USD prices from CoinGecko, keyed by asset address."""

    def __init__(self, config: CoinGeckoConfig, timeout: int = 10) -> None:
        self.api_url = config.api_url
        self.api_key = config.api_key
        self.token_ids = {k.lower(): v for k, v in config.token_ids.items()}
        self.timeout = timeout

    async def read_external_price(self, asset: str) -> int | None:
        """Return the asset's USD price as an 8-decimal int, or None."""
        token_id = self.token_ids.get(asset.lower())
        if not token_id:
            logger.debug("No CoinGecko mapping for %s", asset)
            return None

        headers = {"x-cg-pro-api-key": self.api_key} if self.api_key else None
        params = {"ids": token_id, "vs_currencies": "usd"}

        ssl_context = ssl.create_default_context(cafile=certifi.where())
        connector = aiohttp.TCPConnector(ssl=ssl_context)

        try:
            async with aiohttp.ClientSession(connector=connector) as session:
                async with session.get(
                    self.api_url,
                    params=params,
                    headers=headers,
                    timeout=aiohttp.ClientTimeout(total=self.timeout),
                ) as response:
                    if response.status != 200:
                        logger.warning(
                            "CoinGecko returned HTTP %s for %s", response.status, token_id
                        )
                        return None
                    data = await response.json()
        except Exception as e:
            logger.warning("Error fetching CoinGecko price for %s: %s", asset, e)
            return None

        usd = data.get(token_id, {}).get("usd")
        if usd is None:
            return None
        return int(Decimal(str(usd)) * 10**PRICE_DECIMALS)
