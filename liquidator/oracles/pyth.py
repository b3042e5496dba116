"""Pyth Network price source (Hermes REST API)."""
import logging
import ssl

import aiohttp
import certifi

from ..config import PythConfig
from ..models import PRICE_DECIMALS

logger = logging.getLogger(__name__)


def scale_pyth_price(price_raw: int, expo: int) -> int:
    """Rescale a Pyth ``price * 10^expo`` to an 8-decimal int."""
    shift = expo + PRICE_DECIMALS
    if shift >= 0:
        return price_raw * 10**shift
    return price_raw // 10**-shift


class PythPriceSource:
    """Fetch independent prices from Pyth Network, keyed by asset address."""

    def __init__(self, config: PythConfig) -> None:
        self.hermes_url = config.hermes_url
        self.price_feeds = {k.lower(): v for k, v in config.feeds.items()}

    async def fetch_prices(self, assets: list[str] | None = None) -> dict[str, int]:
        """Fetch current prices from Pyth Network.

        Args:
            assets: Optional list of asset addresses to fetch. If None, fetches
                all configured feeds.

        Returns:
            Mapping of lowercase asset address to 8-decimal price. Assets
            without a feed or a usable answer are absent.
        """
        prices: dict[str, int] = {}

        feeds = self.price_feeds
        if assets is not None:
            wanted = {a.lower() for a in assets}
            feeds = {k: v for k, v in self.price_feeds.items() if k in wanted}

        feed_ids = list(set(feeds.values()))
        if not feed_ids:
            return prices

        query_params = "&".join([f"ids[]={fid}" for fid in feed_ids])
        url = f"{self.hermes_url}?{query_params}"

        ssl_context = ssl.create_default_context(cafile=certifi.where())
        connector = aiohttp.TCPConnector(ssl=ssl_context)

        try:
            async with aiohttp.ClientSession(connector=connector) as session:
                async with session.get(url) as response:
                    if response.status != 200:
                        logger.warning(
                            "Error fetching prices from Pyth: HTTP %s", response.status
                        )
                        return prices

                    data = await response.json()
                    parsed = data.get("parsed", [])

                    id_to_assets: dict[str, list[str]] = {}
                    for asset, feed_id in feeds.items():
                        key = feed_id.lower().removeprefix("0x")
                        id_to_assets.setdefault(key, []).append(asset)

                    for item in parsed:
                        feed_id = str(item.get("id", "")).lower().removeprefix("0x")
                        price_data = item.get("price", {})
                        price_raw = int(price_data.get("price", 0))
                        expo = int(price_data.get("expo", 0))
                        if price_raw <= 0:
                            continue

                        for asset in id_to_assets.get(feed_id, []):
                            prices[asset] = scale_pyth_price(price_raw, expo)

                    logger.debug("Fetched %d prices from Pyth Network", len(prices))

        except Exception as e:
            logger.warning("Error fetching prices from Pyth: %s", e)

        return prices

    async def read_external_price(self, asset: str) -> int | None:
        prices = await self.fetch_prices([asset])
        return prices.get(asset.lower())
