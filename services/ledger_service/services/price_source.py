"""
Spot price source for conversion rates (CoinGecko-compatible API).

``GET {PRICE_SOURCE_URL}/simple/price?ids=bitcoin,...&vs_currencies=usd``
"""

from decimal import Decimal
from typing import Iterable, Optional

import httpx
from libs.common.config import get_settings
from libs.common.currency import to_decimal
from libs.common.logging import get_logger
from services.ledger_service.models import Network

logger = get_logger(__name__)

COINGECKO_IDS = {
    Network.BTC: "bitcoin",
    Network.ETH: "ethereum",
    Network.TRON: "tron",
    Network.USDT: "tether",
    Network.BNB: "binancecoin",
    Network.SOL: "solana",
}


class PriceSourceError(Exception):
    """The price API could not be reached or returned garbage."""


class PriceSource:
    """Fetches USD spot prices for the supported networks."""

    def __init__(
        self,
        base_url: str = None,
        timeout: float = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        settings = get_settings()
        self.base_url = (base_url or settings.PRICE_SOURCE_URL).rstrip("/")
        self.timeout = timeout or settings.HTTP_TIMEOUT_SECONDS
        self.transport = transport

    async def fetch_spot_prices(
        self, networks: Optional[Iterable[Network]] = None
    ) -> dict[Network, Decimal]:
        networks = list(networks or Network)
        ids = ",".join(COINGECKO_IDS[n] for n in networks)

        try:
            async with httpx.AsyncClient(
                timeout=self.timeout, transport=self.transport
            ) as client:
                response = await client.get(
                    f"{self.base_url}/simple/price",
                    params={"ids": ids, "vs_currencies": "usd"},
                )
                response.raise_for_status()
                payload = response.json()
        except (httpx.HTTPError, ValueError) as e:
            raise PriceSourceError(f"Price source request failed: {e}") from e

        if not isinstance(payload, dict):
            raise PriceSourceError(
                f"Price source returned {type(payload).__name__}, expected an object"
            )

        prices: dict[Network, Decimal] = {}
        for network in networks:
            quote = payload.get(COINGECKO_IDS[network])
            usd = quote.get("usd") if isinstance(quote, dict) else None
            if usd is None or isinstance(usd, bool):
                logger.warning("Price source returned no USD price for %s", network.value)
                continue
            try:
                price = to_decimal(usd)
            except ValueError:
                logger.warning(
                    "Price source returned a bad USD price for %s: %r", network.value, usd
                )
                continue
            if not price.is_finite() or price < 0:
                logger.warning(
                    "Price source returned an invalid USD price for %s: %s",
                    network.value,
                    price,
                )
                continue
            prices[network] = price

        if not prices:
            raise PriceSourceError("Price source returned no prices")
        return prices
