"""CryptoCompare USD price source."""

import asyncio
from typing import Optional

import aiohttp
import structlog
from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_exponential

from tokenbalancer.config import AppConfig, Secrets
from tokenbalancer.exceptions import TransientFetchFailure
from tokenbalancer.prices.base import PriceProvider

logger = structlog.get_logger(__name__)


def _chunks(items: list[str], size: int) -> list[list[str]]:
    return [items[i:i + size] for i in range(0, len(items), size)]


class CryptoCompareProvider(PriceProvider):
    """Fetches USD prices from the CryptoCompare pricemulti endpoint.

    The endpoint accepts a limited number of symbols per call, so symbols
    are requested in batches. Transport errors are retried a few times here;
    anything left over surfaces as TransientFetchFailure.
    """

    def __init__(self, config: AppConfig, secrets: Secrets):
        self._config = config.prices
        self._api_key = secrets.cryptocompare_api_key

    async def fetch_usd_prices(self, symbols: list[str]) -> dict[str, Optional[float]]:
        unique = list(dict.fromkeys(symbols))
        if not unique:
            return {}

        prices: dict[str, Optional[float]] = {}
        timeout = aiohttp.ClientTimeout(total=self._config.timeout_seconds)
        try:
            async with aiohttp.ClientSession(timeout=timeout) as session:
                for batch in _chunks(unique, self._config.batch_size):
                    data = await self._get_json(session, batch)
                    if data.get("Response") == "Error":
                        raise TransientFetchFailure(
                            f"CryptoCompare error: {data.get('Message', 'unknown')}"
                        )
                    for symbol in batch:
                        quote = data.get(symbol)
                        prices[symbol] = float(quote["USD"]) if quote and "USD" in quote else None
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            logger.error("prices.fetch_failed", provider="cryptocompare", error=str(e))
            raise TransientFetchFailure(f"CryptoCompare unreachable: {e}") from e

        missing = [s for s, p in prices.items() if p is None]
        logger.debug(
            "prices.fetched",
            provider="cryptocompare",
            symbols=len(unique),
            missing=missing,
        )
        return prices

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(min=1, max=10),
        retry=retry_if_exception_type(aiohttp.ClientError),
        reraise=True,
    )
    async def _get_json(self, session: aiohttp.ClientSession, symbols: list[str]) -> dict:
        params = {"fsyms": ",".join(symbols), "tsyms": "USD"}
        headers = {}
        if self._api_key:
            headers["authorization"] = f"Apikey {self._api_key}"

        async with session.get(self._config.base_url, params=params, headers=headers) as response:
            response.raise_for_status()
            return await response.json()
