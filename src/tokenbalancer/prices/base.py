"""Abstract base class for USD price providers."""

from abc import ABC, abstractmethod
from typing import Optional


class PriceProvider(ABC):
    """Interface for fetching USD valuations from any source."""

    @abstractmethod
    async def fetch_usd_prices(self, symbols: list[str]) -> dict[str, Optional[float]]:
        """Fetch USD prices. Unknown symbols map to None.

        Raises:
            TransientFetchFailure: If the source is unreachable.
        """
        ...
