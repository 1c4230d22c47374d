"""
ORACLE - Price sources

Plugins the collector pulls observations from. A source wraps one external
feed and returns zero or more observations per symbol.
"""

import time
from abc import ABC, abstractmethod
from collections.abc import Awaitable, Callable, Iterable
from decimal import Decimal, InvalidOperation
from typing import Any, Dict, List, Optional

import aiohttp

from shared import OracleDataSource, Price, PriceDataPoint

HTTP_PRICE_DECIMALS = 8


class PriceSource(ABC):
    """Base class for price source plugins."""

    def __init__(self, source: OracleDataSource):
        self.source = source

    @property
    def id(self) -> str:
        return self.source.id

    @abstractmethod
    async def fetch(self, symbol: str) -> List[PriceDataPoint]:
        """Fetch current observations for a symbol. Raises on failure."""

    async def close(self) -> None:
        """Release any held resources."""


class StaticPriceSource(PriceSource):
    """
    Serves fixed prices, stamped with the time of each fetch.

    Useful for pinned reference rates and for tests.
    """

    def __init__(
        self,
        source: OracleDataSource,
        prices: Dict[str, Price],
        clock: Callable[[], int] | None = None,
    ):
        super().__init__(source)
        self.prices = dict(prices)
        self._clock = clock or (lambda: int(time.time() * 1000))
        self.fetch_count = 0

    async def fetch(self, symbol: str) -> List[PriceDataPoint]:
        self.fetch_count += 1
        price = self.prices.get(symbol)
        if price is None:
            return []
        return [PriceDataPoint(
            symbol=symbol,
            source=self.id,
            price=price,
            timestamp_ms=self._clock(),
        )]


class CallablePriceSource(PriceSource):
    """Adapts an async callable ``symbol -> observations`` into a source."""

    def __init__(
        self,
        source: OracleDataSource,
        fetcher: Callable[[str], Awaitable[Iterable[PriceDataPoint]]],
    ):
        super().__init__(source)
        self._fetcher = fetcher

    async def fetch(self, symbol: str) -> List[PriceDataPoint]:
        return list(await self._fetcher(symbol))


class HttpPriceSource(PriceSource):
    """
    JSON-over-HTTP price feed.

    Issues ``GET {endpoint}?symbol=...`` and expects a body like
    ``{"price": "2500.12", "timestamp": 1700000000000, "volume": 12,
    "confidence": 0.97}``. Only ``price`` is required; the price is parsed as
    a decimal string and stored with 8 decimals.
    """

    def __init__(
        self,
        source: OracleDataSource,
        session: Optional[aiohttp.ClientSession] = None,
        clock: Callable[[], int] | None = None,
    ):
        if not source.endpoint:
            raise ValueError(f"Source {source.id} has no endpoint")
        super().__init__(source)
        self._session = session
        self._owns_session = session is None
        self._clock = clock or (lambda: int(time.time() * 1000))

    async def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            timeout = None
            if self.source.timeout_ms:
                timeout = aiohttp.ClientTimeout(total=self.source.timeout_ms / 1000)
            self._session = aiohttp.ClientSession(
                timeout=timeout,
                headers={"Accept": "application/json"},
            )
            self._owns_session = True
        return self._session

    async def fetch(self, symbol: str) -> List[PriceDataPoint]:
        session = await self._get_session()
        async with session.get(self.source.endpoint, params={"symbol": symbol}) as response:
            response.raise_for_status()
            body = await response.json()
        return [self.parse(symbol, body)]

    def parse(self, symbol: str, body: Dict[str, Any]) -> PriceDataPoint:
        """Convert a feed response body into an observation."""
        try:
            amount = Decimal(str(body["price"]))
        except (KeyError, InvalidOperation) as e:
            raise ValueError(f"Malformed price payload from {self.id}: {body!r}") from e

        volume = body.get("volume")
        return PriceDataPoint(
            symbol=symbol,
            source=self.id,
            price=Price.from_decimal(amount, HTTP_PRICE_DECIMALS),
            timestamp_ms=int(body.get("timestamp") or self._clock()),
            volume=int(Decimal(str(volume))) if volume is not None else None,
            confidence=body.get("confidence"),
        )

    async def close(self) -> None:
        if self._owns_session and self._session is not None and not self._session.closed:
            await self._session.close()
