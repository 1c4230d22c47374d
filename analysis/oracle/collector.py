"""
ORACLE - Data Collector

Pulls observations from every registered source with rate limiting,
bounded retries and bounded concurrency.
"""

import asyncio
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, List, Optional, Sequence

from shared import OracleLogger, PriceDataPoint, SourceFailure, ValidatorConfig

from .errors import SourceFetchError
from .registry import SourceRegistry
from .sources import PriceSource


class FetchStatus(str, Enum):
    """Outcome of one source in one collection round."""
    OK = "ok"
    SKIPPED = "skipped"
    FAILED = "failed"


@dataclass
class SourceOutcome:
    """Per-source result of a collection round."""
    source: str
    status: FetchStatus
    points: List[PriceDataPoint] = field(default_factory=list)
    error: Optional[str] = None
    attempts: int = 0
    latency_ms: float = 0.0


@dataclass
class CollectionMetadata:
    """Timing and health summary of a collection round."""
    start_time_ms: int
    end_time_ms: int
    duration_ms: int
    success_rate: float
    average_latency_ms: float


@dataclass
class CollectionResult:
    """Observations gathered in one round plus the sources that failed."""
    observations: List[PriceDataPoint]
    failed_sources: List[SourceFailure]
    skipped_sources: List[str]
    metadata: CollectionMetadata

    @property
    def failed_source_ids(self) -> List[str]:
        return [f.source for f in self.failed_sources]

    def sources_for(self, symbol: str) -> set[str]:
        """Distinct sources that reported the symbol."""
        return {p.source for p in self.observations if p.symbol == symbol}


class Collector:
    """
    Collects price observations from all registered sources.

    Each source is fetched in its own task. A per-source lock covers the
    rate-limit check, the fetch and the last-fetch update, so two concurrent
    rounds can never both pass the same rate-limit window.
    """

    def __init__(
        self,
        registry: SourceRegistry,
        config: Optional[ValidatorConfig] = None,
        clock: Optional[Callable[[], int]] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.logger = OracleLogger("ORACLE-COLLECTOR")
        self.registry = registry
        self.config = config or ValidatorConfig()
        self._clock = clock or (lambda: int(time.time() * 1000))
        self._sleep = sleep

        # source id -> timestamp of last successful fetch (ms)
        self._last_fetch: Dict[str, int] = {}
        self._locks: Dict[str, asyncio.Lock] = {}

        # Statistics
        self.rounds = 0
        self.fetches_failed = 0

    def last_fetch_times(self) -> Dict[str, int]:
        """Snapshot of last successful fetch per registered source."""
        return {
            source_id: ts
            for source_id, ts in self._last_fetch.items()
            if source_id in self.registry
        }

    async def collect(self, symbols: Sequence[str]) -> CollectionResult:
        """Run one collection round for the given symbols."""
        start_time = self._clock()
        self.rounds += 1
        sources = list(self.registry)
        semaphore = asyncio.Semaphore(self.config.max_concurrency)

        tasks: Dict[str, asyncio.Task] = {
            source.id: asyncio.create_task(
                self._collect_source(source, list(symbols), semaphore)
            )
            for source in sources
        }

        pending: set[asyncio.Task] = set()
        if tasks:
            deadline = self.config.collection_deadline_ms
            _, pending = await asyncio.wait(
                tasks.values(),
                timeout=deadline / 1000 if deadline is not None else None,
            )
            for task in pending:
                task.cancel()
            if pending:
                await asyncio.gather(*pending, return_exceptions=True)

        observations: List[PriceDataPoint] = []
        failed: List[SourceFailure] = []
        skipped: List[str] = []
        latencies: List[float] = []

        for source_id, task in tasks.items():
            if task in pending:
                self.fetches_failed += 1
                self.logger.warning("Source missed collection deadline", source=source_id)
                failed.append(SourceFailure(
                    source=source_id,
                    error="collection deadline exceeded",
                    timestamp_ms=self._clock(),
                ))
                continue

            outcome: SourceOutcome = task.result()
            if outcome.status is FetchStatus.OK:
                observations.extend(outcome.points)
                latencies.append(outcome.latency_ms)
            elif outcome.status is FetchStatus.SKIPPED:
                skipped.append(source_id)
            else:
                failed.append(SourceFailure(
                    source=source_id,
                    error=outcome.error or "unknown error",
                    timestamp_ms=self._clock(),
                ))

        end_time = self._clock()
        attempted = len(latencies) + len(failed)
        result = CollectionResult(
            observations=observations,
            failed_sources=failed,
            skipped_sources=skipped,
            metadata=CollectionMetadata(
                start_time_ms=start_time,
                end_time_ms=end_time,
                duration_ms=end_time - start_time,
                success_rate=len(latencies) / attempted if attempted else 0.0,
                average_latency_ms=sum(latencies) / len(latencies) if latencies else 0.0,
            ),
        )

        self.logger.debug(
            "Collection round completed",
            symbols=list(symbols),
            observations=len(observations),
            failed=len(failed),
            skipped=len(skipped),
            duration_ms=result.metadata.duration_ms,
        )
        return result

    def _lock_for(self, source_id: str) -> asyncio.Lock:
        lock = self._locks.get(source_id)
        if lock is None:
            lock = self._locks[source_id] = asyncio.Lock()
        return lock

    async def _collect_source(
        self,
        source: PriceSource,
        symbols: List[str],
        semaphore: asyncio.Semaphore,
    ) -> SourceOutcome:
        """Rate-limit gate, fetch with retry, record success."""
        async with self._lock_for(source.id):
            rate_limit = source.source.rate_limit
            last = self._last_fetch.get(source.id)
            if rate_limit is not None and last is not None:
                elapsed = self._clock() - last
                if elapsed < rate_limit.interval_ms:
                    self.logger.debug(
                        "Source skipped by rate limit",
                        source=source.id,
                        elapsed_ms=elapsed,
                        interval_ms=rate_limit.interval_ms,
                    )
                    return SourceOutcome(source=source.id, status=FetchStatus.SKIPPED)

            started = time.perf_counter()
            try:
                async with semaphore:
                    points = await self._fetch_with_retry(source, symbols)
            except SourceFetchError as e:
                self.fetches_failed += 1
                self.logger.error(
                    "Source exhausted retries",
                    source=source.id,
                    attempts=e.attempts,
                    error=e.reason,
                )
                return SourceOutcome(
                    source=source.id,
                    status=FetchStatus.FAILED,
                    error=str(e),
                    attempts=e.attempts,
                )

            self._last_fetch[source.id] = self._clock()
            return SourceOutcome(
                source=source.id,
                status=FetchStatus.OK,
                points=points,
                latency_ms=(time.perf_counter() - started) * 1000,
            )

    async def _fetch_with_retry(
        self,
        source: PriceSource,
        symbols: List[str],
    ) -> List[PriceDataPoint]:
        """Attempt the fetch up to ``retry_attempts`` times with linear backoff."""
        attempts = self.config.retry_attempts
        timeout_ms = source.source.timeout_ms or self.config.request_timeout_ms
        last_error: Optional[Exception] = None

        for attempt in range(1, attempts + 1):
            try:
                return await self._fetch_all(source, symbols, timeout_ms / 1000)
            except asyncio.CancelledError:
                raise
            except Exception as e:
                last_error = e
                self.logger.warning(
                    "Fetch attempt failed",
                    source=source.id,
                    attempt=attempt,
                    error=repr(e),
                )
                if attempt < attempts:
                    await self._sleep(self.config.retry_delay_ms * attempt / 1000)

        raise SourceFetchError(
            source.id, attempts, reason=repr(last_error)
        ) from last_error

    async def _fetch_all(
        self,
        source: PriceSource,
        symbols: List[str],
        timeout: float,
    ) -> List[PriceDataPoint]:
        """Fetch each symbol in turn; the timeout applies to every request."""
        requested = set(symbols)
        points: List[PriceDataPoint] = []
        for symbol in symbols:
            fetched = await asyncio.wait_for(source.fetch(symbol), timeout=timeout)
            for point in fetched:
                if point.symbol in requested:
                    points.append(point)
        return points

    def get_stats(self) -> Dict:
        """Get collector statistics."""
        return {
            "rounds": self.rounds,
            "fetches_failed": self.fetches_failed,
            "tracked_sources": len(self.last_fetch_times()),
        }
