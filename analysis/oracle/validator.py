"""
ORACLE - Validator

Runs one validation pass per call:

    cache check -> collect -> compare (per symbol) -> detect anomalies
    -> score trust -> assemble -> cache write

A fresh cache hit short-circuits the pass. Any failure aborts the whole
call and reaches the caller as an OracleValidatorError; nothing partial is
returned or cached.
"""

import asyncio
import time
from collections import defaultdict
from collections.abc import Awaitable, Callable, Sequence
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, List, Optional

import numpy as np

from shared import (
    Anomaly,
    OracleConfig,
    OracleLogger,
    PriceDataPoint,
    SourceFailure,
    TrustScore,
    get_config,
    validation_context,
)

from .anomaly import AnomalyDetector, DeviationAnomalyDetector
from .cache import ResultCache, cache_key
from .collector import CollectionResult, Collector
from .comparator import ComparisonResult, DataComparator
from .errors import CacheError, InsufficientSourcesError, OracleValidatorError
from .registry import SourceRegistry
from .sources import PriceSource
from .trust import ReputationTrustScorer, TrustScorer

STALE_SOURCE_ERROR = "source not responding"


class ValidationStage(str, Enum):
    """Stages of a validation pass."""
    START = "start"
    CACHE_CHECK = "cache_check"
    COLLECT = "collect"
    COMPARE = "compare"
    DETECT_ANOMALIES = "detect_anomalies"
    SCORE_TRUST = "score_trust"
    ASSEMBLE = "assemble"
    CACHE_WRITE = "cache_write"
    DONE = "done"


@dataclass
class ValidationStats:
    """Aggregate figures for a validation pass."""
    total_data_points: int
    valid_data_points: int
    anomaly_count: int
    average_trust_score: float
    update_latency_ms: float
    sources_responded: List[str]
    failed_sources: List[SourceFailure]


@dataclass
class ValidationMetadata:
    """Timing and settings of a validation pass."""
    start_time_ms: int
    end_time_ms: int
    duration_ms: int
    config: OracleConfig


@dataclass
class ValidationResult:
    """Complete outcome of ``OracleValidator.validate_data``."""
    prices: Dict[str, List[PriceDataPoint]]
    comparisons: Dict[str, ComparisonResult]
    anomalies: List[Anomaly]
    trust_scores: Dict[str, TrustScore]
    stats: ValidationStats
    metadata: ValidationMetadata
    collection: Optional[CollectionResult] = field(default=None, repr=False)


class OracleValidator:
    """
    Validates prices across independent sources.

    Anomaly detection, trust scoring and the result cache are injected and
    default to the in-package implementations.
    """

    def __init__(
        self,
        sources: Optional[Sequence[PriceSource]] = None,
        config: Optional[OracleConfig] = None,
        anomaly_detector: Optional[AnomalyDetector] = None,
        trust_scorer: Optional[TrustScorer] = None,
        cache: Optional[ResultCache] = None,
        clock: Optional[Callable[[], int]] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.config = config or get_config()
        self.logger = OracleLogger("ORACLE-VALIDATOR")
        self._clock = clock or (lambda: int(time.time() * 1000))

        self.registry = SourceRegistry(
            list(sources or []),
            default_weight=self.config.comparator.default_weight,
            weight_overrides=self.config.comparator.source_weights,
        )
        self.collector = Collector(self.registry, self.config.validator, self._clock, sleep)
        self.comparator = DataComparator(
            self.config.comparator,
            weight_for=self.registry.weight_for,
            clock=self._clock,
        )
        if anomaly_detector is None:
            anomaly_detector = DeviationAnomalyDetector(self.config.anomaly, clock=self._clock)
        if trust_scorer is None:
            trust_scorer = ReputationTrustScorer(self.config.trust, clock=self._clock)
        if cache is None:
            cache = ResultCache(self.config.validator.cache_expiration_ms, clock=self._clock)

        self.anomaly_detector: AnomalyDetector = anomaly_detector
        self.trust_scorer: TrustScorer = trust_scorer
        self.cache = cache

        # Statistics
        self.validations = 0
        self.cache_hits = 0
        self.failures = 0

        self.logger.info(
            "Oracle validator initialized",
            sources=len(self.registry),
            required_sources=self.config.validator.required_sources,
            min_sources=self.config.comparator.min_sources,
        )

    def add_source(self, source: PriceSource) -> None:
        self.registry.add_source(source)

    def remove_source(self, source_id: str) -> Optional[PriceSource]:
        return self.registry.remove_source(source_id)

    async def validate_data(self, symbols: Sequence[str]) -> ValidationResult:
        """Collect, reconcile and score prices for the requested symbols."""
        if isinstance(symbols, str):
            raise TypeError("symbols must be a sequence of strings, not a string")
        requested = sorted(set(symbols))
        if not requested:
            raise ValueError("At least one symbol is required")

        key = cache_key(requested, self.config)
        with validation_context(requested, key):
            return await self._validate(requested, key)

    async def _validate(self, requested: List[str], key: str) -> ValidationResult:
        start_time = self._clock()
        stage = ValidationStage.START

        try:
            if self.config.validator.cache_results:
                stage = ValidationStage.CACHE_CHECK
                cached = self._read_cache(key)
                if cached is not None:
                    self.cache_hits += 1
                    self.logger.debug("Cache hit")
                    return cached

            stage = ValidationStage.COLLECT
            collection = await self.collector.collect(requested)
            self._check_coverage(requested, collection)
            prices = self._group_by_symbol(requested, collection.observations)

            stage = ValidationStage.COMPARE
            comparisons = {
                symbol: self.comparator.compare(symbol, prices[symbol])
                for symbol in requested
            }

            stage = ValidationStage.DETECT_ANOMALIES
            anomalies = self.anomaly_detector.detect_anomalies(collection.observations)

            stage = ValidationStage.SCORE_TRUST
            trust_scores = self.trust_scorer.calculate_trust_scores(
                collection.observations,
                [source.source for source in self.registry],
            )

            stage = ValidationStage.ASSEMBLE
            stats = self._calculate_stats(collection, anomalies, trust_scores)
            end_time = self._clock()
            result = ValidationResult(
                prices=prices,
                comparisons=comparisons,
                anomalies=anomalies,
                trust_scores=trust_scores,
                stats=stats,
                metadata=ValidationMetadata(
                    start_time_ms=start_time,
                    end_time_ms=end_time,
                    duration_ms=end_time - start_time,
                    config=self.config,
                ),
                collection=collection,
            )

            if self.config.validator.cache_results:
                stage = ValidationStage.CACHE_WRITE
                self._write_cache(key, result)
        except OracleValidatorError as e:
            self.failures += 1
            self.logger.error("Validation failed", stage=stage.value, error=str(e))
            raise
        except Exception as e:
            self.failures += 1
            self.logger.error("Validation failed", stage=stage.value, error=repr(e))
            raise OracleValidatorError(f"Validation failed at {stage.value}: {e!r}") from e

        stage = ValidationStage.DONE
        self.validations += 1
        self.logger.info(
            "Validation completed",
            stage=stage.value,
            duration_ms=result.metadata.duration_ms,
            data_points=stats.total_data_points,
            valid_points=stats.valid_data_points,
            anomalies=stats.anomaly_count,
            failed_sources=len(stats.failed_sources),
        )
        return result

    def _read_cache(self, key: str) -> Optional[ValidationResult]:
        try:
            return self.cache.get(key)
        except CacheError as e:
            self.logger.warning("Cache read failed, treating as miss", error=repr(e))
            return None

    def _write_cache(self, key: str, result: ValidationResult) -> None:
        try:
            self.cache.set(key, result, self.config.validator.cache_expiration_ms)
        except CacheError as e:
            self.logger.warning("Cache write failed, result not cached", error=repr(e))

    def _check_coverage(self, symbols: List[str], collection: CollectionResult) -> None:
        required = self.config.validator.required_sources
        for symbol in symbols:
            available = len(collection.sources_for(symbol))
            if available < required:
                raise InsufficientSourcesError(symbol, available, required, stage="collect")

    @staticmethod
    def _group_by_symbol(
        symbols: List[str],
        data_points: Sequence[PriceDataPoint],
    ) -> Dict[str, List[PriceDataPoint]]:
        groups: Dict[str, List[PriceDataPoint]] = defaultdict(list)
        for point in data_points:
            groups[point.symbol].append(point)
        return {symbol: groups[symbol] for symbol in symbols}

    def _calculate_stats(
        self,
        collection: CollectionResult,
        anomalies: List[Anomaly],
        trust_scores: Dict[str, TrustScore],
    ) -> ValidationStats:
        observations = collection.observations
        affected = {
            (anomaly.symbol, source)
            for anomaly in anomalies
            for source in anomaly.metadata.sources_affected
        }
        valid_points = [p for p in observations if (p.symbol, p.source) not in affected]

        now = self._clock()
        last_fetch = self.collector.last_fetch_times()
        latencies = [now - ts for ts in last_fetch.values()]

        failed = list(collection.failed_sources)
        seen = {f.source for f in failed}
        for source_id, ts in last_fetch.items():
            if now - ts > self.config.validator.update_interval_ms and source_id not in seen:
                failed.append(SourceFailure(source=source_id, error=STALE_SOURCE_ERROR, timestamp_ms=ts))

        return ValidationStats(
            total_data_points=len(observations),
            valid_data_points=len(valid_points),
            anomaly_count=len(anomalies),
            average_trust_score=(
                float(np.mean([s.score for s in trust_scores.values()])) if trust_scores else 0.0
            ),
            update_latency_ms=float(np.mean(latencies)) if latencies else 0.0,
            sources_responded=sorted({p.source for p in observations}),
            failed_sources=failed,
        )

    async def close(self) -> None:
        """Close every registered source."""
        for source in self.registry:
            await source.close()

    def get_stats(self) -> Dict:
        """Get validator statistics."""
        return {
            "validations": self.validations,
            "cache_hits": self.cache_hits,
            "failures": self.failures,
            "sources": len(self.registry),
            "collector": self.collector.get_stats(),
            "comparator": self.comparator.get_stats(),
            "cache": self.cache.get_stats(),
        }
