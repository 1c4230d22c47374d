"""
ORACLE - Statistical Comparator

Reconciles same-symbol observations into one consensus price.

Prices stay in scaled-integer form throughout. Statistics are computed with
``Decimal`` at high precision and the consensus price is rounded half-up to
the nearest integer unit of the common scale.
"""

import time
from collections.abc import Callable, Sequence
from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal, localcontext
from typing import Dict, List, Optional

from shared import (
    AggregationMethod,
    ComparatorConfig,
    OracleLogger,
    Price,
    PriceDataPoint,
)

from .errors import ComparatorError, InsufficientSourcesError

PRECISION = 60
TRIM_FRACTION_DENOMINATOR = 4  # Drop lowest/highest 25%


@dataclass
class SourceComparison:
    """How one observation relates to the consensus."""
    id: str
    price: Price
    weight: float
    deviation: float  # Signed fraction of the aggregated price
    is_outlier: bool


@dataclass
class ComparisonStats:
    """Summary statistics over time-valid observations (raw scaled units)."""
    mean: Decimal
    median: Decimal
    std_dev: Decimal
    min_price: Price
    max_price: Price
    valid_sources: int
    outliers: int


@dataclass
class ComparisonMetadata:
    """Parameters and quality of a comparison."""
    method: AggregationMethod
    time_window_ms: int
    threshold: float
    confidence: float


@dataclass
class ComparisonResult:
    """Consensus price for one symbol."""
    symbol: str
    timestamp_ms: int
    aggregated_price: Price
    decimals: int
    sources: List[SourceComparison]
    stats: ComparisonStats
    metadata: ComparisonMetadata


def round_to_unit(value: Decimal) -> int:
    return int(value.quantize(Decimal(1), rounding=ROUND_HALF_UP))


def median(values: Sequence[int]) -> Decimal:
    """Middle value; mean of the two middle values for even counts."""
    if not values:
        raise ComparatorError("Median of an empty price list")
    ordered = sorted(values)
    mid = len(ordered) // 2
    if len(ordered) % 2:
        return Decimal(ordered[mid])
    return (Decimal(ordered[mid - 1]) + Decimal(ordered[mid])) / 2


def weighted_mean(values: Sequence[int], weights: Sequence[Decimal]) -> Decimal:
    total_weight = sum(weights, Decimal(0))
    if total_weight <= 0:
        raise ComparatorError("Weights must sum to a positive value")
    return sum((Decimal(v) * w for v, w in zip(values, weights)), Decimal(0)) / total_weight


def weighted_std_dev(
    values: Sequence[int],
    weights: Sequence[Decimal],
    mean: Decimal,
) -> Decimal:
    """Population standard deviation with per-value weights."""
    total_weight = sum(weights, Decimal(0))
    variance = sum(
        (w * (Decimal(v) - mean) ** 2 for v, w in zip(values, weights)),
        Decimal(0),
    ) / total_weight
    return variance.sqrt()


def trimmed_mean(values: Sequence[int]) -> Decimal:
    """Mean after dropping the lowest and highest quarter of values."""
    if not values:
        raise ComparatorError("Trimmed mean of an empty price list")
    ordered = sorted(values)
    trim = len(ordered) // TRIM_FRACTION_DENOMINATOR
    kept = ordered[trim:len(ordered) - trim]
    return Decimal(sum(kept)) / len(kept)


class DataComparator:
    """
    Computes consensus prices with z-score outlier rejection.

    Outliers are still reported with their deviation but never contribute
    to the aggregated price.
    """

    def __init__(
        self,
        config: Optional[ComparatorConfig] = None,
        weight_for: Optional[Callable[[str], float]] = None,
        clock: Optional[Callable[[], int]] = None,
    ):
        self.logger = OracleLogger("ORACLE-COMPARATOR")
        self.config = config or ComparatorConfig()
        self._weight_for = weight_for
        self._clock = clock or (lambda: int(time.time() * 1000))

        self.last_comparison: Dict[str, ComparisonResult] = {}
        self.comparisons = 0

    def get_source_weight(self, source_id: str) -> float:
        if self._weight_for is not None:
            return self._weight_for(source_id)
        return self.config.source_weights.get(source_id, self.config.default_weight)

    def get_last_comparison(self, symbol: str) -> Optional[ComparisonResult]:
        return self.last_comparison.get(symbol)

    def compare(
        self,
        symbol: str,
        data_points: Sequence[PriceDataPoint],
    ) -> ComparisonResult:
        """Reduce a symbol's observations to a consensus price."""
        min_sources = self.config.min_sources
        if len(data_points) < min_sources:
            raise InsufficientSourcesError(symbol, len(data_points), min_sources, stage="compare")

        foreign = {p.symbol for p in data_points if p.symbol != symbol}
        if foreign:
            raise ComparatorError(f"Observations for {sorted(foreign)} passed to {symbol} comparison")

        now = self._clock()
        window = self.config.time_window_ms
        valid = [p for p in data_points if now - p.timestamp_ms <= window]
        if len(valid) < min_sources:
            raise InsufficientSourcesError(symbol, len(valid), min_sources, stage="time_window")

        decimals = max(p.price.decimals for p in valid)
        values = [p.price.rescale(decimals).value for p in valid]
        weights = [self.get_source_weight(p.source) for p in valid]

        with localcontext() as ctx:
            ctx.prec = PRECISION
            dec_weights = [Decimal(str(w)) for w in weights]
            mean = weighted_mean(values, dec_weights)
            mid = median(values)
            std_dev = weighted_std_dev(values, dec_weights, mean)

            flags = self._detect_outliers(values, mean, std_dev)
            kept = [(v, w) for v, w, flag in zip(values, dec_weights, flags) if not flag]
            if not kept:
                raise ComparatorError(f"Every observation for {symbol} was flagged as an outlier")

            aggregated = self._aggregate([v for v, _ in kept], [w for _, w in kept])
            sources = [
                SourceComparison(
                    id=point.source,
                    price=point.price,
                    weight=weight,
                    deviation=self._deviation(value, aggregated),
                    is_outlier=flag,
                )
                for point, value, weight, flag in zip(valid, values, weights, flags)
            ]

        outlier_count = sum(flags)
        result = ComparisonResult(
            symbol=symbol,
            timestamp_ms=now,
            aggregated_price=Price(aggregated, decimals),
            decimals=decimals,
            sources=sources,
            stats=ComparisonStats(
                mean=mean,
                median=mid,
                std_dev=std_dev,
                min_price=Price(min(values), decimals),
                max_price=Price(max(values), decimals),
                valid_sources=len(valid),
                outliers=outlier_count,
            ),
            metadata=ComparisonMetadata(
                method=self.config.aggregation_method,
                time_window_ms=window,
                threshold=self.config.outlier_threshold,
                confidence=self._confidence(valid, outlier_count, now),
            ),
        )

        self.last_comparison[symbol] = result
        self.comparisons += 1
        self.logger.debug(
            "Comparison completed",
            symbol=symbol,
            aggregated_price=str(result.aggregated_price),
            valid_sources=len(valid),
            outliers=outlier_count,
            confidence=round(result.metadata.confidence, 4),
        )
        return result

    def _detect_outliers(
        self,
        values: Sequence[int],
        mean: Decimal,
        std_dev: Decimal,
    ) -> List[bool]:
        if std_dev == 0:
            return [False] * len(values)
        threshold = Decimal(str(self.config.outlier_threshold))
        return [abs(Decimal(v) - mean) / std_dev > threshold for v in values]

    def _aggregate(self, values: Sequence[int], weights: Sequence[Decimal]) -> int:
        method = self.config.aggregation_method
        if method is AggregationMethod.MEDIAN:
            return round_to_unit(median(values))
        if method is AggregationMethod.TRIMMED_MEAN:
            return round_to_unit(trimmed_mean(values))
        return round_to_unit(weighted_mean(values, weights))

    @staticmethod
    def _deviation(value: int, aggregated: int) -> float:
        if aggregated == 0:
            return 0.0
        return float((Decimal(value) - aggregated) / Decimal(aggregated))

    def _confidence(
        self,
        points: Sequence[PriceDataPoint],
        outlier_count: int,
        now: int,
    ) -> float:
        """Blend of source sufficiency, freshness and outlier ratio, in [0, 1]."""
        count = len(points)
        window = self.config.time_window_ms

        source_factor = min((count - outlier_count) / self.config.min_sources, 1.0)
        age_factor = sum(
            min(max(1 - (now - p.timestamp_ms) / window, 0.0), 1.0) for p in points
        ) / count
        outlier_factor = 1 - outlier_count / count

        confidence = source_factor * 0.4 + age_factor * 0.3 + outlier_factor * 0.3
        return min(max(confidence, 0.0), 1.0)

    def get_stats(self) -> Dict:
        """Get comparator statistics."""
        return {
            "comparisons": self.comparisons,
            "symbols_tracked": len(self.last_comparison),
        }
