"""
Shared types for the oracle validation engine.
"""

from dataclasses import dataclass, field
from decimal import ROUND_HALF_UP, Decimal
from enum import Enum
from functools import total_ordering
from typing import Any, Dict, List, Optional


class AggregationMethod(str, Enum):
    """Consensus price aggregation methods."""
    WEIGHTED_AVERAGE = "weighted_average"
    MEDIAN = "median"
    TRIMMED_MEAN = "trimmed_mean"


class AnomalyType(str, Enum):
    """Kinds of anomalies reported by a detector."""
    PRICE_SPIKE = "price_spike"
    SOURCE_DEVIATION = "source_deviation"
    STALE_DATA = "stale_data"
    CONFIDENCE_DROP = "confidence_drop"


class Severity(str, Enum):
    """Anomaly severity levels."""
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


@total_ordering
@dataclass(frozen=True, eq=False)
class Price:
    """
    Non-negative fixed-point price.

    ``value`` is the price scaled by ``10 ** decimals``, so
    ``Price(250012345678, 8)`` is 2500.12345678. Prices compare and hash by
    amount, so ``Price(1, 0) == Price(10, 1)``.
    """
    value: int
    decimals: int = 8

    def __post_init__(self) -> None:
        if not isinstance(self.value, int) or isinstance(self.value, bool):
            raise TypeError(f"Price value must be an int, got {type(self.value).__name__}")
        if self.value < 0:
            raise ValueError(f"Price must be non-negative: {self.value}")
        if self.decimals < 0:
            raise ValueError(f"Price decimals must be non-negative: {self.decimals}")

    @classmethod
    def from_decimal(cls, amount: Decimal | str | int, decimals: int = 8) -> "Price":
        """Build a price from a decimal amount, rounding half-up to the scale."""
        scaled = (Decimal(str(amount)) * (Decimal(10) ** decimals)).quantize(
            Decimal(1), rounding=ROUND_HALF_UP
        )
        return cls(int(scaled), decimals)

    def rescale(self, decimals: int) -> "Price":
        """Return the same price expressed with another number of decimals."""
        if decimals == self.decimals:
            return self
        if decimals > self.decimals:
            return Price(self.value * 10 ** (decimals - self.decimals), decimals)
        divisor = 10 ** (self.decimals - decimals)
        quotient, remainder = divmod(self.value, divisor)
        if remainder * 2 >= divisor:
            quotient += 1
        return Price(quotient, decimals)

    def to_decimal(self) -> Decimal:
        """Exact decimal amount."""
        return Decimal(f"{self.value}E-{self.decimals}")

    def _normalized(self) -> tuple[int, int]:
        value, decimals = self.value, self.decimals
        while decimals and value % 10 == 0:
            value //= 10
            decimals -= 1
        return value, decimals

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Price):
            return NotImplemented
        return self._normalized() == other._normalized()

    def __hash__(self) -> int:
        return hash(self._normalized())

    def __lt__(self, other: "Price") -> bool:
        if not isinstance(other, Price):
            return NotImplemented
        scale = max(self.decimals, other.decimals)
        return self.rescale(scale).value < other.rescale(scale).value

    def __str__(self) -> str:
        return str(self.to_decimal())


@dataclass(frozen=True)
class RateLimit:
    """Minimum spacing between successful fetches of a source."""
    interval_ms: int


@dataclass(frozen=True)
class OracleDataSource:
    """Metadata for a configured price source."""
    id: str
    weight: Optional[float] = None  # None -> configured default weight
    rate_limit: Optional[RateLimit] = None
    name: Optional[str] = None
    endpoint: Optional[str] = None
    timeout_ms: Optional[int] = None
    priority: int = 0

    def __post_init__(self) -> None:
        if not self.id:
            raise ValueError("Source id must not be empty")
        if self.weight is not None and self.weight <= 0:
            raise ValueError(f"Source weight must be positive: {self.weight}")


@dataclass(frozen=True)
class PriceDataPoint:
    """One price observation from one source."""
    symbol: str
    source: str
    price: Price
    timestamp_ms: int
    volume: Optional[int] = None
    confidence: Optional[float] = None  # 0-1, as reported by the feed
    metadata: Dict[str, Any] = field(default_factory=dict, compare=False, hash=False)


@dataclass
class AnomalyMetadata:
    """Context attached to an anomaly."""
    sources_affected: List[str]
    impact: float = 0.0
    evidence: Dict[str, Any] = field(default_factory=dict)


@dataclass
class Anomaly:
    """Anomaly record produced by a detector."""
    type: AnomalyType
    severity: Severity
    symbol: str
    timestamp_ms: int
    value: float
    threshold: float
    metadata: AnomalyMetadata


@dataclass
class TrustComponent:
    """One weighted input to a trust score."""
    type: str
    weight: float
    score: float
    evidence: Dict[str, Any] = field(default_factory=dict)


@dataclass
class TrustScore:
    """Per-source trust record."""
    source: str
    timestamp_ms: int
    score: float  # 0-1
    confidence: float  # 0-1
    components: List[TrustComponent] = field(default_factory=list)


@dataclass(frozen=True)
class SourceFailure:
    """A source that failed or went stale."""
    source: str
    error: str
    timestamp_ms: int
