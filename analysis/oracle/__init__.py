"""
ORACLE - Price Validation Engine

"You didn't come here to make the choice, you've already made it."

Collects prices from independent sources, reconciles them into one trusted
price per symbol, flags divergent sources and scores their trust.
"""

from .anomaly import AnomalyDetector, DeviationAnomalyDetector
from .cache import ResultCache, cache_key
from .collector import CollectionResult, Collector
from .comparator import ComparisonResult, DataComparator
from .errors import (
    CacheError,
    ComparatorError,
    InsufficientSourcesError,
    OracleValidatorError,
    SourceFetchError,
    StatsError,
)
from .registry import SourceRegistry
from .sources import CallablePriceSource, HttpPriceSource, PriceSource, StaticPriceSource
from .trust import ReputationTrustScorer, TrustScorer
from .validator import OracleValidator, ValidationResult

__all__ = [
    "OracleValidator",
    "ValidationResult",
    "SourceRegistry",
    "PriceSource",
    "StaticPriceSource",
    "CallablePriceSource",
    "HttpPriceSource",
    "Collector",
    "CollectionResult",
    "DataComparator",
    "ComparisonResult",
    "AnomalyDetector",
    "DeviationAnomalyDetector",
    "TrustScorer",
    "ReputationTrustScorer",
    "ResultCache",
    "cache_key",
    "OracleValidatorError",
    "InsufficientSourcesError",
    "SourceFetchError",
    "ComparatorError",
    "StatsError",
    "CacheError",
]
