"""
Oracle Shared - Common types and utilities for the oracle validation engine.
"""

from .config import (
    AnomalyConfig,
    ComparatorConfig,
    MonitoringConfig,
    OracleConfig,
    TrustConfig,
    ValidatorConfig,
    get_config,
)
from .logger import OracleLogger, configure_logging, validation_context
from .types import (
    AggregationMethod,
    Anomaly,
    AnomalyMetadata,
    AnomalyType,
    OracleDataSource,
    Price,
    PriceDataPoint,
    RateLimit,
    Severity,
    SourceFailure,
    TrustComponent,
    TrustScore,
)

__all__ = [
    # Types
    "AggregationMethod",
    "Anomaly",
    "AnomalyMetadata",
    "AnomalyType",
    "OracleDataSource",
    "Price",
    "PriceDataPoint",
    "RateLimit",
    "Severity",
    "SourceFailure",
    "TrustComponent",
    "TrustScore",
    # Config
    "get_config",
    "OracleConfig",
    "ValidatorConfig",
    "ComparatorConfig",
    "AnomalyConfig",
    "TrustConfig",
    "MonitoringConfig",
    # Logger
    "configure_logging",
    "validation_context",
    "OracleLogger",
]
