"""
Configuration management for the oracle validation engine.
"""

import hashlib
import logging
from functools import lru_cache
from typing import Dict, Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings

from .types import AggregationMethod


class ComparatorConfig(BaseSettings):
    """Statistical comparator configuration."""
    min_sources: int = Field(default=3, ge=1)
    max_deviation: float = 0.05  # Advisory only
    time_window_ms: int = Field(default=60_000, gt=0)
    source_weights: Dict[str, float] = Field(default_factory=dict)
    default_weight: float = Field(default=1.0, gt=0)
    aggregation_method: AggregationMethod = AggregationMethod.WEIGHTED_AVERAGE
    outlier_threshold: float = Field(default=2.0, gt=0)

    @field_validator("source_weights")
    @classmethod
    def _positive_weights(cls, weights: Dict[str, float]) -> Dict[str, float]:
        for source_id, weight in weights.items():
            if weight <= 0:
                raise ValueError(f"Weight for source {source_id} must be positive")
        return weights


class AnomalyConfig(BaseSettings):
    """Default anomaly detector configuration."""
    price_threshold: float = 0.1  # 10% move against history
    deviation_threshold: float = 0.2  # 20% away from the symbol median
    max_data_age_ms: int = 5 * 60 * 1000
    confidence_threshold: float = 0.8
    history_window_ms: int = 24 * 60 * 60 * 1000


class TrustConfig(BaseSettings):
    """Default trust scorer configuration."""
    source_reputation: float = 0.4
    data_freshness: float = 0.3
    price_consensus: float = 0.3
    reputation_decay: float = Field(default=0.2, gt=0, le=1)
    max_data_age_ms: int = Field(default=5 * 60 * 1000, gt=0)
    consensus_tolerance: float = Field(default=0.05, gt=0)


class MonitoringConfig(BaseSettings):
    """Logging configuration."""
    log_level: str = "INFO"
    json_logs: bool = False

    @field_validator("log_level")
    @classmethod
    def _known_level(cls, level: str) -> str:
        if not isinstance(logging.getLevelName(level.upper()), int):
            raise ValueError(f"Unknown log level: {level}")
        return level.upper()


class ValidatorConfig(BaseSettings):
    """Validator and collector configuration."""
    required_sources: int = Field(default=2, ge=1)
    min_confidence: float = Field(default=0.8, ge=0, le=1)  # Advisory, never enforced
    update_interval_ms: int = Field(default=60_000, gt=0)
    retry_attempts: int = Field(default=3, ge=1)
    retry_delay_ms: int = Field(default=1000, ge=0)
    cache_results: bool = True
    cache_expiration_ms: int = Field(default=5 * 60 * 1000, gt=0)
    max_concurrency: int = Field(default=5, ge=1)
    request_timeout_ms: int = Field(default=5000, gt=0)
    collection_deadline_ms: Optional[int] = Field(default=None, gt=0)


class OracleConfig(BaseSettings):
    """Main oracle engine configuration."""

    model_config = {"env_prefix": "ORACLE_", "env_nested_delimiter": "__"}

    validator: ValidatorConfig = Field(default_factory=ValidatorConfig)
    comparator: ComparatorConfig = Field(default_factory=ComparatorConfig)
    anomaly: AnomalyConfig = Field(default_factory=AnomalyConfig)
    trust: TrustConfig = Field(default_factory=TrustConfig)
    monitoring: MonitoringConfig = Field(default_factory=MonitoringConfig)

    def fingerprint(self) -> str:
        """Short stable hash of the settings that shape a validation result."""
        payload = self.model_dump_json(
            include={"validator", "comparator", "anomaly", "trust"}
        )
        return hashlib.sha256(payload.encode()).hexdigest()[:12]


@lru_cache
def get_config() -> OracleConfig:
    """Get cached configuration instance."""
    # Load .env file if present
    from dotenv import load_dotenv
    load_dotenv()

    config = OracleConfig()

    from .logger import configure_logging
    configure_logging(config.monitoring)

    return config
