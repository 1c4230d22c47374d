"""
ORACLE - Error types

Per-source failures are absorbed by the collector. Everything else aborts
the validation call and reaches the caller.
"""

from typing import Optional


class OracleValidatorError(Exception):
    """Base class for all oracle validation errors."""


class InsufficientSourcesError(OracleValidatorError):
    """Too few usable observations for a symbol."""

    def __init__(self, symbol: str, available: int, required: int, stage: str = "collect"):
        self.symbol = symbol
        self.available = available
        self.required = required
        self.stage = stage
        super().__init__(
            f"Insufficient data sources for {symbol} at {stage}: {available} < {required}"
        )


class SourceFetchError(OracleValidatorError):
    """A source failed after exhausting its retries."""

    def __init__(self, source_id: str, attempts: int, reason: Optional[str] = None):
        self.source_id = source_id
        self.attempts = attempts
        self.reason = reason
        message = f"Source {source_id} failed after {attempts} attempt(s)"
        if reason:
            message = f"{message}: {reason}"
        super().__init__(message)


class ComparatorError(OracleValidatorError):
    """Observations could not be reduced to a consensus price."""


StatsError = ComparatorError


class CacheError(OracleValidatorError):
    """The result cache could not be read or written."""
