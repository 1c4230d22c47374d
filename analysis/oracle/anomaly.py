"""
ORACLE - Anomaly detection

The validator only depends on the ``AnomalyDetector`` protocol. The default
``DeviationAnomalyDetector`` flags sources that stray from the symbol median,
stale observations, low self-reported confidence and sharp moves against a
rolling price history.
"""

import time
from collections import defaultdict, deque
from collections.abc import Callable, Sequence
from typing import Deque, Dict, List, Optional, Protocol, Tuple

import numpy as np

from shared import (
    Anomaly,
    AnomalyConfig,
    AnomalyMetadata,
    AnomalyType,
    OracleLogger,
    PriceDataPoint,
    Severity,
)

HISTORY_MAX_POINTS = 1000


class AnomalyDetector(Protocol):
    """Anything that can turn observations into anomaly records."""

    def detect_anomalies(self, data_points: Sequence[PriceDataPoint]) -> List[Anomaly]:
        ...


def severity_for(ratio: float) -> Severity:
    """Map how far a value overshoots its threshold to a severity level."""
    if ratio >= 4:
        return Severity.CRITICAL
    if ratio >= 2:
        return Severity.HIGH
    if ratio >= 1.5:
        return Severity.MEDIUM
    return Severity.LOW


class DeviationAnomalyDetector:
    """Rule-based anomaly detector over a single observation batch."""

    def __init__(
        self,
        config: Optional[AnomalyConfig] = None,
        clock: Optional[Callable[[], int]] = None,
    ):
        self.logger = OracleLogger("ORACLE-ANOMALY")
        self.config = config or AnomalyConfig()
        self._clock = clock or (lambda: int(time.time() * 1000))

        # symbol -> (timestamp_ms, price as float in price units)
        self.history: Dict[str, Deque[Tuple[int, float]]] = defaultdict(
            lambda: deque(maxlen=HISTORY_MAX_POINTS)
        )
        self.anomalies_detected = 0

    def detect_anomalies(self, data_points: Sequence[PriceDataPoint]) -> List[Anomaly]:
        now = self._clock()
        groups: Dict[str, List[PriceDataPoint]] = defaultdict(list)
        for point in data_points:
            groups[point.symbol].append(point)

        anomalies: List[Anomaly] = []
        for symbol, points in groups.items():
            anomalies.extend(self._detect_price_spikes(symbol, points, now))
            anomalies.extend(self._detect_source_deviation(symbol, points, now))
            anomalies.extend(self._detect_stale_data(symbol, points, now))
            anomalies.extend(self._detect_confidence_drop(symbol, points, now))
            self._update_history(symbol, points, now)

        self.anomalies_detected += len(anomalies)
        if anomalies:
            self.logger.info(
                "Anomalies detected",
                count=len(anomalies),
                symbols=sorted({a.symbol for a in anomalies}),
            )
        return anomalies

    def _update_history(self, symbol: str, points: List[PriceDataPoint], now: int) -> None:
        history = self.history[symbol]
        for point in sorted(points, key=lambda p: p.timestamp_ms):
            history.append((point.timestamp_ms, float(point.price.to_decimal())))
        cutoff = now - self.config.history_window_ms
        while history and history[0][0] < cutoff:
            history.popleft()

    def _detect_price_spikes(
        self,
        symbol: str,
        points: List[PriceDataPoint],
        now: int,
    ) -> List[Anomaly]:
        history = self.history.get(symbol)
        if not history or len(history) < 2:
            return []

        reference = float(np.mean([price for _, price in history]))
        if reference <= 0:
            return []

        threshold = self.config.price_threshold
        anomalies = []
        for point in points:
            change = abs(float(point.price.to_decimal()) - reference) / reference
            if change > threshold:
                anomalies.append(Anomaly(
                    type=AnomalyType.PRICE_SPIKE,
                    severity=severity_for(change / threshold),
                    symbol=symbol,
                    timestamp_ms=now,
                    value=change,
                    threshold=threshold,
                    metadata=AnomalyMetadata(
                        sources_affected=[point.source],
                        impact=change,
                        evidence={"reference_price": reference, "history_points": len(history)},
                    ),
                ))
        return anomalies

    def _detect_source_deviation(
        self,
        symbol: str,
        points: List[PriceDataPoint],
        now: int,
    ) -> List[Anomaly]:
        if len(points) < 2:
            return []

        prices = np.array([float(p.price.to_decimal()) for p in points])
        center = float(np.median(prices))
        if center <= 0:
            return []

        deviations = np.abs(prices - center) / center
        threshold = self.config.deviation_threshold
        affected = [p.source for p, d in zip(points, deviations) if d > threshold]
        if not affected:
            return []

        worst = float(deviations.max())
        return [Anomaly(
            type=AnomalyType.SOURCE_DEVIATION,
            severity=severity_for(worst / threshold),
            symbol=symbol,
            timestamp_ms=now,
            value=worst,
            threshold=threshold,
            metadata=AnomalyMetadata(
                sources_affected=affected,
                impact=len(affected) / len(points),
                evidence={"median_price": center},
            ),
        )]

    def _detect_stale_data(
        self,
        symbol: str,
        points: List[PriceDataPoint],
        now: int,
    ) -> List[Anomaly]:
        max_age = self.config.max_data_age_ms
        stale = [p for p in points if now - p.timestamp_ms > max_age]
        if not stale:
            return []

        oldest = max(now - p.timestamp_ms for p in stale)
        return [Anomaly(
            type=AnomalyType.STALE_DATA,
            severity=severity_for(oldest / max_age),
            symbol=symbol,
            timestamp_ms=now,
            value=float(oldest),
            threshold=float(max_age),
            metadata=AnomalyMetadata(
                sources_affected=sorted({p.source for p in stale}),
                impact=len(stale) / len(points),
                evidence={"oldest_age_ms": oldest},
            ),
        )]

    def _detect_confidence_drop(
        self,
        symbol: str,
        points: List[PriceDataPoint],
        now: int,
    ) -> List[Anomaly]:
        threshold = self.config.confidence_threshold
        low = [p for p in points if p.confidence is not None and p.confidence < threshold]
        if not low:
            return []

        lowest = min(p.confidence for p in low)
        return [Anomaly(
            type=AnomalyType.CONFIDENCE_DROP,
            severity=severity_for(threshold / max(lowest, 1e-9)),
            symbol=symbol,
            timestamp_ms=now,
            value=lowest,
            threshold=threshold,
            metadata=AnomalyMetadata(
                sources_affected=sorted({p.source for p in low}),
                impact=len(low) / len(points),
            ),
        )]

    def get_stats(self) -> Dict:
        """Get detector statistics."""
        return {
            "anomalies_detected": self.anomalies_detected,
            "symbols_tracked": len(self.history),
        }
