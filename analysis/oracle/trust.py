"""
ORACLE - Trust scoring

The validator only depends on the ``TrustScorer`` protocol. The default
``ReputationTrustScorer`` scores each source from how fresh its data is, how
closely it agrees with the other sources, and a reputation that decays
towards its recent agreement.
"""

import time
from collections import defaultdict
from collections.abc import Callable, Sequence
from typing import Dict, List, Optional, Protocol

import numpy as np

from shared import (
    OracleDataSource,
    OracleLogger,
    PriceDataPoint,
    TrustComponent,
    TrustConfig,
    TrustScore,
)

INITIAL_REPUTATION = 1.0


class TrustScorer(Protocol):
    """Anything that can score sources from a batch of observations."""

    def calculate_trust_scores(
        self,
        data_points: Sequence[PriceDataPoint],
        sources: Sequence[OracleDataSource],
    ) -> Dict[str, TrustScore]:
        ...


class ReputationTrustScorer:
    """Per-source trust from freshness, consensus and running reputation."""

    def __init__(
        self,
        config: Optional[TrustConfig] = None,
        clock: Optional[Callable[[], int]] = None,
    ):
        self.logger = OracleLogger("ORACLE-TRUST")
        self.config = config or TrustConfig()
        self._clock = clock or (lambda: int(time.time() * 1000))

        self.reputations: Dict[str, float] = {}

    def calculate_trust_scores(
        self,
        data_points: Sequence[PriceDataPoint],
        sources: Sequence[OracleDataSource],
    ) -> Dict[str, TrustScore]:
        now = self._clock()
        known = {s.id for s in sources}

        by_symbol: Dict[str, List[PriceDataPoint]] = defaultdict(list)
        by_source: Dict[str, List[PriceDataPoint]] = defaultdict(list)
        for point in data_points:
            by_symbol[point.symbol].append(point)
            by_source[point.source].append(point)

        medians = {
            symbol: float(np.median([float(p.price.to_decimal()) for p in points]))
            for symbol, points in by_symbol.items()
        }

        scores: Dict[str, TrustScore] = {}
        for source_id, points in by_source.items():
            if known and source_id not in known:
                self.logger.warning("Observations from unregistered source", source=source_id)
                continue

            freshness = self._freshness(points, now)
            consensus = self._consensus(points, medians)
            reputation = self._update_reputation(source_id, consensus)

            components = [
                TrustComponent("source_reputation", self.config.source_reputation, reputation),
                TrustComponent(
                    "data_freshness",
                    self.config.data_freshness,
                    freshness,
                    {"oldest_age_ms": max(now - p.timestamp_ms for p in points)},
                ),
                TrustComponent(
                    "price_consensus",
                    self.config.price_consensus,
                    consensus,
                    {"symbols": sorted({p.symbol for p in points})},
                ),
            ]
            total_weight = sum(c.weight for c in components)
            score = (
                sum(c.score * c.weight for c in components) / total_weight
                if total_weight > 0 else 0.0
            )

            scores[source_id] = TrustScore(
                source=source_id,
                timestamp_ms=now,
                score=float(np.clip(score, 0.0, 1.0)),
                confidence=len({p.symbol for p in points}) / max(len(by_symbol), 1),
                components=components,
            )

        return scores

    def _freshness(self, points: List[PriceDataPoint], now: int) -> float:
        max_age = self.config.max_data_age_ms
        ages = np.array([now - p.timestamp_ms for p in points], dtype=float)
        return float(np.clip(1 - ages / max_age, 0.0, 1.0).mean())

    def _consensus(self, points: List[PriceDataPoint], medians: Dict[str, float]) -> float:
        tolerance = self.config.consensus_tolerance
        agreement = []
        for point in points:
            center = medians[point.symbol]
            if center <= 0:
                agreement.append(1.0)
                continue
            deviation = abs(float(point.price.to_decimal()) - center) / center
            agreement.append(max(0.0, 1 - deviation / tolerance))
        return float(np.mean(agreement))

    def _update_reputation(self, source_id: str, consensus: float) -> float:
        decay = self.config.reputation_decay
        previous = self.reputations.get(source_id, INITIAL_REPUTATION)
        reputation = (1 - decay) * previous + decay * consensus
        self.reputations[source_id] = reputation
        return reputation

    def get_stats(self) -> Dict:
        """Get scorer statistics."""
        return {
            "sources_tracked": len(self.reputations),
            "average_reputation": (
                float(np.mean(list(self.reputations.values()))) if self.reputations else 0.0
            ),
        }
