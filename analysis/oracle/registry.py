"""
ORACLE - Source Registry

In-memory set of price sources keyed by id.
"""

from collections.abc import Iterator
from typing import Dict, List, Optional

from shared import OracleLogger

from .sources import PriceSource


class SourceRegistry:
    """Holds the configured price sources and resolves their weights."""

    def __init__(
        self,
        sources: Optional[List[PriceSource]] = None,
        default_weight: float = 1.0,
        weight_overrides: Optional[Dict[str, float]] = None,
    ):
        self.logger = OracleLogger("ORACLE-REGISTRY")
        self.default_weight = default_weight
        self.weight_overrides = dict(weight_overrides or {})
        self._sources: Dict[str, PriceSource] = {}

        for source in sources or []:
            self.add_source(source)

    def add_source(self, source: PriceSource) -> None:
        """Register a source. Ids must be unique."""
        if source.id in self._sources:
            raise ValueError(f"Source already registered: {source.id}")
        self._sources[source.id] = source
        self.logger.debug("Source registered", source=source.id)

    def remove_source(self, source_id: str) -> Optional[PriceSource]:
        """Drop a source from future rounds."""
        removed = self._sources.pop(source_id, None)
        if removed is not None:
            self.logger.debug("Source removed", source=source_id)
        return removed

    def get(self, source_id: str) -> Optional[PriceSource]:
        return self._sources.get(source_id)

    def weight_for(self, source_id: str) -> float:
        """Override table first, then the source's own weight, then the default."""
        if source_id in self.weight_overrides:
            return self.weight_overrides[source_id]
        source = self._sources.get(source_id)
        if source is not None and source.source.weight is not None:
            return source.source.weight
        return self.default_weight

    def weights(self) -> Dict[str, float]:
        """Resolved weight for every registered source."""
        return {source_id: self.weight_for(source_id) for source_id in self._sources}

    @property
    def ids(self) -> List[str]:
        return list(self._sources)

    def __iter__(self) -> Iterator[PriceSource]:
        return iter(list(self._sources.values()))

    def __len__(self) -> int:
        return len(self._sources)

    def __contains__(self, source_id: object) -> bool:
        return source_id in self._sources
