"""
ORACLE - Result Cache

Memoizes validation results per requested symbol set.
"""

import threading
import time
from collections.abc import Callable, Iterable, MutableMapping
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Dict, Optional

from shared import OracleConfig, OracleLogger

from .errors import CacheError

if TYPE_CHECKING:
    from .validator import ValidationResult

CACHE_NAMESPACE = "oracle-validation:"


def cache_key(symbols: Iterable[str], config: Optional[OracleConfig] = None) -> str:
    """Namespaced key for a symbol set, suffixed with the config fingerprint."""
    key = CACHE_NAMESPACE + ",".join(sorted(set(symbols)))
    if config is not None:
        key = f"{key}:{config.fingerprint()}"
    return key


@dataclass
class CacheEntry:
    """Stored result with its expiry."""
    result: "ValidationResult"
    expires_at_ms: int


class ResultCache:
    """
    TTL cache of validation results.

    A result counts as fresh while ``now - result.metadata.end_time_ms`` is
    below ``max_age_ms``. The store can be any mutable mapping; failures from
    it surface as ``CacheError``.
    """

    def __init__(
        self,
        max_age_ms: int = 5 * 60 * 1000,
        store: Optional[MutableMapping[str, Any]] = None,
        clock: Optional[Callable[[], int]] = None,
    ):
        self.logger = OracleLogger("ORACLE-CACHE")
        self.max_age_ms = max_age_ms
        self._store: MutableMapping[str, Any] = store if store is not None else {}
        self._clock = clock or (lambda: int(time.time() * 1000))
        self._lock = threading.Lock()

        self.hits = 0
        self.misses = 0

    def get(self, key: str) -> Optional["ValidationResult"]:
        """Fresh result for the key, or None."""
        now = self._clock()
        with self._lock:
            try:
                entry = self._store.get(key)
            except Exception as e:
                raise CacheError(f"Cache read failed for {key}") from e

            if entry is None:
                self.misses += 1
                return None
            if not isinstance(entry, CacheEntry):
                raise CacheError(f"Corrupt cache entry for {key}: {type(entry).__name__}")

            fresh = (
                now < entry.expires_at_ms
                and now - entry.result.metadata.end_time_ms < self.max_age_ms
            )
            if not fresh:
                self._discard(key)
                self.misses += 1
                return None

            self.hits += 1
            return entry.result

    def set(self, key: str, result: "ValidationResult", ttl_ms: Optional[int] = None) -> None:
        """Store a result; the last writer wins."""
        ttl = ttl_ms if ttl_ms is not None else self.max_age_ms
        entry = CacheEntry(result=result, expires_at_ms=self._clock() + ttl)
        with self._lock:
            try:
                self._store[key] = entry
            except Exception as e:
                raise CacheError(f"Cache write failed for {key}") from e

    def purge_expired(self) -> int:
        """Remove stale entries. Returns count removed."""
        now = self._clock()
        removed = 0
        with self._lock:
            try:
                for key in list(self._store.keys()):
                    entry = self._store[key]
                    if (
                        not isinstance(entry, CacheEntry)
                        or now >= entry.expires_at_ms
                        or now - entry.result.metadata.end_time_ms >= self.max_age_ms
                    ):
                        del self._store[key]
                        removed += 1
            except Exception as e:
                raise CacheError("Cache purge failed") from e
        return removed

    def _discard(self, key: str) -> None:
        try:
            self._store.pop(key, None)
        except Exception as e:
            raise CacheError(f"Cache eviction failed for {key}") from e

    def __len__(self) -> int:
        return len(self._store)

    def get_stats(self) -> Dict:
        """Get cache statistics."""
        return {
            "entries": len(self._store),
            "hits": self.hits,
            "misses": self.misses,
        }
