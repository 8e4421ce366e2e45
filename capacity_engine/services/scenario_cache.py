"""Bounded memo of scenario results for repeated identical requests."""

from __future__ import annotations

from collections import OrderedDict
from threading import RLock
from typing import Hashable, Optional

from capacity_engine.domain.models import ScenarioResult, ScopeFilter
from capacity_engine.domain.scenario import AnalysisOptions, Scenario
from capacity_engine.utils.logger import get_logger


logger = get_logger(__name__)

CacheKey = tuple[Hashable, ...]


class ScenarioResultCache:
    """LRU keyed on (scope, horizon, change set).

    Results are frozen dataclasses and are handed out as-is. The cache never
    observes the underlying data, so callers must `clear()` it after ingesting
    new records.
    """

    def __init__(self, max_entries: int = 64) -> None:
        if max_entries <= 0:
            raise ValueError("max_entries must be > 0")
        self._max_entries = max_entries
        self._entries: OrderedDict[CacheKey, ScenarioResult] = OrderedDict()
        self._lock = RLock()
        self.hits = 0
        self.misses = 0

    @staticmethod
    def key_for(
        scope: ScopeFilter,
        horizon: str,
        scenario: Scenario,
        options: AnalysisOptions,
    ) -> CacheKey:
        return (scope, horizon, scenario.name, scenario.changes, options)

    def get(self, key: CacheKey) -> Optional[ScenarioResult]:
        with self._lock:
            result = self._entries.get(key)
            if result is None:
                self.misses += 1
                return None
            self._entries.move_to_end(key)
            self.hits += 1
            return result

    def put(self, key: CacheKey, result: ScenarioResult) -> None:
        with self._lock:
            self._entries[key] = result
            self._entries.move_to_end(key)
            while len(self._entries) > self._max_entries:
                evicted, _ = self._entries.popitem(last=False)
                logger.debug("Scenario cache eviction | scenario=%s", evicted[2])

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()
        logger.info("Scenario cache cleared")

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)
