"""Dataset access with caching.

``DataManager`` is the only thing the HTTP layer talks to. Two concrete
managers exist:

- ``CacheManager``: each view cached under a fixed key with a uniform TTL.
- ``SnapshotManager`` (see ``schoolsheets.lib.snapshot``): one snapshot
  replaced by an explicit refresh and mirrored to disk.

Every dataset access is counted: a hit or a miss when it succeeds, an
error when it fails (the exception still propagates).
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional, Tuple, TypeVar

from schoolsheets.lib.cache import TTLCache
from schoolsheets.lib.config import CacheMode, Settings
from schoolsheets.lib.datasets import (
    build_performance,
    build_profile,
    performance_key_subset,
    sheet_range,
)
from schoolsheets.lib.join import JoinResult, join_datasets
from schoolsheets.lib.metrics import ServiceMetrics
from schoolsheets.lib.records import Dataset
from schoolsheets.lib.sheets import DataSource, SheetsClient

logger = logging.getLogger(__name__)

__all__ = ["CacheManager", "DataManager", "SheetRead", "create_manager"]

T = TypeVar("T")


@dataclass(frozen=True)
class SheetRead:
    """Raw values of an ad-hoc sheet range and how they were served."""

    data: List[List[Any]]
    cached: bool
    expires_at: Optional[float]  # epoch seconds

    def to_dict(self, hit_rate: str) -> Dict[str, Any]:
        return {
            "data": self.data,
            "cached": self.cached,
            "cacheExpiry": int(self.expires_at * 1000) if self.expires_at else None,
            "stats": {"cacheHitRate": hit_rate},
        }


class DataManager:
    """Base class: shared counters, data source and raw-sheet cache."""

    mode: CacheMode

    def __init__(
        self,
        settings: Settings,
        *,
        source: Optional[DataSource] = None,
        metrics: Optional[ServiceMetrics] = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.settings = settings
        self.metrics = metrics or ServiceMetrics()
        self.source: DataSource = source or SheetsClient(settings, self.metrics)
        self.sheet_cache = TTLCache(settings.cache_ttl_seconds, clock=clock)

    def _cached(self, cache: TTLCache, key: str, loader: Callable[[], T]) -> T:
        """Serve ``key`` from ``cache`` or load and store it."""
        value, _ = self._cached_with_hit(cache, key, loader)
        return value

    def _cached_with_hit(
        self, cache: TTLCache, key: str, loader: Callable[[], T]
    ) -> Tuple[T, bool]:
        found, value = cache.lookup(key)
        if found:
            self.metrics.record_request(hit=True)
            logger.debug("Cache hit for %s", key)
            return value, True

        try:
            value = loader()
        except Exception:
            self.metrics.record_error()
            logger.exception("Loading %s failed", key)
            raise

        cache.set(key, value)
        self.metrics.record_request(hit=False)
        logger.debug("Cache miss for %s; stored for %.0fs", key, cache.ttl)
        return value, False

    def sheet(self, sheet_name: str, cell_range: str = "A:C") -> SheetRead:
        """Raw values of any sheet range, TTL-cached in every mode."""
        key = f"sheet:{sheet_name}-{cell_range}"
        data, hit = self._cached_with_hit(
            self.sheet_cache,
            key,
            lambda: self.source.get_range(sheet_range(sheet_name, cell_range)),
        )
        return SheetRead(data=data, cached=hit, expires_at=self.sheet_cache.expires_at(key))

    def clear_cache(self) -> int:
        """Drop every cached entry; returns how many were held."""
        count = self.sheet_cache.clear()
        logger.info("Cleared %d cache entries", count)
        return count

    def cache_size(self) -> int:
        return len(self.sheet_cache)

    def stats(self) -> Dict[str, Any]:
        data = self.metrics.to_dict()
        data["cacheSize"] = self.cache_size()
        data["mode"] = self.mode.value
        return data

    def startup(self) -> None:
        """Hook run once when the server starts."""

    def close(self) -> None:
        close = getattr(self.source, "close", None)
        if callable(close):
            close()

    def profile(self) -> Dataset:
        raise NotImplementedError

    def performance(self) -> Dataset:
        raise NotImplementedError

    def performance_key(self) -> Dataset:
        raise NotImplementedError

    def schools(self, only_matched: bool = True) -> JoinResult:
        raise NotImplementedError


class CacheManager(DataManager):
    """Per-view TTL cache with lazy expiry.

    Example:
        manager = CacheManager(settings, source=fake_source)
        manager.profile()  # miss: fetched and cached
        manager.profile()  # hit
    """

    mode = CacheMode.TTL

    def __init__(self, settings: Settings, **kwargs: Any) -> None:
        super().__init__(settings, **kwargs)
        # Views share one store so clear_cache() flushes everything.
        self.cache = self.sheet_cache

    def profile(self) -> Dataset:
        return self._cached(self.cache, "profile", lambda: build_profile(self.source, self.settings))

    def performance(self) -> Dataset:
        return self._cached(
            self.cache, "performance", lambda: build_performance(self.source, self.settings)
        )

    def performance_key(self) -> Dataset:
        return self._cached(
            self.cache,
            "performance_key",
            lambda: performance_key_subset(
                build_performance(self.source, self.settings),
                self.settings.performance_key_columns,
            ),
        )

    def schools(self, only_matched: bool = True) -> JoinResult:
        key = f"schools:onlyMatched={'true' if only_matched else 'false'}"
        return self._cached(
            self.cache,
            key,
            lambda: join_datasets(
                build_profile(self.source, self.settings),
                build_performance(self.source, self.settings),
                only_matched=only_matched,
            ),
        )


def create_manager(
    settings: Settings,
    *,
    source: Optional[DataSource] = None,
    metrics: Optional[ServiceMetrics] = None,
) -> DataManager:
    """Build the manager for the configured cache mode."""
    if settings.cache_mode == CacheMode.SNAPSHOT:
        from schoolsheets.lib.snapshot import SnapshotManager

        return SnapshotManager(settings, source=source, metrics=metrics)
    return CacheManager(settings, source=source, metrics=metrics)
