"""
Cache administration: invalidation, warming, statistics and cleanup.
"""

import asyncio
import time
from datetime import datetime, timezone
from typing import Any, Dict, List, Mapping, Optional, TYPE_CHECKING, Union

from shared.errors import CacheStoreError
from shared.logging import get_logger
from .entry import CacheEntry
from .keys import DEFAULT_MAX_KEY_LENGTH, caller_patterns, category_pattern, derive_key, path_pattern
from .policy import DEFAULT_POLICIES, CacheCategory, CachePolicy, lookup
from .store import CacheStore
from .warming import WarmSource, WarmTarget

if TYPE_CHECKING:  # pragma: no cover - imported for typing only
    from shared.metrics import MetricsCollector


class CacheManager:
    """Operator-facing operations on the response cache.

    Invalidation and warming talk to the store directly and never go through
    the request path.
    """

    def __init__(
        self,
        store: CacheStore,
        policies: Optional[Mapping[CacheCategory, CachePolicy]] = None,
        *,
        metrics: Optional["MetricsCollector"] = None,
        warm_concurrency: int = 5,
        key_max_length: int = DEFAULT_MAX_KEY_LENGTH,
    ):
        self.store = store
        self.policies = policies if policies is not None else DEFAULT_POLICIES
        self.metrics = metrics
        self.key_max_length = key_max_length
        self.logger = get_logger("api.cache_manager")
        self._warm_semaphore = asyncio.Semaphore(max(1, warm_concurrency))
        self._warm_sources: Dict[CacheCategory, WarmSource] = {}

    # Invalidation

    async def invalidate(self, pattern: str, *, scope: str = "pattern") -> int:
        """Delete every key matching ``pattern``.

        Returns the number of keys removed; 0 when nothing matched or the
        store is unavailable.
        """
        try:
            removed = await self.store.delete_matching(pattern)
        except CacheStoreError as exc:
            self.logger.error("Cache invalidation error", pattern=pattern, error=str(exc))
            if self.metrics:
                self.metrics.increment_counter("cache_store_errors_total", operation="delete")
            return 0

        if removed:
            self.logger.info("Invalidated cache keys", pattern=pattern, keys_count=removed)
            if self.metrics:
                self.metrics.increment_counter("cache_invalidated_keys_total", amount=removed, scope=scope)
        return removed

    async def invalidate_category(self, category: Union[str, CacheCategory]) -> int:
        return await self.invalidate(category_pattern(category, self.policies), scope=CacheCategory.parse(category).value)

    async def invalidate_path(self, category: Union[str, CacheCategory], path: str) -> int:
        """Drop every cached GET of one route path within ``category``."""
        return await self.invalidate(path_pattern(category, path, policies=self.policies), scope="path")

    async def invalidate_menu(self) -> int:
        """Drop menu responses after the menu changes."""
        return await self.invalidate_category(CacheCategory.MENU)

    async def invalidate_search(self) -> int:
        return await self.invalidate_category(CacheCategory.SEARCH)

    async def invalidate_user(self, user_id: str, category: Union[str, CacheCategory, None] = None) -> int:
        """Drop every response cached for ``user_id``, optionally in one category."""
        removed = 0
        for pattern in caller_patterns(user_id, category, self.policies):
            removed += await self.invalidate(pattern, scope="user")

        self.logger.info("Cleared user cache", user_id=user_id, keys_count=removed)
        return removed

    # Warming

    def register_warm_source(self, category: Union[str, CacheCategory], source: WarmSource) -> None:
        resolved = CacheCategory.parse(category)
        lookup(resolved, self.policies)
        self._warm_sources[resolved] = source

    def warm_categories(self) -> List[str]:
        return [category.value for category in self._warm_sources]

    async def warm(self, category: Union[str, CacheCategory]) -> Dict[str, Any]:
        """Pre-populate ``category`` from its registered warm source.

        Returns a summary of planned, warmed, missed and failed targets. A
        failing target never stops the others.
        """
        resolved = CacheCategory.parse(category)
        policy = lookup(resolved, self.policies)
        summary: Dict[str, Any] = {
            "category": resolved.value,
            "planned": 0,
            "warmed": 0,
            "misses": 0,
            "errors": [],
        }

        source = self._warm_sources.get(resolved)
        if source is None:
            self.logger.warning("No warm source registered; cache warm skipped", category=resolved.value)
            return summary

        try:
            targets = await source()
        except Exception as exc:
            self.logger.error("Failed to build cache warm plan", category=resolved.value, error=str(exc))
            summary["errors"].append(str(exc))
            return summary

        summary["planned"] = len(targets)
        if not targets:
            self.logger.info("Cache warm plan is empty", category=resolved.value)
            return summary

        results = await asyncio.gather(
            *(self._warm_target(resolved, policy, target) for target in targets),
            return_exceptions=True,
        )
        for outcome in results:
            if isinstance(outcome, Exception):
                self.logger.error("Cache warm task failed", category=resolved.value, error=str(outcome))
                summary["errors"].append(str(outcome))
                continue

            if outcome["result"] == "hit":
                summary["warmed"] += 1
            elif outcome["result"] == "miss":
                summary["misses"] += 1
            else:
                summary["errors"].append(outcome.get("error") or "unknown error")

        self.logger.info(
            "Cache warm completed",
            category=resolved.value,
            warmed=summary["warmed"],
            misses=summary["misses"],
            errors=len(summary["errors"]),
        )
        return summary

    async def plan_warm(self, category: Union[str, CacheCategory]) -> List[Dict[str, str]]:
        """Paths and keys ``warm`` would populate, without fetching anything."""
        resolved = CacheCategory.parse(category)
        source = self._warm_sources.get(resolved)
        if source is None:
            return []

        return [
            {
                "path": target.path,
                "key": derive_key(resolved, "GET", target.path, target.query_params, None,
                                  max_length=self.key_max_length, policies=self.policies),
            }
            for target in await source()
        ]

    async def _warm_target(self, category: CacheCategory, policy: CachePolicy, target: WarmTarget) -> Dict[str, Any]:
        """Fetch one target outside the cache and store it under its request key."""
        async with self._warm_semaphore:
            start = time.perf_counter()
            result = "miss"
            error: Optional[str] = None
            key = derive_key(category, "GET", target.path, target.query_params, None,
                             max_length=self.key_max_length, policies=self.policies)

            try:
                response = await target.fetch()
                entry = CacheEntry.from_response(response)
                if entry.cacheable:
                    await self.store.set_with_ttl(key, entry.to_bytes(), policy.ttl_seconds)
                    result = "hit"
            except Exception as exc:
                error = str(exc)
                result = "error"
                self.logger.error("Failed to warm cache entry", category=category.value, path=target.path, error=error)
            finally:
                self._record_warm_metrics(category, result, time.perf_counter() - start)

            if result == "miss":
                self.logger.debug("Cache warm miss", category=category.value, path=target.path)

            return {"key": key, "path": target.path, "result": result, "error": error}

    def _record_warm_metrics(self, category: CacheCategory, result: str, duration: float) -> None:
        if not self.metrics:
            return

        self.metrics.increment_counter("cache_warm_total", category=category.value, result=result)
        self.metrics.observe_histogram("cache_warm_duration_seconds", duration, category=category.value)

    # Administration

    async def get_cache_stats(self) -> Dict[str, Any]:
        """Memory usage and key count of the store, for operators."""
        timestamp = datetime.now(timezone.utc).isoformat()
        try:
            memory_usage = await self.store.memory_stats()
            key_count = await self.store.key_count()
        except CacheStoreError as exc:
            self.logger.error("Error getting cache stats", error=str(exc))
            return {"error": str(exc), "timestamp": timestamp}

        if self.metrics:
            self.metrics.set_gauge("cache_keys", key_count)
        return {"memory_usage": memory_usage, "key_count": key_count, "timestamp": timestamp}

    async def cleanup(self) -> int:
        """Remove keys written without an expiry."""
        try:
            removed = await self.store.delete_persistent_keys("*")
        except CacheStoreError as exc:
            self.logger.error("Cache cleanup error", error=str(exc))
            return 0

        self.logger.info("Cache cleanup completed", removed=removed)
        return removed

    def cache_catalog(self) -> Dict[str, Dict[str, Any]]:
        """Configured TTL and prefix for each category."""
        return {
            category.value: {"ttl_seconds": policy.ttl_seconds, "key_prefix": policy.key_prefix}
            for category, policy in self.policies.items()
        }
