"""
Response caching package.

- policy: cache categories and their TTL/prefix policies
- keys: deterministic cache key derivation and invalidation patterns
- store: the CacheStore protocol and its Redis implementation
- response_cache: wraps route handlers with cache lookup and population
- cache_manager: invalidation, warming, stats and cleanup

Caching is fail-open: a store outage slows requests down but never fails them.
"""

from .cache_manager import CacheManager
from .keys import caller_patterns, category_pattern, derive_key, path_pattern
from .policy import CacheCategory, CachePolicy, build_policy_table, lookup, validate_policies
from .response_cache import ResponseCache, is_mobile_client
from .store import CacheStore, RedisCacheStore
from .warming import WarmTarget, menu_warm_source

__all__ = [
    "CacheCategory",
    "CacheManager",
    "CachePolicy",
    "CacheStore",
    "RedisCacheStore",
    "ResponseCache",
    "WarmTarget",
    "build_policy_table",
    "caller_patterns",
    "category_pattern",
    "derive_key",
    "path_pattern",
    "is_mobile_client",
    "lookup",
    "menu_warm_source",
    "validate_policies",
]
