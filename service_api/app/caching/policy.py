"""
Cache categories and their TTL policies.
"""

from dataclasses import dataclass
from enum import Enum
from types import MappingProxyType
from typing import Mapping, Optional, Union

from shared.errors import CacheConfigurationError


class CacheCategory(str, Enum):
    """Named cache policy groups."""

    MENU = "menu"
    USER_PREFERENCES = "user-preferences"
    SEARCH = "search"
    GENERIC_API = "generic-api"
    STATIC_ASSET = "static-asset"

    @classmethod
    def parse(cls, value: Union[str, "CacheCategory"]) -> "CacheCategory":
        """Convert a category name to the enum, rejecting unknown names."""
        if isinstance(value, cls):
            return value
        try:
            return cls(value)
        except ValueError:
            raise CacheConfigurationError(
                f"Unknown cache category '{value}'",
                details={"known": [member.value for member in cls]},
            ) from None


@dataclass(frozen=True)
class CachePolicy:
    """TTL and key namespace for a cache category."""

    ttl_seconds: int
    key_prefix: str


DEFAULT_POLICIES: Mapping[CacheCategory, CachePolicy] = MappingProxyType({
    CacheCategory.MENU: CachePolicy(ttl_seconds=60 * 60 * 24, key_prefix="menu"),
    CacheCategory.USER_PREFERENCES: CachePolicy(ttl_seconds=60 * 60 * 4, key_prefix="user_prefs"),
    CacheCategory.SEARCH: CachePolicy(ttl_seconds=60 * 15, key_prefix="search"),
    CacheCategory.GENERIC_API: CachePolicy(ttl_seconds=60 * 5, key_prefix="api"),
    CacheCategory.STATIC_ASSET: CachePolicy(ttl_seconds=60 * 60 * 24 * 7, key_prefix="static"),
})


def lookup(category: Union[str, CacheCategory],
           policies: Optional[Mapping[CacheCategory, CachePolicy]] = None) -> CachePolicy:
    """Return the policy for ``category``.

    Raises CacheConfigurationError when the category has no registered policy;
    a missing policy is a programming error and is never defaulted.
    """
    table = DEFAULT_POLICIES if policies is None else policies
    resolved = CacheCategory.parse(category)
    try:
        return table[resolved]
    except KeyError:
        raise CacheConfigurationError(
            f"No cache policy registered for '{resolved.value}'",
            details={"category": resolved.value},
        ) from None


def validate_policies(policies: Mapping[CacheCategory, CachePolicy]) -> None:
    """Check that the table covers every category with usable values.

    Called once at startup; any failure aborts service start.
    """
    missing = [category.value for category in CacheCategory if category not in policies]
    if missing:
        raise CacheConfigurationError(
            "Cache policy table is incomplete",
            details={"missing": missing},
        )

    seen_prefixes = {}
    for category, policy in policies.items():
        if not isinstance(policy.ttl_seconds, int) or policy.ttl_seconds <= 0:
            raise CacheConfigurationError(
                f"TTL for '{category.value}' must be a positive integer",
                details={"category": category.value, "ttl_seconds": policy.ttl_seconds},
            )
        if not policy.key_prefix:
            raise CacheConfigurationError(
                f"Key prefix for '{category.value}' must not be empty",
                details={"category": category.value},
            )
        if policy.key_prefix in seen_prefixes:
            raise CacheConfigurationError(
                "Cache key prefixes must be unique",
                details={
                    "prefix": policy.key_prefix,
                    "categories": [seen_prefixes[policy.key_prefix], category.value],
                },
            )
        seen_prefixes[policy.key_prefix] = category.value


def build_policy_table(ttl_overrides: Optional[Mapping[str, int]] = None) -> Mapping[CacheCategory, CachePolicy]:
    """Apply configured TTL overrides to the defaults and validate the result.

    Prefixes are fixed; only TTLs may be overridden.
    """
    table = dict(DEFAULT_POLICIES)
    for name, ttl in (ttl_overrides or {}).items():
        category = CacheCategory.parse(name)
        table[category] = CachePolicy(ttl_seconds=ttl, key_prefix=table[category].key_prefix)

    validate_policies(table)
    return MappingProxyType(table)


validate_policies(DEFAULT_POLICIES)
