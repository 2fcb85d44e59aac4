"""
Cache key derivation.

Keys have the layout ``<prefix>:<METHOD>:<path>:<query>:<caller>``. Every
variable segment is percent-encoded, so no segment can contain ``:`` or a glob
metacharacter. Two different requests therefore never compose to the same
string, and the invalidation patterns below can rely on the segment layout.

Composed keys longer than the configured limit are replaced by
``<prefix>:#<md5 of key>:#<caller digest>``. ``#`` never survives encoding,
so hashed keys cannot be confused with plain ones, and the trailing caller
digest keeps per-caller invalidation working for them.
"""

import hashlib
from typing import Iterable, List, Mapping, Optional, Tuple, Union
from urllib.parse import quote, urlencode

from .policy import CacheCategory, CachePolicy, lookup

ANONYMOUS = "anonymous"
DEFAULT_MAX_KEY_LENGTH = 200
HASH_MARKER = "#"
CALLER_DIGEST_LENGTH = 16

QueryParams = Union[Mapping[str, str], Iterable[Tuple[str, str]], None]
PolicyTable = Optional[Mapping[CacheCategory, CachePolicy]]


def derive_key(
    category: Union[str, CacheCategory],
    method: str,
    path: str,
    query_params: QueryParams = None,
    caller_identity: Optional[str] = None,
    *,
    max_length: int = DEFAULT_MAX_KEY_LENGTH,
    policies: PolicyTable = None,
) -> str:
    """Build the cache key for a request.

    Query parameter order is irrelevant. A missing caller identity is keyed
    as ``anonymous``. The prefix comes from ``policies``, the default table
    when omitted.
    """
    prefix = lookup(category, policies).key_prefix
    caller = encode_caller(caller_identity)
    composed = ":".join((
        prefix,
        method.upper(),
        quote(path, safe="/"),
        encode_query(query_params),
        caller,
    ))

    if len(composed) <= max_length:
        return composed

    digest = hashlib.md5(composed.encode("utf-8")).hexdigest()
    return f"{prefix}:{HASH_MARKER}{digest}:{HASH_MARKER}{_caller_digest(caller)}"


def encode_query(query_params: QueryParams) -> str:
    """Serialize query parameters in sorted order; empty input gives ''."""
    if not query_params:
        return ""

    if hasattr(query_params, "multi_items"):
        items = query_params.multi_items()
    elif isinstance(query_params, Mapping):
        items = query_params.items()
    else:
        items = query_params

    pairs = sorted((str(name), str(value)) for name, value in items)
    return urlencode(pairs, quote_via=quote)


def encode_caller(caller_identity: Optional[str]) -> str:
    return quote(caller_identity or ANONYMOUS, safe="")


def _caller_digest(encoded_caller: str) -> str:
    return hashlib.md5(encoded_caller.encode("utf-8")).hexdigest()[:CALLER_DIGEST_LENGTH]


def category_pattern(category: Union[str, CacheCategory], policies: PolicyTable = None) -> str:
    """Glob pattern matching every key of a category."""
    return f"{lookup(category, policies).key_prefix}:*"


def path_pattern(
    category: Union[str, CacheCategory],
    path: str,
    method: str = "GET",
    policies: PolicyTable = None,
) -> str:
    """Glob pattern matching the keys of one route path, any query or caller.

    Hashed keys no longer carry their path and are left to expire.
    """
    prefix = lookup(category, policies).key_prefix
    return f"{prefix}:{method.upper()}:{quote(path, safe='/')}:*"


def caller_patterns(
    caller_identity: Optional[str],
    category: Union[str, CacheCategory, None] = None,
    policies: PolicyTable = None,
) -> List[str]:
    """Glob patterns matching every key derived for ``caller_identity``.

    Covers both plain and hashed keys. Restricted to one category when given.
    """
    scope = lookup(category, policies).key_prefix if category is not None else "*"
    caller = encode_caller(caller_identity)
    return [
        f"{scope}:*:{caller}",
        f"{scope}:*:{HASH_MARKER}{_caller_digest(caller)}",
    ]
