"""
Response caching for route handlers.

``ResponseCache.wrap`` turns a Starlette request handler into a cached one:
hits are served from the store without running the handler, misses run it
and store what it emits. The store is fail-open: any store error downgrades
the request to an uncached pass-through.
"""

import asyncio
from typing import Any, Awaitable, Callable, Dict, List, Mapping, Optional, Set, Tuple, Type, Union

from fastapi.routing import APIRoute
from starlette.requests import Request
from starlette.responses import Response
from starlette.types import Message, Receive, Scope, Send

from shared.errors import CacheStoreError
from shared.logging import get_logger
from .entry import CacheEntry, MalformedCacheEntry, UncacheableResponse
from .keys import ANONYMOUS, DEFAULT_MAX_KEY_LENGTH, derive_key
from .policy import DEFAULT_POLICIES, CacheCategory, CachePolicy, lookup
from .store import CacheStore

Handler = Callable[[Request], Awaitable[Response]]
RequestPredicate = Callable[[Request], bool]

CACHEABLE_METHODS = frozenset({"GET"})


def caller_identity(request: Request) -> str:
    """User id attached by the identity middleware, else ``anonymous``."""
    user_info = getattr(request.state, "user_info", None)
    if isinstance(user_info, dict) and user_info.get("user_id"):
        return str(user_info["user_id"])
    return ANONYMOUS


def is_mobile_client(request: Request) -> bool:
    """True for user agents advertising a mobile browser."""
    return "Mobile" in request.headers.get("user-agent", "")


def cache_headers(result: str, key: str, category: CacheCategory, ttl: int) -> Dict[str, str]:
    return {
        "X-Cache": result,
        "X-Cache-Key": key,
        "X-Cache-Category": category.value,
        "Cache-Control": f"public, max-age={ttl}",
    }


class CapturedResponse:
    """Forwards a response to the client while recording what it emits.

    Once the final body chunk has been forwarded, the recorded status,
    headers and body are handed to ``on_complete``.
    """

    def __init__(self, response: Response, on_complete: Callable[[CacheEntry], Awaitable[None]]):
        self.response = response
        self.status_code = response.status_code
        self._on_complete = on_complete
        self._raw_headers: List[Tuple[bytes, bytes]] = []
        self._chunks: List[bytes] = []

    @property
    def headers(self):
        return self.response.headers

    @property
    def body(self) -> bytes:
        return b"".join(self._chunks)

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        completed = False

        async def recording_send(message: Message) -> None:
            nonlocal completed
            if message["type"] == "http.response.start":
                self.status_code = message["status"]
                self._raw_headers = list(message.get("headers", []))
            elif message["type"] == "http.response.body":
                self._chunks.append(message.get("body", b""))
                completed = not message.get("more_body", False)
            await send(message)

        await self.response(scope, receive, recording_send)

        if completed:
            try:
                entry = CacheEntry.from_raw(self.status_code, self._raw_headers, self.body)
            except UncacheableResponse:
                return
            await self._on_complete(entry)


class CachedHandler:
    """A route handler with response caching in front of it."""

    def __init__(
        self,
        cache: "ResponseCache",
        handler: Handler,
        category: CacheCategory,
        *,
        ttl: Optional[int] = None,
        when: Optional[RequestPredicate] = None,
    ):
        self.cache = cache
        self.handler = handler
        self.category = category
        self.policy = cache.policy(category)
        self.ttl = ttl or self.policy.ttl_seconds
        self.when = when

    async def __call__(self, request: Request) -> Union[Response, CapturedResponse]:
        if request.method not in CACHEABLE_METHODS:
            return await self.handler(request)
        if self.when is not None and not self.when(request):
            return await self.handler(request)

        key = derive_key(
            self.category,
            request.method,
            request.url.path,
            request.query_params,
            caller_identity(request),
            max_length=self.cache.key_max_length,
            policies=self.cache.policies,
        )

        try:
            cached = await self.cache.store.get(key)
        except CacheStoreError as exc:
            self.cache.record_store_error("get", exc, key=key)
            response = await self.handler(request)
            response.headers.update(cache_headers("MISS", key, self.category, self.ttl))
            self.cache.record_lookup(self.category, "error")
            return response

        if cached is not None:
            try:
                entry = CacheEntry.from_bytes(cached)
            except MalformedCacheEntry as exc:
                self.cache.logger.warning("Discarding malformed cache entry", key=key, error=str(exc))
            else:
                self.cache.logger.debug("Cache hit", key=key, category=self.category.value)
                self.cache.record_lookup(self.category, "hit")
                response = entry.to_response()
                response.headers.update(cache_headers("HIT", key, self.category, self.ttl))
                return response

        self.cache.logger.debug("Cache miss", key=key, category=self.category.value)
        self.cache.record_lookup(self.category, "miss")

        response = await self.handler(request)
        response.headers.update(cache_headers("MISS", key, self.category, self.ttl))

        async def store_entry(entry: CacheEntry) -> None:
            if entry.cacheable:
                await self.cache.write(key, entry, self.ttl)

        return CapturedResponse(response, store_entry)


class ResponseCache:
    """Builds cached handlers and route classes over a shared store."""

    def __init__(
        self,
        store: CacheStore,
        policies: Optional[Mapping[CacheCategory, CachePolicy]] = None,
        *,
        key_max_length: int = DEFAULT_MAX_KEY_LENGTH,
        write_timeout: float = 0.5,
        metrics: Optional[Any] = None,
    ):
        self.store = store
        self.policies = policies if policies is not None else DEFAULT_POLICIES
        self.key_max_length = key_max_length
        self.write_timeout = write_timeout
        self.metrics = metrics
        self.logger = get_logger("api.response_cache")
        self._pending_writes: Set[asyncio.Task] = set()

    def policy(self, category: Union[str, CacheCategory]) -> CachePolicy:
        return lookup(category, self.policies)

    def wrap(
        self,
        handler: Handler,
        category: Union[str, CacheCategory],
        *,
        ttl: Optional[int] = None,
        when: Optional[RequestPredicate] = None,
    ) -> CachedHandler:
        """Wrap ``handler`` with the policy of ``category``.

        ``when`` restricts caching to requests it accepts; others bypass the
        cache entirely. ``ttl`` overrides the category TTL for this handler.
        """
        return CachedHandler(self, handler, CacheCategory.parse(category), ttl=ttl, when=when)

    def route_class(
        self,
        category: Union[str, CacheCategory],
        *,
        ttl: Optional[int] = None,
        when: Optional[RequestPredicate] = None,
    ) -> Type[APIRoute]:
        """APIRoute subclass caching every route of the router using it."""
        resolved = CacheCategory.parse(category)
        self.policy(resolved)
        cache = self

        class CachedRoute(APIRoute):
            def get_route_handler(self) -> Callable:
                return cache.wrap(super().get_route_handler(), resolved, ttl=ttl, when=when)

        CachedRoute.__name__ = f"CachedRoute[{resolved.value}]"
        return CachedRoute

    async def write(self, key: str, entry: CacheEntry, ttl: int) -> None:
        """Store ``entry``; never raises.

        The write runs in its own task so a disconnecting client cannot cancel
        it half way. The caller waits at most ``write_timeout`` for it.
        """
        task = asyncio.ensure_future(self._write(key, entry, ttl))
        self._pending_writes.add(task)
        task.add_done_callback(self._pending_writes.discard)

        try:
            await asyncio.wait_for(asyncio.shield(task), self.write_timeout)
        except asyncio.TimeoutError:
            self.logger.warning("Cache write still pending, continuing in background", key=key)

    async def _write(self, key: str, entry: CacheEntry, ttl: int) -> None:
        try:
            await self.store.set_with_ttl(key, entry.to_bytes(), ttl)
        except CacheStoreError as exc:
            self.record_store_error("set", exc, key=key)

    async def drain(self) -> None:
        """Wait for background cache writes to finish."""
        if self._pending_writes:
            await asyncio.gather(*list(self._pending_writes), return_exceptions=True)

    def record_lookup(self, category: CacheCategory, result: str) -> None:
        if self.metrics:
            self.metrics.increment_counter("cache_requests_total", category=category.value, result=result)

    def record_store_error(self, operation: str, exc: CacheStoreError, **context) -> None:
        self.logger.error("Cache store error", operation=operation, error=str(exc), **context)
        if self.metrics:
            self.metrics.increment_counter("cache_store_errors_total", operation=operation)
