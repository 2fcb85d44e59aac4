"""
Ordering API service: menu, user preference and cache administration routes.
"""

import asyncio
from typing import Any, Dict, Optional

from fastapi import APIRouter, Body, Depends, FastAPI, Query, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from shared.base_service import BaseService
from shared.config import ServiceConfig
from shared.errors import CacheConfigurationError, CacheStoreError, NotFoundError, ValidationError
from shared.logging import clear_context, set_request_id
from .adapters import AuthClient, MenuProvider, PreferencesStore
from .caching import (
    CacheCategory,
    CacheManager,
    CacheStore,
    RedisCacheStore,
    ResponseCache,
    build_policy_table,
    is_mobile_client,
    menu_warm_source,
)
from .domain import AuthMiddleware

FULL_MENU_PATH = "/api/menu/full"


class InvalidateRequest(BaseModel):
    """Exactly one of the fields selects what to purge."""

    pattern: Optional[str] = None
    category: Optional[str] = None
    user_id: Optional[str] = None


class WarmRequest(BaseModel):
    category: str = CacheCategory.MENU.value


class OrderingService(BaseService):
    """Ordering API service implementation."""

    def __init__(
        self,
        config: Optional[ServiceConfig] = None,
        *,
        cache_store: Optional[CacheStore] = None,
        menu_provider: Optional[MenuProvider] = None,
        auth_client: Optional[AuthClient] = None,
        preferences_store: Optional[PreferencesStore] = None,
    ):
        super().__init__("api", 8000, config=config)

        # Fails service start on an incomplete or invalid policy table
        self.policies = build_policy_table(self.config.cache_ttl_overrides)

        self.cache_store = cache_store or RedisCacheStore(
            self.config.redis_url,
            socket_timeout=self.config.cache_socket_timeout,
            socket_connect_timeout=self.config.cache_socket_timeout,
        )
        self.response_cache = ResponseCache(
            self.cache_store,
            self.policies,
            key_max_length=self.config.cache_key_max_length,
            write_timeout=self.config.cache_write_timeout,
            metrics=self.metrics,
        )
        self.cache_manager = CacheManager(
            self.cache_store,
            self.policies,
            metrics=self.metrics,
            warm_concurrency=self.config.cache_warm_concurrency,
            key_max_length=self.config.cache_key_max_length,
        )

        self.menu_provider = menu_provider or MenuProvider(self.config.menu_data_file)
        self.preferences_store = preferences_store or PreferencesStore()
        self.auth_client = auth_client or AuthClient(self.config.auth_service_url)
        self.auth_middleware = AuthMiddleware(
            self.auth_client,
            api_keys=self.config.api_keys,
            admin_roles=self.config.admin_roles,
        )

        self.cache_manager.register_warm_source(
            CacheCategory.MENU,
            menu_warm_source(self.menu_provider, self._category_items_response),
        )
        self._warm_task: Optional[asyncio.Task] = None

        @self.app.on_event("startup")
        async def _startup():
            if self.config.cache_warm_on_startup:
                await self.cache_manager.warm(CacheCategory.MENU)
            if self.config.cache_warm_interval_seconds > 0:
                self._warm_task = asyncio.create_task(
                    self._scheduled_warm(self.config.cache_warm_interval_seconds)
                )

        @self.app.on_event("shutdown")
        async def _shutdown():
            if self._warm_task is not None:
                self._warm_task.cancel()
                try:
                    await self._warm_task
                except asyncio.CancelledError:
                    pass
                self._warm_task = None
            await self.response_cache.drain()
            await self.cache_store.close()

        self._setup_identity_middleware()
        self._setup_menu_routes()
        self._setup_user_routes()
        self._setup_admin_routes()

        # Expose service instance via app state for introspection/testing
        self.app.state.ordering_service = self

    async def _scheduled_warm(self, interval: int) -> None:
        """Re-warm the menu every ``interval`` seconds until cancelled."""
        while True:
            await asyncio.sleep(interval)
            try:
                await self.cache_manager.warm(CacheCategory.MENU)
            except Exception as e:
                self.logger.error("Scheduled cache warm failed", error=str(e))

    async def _check_dependencies(self) -> Dict[str, str]:
        try:
            await self.cache_store.ping()
            cache_status = "ok"
        except CacheStoreError as e:
            # Cache outages never fail health; requests are served uncached
            self.logger.warning("Cache store unreachable", error=str(e))
            cache_status = "unavailable"
        return {"cache_store": cache_status}

    async def _category_items_response(self, category_id: str) -> JSONResponse:
        """Items of one menu category, as served to clients and cache warming."""
        items = await self.menu_provider.list_items(category_id)
        if not items:
            return JSONResponse(
                status_code=404,
                content={"success": False, "error": "Category not found or no items available"},
            )

        return JSONResponse(content={
            "success": True,
            "data": items,
            "message": f"Items for category {category_id} retrieved successfully",
        })

    def _setup_identity_middleware(self):
        """Identify the caller before routing so cached routes can key on it."""

        @self.app.middleware("http")
        async def attach_identity(request: Request, call_next):
            request_id = set_request_id(request.headers.get("X-Request-ID"))
            try:
                await self.auth_middleware.identify(request)
                response = await call_next(request)
            finally:
                clear_context()

            response.headers["X-Request-ID"] = request_id
            return response

    def _setup_menu_routes(self):
        """Set up menu routes."""
        menu_router = APIRouter(
            prefix="/api/menu",
            tags=["menu"],
            route_class=self.response_cache.route_class(CacheCategory.MENU),
        )

        @menu_router.get("/categories")
        async def get_categories():
            """Get all menu categories."""
            categories = await self.menu_provider.get_categories()
            return {
                "success": True,
                "data": categories,
                "message": "Categories retrieved successfully",
            }

        @menu_router.get("/category/{category_id}")
        async def get_category_items(category_id: str):
            """Get items by category."""
            self.logger.info("Fetching menu items for category", category_id=category_id)
            return await self._category_items_response(category_id)

        @menu_router.get("/item/{item_id}")
        async def get_item(item_id: str):
            """Get specific item details."""
            item = await self.menu_provider.get_item(item_id)
            if item is None:
                raise NotFoundError("Item not found", details={"item_id": item_id})
            return {"success": True, "data": item, "message": "Item retrieved successfully"}

        search_router = APIRouter(
            prefix="/api/menu",
            tags=["menu"],
            route_class=self.response_cache.route_class(CacheCategory.SEARCH),
        )

        @search_router.get("/search")
        async def search_menu(q: Optional[str] = Query(None), category: Optional[str] = Query(None)):
            """Search menu items by name and description."""
            if not q:
                raise ValidationError("Search query is required")

            results = await self.menu_provider.search(q, category)
            return {
                "success": True,
                "data": results,
                "message": f'Found {len(results)} items matching "{q}"',
            }

        mobile_router = APIRouter(
            prefix="/api/menu",
            tags=["menu"],
            route_class=self.response_cache.route_class(CacheCategory.GENERIC_API, when=is_mobile_client),
        )

        @mobile_router.get("/full")
        async def get_full_menu():
            """Whole menu in one payload; cached for mobile clients only."""
            categories = await self.menu_provider.get_categories()
            for category in categories:
                category["items"] = await self.menu_provider.list_items(category["id"])
            return {"success": True, "data": categories, "message": "Menu retrieved successfully"}

        self.app.include_router(search_router)
        self.app.include_router(mobile_router)
        self.app.include_router(menu_router)

    def _setup_user_routes(self):
        """Set up per-user routes."""
        user_router = APIRouter(
            prefix="/api/users",
            tags=["users"],
            route_class=self.response_cache.route_class(CacheCategory.USER_PREFERENCES),
        )

        @user_router.get("/me/preferences")
        async def get_preferences(user_info: Dict[str, Any] = Depends(self.auth_middleware.authenticate_request)):
            """Get the caller's preferences."""
            preferences = await self.preferences_store.get(user_info["user_id"])
            return {
                "success": True,
                "data": preferences,
                "message": "User preferences retrieved successfully",
            }

        @user_router.put("/me/preferences")
        async def update_preferences(
            preferences: Dict[str, Any] = Body(...),
            user_info: Dict[str, Any] = Depends(self.auth_middleware.authenticate_request),
        ):
            """Replace the caller's preferences and drop their cached responses."""
            user_id = user_info["user_id"]
            if preferences.get("userId") not in (None, user_id):
                raise ValidationError("Invalid user ID in preferences data")

            stored = await self.preferences_store.replace(user_id, preferences)
            await self.cache_manager.invalidate_user(user_id)
            return {
                "success": True,
                "data": stored,
                "message": "User preferences updated successfully",
            }

        self.app.include_router(user_router)

    def _setup_admin_routes(self):
        """Set up admin routes."""
        admin_router = APIRouter(
            prefix="/api/admin",
            tags=["admin"],
            dependencies=[Depends(self.auth_middleware.require_admin)],
        )

        @admin_router.patch("/menu/item/{item_id}")
        async def update_menu_item(item_id: str, changes: Dict[str, Any] = Body(...)):
            """Edit a menu item and invalidate menu-derived caches."""
            item = await self.menu_provider.update_item(item_id, changes)
            invalidated = await self.cache_manager.invalidate_menu()
            invalidated += await self.cache_manager.invalidate_search()
            invalidated += await self.cache_manager.invalidate_path(CacheCategory.GENERIC_API, FULL_MENU_PATH)
            return {
                "success": True,
                "data": item,
                "invalidated": invalidated,
                "message": "Item updated successfully",
            }

        @admin_router.get("/cache/stats")
        async def get_cache_stats():
            """Get cache statistics."""
            stats = await self.cache_manager.get_cache_stats()
            return {
                "success": "error" not in stats,
                "data": stats,
                "catalog": self.cache_manager.cache_catalog(),
                "warm_categories": self.cache_manager.warm_categories(),
            }

        @admin_router.post("/cache/invalidate")
        async def invalidate_cache(request: InvalidateRequest):
            """Invalidate by raw pattern, whole category, or user."""
            selectors = [value for value in (request.pattern, request.category, request.user_id) if value]
            if len(selectors) != 1:
                raise ValidationError("Provide exactly one of pattern, category or user_id")

            try:
                if request.pattern:
                    invalidated = await self.cache_manager.invalidate(request.pattern)
                elif request.category:
                    invalidated = await self.cache_manager.invalidate_category(request.category)
                else:
                    invalidated = await self.cache_manager.invalidate_user(request.user_id)
            except CacheConfigurationError as e:
                raise ValidationError(e.message, details=e.details) from e

            return {"success": True, "invalidated": invalidated}

        @admin_router.post("/cache/cleanup")
        async def cleanup_cache():
            """Remove cache keys that were written without a TTL."""
            removed = await self.cache_manager.cleanup()
            return {"success": True, "removed": removed}

        @admin_router.post("/cache/warm")
        async def warm_cache(request: Optional[WarmRequest] = None):
            """Warm a cache category (admin endpoint)."""
            try:
                summary = await self.cache_manager.warm(request.category if request else CacheCategory.MENU)
            except CacheConfigurationError as e:
                raise ValidationError(e.message, details=e.details) from e

            return {"success": True, "message": "Cache warmed", "summary": summary}

        self.app.include_router(admin_router)


def create_app(config: Optional[ServiceConfig] = None, **dependencies) -> FastAPI:
    """Create FastAPI application."""
    service = OrderingService(config, **dependencies)
    return service.app


if __name__ == "__main__":
    service = OrderingService()
    service.run()
