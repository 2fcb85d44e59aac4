"""
Route-level tests for the ordering API service.
"""

import pytest
from unittest.mock import AsyncMock
from fastapi.testclient import TestClient

import sys
import os
sys.path.append(os.path.join(os.path.dirname(__file__), '..', '..'))

from service_api.app.adapters.auth_client import AuthClient
from service_api.app.adapters.menu_provider import MenuProvider
from service_api.app.caching.keys import derive_key
from service_api.app.caching.store import RedisCacheStore
from service_api.app.main import OrderingService, create_app
from shared.config import get_config
from shared.errors import CacheConfigurationError
from shared.test_helpers import FakeCacheStore, TestDataFactory, TestEnvironment

USER = {"X-API-Key": "user-key"}
ADMIN = {"X-API-Key": "admin-key"}
MOBILE = {"User-Agent": "Mozilla/5.0 (iPhone; CPU iPhone OS 17_0) Mobile/15E148"}


class TestOrderingService:
    """Test cases for OrderingService routes."""

    @pytest.fixture
    def store(self):
        return FakeCacheStore()

    @pytest.fixture
    def menu_provider(self, tmp_path):
        return MenuProvider(TestDataFactory.write_menu_file(tmp_path))

    @pytest.fixture
    def auth_client(self):
        client = AsyncMock(spec=AuthClient)
        client.verify_token.return_value = {"user_id": "token-user", "roles": ["user"]}
        return client

    @pytest.fixture
    def service(self, store, menu_provider, auth_client):
        """Create OrderingService instance."""
        config = get_config("api", 8000, **TestEnvironment.get_mock_config())
        return OrderingService(config, cache_store=store, menu_provider=menu_provider, auth_client=auth_client)

    @pytest.fixture
    def client(self, service):
        """Create test client."""
        with TestClient(service.app) as client:
            yield client

    def test_health(self, client):
        """Test health endpoint reports the cache store."""
        response = client.get("/health")
        assert response.status_code == 200
        data = response.json()
        assert data["service"] == "api"
        assert data["dependencies"] == {"cache_store": "ok"}

    def test_health_with_cache_down(self, client, store):
        """Test a cache outage does not fail health."""
        store.fail("ping")
        response = client.get("/health")
        assert response.status_code == 200
        assert response.json()["dependencies"] == {"cache_store": "unavailable"}

    def test_metrics_endpoint(self, client):
        """Test cache metrics are exported."""
        client.get("/api/menu/categories")
        response = client.get("/metrics")
        assert response.status_code == 200
        assert "cache_requests_total" in response.text

    def test_request_id_echoed(self, client):
        response = client.get("/api/menu/categories", headers={"X-Request-ID": "req-42"})
        assert response.headers["X-Request-ID"] == "req-42"

    def test_categories_miss_then_hit(self, client):
        """Test menu categories are cached."""
        first = client.get("/api/menu/categories")
        second = client.get("/api/menu/categories")

        assert first.status_code == 200
        assert first.headers["X-Cache"] == "MISS"
        assert second.headers["X-Cache"] == "HIT"
        assert second.content == first.content
        assert first.json()["data"][0]["id"] == "sandwiches"
        assert first.headers["X-Cache-Key"] == derive_key("menu", "GET", "/api/menu/categories")
        assert first.headers["Cache-Control"] == "public, max-age=86400"

    def test_unknown_category_not_cached(self, client, store):
        """Test 404 answers are never stored."""
        response = client.get("/api/menu/category/desserts")
        assert response.status_code == 404
        assert response.json()["success"] is False
        assert client.get("/api/menu/category/desserts").headers["X-Cache"] == "MISS"
        assert store.keys() == []

    def test_unknown_item(self, client, store):
        """Test missing items answer with the error envelope and are not cached."""
        response = client.get("/api/menu/item/nope")
        assert response.status_code == 404
        assert response.json()["code"] == "NOT_FOUND"
        assert store.keys() == []

    def test_search(self, client):
        """Test search requires a query and is cached under its own category."""
        assert client.get("/api/menu/search").status_code == 400

        response = client.get("/api/menu/search?q=chicken")
        assert response.status_code == 200
        assert len(response.json()["data"]) == 2
        assert response.headers["X-Cache-Category"] == "search"
        assert response.headers["Cache-Control"] == "public, max-age=900"
        assert client.get("/api/menu/search?q=chicken").headers["X-Cache"] == "HIT"

    def test_full_menu_cached_for_mobile_only(self, client, store):
        """Test the full menu is cached only for mobile user agents."""
        desktop = client.get("/api/menu/full", headers={"User-Agent": "Mozilla/5.0 (X11)"})
        assert desktop.status_code == 200
        assert "X-Cache" not in desktop.headers
        assert store.keys() == []

        assert client.get("/api/menu/full", headers=MOBILE).headers["X-Cache"] == "MISS"
        hit = client.get("/api/menu/full", headers=MOBILE)
        assert hit.headers["X-Cache"] == "HIT"
        assert hit.headers["X-Cache-Category"] == "generic-api"
        assert len(hit.json()["data"][0]["items"]) == 2

    def test_cache_outage_is_transparent(self, client, store):
        """Test the API keeps answering with the store down."""
        store.fail()
        for _ in range(2):
            response = client.get("/api/menu/category/sides")
            assert response.status_code == 200
            assert response.headers["X-Cache"] == "MISS"

    def test_preferences_require_identity(self, client, store):
        """Test anonymous preference reads are rejected and not cached."""
        assert client.get("/api/users/me/preferences").status_code == 401
        assert store.keys() == []

    def test_preferences_cached_per_user(self, client, store):
        """Test preferences are cached under the caller's identity."""
        first = client.get("/api/users/me/preferences", headers=USER)
        second = client.get("/api/users/me/preferences", headers=USER)
        other = client.get("/api/users/me/preferences", headers={"Authorization": "Bearer t"})

        assert first.json()["data"]["userId"] == "key-user"
        assert second.headers["X-Cache"] == "HIT"
        assert other.headers["X-Cache"] == "MISS"
        assert other.json()["data"]["userId"] == "token-user"
        assert first.headers["X-Cache-Key"].endswith(":key-user")
        assert first.headers["Cache-Control"] == "public, max-age=14400"

    def test_preference_update_invalidates_user_cache(self, client):
        """Test writing preferences drops that user's cached responses."""
        client.get("/api/users/me/preferences", headers=USER)

        update = client.put("/api/users/me/preferences", json={"darkModeEnabled": True}, headers=USER)
        assert update.status_code == 200
        assert "X-Cache" not in update.headers

        response = client.get("/api/users/me/preferences", headers=USER)
        assert response.headers["X-Cache"] == "MISS"
        assert response.json()["data"]["darkModeEnabled"] is True

    def test_preference_update_rejects_other_user(self, client):
        response = client.put("/api/users/me/preferences", json={"userId": "someone-else"}, headers=USER)
        assert response.status_code == 400

    def test_admin_routes_require_admin(self, client):
        """Test admin routes reject anonymous and non-admin callers."""
        assert client.get("/api/admin/cache/stats").status_code == 401
        assert client.get("/api/admin/cache/stats", headers=USER).status_code == 403

    def test_invalidate_pattern(self, client):
        """Test invalidating menu keys forces the next read to miss."""
        client.get("/api/menu/categories")
        client.get("/api/menu/category/sides")
        assert client.get("/api/menu/categories").headers["X-Cache"] == "HIT"

        response = client.post("/api/admin/cache/invalidate", json={"pattern": "menu:*"}, headers=ADMIN)
        assert response.status_code == 200
        assert response.json() == {"success": True, "invalidated": 2}

        assert client.get("/api/menu/categories").headers["X-Cache"] == "MISS"
        again = client.post("/api/admin/cache/invalidate", json={"pattern": "search:*"}, headers=ADMIN)
        assert again.json()["invalidated"] == 0

    def test_invalidate_category_and_user(self, client, store):
        """Test category and user selectors."""
        client.get("/api/menu/search?q=fries")
        client.get("/api/users/me/preferences", headers=USER)

        by_user = client.post("/api/admin/cache/invalidate", json={"user_id": "key-user"}, headers=ADMIN)
        assert by_user.json()["invalidated"] == 1
        by_category = client.post("/api/admin/cache/invalidate", json={"category": "search"}, headers=ADMIN)
        assert by_category.json()["invalidated"] == 1
        assert store.keys() == []

    @pytest.mark.parametrize("payload", [
        {},
        {"pattern": "menu:*", "category": "menu"},
        {"category": "desserts"},
    ])
    def test_invalidate_rejects_bad_requests(self, client, payload):
        response = client.post("/api/admin/cache/invalidate", json=payload, headers=ADMIN)
        assert response.status_code == 400

    def test_menu_item_update_invalidates_menu_and_search(self, client):
        """Test editing an item drops stale menu, search and full-menu responses."""
        before = client.get("/api/menu/item/side-1")
        client.get("/api/menu/search?q=fries")
        assert before.json()["data"]["price"] == 3.99
        assert client.get("/api/menu/full", headers=MOBILE).headers["X-Cache"] == "MISS"
        assert client.get("/api/menu/full", headers=MOBILE).headers["X-Cache"] == "HIT"

        response = client.patch("/api/admin/menu/item/side-1", json={"price": 4.49}, headers=ADMIN)
        assert response.status_code == 200
        assert response.json()["invalidated"] == 3

        after = client.get("/api/menu/item/side-1")
        assert after.headers["X-Cache"] == "MISS"
        assert after.json()["data"]["price"] == 4.49

        full = client.get("/api/menu/full", headers=MOBILE)
        assert full.headers["X-Cache"] == "MISS"
        sides = next(category for category in full.json()["data"] if category["id"] == "sides")
        assert sides["items"][0]["price"] == 4.49

    def test_menu_item_update_rejects_bad_fields(self, client):
        response = client.patch("/api/admin/menu/item/side-1", json={"id": "x"}, headers=ADMIN)
        assert response.status_code == 400

    def test_stats(self, client):
        """Test stats report key count and the policy catalog."""
        client.get("/api/menu/categories")
        response = client.get("/api/admin/cache/stats", headers=ADMIN)
        assert response.status_code == 200
        data = response.json()
        assert data["data"]["key_count"] == 1
        assert data["catalog"]["search"] == {"ttl_seconds": 900, "key_prefix": "search"}
        assert data["warm_categories"] == ["menu"]

    def test_stats_with_cache_down(self, client, store):
        store.fail("info")
        data = client.get("/api/admin/cache/stats", headers=ADMIN).json()
        assert data["success"] is False
        assert "error" in data["data"]

    def test_cleanup(self, client, store):
        """Test cleanup removes keys without expiry."""
        store.put("menu:GET:/stale::anonymous", b"{}")
        client.get("/api/menu/categories")

        response = client.post("/api/admin/cache/cleanup", headers=ADMIN)
        assert response.json() == {"success": True, "removed": 1}
        assert store.keys() == [derive_key("menu", "GET", "/api/menu/categories")]

    def test_warm_then_hit(self, client, store):
        """Test warmed entries are served as hits."""
        response = client.post("/api/admin/cache/warm", headers=ADMIN)
        assert response.status_code == 200
        summary = response.json()["summary"]
        assert summary["warmed"] == 2
        assert len(store.keys("menu:*")) == 2

        hit = client.get("/api/menu/category/sides")
        assert hit.headers["X-Cache"] == "HIT"
        assert hit.json()["data"][0]["name"] == "Waffle Fries"

    def test_warm_unknown_category(self, client):
        response = client.post("/api/admin/cache/warm", json={"category": "desserts"}, headers=ADMIN)
        assert response.status_code == 400

    def test_shutdown_closes_store(self, service, store):
        """Test shutdown releases the store."""
        with TestClient(service.app):
            pass
        assert store.closed is True


class TestServiceStartup:
    """Test cases for service construction and startup."""

    @pytest.fixture
    def menu_provider(self, tmp_path):
        return MenuProvider(TestDataFactory.write_menu_file(tmp_path))

    def test_startup_warms_menu(self, menu_provider):
        """Test menu categories are warmed on startup when enabled."""
        store = FakeCacheStore()
        config = get_config("api", 8000, **TestEnvironment.get_mock_config(cache_warm_on_startup=True))
        app = create_app(config, cache_store=store, menu_provider=menu_provider, auth_client=AsyncMock())

        with TestClient(app) as client:
            assert len(store.keys("menu:*")) == 2
            assert client.get("/api/menu/category/sandwiches").headers["X-Cache"] == "HIT"

    def test_startup_survives_cache_outage(self, menu_provider):
        """Test startup warming with the store down does not abort start."""
        store = FakeCacheStore()
        store.fail()
        config = get_config("api", 8000, **TestEnvironment.get_mock_config(cache_warm_on_startup=True))
        app = create_app(config, cache_store=store, menu_provider=menu_provider, auth_client=AsyncMock())

        with TestClient(app) as client:
            assert client.get("/api/menu/categories").status_code == 200

    def test_ttl_overrides_applied(self, menu_provider):
        """Test configured TTL overrides reach response headers."""
        config = get_config("api", 8000, **TestEnvironment.get_mock_config(cache_ttl_overrides={"menu": 600}))
        app = create_app(config, cache_store=FakeCacheStore(), menu_provider=menu_provider, auth_client=AsyncMock())

        with TestClient(app) as client:
            assert client.get("/api/menu/categories").headers["Cache-Control"] == "public, max-age=600"

    def test_invalid_ttl_override_aborts_start(self, menu_provider):
        """Test an invalid policy table fails service construction."""
        config = get_config("api", 8000, **TestEnvironment.get_mock_config(cache_ttl_overrides={"menu": 0}))
        with pytest.raises(CacheConfigurationError):
            OrderingService(config, cache_store=FakeCacheStore(), menu_provider=menu_provider)

    def test_default_store_uses_configured_socket_timeout(self, menu_provider):
        """Test the Redis store built from config is bounded by cache_socket_timeout."""
        config = get_config("api", 8000, **TestEnvironment.get_mock_config(cache_socket_timeout=0.3))
        service = OrderingService(config, menu_provider=menu_provider, auth_client=AsyncMock())

        assert isinstance(service.cache_store, RedisCacheStore)
        assert service.cache_store.socket_timeout == 0.3
        assert service.cache_store.socket_connect_timeout == 0.3
