"""
Unit tests for the menu catalog provider.
"""

import pytest

import sys
import os
sys.path.append(os.path.join(os.path.dirname(__file__), '..', '..'))

from service_api.app.adapters.menu_provider import DEFAULT_DATA_FILE, MenuProvider
from shared.errors import NotFoundError, ValidationError
from shared.test_helpers import TestDataFactory


class TestMenuProvider:
    """Test cases for MenuProvider."""

    @pytest.fixture
    def provider(self, tmp_path):
        return MenuProvider(TestDataFactory.write_menu_file(tmp_path))

    @pytest.mark.asyncio
    async def test_categories_in_display_order(self, provider):
        """Test categories are sorted by displayOrder."""
        assert await provider.list_categories() == ["sandwiches", "sides"]

    @pytest.mark.asyncio
    async def test_list_items_flags_heat_levels(self, provider):
        """Test heat level selection flag is derived per item."""
        items = await provider.list_items("sandwiches")
        assert [item["allowsHeatLevelSelection"] for item in items] == [True, False]

    @pytest.mark.asyncio
    async def test_list_items_unknown_category(self, provider):
        assert await provider.list_items("desserts") == []

    @pytest.mark.asyncio
    async def test_get_item(self, provider):
        """Test item lookup across categories."""
        item = await provider.get_item("side-1")
        assert item["name"] == "Waffle Fries"
        assert await provider.get_item("nope") is None

    @pytest.mark.asyncio
    async def test_search(self, provider):
        """Test case-insensitive search on name and description."""
        results = await provider.search("CHICKEN")
        assert {item["id"] for item in results} == {"sandwich-1", "sandwich-2"}
        assert await provider.search("chicken", category="sides") == []

    @pytest.mark.asyncio
    async def test_returned_items_are_copies(self, provider):
        """Test callers cannot mutate the catalog."""
        item = await provider.get_item("side-1")
        item["price"] = 0
        assert (await provider.get_item("side-1"))["price"] == 3.99

    @pytest.mark.asyncio
    async def test_update_item(self, provider):
        """Test editable fields are applied."""
        updated = await provider.update_item("side-1", {"price": 4.49, "available": False})
        assert updated["price"] == 4.49
        assert (await provider.list_items("sides"))[0]["available"] is False

    @pytest.mark.asyncio
    async def test_update_item_rejects_fields(self, provider):
        """Test non-editable fields are rejected."""
        with pytest.raises(ValidationError):
            await provider.update_item("side-1", {"id": "other"})

    @pytest.mark.asyncio
    async def test_update_unknown_item(self, provider):
        with pytest.raises(NotFoundError):
            await provider.update_item("nope", {"price": 1})

    @pytest.mark.asyncio
    async def test_missing_file_serves_empty_menu(self, tmp_path):
        """Test a missing catalog yields an empty menu."""
        provider = MenuProvider(tmp_path / "absent.json")
        assert await provider.list_categories() == []

    @pytest.mark.asyncio
    async def test_malformed_file_serves_empty_menu(self, tmp_path):
        path = tmp_path / "menu.json"
        path.write_text("{not json")
        assert await MenuProvider(path).get_categories() == []

    @pytest.mark.asyncio
    async def test_refresh(self, tmp_path):
        """Test refresh picks up catalog changes."""
        menu = TestDataFactory.create_test_menu()
        path = TestDataFactory.write_menu_file(tmp_path, menu)
        provider = MenuProvider(path)

        menu["categories"].append({"id": "drinks", "name": "Drinks", "displayOrder": 3})
        TestDataFactory.write_menu_file(tmp_path, menu)
        provider.refresh()
        assert await provider.list_categories() == ["sandwiches", "sides", "drinks"]

    @pytest.mark.asyncio
    async def test_bundled_catalog(self):
        """Test the shipped catalog loads."""
        provider = MenuProvider()
        assert provider.path == DEFAULT_DATA_FILE
        categories = await provider.list_categories()
        assert len(categories) == 9
        for category_id in categories:
            assert await provider.list_items(category_id)
