"""
Menu catalog provider.

Loads the menu from a JSON catalog file shipped alongside the service. The
provider is the upstream data source for both the menu routes and the cache
warmer.
"""

from __future__ import annotations

import asyncio
import copy
import json
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

from shared.errors import NotFoundError, ValidationError
from shared.logging import get_logger


DEFAULT_DATA_FILE = Path(__file__).resolve().parent.parent / "data" / "menu.json"

# Fields clients may change through the admin API
EDITABLE_FIELDS = frozenset({"name", "description", "price", "available", "imageUrl", "sizes", "heatLevels"})


class MenuProvider:
    """
    In-process menu catalog.

    A missing or malformed catalog file yields an empty menu rather than
    failing service start; routes then answer 404 and warming no-ops.
    """

    def __init__(self, data_path: Optional[Union[str, Path]] = None):
        self._path = Path(data_path) if data_path else DEFAULT_DATA_FILE
        self.logger = get_logger("api.menu_provider")
        self._lock = asyncio.Lock()
        self._data = self._load()

    @property
    def path(self) -> Path:
        """Return the resolved path to the catalog file."""
        return self._path

    def refresh(self) -> None:
        """Reload the catalog from disk."""
        self._data = self._load()

    async def get_categories(self) -> List[Dict[str, Any]]:
        """Categories in display order."""
        categories = self._data.get("categories", [])
        return sorted(copy.deepcopy(categories), key=lambda item: item.get("displayOrder", 0))

    async def list_categories(self) -> List[str]:
        """Category ids in display order."""
        return [category["id"] for category in await self.get_categories()]

    async def list_items(self, category_id: str) -> List[Dict[str, Any]]:
        """Items of a category; empty when the category is unknown."""
        items = self._data.get("items", {}).get(category_id, [])
        return [self._present(item) for item in items]

    async def get_item(self, item_id: str) -> Optional[Dict[str, Any]]:
        for items in self._data.get("items", {}).values():
            for item in items:
                if item.get("id") == item_id:
                    return self._present(item)
        return None

    async def search(self, query: str, category: Optional[str] = None) -> List[Dict[str, Any]]:
        """Case-insensitive substring match on name and description."""
        term = query.lower()
        catalog = self._data.get("items", {})
        category_ids = [category] if category else list(catalog.keys())

        results = []
        for category_id in category_ids:
            for item in catalog.get(category_id, []):
                if term in item.get("name", "").lower() or term in item.get("description", "").lower():
                    results.append(self._present(item))
        return results

    async def update_item(self, item_id: str, changes: Dict[str, Any]) -> Dict[str, Any]:
        """Apply ``changes`` to an item and return the updated item."""
        unknown = sorted(set(changes) - EDITABLE_FIELDS)
        if unknown:
            raise ValidationError("Fields cannot be edited", details={"fields": unknown})

        async with self._lock:
            for items in self._data.get("items", {}).values():
                for item in items:
                    if item.get("id") == item_id:
                        item.update(copy.deepcopy(changes))
                        self.logger.info("Menu item updated", item_id=item_id, fields=sorted(changes))
                        return self._present(item)

        raise NotFoundError("Item not found", details={"item_id": item_id})

    @staticmethod
    def _present(item: Dict[str, Any]) -> Dict[str, Any]:
        presented = copy.deepcopy(item)
        presented["allowsHeatLevelSelection"] = bool(item.get("heatLevels"))
        return presented

    def _load(self) -> Dict[str, Any]:
        """Read the catalog from disk. Returns an empty catalog on failure."""
        if not self._path.exists():
            self.logger.warning("Menu catalog not found; serving an empty menu", path=str(self._path))
            return {"categories": [], "items": {}}

        try:
            with self._path.open("r", encoding="utf-8") as handle:
                data = json.load(handle)
        except (ValueError, OSError) as exc:
            self.logger.error("Failed to parse menu catalog", path=str(self._path), error=str(exc))
            return {"categories": [], "items": {}}

        if not isinstance(data, dict):
            self.logger.error("Menu catalog must be a JSON object", path=str(self._path))
            return {"categories": [], "items": {}}
        return data
