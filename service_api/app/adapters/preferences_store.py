"""
User preferences storage.
"""

import asyncio
import copy
from datetime import datetime, timezone
from typing import Any, Dict


def default_preferences(user_id: str) -> Dict[str, Any]:
    return {
        "userId": user_id,
        "favoriteMenuItems": [],
        "defaultCustomizations": {},
        "darkModeEnabled": False,
        "notificationsEnabled": True,
        "preferredLanguage": "en",
        "dietaryRestrictions": {},
        "favoriteOrders": [],
        "lastUpdated": datetime.now(timezone.utc).isoformat(),
    }


class PreferencesStore:
    """Process-local preferences keyed by user id."""

    def __init__(self):
        self._preferences: Dict[str, Dict[str, Any]] = {}
        self._lock = asyncio.Lock()

    async def get(self, user_id: str) -> Dict[str, Any]:
        """Stored preferences, creating the defaults on first access."""
        async with self._lock:
            if user_id not in self._preferences:
                self._preferences[user_id] = default_preferences(user_id)
            return copy.deepcopy(self._preferences[user_id])

    async def replace(self, user_id: str, preferences: Dict[str, Any]) -> Dict[str, Any]:
        stored = copy.deepcopy(preferences)
        stored["userId"] = user_id
        stored["lastUpdated"] = datetime.now(timezone.utc).isoformat()
        async with self._lock:
            self._preferences[user_id] = stored
        return copy.deepcopy(stored)
