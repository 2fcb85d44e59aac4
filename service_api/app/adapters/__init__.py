"""
Adapters package for the ordering API.

Wrappers around the service's upstream collaborators:

- AuthClient: bearer token verification against the identity service
- MenuProvider: the menu catalog
- PreferencesStore: per-user preferences

Keep adapters thin and side-effect free outside of explicit calls.
"""

from .auth_client import AuthClient
from .menu_provider import MenuProvider
from .preferences_store import PreferencesStore

__all__ = [
    "AuthClient",
    "MenuProvider",
    "PreferencesStore",
]
