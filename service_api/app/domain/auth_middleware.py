"""
Caller identification and authorization for the ordering API.
"""

from fastapi import Request
from typing import Any, Dict, Iterable, Mapping, Optional

from shared.logging import get_logger, set_user_context
from shared.errors import AuthenticationError, AuthorizationError
from ..adapters.auth_client import AuthClient


class AuthMiddleware:
    """Resolves who is calling and enforces route-level access."""

    def __init__(
        self,
        auth_client: AuthClient,
        api_keys: Optional[Mapping[str, Dict[str, Any]]] = None,
        admin_roles: Iterable[str] = ("admin",),
    ):
        self.auth_client = auth_client
        self.api_keys = dict(api_keys or {})
        self.admin_roles = frozenset(admin_roles)
        self.logger = get_logger("api.auth_middleware")

    async def identify(self, request: Request) -> Optional[Dict[str, Any]]:
        """Attach the caller's identity to ``request.state`` when credentials are valid.

        Runs before routing for every request, so it never rejects: missing
        or invalid credentials leave the caller anonymous.
        """
        try:
            user_info = await self._resolve(request)
        except AuthenticationError as e:
            self.logger.warning("Ignoring invalid credentials", error=e.message, path=request.url.path)
            return None

        if user_info is None:
            return None

        request.state.user_info = user_info
        set_user_context(user_info.get("user_id"))
        return user_info

    async def _resolve(self, request: Request) -> Optional[Dict[str, Any]]:
        api_key = request.headers.get("X-API-Key")
        if api_key:
            return self._authenticate_with_api_key(api_key)

        auth_header = request.headers.get("Authorization")
        if not auth_header:
            return None

        if not auth_header.startswith("Bearer "):
            raise AuthenticationError("Invalid authorization header format")

        user_info = await self.auth_client.verify_token(auth_header[7:])
        self.logger.debug("Request authenticated with bearer token", user_id=user_info.get("user_id"))
        return {**user_info, "auth_method": "bearer"}

    def _authenticate_with_api_key(self, api_key: str) -> Dict[str, Any]:
        key_info = self.api_keys.get(api_key)
        if key_info is None:
            raise AuthenticationError("Invalid API key")

        self.logger.debug("Request authenticated with API key", api_key=api_key[:8] + "...")
        return {
            "user_id": key_info.get("user_id", f"api-key-{api_key[:8]}"),
            "roles": list(key_info.get("roles", [])),
            "auth_method": "api_key",
        }

    async def authenticate_request(self, request: Request) -> Dict[str, Any]:
        """FastAPI dependency: the identified caller, or 401."""
        user_info = getattr(request.state, "user_info", None)
        if not user_info:
            raise AuthenticationError("Authorization header or X-API-Key header required")
        return user_info

    async def require_admin(self, request: Request) -> Dict[str, Any]:
        """FastAPI dependency: an identified caller holding an admin role, or 401/403."""
        user_info = await self.authenticate_request(request)
        if not self.admin_roles.intersection(user_info.get("roles", [])):
            self.logger.warning("Admin access denied", user_id=user_info.get("user_id"), path=request.url.path)
            raise AuthorizationError("Admin role required")
        return user_info
