"""
Identity service client.
"""

from typing import Any, Dict

import httpx

from shared.errors import AuthenticationError
from shared.logging import get_logger
from shared.retry import RetryConfig, RetryError, retry_on_exception


class AuthClient:
    """Verifies bearer tokens against the identity service."""

    def __init__(self, auth_service_url: str, timeout: float = 5.0):
        self.auth_service_url = auth_service_url.rstrip("/")
        self.timeout = timeout
        self.logger = get_logger("api.auth_client")

    async def verify_token(self, token: str) -> Dict[str, Any]:
        """Return the token's user info.

        Raises AuthenticationError for rejected tokens and for an unreachable
        identity service.
        """
        try:
            response = await self._post_verify(token)
        except RetryError as e:
            self.logger.error("Auth service unavailable", error=str(e.last_exception))
            raise AuthenticationError(
                "Auth service unavailable",
                details={"http_error": str(e.last_exception)}
            ) from e

        if response.status_code != 200:
            raise AuthenticationError(
                f"Auth service error: {response.status_code}",
                details={"status_code": response.status_code}
            )

        result = response.json()
        if not result.get("valid"):
            self.logger.warning("Token validation failed", error=result.get("error"))
            raise AuthenticationError(result.get("error") or "Invalid token")

        user_info = result.get("user_info") or {}
        if not user_info.get("user_id"):
            raise AuthenticationError("Token carries no user id")
        return user_info

    @retry_on_exception((httpx.TransportError,), config=RetryConfig(max_attempts=3, base_delay=0.2))
    async def _post_verify(self, token: str) -> httpx.Response:
        async with httpx.AsyncClient(timeout=self.timeout) as client:
            return await client.post(
                f"{self.auth_service_url}/auth/verify",
                json={"token": token}
            )
