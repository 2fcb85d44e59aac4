"""
Shared configuration management for the ordering API.
"""

from typing import Any, Dict, List, Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


DEFAULT_API_KEYS: Dict[str, Dict[str, Any]] = {
    "dev-key-123": {"user_id": "dev-user", "roles": ["user"]},
    "admin-key-456": {"user_id": "admin", "roles": ["admin"]},
}


class BaseConfig(BaseSettings):
    """Base configuration class with common settings.

    Every field can be set from the environment with the ``ACCESS_`` prefix,
    e.g. ``ACCESS_REDIS_URL``. Mapping fields are parsed from JSON.
    """

    model_config = SettingsConfigDict(
        env_prefix="ACCESS_",
        env_file=".env",
        case_sensitive=False,
        extra="allow",
    )

    # Environment
    env: str = Field(default="local")
    log_level: str = Field(default="info")

    # External services
    redis_url: str = Field(default="redis://localhost:6379/1")
    auth_service_url: str = Field(default="http://localhost:8010")

    # Response cache
    cache_key_max_length: int = Field(default=200, gt=0)
    cache_write_timeout: float = Field(default=0.5, ge=0)
    cache_socket_timeout: float = Field(default=1.0, gt=0)
    cache_ttl_overrides: Dict[str, int] = Field(default_factory=dict)
    cache_warm_on_startup: bool = Field(default=True)
    cache_warm_concurrency: int = Field(default=5, ge=1)
    cache_warm_interval_seconds: int = Field(default=0, ge=0)

    # Menu catalog
    menu_data_file: Optional[str] = Field(default=None)

    # Security
    api_keys: Dict[str, Dict[str, Any]] = Field(default_factory=lambda: dict(DEFAULT_API_KEYS))
    admin_roles: List[str] = Field(default_factory=lambda: ["admin"])


class ServiceConfig(BaseConfig):
    """Service-specific configuration."""

    service_name: str
    port: int
    host: str = "0.0.0.0"

    def __init__(self, service_name: str, port: int, **kwargs):
        super().__init__(service_name=service_name, port=port, **kwargs)


def get_config(service_name: str, port: int, **overrides) -> ServiceConfig:
    """Get configuration for a specific service."""
    return ServiceConfig(service_name=service_name, port=port, **overrides)
