"""
Shared configuration management for Pineapple Tours services.
"""

from typing import List, Optional

from pydantic import AliasChoices, Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class BaseConfig(BaseSettings):
    """Base configuration class with common settings."""

    model_config = SettingsConfigDict(
        env_prefix="TOURS_",
        env_file=".env",
        case_sensitive=False,
        populate_by_name=True,
        extra="allow",
    )

    # Environment
    env: str = Field(default="local")
    log_level: str = Field(default="info")

    # Rezdy upstream
    rezdy_base_url: str = Field(default="https://api.rezdy.com/v1")
    rezdy_api_key: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices("rezdy_api_key", "TOURS_REZDY_API_KEY", "REZDY_API_KEY"),
    )
    rezdy_timeout_seconds: float = Field(default=10.0)
    rezdy_priority_timeout_seconds: float = Field(default=15.0)
    rezdy_retry_attempts: int = Field(default=3)
    rezdy_circuit_failure_threshold: int = Field(default=5)
    rezdy_circuit_recovery_seconds: float = Field(default=30.0)

    # Cache
    cache_default_ttl: int = Field(default=300)
    cache_stale_grace_seconds: float = Field(default=3600.0)
    cache_max_entries: Optional[int] = Field(default=None)
    cache_warm_concurrency: int = Field(default=5)
    cache_warm_on_startup: bool = Field(default=True)
    cache_warm_file: Optional[str] = Field(default=None)
    popular_category_ids: List[int] = Field(default_factory=lambda: [1, 2, 3, 4, 5])


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
