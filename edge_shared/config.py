"""
Shared configuration management for edge services.
"""

from typing import Dict, List, Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class BaseConfig(BaseSettings):
    """Base configuration class with common settings."""

    model_config = SettingsConfigDict(
        env_prefix="EDGE_",
        env_file=".env",
        case_sensitive=False,
        extra="allow",
    )

    # Environment
    env: str = "local"
    log_level: str = "info"
    enable_docs: bool = True

    # Distributed cache / counter store
    redis_url: str = "redis://localhost:6379/0"
    cache_namespace: str = "edge"

    # External authorities
    identity_service_url: str = "http://localhost:8010"
    tenant_service_url: str = "http://localhost:8020"
    workflow_service_url: str = "http://localhost:8030"
    external_timeout_seconds: float = Field(default=10.0, ge=5.0, le=30.0)

    # Cache TTL classes (seconds)
    cache_ttl_short: int = 120
    cache_ttl_medium: int = 300
    cache_ttl_long: int = 1800
    cache_ttl_period: int = 600
    cache_ttl_operation_running: int = 10
    cache_ttl_operation_terminal: int = 3600

    # Rate limiting
    rate_limit_window_seconds: int = 60
    rate_limit_global: int = 100
    rate_limit_user: int = 500
    rate_limit_tiers: Dict[str, int] = {
        "free": 100,
        "professional": 1000,
        "enterprise": 10000,
    }
    rate_limits_file: Optional[str] = None
    rate_limit_fail_open: bool = True

    # Tenant resolution
    reserved_subdomains: List[str] = ["www", "api"]

    # Long-running operations
    operation_poll_interval_seconds: float = 2.0
    operation_sync_wait_seconds: float = 5.0


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
