"""
Shared configuration management for the compliance data layer.
"""

from typing import Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class BaseConfig(BaseSettings):
    """Base configuration class with common settings."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_prefix="COMPLIANCE_",
        case_sensitive=False,
        extra="allow"
    )

    # Environment
    env: str = Field(default="local")
    log_level: str = Field(default="info")
    log_json: bool = Field(default=True)

    # Compliance REST API
    api_base_url: str = Field(default="http://localhost:3001/api")
    api_token: Optional[str] = Field(default=None)
    request_timeout: float = Field(default=30.0)

    # Observability
    enable_metrics: bool = Field(default=True)


class ClientConfig(BaseConfig):
    """Cache and transport settings for the compliance client."""

    client_name: str = "compliance_client"

    # Staleness windows (seconds)
    stale_time_seconds: float = Field(default=300.0)
    template_stale_time_seconds: float = Field(default=1800.0)

    # Circuit breaker for the REST transport
    circuit_failure_threshold: int = Field(default=5)
    circuit_recovery_timeout: float = Field(default=30.0)


def get_config(**overrides) -> ClientConfig:
    """Get client configuration, applying explicit overrides over the environment."""
    return ClientConfig(**overrides)
