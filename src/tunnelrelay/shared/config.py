"""Configuration management using pydantic-settings."""

from functools import lru_cache

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class RelaySettings(BaseSettings):
    """Relay settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        case_sensitive=False,
        extra="ignore",
    )

    host: str = Field(default="0.0.0.0", description="Interface both listeners bind to")
    ws_port: int = Field(default=8080, description="Port accepting tunnel channels")
    http_port: int = Field(default=8081, description="Public HTTP port")
    base_domain: str = Field(
        default="tunnel.localhost", description="Base domain used to compose public URLs"
    )
    request_timeout: float = Field(default=30.0, gt=0, description="Forwarding deadline in seconds")
    ping_interval: float = Field(default=30.0, gt=0, description="Keepalive ping interval in seconds")
    liveness_timeout: float = Field(
        default=60.0, gt=0, description="Close a channel silent for this many seconds"
    )
    log_level: str = Field(default="INFO", description="Logging level")

    def public_url(self, identifier: str) -> str:
        return f"http://{identifier}.{self.base_domain}:{self.http_port}"


class ClientSettings(BaseSettings):
    """Client settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        case_sensitive=False,
        extra="ignore",
    )

    relay_url: str = Field(default="ws://localhost:8080", description="Relay channel address")
    local_host: str = Field(default="localhost", description="Host of the protected service")
    local_port: int = Field(default=3000, description="Port of the protected service")
    local_timeout: float = Field(default=30.0, gt=0, description="Local request timeout in seconds")
    reconnect_base_delay: float = Field(default=1.0, gt=0, description="First reconnect delay")
    reconnect_max_delay: float = Field(default=30.0, gt=0, description="Reconnect delay ceiling")
    forwarded_proto: str = Field(default="https", description="X-Forwarded-Proto sent upstream")
    log_level: str = Field(default="INFO", description="Logging level")


@lru_cache
def get_relay_settings() -> RelaySettings:
    """Get the relay settings instance."""
    return RelaySettings()


@lru_cache
def get_client_settings() -> ClientSettings:
    """Get the client settings instance."""
    return ClientSettings()
