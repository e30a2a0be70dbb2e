"""
Shared configuration management for Tollgate.
"""

from typing import Dict, Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


# Placeholder consumer identity until sessions are bound to real accounts.
DEFAULT_CONSUMER_ACCOUNT = (
    "JXBIEWEBYCZOKBHIGDXT9VNLUTGCZGXJLCSAUTCRGEEHFETHRIVMTBNKGPQUXNVSCLIWEKHWFBASGYFLWZOGJE9YPX"
)


class BaseConfig(BaseSettings):
    """Base configuration class with common settings."""

    model_config = SettingsConfigDict(
        env_prefix="TOLLGATE_",
        env_file=".env",
        case_sensitive=False,
        extra="allow",
    )

    # Environment
    env: str = Field(default="local")
    log_level: str = Field(default="info")

    # Persistent store
    store_backend: str = Field(default="sqlite", description="sqlite or redis")
    store_path: str = Field(default="store.db")
    store_open_timeout: float = Field(default=1.0)
    redis_url: str = Field(default="redis://localhost:6379/0")
    seed_file: Optional[str] = Field(default=None)

    # Balance oracle
    balance_oracle_url: Optional[str] = Field(default=None)
    balance_timeout: float = Field(default=5.0)
    static_balances: Dict[str, int] = Field(default_factory=dict)

    # Upstream forwarding
    upstream_timeout: float = Field(default=30.0)
    trust_forwarded_for: bool = Field(default=False)

    # Metering
    tx_price: int = Field(default=1, ge=0)
    tx_buffer: int = Field(default=10, ge=0)
    consumer_account: str = Field(default=DEFAULT_CONSUMER_ACCOUNT)
    charge_denied_requests: bool = Field(default=True)

    # Rate limiting
    bucket_capacity: int = Field(default=5, ge=1)
    refill_rate: float = Field(default=2.0, gt=0)

    # Sessions
    session_idle_timeout: float = Field(default=600.0, gt=0)
    sweep_interval: float = Field(default=60.0, gt=0)


class ServiceConfig(BaseConfig):
    """Service-specific configuration."""

    service_name: str
    port: int = 8080
    host: str = "0.0.0.0"


def get_config(service_name: str, port: Optional[int] = None, **overrides) -> ServiceConfig:
    """Get configuration for a specific service.

    ``port`` is the service's default listen port; ``TOLLGATE_PORT`` wins over it.
    """
    config = ServiceConfig(service_name=service_name, **overrides)
    if port is not None and "port" not in config.model_fields_set:
        config.port = port
    return config
