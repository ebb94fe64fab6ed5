"""Configuration management for devrelay."""

from typing import Optional

from pydantic import AliasChoices, Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from devrelay.proxy.forwarder import DEFAULT_BACKEND_URL, DEFAULT_ROUTE_PREFIX, ForwardTarget


class Settings(BaseSettings):
    """Configuration settings for devrelay."""

    model_config = SettingsConfigDict(
        env_prefix="DEVRELAY_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        populate_by_name=True,
    )

    # Proxy settings
    backend_internal_url: str = Field(
        default=DEFAULT_BACKEND_URL,
        description="Origin the proxy forwards to",
        validation_alias=AliasChoices("BACKEND_INTERNAL_URL", "DEVRELAY_BACKEND_INTERNAL_URL"),
    )
    route_prefix: str = Field(
        default=DEFAULT_ROUTE_PREFIX,
        description="Path prefix stripped from inbound requests before forwarding"
    )
    request_timeout: float = Field(
        default=120.0,
        description="Upstream request timeout in seconds"
    )
    connect_timeout: float = Field(
        default=10.0,
        description="Upstream connect timeout in seconds"
    )

    # Client settings
    proxy_url: str = Field(
        default="http://127.0.0.1:3000/api/backend",
        description="Base URL client commands send requests to"
    )
    retry_attempts: int = Field(
        default=3,
        description="Total attempts made by the resilient client"
    )
    retry_base_delay: float = Field(
        default=0.4,
        description="Delay before the first retry in seconds; doubles each attempt"
    )
    api_key: Optional[str] = Field(
        default=None,
        description="Value sent as x-api-key to protected origin routes",
        validation_alias=AliasChoices("API_KEY", "DEVRELAY_API_KEY"),
    )

    @classmethod
    def load_from_file(cls, config_file: str) -> "Settings":
        """Load settings from a YAML config file.

        Args:
            config_file: Path to YAML config file

        Returns:
            Settings instance
        """
        import yaml

        with open(config_file, "r", encoding="utf-8") as f:
            config_data = yaml.safe_load(f) or {}

        return cls(**config_data)

    def get_target(self) -> ForwardTarget:
        """Parse the backend origin address.

        Raises:
            ConfigurationError: If the address is not an absolute http(s) URL.
        """
        return ForwardTarget.parse(self.backend_internal_url)
