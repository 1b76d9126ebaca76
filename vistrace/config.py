"""
Configuration settings for VisTrace.
"""

from typing import Optional

from pydantic import AliasChoices, Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Settings loaded from environment variables (prefix VISTRACE_) or .env."""

    # Geolocation providers
    ipstack_api_key: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices("VISTRACE_IPSTACK_API_KEY", "IPSTACK_API_KEY"),
    )
    ipinfo_token: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices("VISTRACE_IPINFO_TOKEN", "IPINFO_TOKEN"),
    )
    geo_timeout: float = 5.0  # seconds per provider call

    # Reverse DNS (numeric mode)
    ptr_timeout: float = 2.0

    # Trace registry
    store_capacity: int = 100

    # Probe binaries
    traceroute_bin: str = "traceroute"
    traceroute6_bin: str = "traceroute6"
    tracert_bin: str = "tracert"

    log_level: str = "WARNING"

    model_config = SettingsConfigDict(
        env_prefix="VISTRACE_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )


def get_settings() -> Settings:
    """Build settings from the current environment."""
    return Settings()
