"""
Configuration for the FoodVest API.

Deposit pipeline settings (networks, limits, database) are read by
foodvest_relayer.config; this module only covers the HTTP server.
"""

from functools import lru_cache
from typing import Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """
    API configuration settings.

    All settings can be overridden via environment variables.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Bind address; anything other than loopback needs API_TOKEN
    host: str = Field(
        default="127.0.0.1",
        description="Interface the API listens on",
        alias="HOST",
    )
    port: int = Field(
        default=8000,
        description="Listening port",
        validation_alias="PORT",
    )
    debug: bool = Field(default=False, description="Auto-reload on code changes")

    # Operator token for /admin endpoints; unset disables the check
    api_token: Optional[str] = Field(
        default=None,
        description="Shared secret expected in X-API-Key on /admin endpoints",
    )
    allowed_origins: list[str] = Field(
        default=["http://localhost:3000", "http://127.0.0.1:3000"],
        description="Origins of the FoodVest web app allowed by CORS",
    )

    # Background poller
    run_relayer: bool = Field(
        default=False,
        description="Start the deposit relayer loop inside the API process",
        alias="RUN_RELAYER",
    )


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
