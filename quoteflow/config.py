"""Application configuration."""

from functools import lru_cache
from typing import Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Application
    app_name: str = Field(default="QuoteFlow", description="Application name")
    app_version: str = Field(default="0.1.0", description="Application version")
    environment: str = Field(default="development", description="Environment")
    debug: bool = Field(default=False, description="Debug mode")
    log_level: str = Field(default="INFO", description="Log level")

    # Position tree
    max_tree_depth: int = Field(
        default=4, ge=1, description="Maximum nesting depth of the position tree (root = 1)"
    )

    # Editor API
    api_base_url: str = Field(
        default="http://localhost:3000", description="Base URL of the quote editor API"
    )
    api_timeout: float = Field(default=30.0, description="API request timeout in seconds")
    api_token: Optional[str] = Field(default=None, description="Bearer token for the API")

    # Edit lock
    lock_resource_type: str = Field(
        default="quote-versions", description="Lockable resource type of a quote version"
    )

    # Notices
    notice_history_limit: int = Field(
        default=100, ge=1, description="Maximum number of notices kept per session"
    )

    @property
    def is_development(self) -> bool:
        """Check if running in development mode."""
        return self.environment.lower() in ("development", "dev")

    @property
    def is_production(self) -> bool:
        """Check if running in production mode."""
        return self.environment.lower() in ("production", "prod")

    @property
    def is_testing(self) -> bool:
        """Check if running in testing mode."""
        return self.environment.lower() in ("testing", "test")


@lru_cache()
def get_settings() -> Settings:
    """Get application settings (cached)."""
    return Settings()


# Global settings instance
settings = get_settings()
