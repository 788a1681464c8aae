"""
Configuration module for the Browserbase MCP continuity server.
Centralizes all configuration in one place.
"""

from typing import Optional

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application settings."""

    # Server
    API_HOST: str = "0.0.0.0"
    API_PORT: int = 8931
    API_RELOAD: bool = False

    # Deployment: "remote" rehydrates a context per request from Redis,
    # "local" keeps one context for the lifetime of the process.
    DEPLOYMENT_MODE: Optional[str] = None

    # Continuity cache
    REDIS_URL: str = ""
    CACHE_KEY_PREFIX: str = "mcp:ctx:"
    CACHE_TTL_SECONDS: int = 900
    CACHE_SAVE_MAX_RETRIES: int = 3
    CACHE_RETRY_BACKOFF_MS: int = 50

    # Browser Configuration
    BROWSERBASE_API_URL: str = "https://api.browserbase.com/v1"
    BROWSERBASE_API_KEY: str = ""
    BROWSERBASE_PROJECT_ID: str = ""
    BROWSER_HEADLESS: bool = True
    BROWSER_TIMEOUT_MS: int = 30000
    BROWSER_WIDTH: int = 1024
    BROWSER_HEIGHT: int = 768

    # Snapshot timing
    SNAPSHOT_SETTLE_DELAY_MS: int = 500
    SNAPSHOT_CAPTURE_DELAY_MS: int = 100
    RECAPTURE_ON_REHYDRATE: bool = False

    # Logging
    LOG_LEVEL: str = "INFO"
    LOG_DIR: str = "logs"

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"
        case_sensitive = True
        extra = "ignore"

    @property
    def deployment_mode(self) -> str:
        """Resolved deployment mode ("remote" whenever a cache is configured)."""
        if self.DEPLOYMENT_MODE:
            return self.DEPLOYMENT_MODE.lower()
        return "remote" if self.REDIS_URL else "local"


# Global settings instance
settings = Settings()
