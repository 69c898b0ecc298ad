"""Application configuration."""

from pydantic_settings import BaseSettings
from functools import lru_cache


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # API Settings
    APP_NAME: str = "Prompt Lab Workflow Engine"
    APP_VERSION: str = "1.0.0"
    API_PREFIX: str = "/api"
    DEBUG: bool = False
    ENVIRONMENT: str = "development"  # development, staging, production

    # Server Settings
    HOST: str = "0.0.0.0"
    PORT: int = 8000

    # Remote executor (used by the client side in async mode and for AI tasks)
    EXECUTOR_BASE_URL: str = "http://localhost:8000/api"
    EXECUTOR_WS_URL: str = "ws://localhost:8000/ws"
    EXECUTOR_TIMEOUT: float = 120.0

    # Engine Settings
    DEFAULT_EXECUTION_MODE: str = "local"  # local or async
    SIMULATED_TASK_DELAY: float = 1.0
    MAX_CONCURRENT_JOBS: int = 5
    JOB_RETENTION_SECONDS: float = 3600.0  # finished jobs kept for status polling
    MAX_RETAINED_JOBS: int = 500
    PUSH_IDLE_TIMEOUT: float = 30.0  # client falls back to polling after this much silence
    DEFAULT_MODEL: str = "gemini-2.5-flash"

    # CORS Settings
    ALLOWED_ORIGINS: str = "http://localhost:3000,http://localhost:5173"

    # Logging
    LOG_LEVEL: str = "INFO"
    LOG_FORMAT: str = "json"  # json or text
    LOG_MODULE_LEVELS: str = ""  # e.g. "workflow.bridge=DEBUG,worker=WARNING"
    ACCESS_LOG: bool = False

    @property
    def is_development(self) -> bool:
        """Check if running in development mode."""
        return self.ENVIRONMENT == "development"

    @property
    def is_production(self) -> bool:
        """Check if running in production mode."""
        return self.ENVIRONMENT == "production"

    @property
    def cors_origins_list(self) -> list[str]:
        """Parse ALLOWED_ORIGINS string into a list."""
        return [origin.strip() for origin in self.ALLOWED_ORIGINS.split(",") if origin.strip()]

    @property
    def module_log_levels(self) -> dict[str, str]:
        """Parse LOG_MODULE_LEVELS into {logger name: level}."""
        levels = {}
        for item in self.LOG_MODULE_LEVELS.split(","):
            name, sep, level = item.partition("=")
            if sep and name.strip() and level.strip():
                levels[name.strip()] = level.strip().upper()
        return levels

    class Config:
        """Pydantic config."""

        env_file = ".env"
        case_sensitive = True


@lru_cache()
def get_settings() -> Settings:
    """
    Get application settings.

    Uses caching to ensure settings are loaded only once.

    Returns:
        Settings object with all configuration values
    """
    return Settings()
