"""
Configuration settings for the Workflow Debugger.
"""

from pydantic_settings import BaseSettings
from typing import Optional


class Settings(BaseSettings):
    """Application settings with environment variable support."""

    # Application
    APP_NAME: str = "AgentFlow"
    APP_VERSION: str = "1.0.0"
    DEBUG: bool = True

    # Server
    HOST: str = "0.0.0.0"
    PORT: int = 8000

    # Execution service
    EXECUTION_SERVICE_URL: str = "http://localhost:8080"
    EXECUTION_SERVICE_ENDPOINT: str = "/api/workflow/execute-node"
    EXECUTION_SERVICE_TOKEN: Optional[str] = None
    RETRY_BACKOFF_SECONDS: float = 0.5  # Multiplied by the attempt number

    # Debug sessions
    STATS_HISTORY_LIMIT: int = 50
    TRACK_MEMORY: bool = False  # Start tracemalloc for real memory figures
    MAX_SESSIONS: int = 100

    # Logging
    LOG_LEVEL: str = "INFO"

    class Config:
        env_file = ".env"
        case_sensitive = True


# Global settings instance
settings = Settings()
