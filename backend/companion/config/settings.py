"""
Configuration Settings.
"""

from pydantic_settings import BaseSettings
from typing import Optional


class Settings(BaseSettings):
    """Application settings."""

    # App info
    app_name: str = "ResetNow Companion"
    app_version: str = "1.0.0"
    debug: bool = True

    # Storage
    storage_type: str = "local"
    local_storage_path: str = "./data"

    # LLM Provider settings
    llm_provider: str = "openai"
    llm_api_key: Optional[str] = None
    llm_model: Optional[str] = None  # uses provider default if not set
    llm_base_url: Optional[str] = None  # uses provider default if not set
    llm_temperature: float = 0.4  # low for careful, consistent replies
    llm_max_tokens: int = 500
    llm_timeout_seconds: float = 30.0
    llm_history_limit: int = 10  # prior messages sent as context

    # Legacy key (still accepted)
    openai_api_key: Optional[str] = None

    # Companion sessions
    session_staleness_hours: float = 6.0

    # Crisis signals: explicit list wins over file, file wins over built-in list
    crisis_signals: Optional[list[str]] = None
    crisis_signals_file: Optional[str] = None

    # CORS
    cors_origins: list[str] = [
        "http://localhost:3000",
        "http://localhost:8080",
        "http://127.0.0.1:3000",
    ]

    # Logging configuration
    log_level: str = "INFO"  # DEBUG, INFO, WARNING, ERROR, CRITICAL
    log_file_path: str = "./logs/companion.log"
    log_file_enabled: bool = True
    log_console_enabled: bool = True
    log_json_format: bool = True  # JSON format for files, human-readable for console
    log_api_requests: bool = True
    log_llm_calls: bool = True

    class Config:
        env_file = ".env"
        case_sensitive = False

    @property
    def resolved_llm_api_key(self) -> Optional[str]:
        return self.llm_api_key or self.openai_api_key


settings = Settings()
