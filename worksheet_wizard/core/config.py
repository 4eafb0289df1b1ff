"""
Application configuration settings
FILE: worksheet_wizard/core/config.py
"""
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application settings loaded from environment variables"""

    # Remote worksheet API
    worksheet_api_base: str = "https://api-staging.crazygoldfish.com"
    request_timeout: float = 30.0

    # Local session cache
    session_file: str = ".worksheet_session.json"
    session_ttl_minutes: int = 30

    # Job polling (seconds)
    metadata_initial_delay: float = 15.0
    question_config_initial_delay: float = 15.0
    worksheet_initial_delay: float = 20.0
    poll_interval: float = 5.0
    poll_backoff_factor: float = 1.5
    poll_max_interval: float = 15.0
    poll_slow_after_attempts: int = 24
    poll_max_attempts: int = 120

    # Spreadsheet export
    export_dir: str = "exports"

    class Config:
        env_file = ".env"
        case_sensitive = False  # This allows case-insensitive matching
        extra = "allow"  # This allows extra fields


settings = Settings()
