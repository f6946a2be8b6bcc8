"""Application configuration via environment variables."""
from pathlib import Path

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Settings loaded from environment variables or .env file."""
    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8")

    # Application
    app_name: str = "Training Schedule"
    debug: bool = False
    log_dir: Path = Path.home() / ".logs" / "training_schedule"

    # Server
    host: str = "0.0.0.0"  # Bind to all interfaces for external access
    port: int = 8000
    allowed_origins: str = "*"  # Comma-separated origins, or "*" for all

    # Database
    database_url: str = "sqlite:///./training_schedule.db"

    # Occurrence generation
    lookahead_weeks: int = 4
    max_occurrence_steps: int = 100


settings = Settings()
