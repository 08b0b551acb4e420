"""
threadsync Configuration.

Centralized configuration management using Pydantic Settings.
Loads configuration from environment variables.
"""

import os
from pathlib import Path

from pydantic_settings import BaseSettings, SettingsConfigDict


def get_xdg_state_dir() -> str:
    """
    Get XDG-compliant state directory for threadsync logs.

    Follows XDG Base Directory Specification:
    - Uses $XDG_STATE_HOME/threadsync if XDG_STATE_HOME is set
    - Falls back to $HOME/.local/state/threadsync if not set
    - Returns relative path ./logs if HOME not available (dev/testing)

    Returns:
        str: Path to state/logs directory
    """
    xdg_state_home = os.getenv("XDG_STATE_HOME")
    if xdg_state_home:
        return str(Path(xdg_state_home) / "threadsync" / "logs")

    home = os.getenv("HOME")
    if home:
        return str(Path(home) / ".local" / "state" / "threadsync" / "logs")

    return "./logs"


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Database
    database_url: str = ""  # Full SQLAlchemy URL, wins over the postgres_* parts
    postgres_db: str = "threadsync"
    postgres_user: str = "threadsync"
    postgres_password: str = "threadsync_dev_password"
    postgres_host: str = ""  # Empty = use the local SQLite file
    postgres_port: int = 5432
    sqlite_path: str = "./threadsync.db"
    db_pool_size: int = 5
    db_pool_max_overflow: int = 5
    db_pool_timeout: int = 30
    db_pool_recycle: int = 1800

    @property
    def sqlalchemy_database_url(self) -> str:
        """Resolve the database URL from the explicit URL or its components."""
        if self.database_url:
            return self.database_url
        if self.postgres_host:
            return (
                f"postgresql://{self.postgres_user}:{self.postgres_password}"
                f"@{self.postgres_host}:{self.postgres_port}/{self.postgres_db}"
            )
        return f"sqlite:///{self.sqlite_path}"

    # Auth
    jwt_secret: str = "threadsync-dev-secret-change-me"
    jwt_algorithm: str = "HS256"
    jwt_expiration_hours: int = 24

    # Model providers
    openai_api_key: str = ""
    openrouter_api_key: str = ""
    openrouter_base_url: str = "https://openrouter.ai/api/v1"
    anthropic_api_key: str = ""
    default_model: str = "openai/gpt-4o-mini"
    title_model: str = "openai/gpt-4o-mini"

    # Generation
    generation_timeout_seconds: float = 120.0
    title_timeout_seconds: float = 20.0
    generation_max_tokens: int = 2000
    generation_temperature: float = 0.7
    stream_checkpoint_chunks: int = 20  # Persist streamed content every N chunks
    stream_checkpoint_interval_ms: int = 1000  # ... or every T milliseconds
    generation_stale_after_seconds: int = 300  # Ignore abandoned pending/streaming rows

    # API
    api_host: str = "0.0.0.0"
    api_port: int = 8000
    api_reload: bool = False
    cors_origins: list[str] = ["http://localhost:3000", "http://localhost:5173"]

    # Application
    environment: str = "development"

    # Logging
    log_level: str = "INFO"
    log_dir: str = ""  # XDG-compliant log directory (defaults to XDG state dir if empty)
    log_format: str = "standard"  # standard or json
    log_console_enabled: bool = True
    log_file_enabled: bool = False
    log_max_bytes: int = 10_485_760  # 10MB per log file
    log_backup_count: int = 5
    log_to_stdout: bool = True  # Log INFO/DEBUG to stdout
    log_to_stderr: bool = True  # Log WARNING/ERROR/CRITICAL to stderr

    @property
    def log_directory(self) -> Path:
        """Get the log directory path, using XDG default if not specified."""
        if self.log_dir:
            return Path(self.log_dir).expanduser()
        return Path(get_xdg_state_dir())


# Global settings instance
settings = Settings()
