"""
Configuration management for the Benchmark workflow engine.
"""

from pydantic import Field
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application settings."""

    # Application
    app_name: str = Field(default="Benchmark Workflow")
    debug: bool = Field(default=False)
    environment: str = Field(default="development")

    # API
    api_host: str = Field(default="0.0.0.0")
    api_port: int = Field(default=8000)
    api_workers: int = Field(default=1)

    # Database
    database_url: str = Field(default="sqlite:///./benchmark_workflow.db")

    # Logging
    log_level: str = Field(default="INFO")
    log_format: str = Field(default="json")

    # Workflow rules
    reject_reason_min_length: int = Field(
        default=5,
        description="Minimum length of a rejection reason.",
    )
    hold_reason_min_length: int = Field(
        default=3,
        description="Minimum length of a hold reason.",
    )
    start_next_max_retries: int = Field(
        default=5,
        description="Queue candidates tried by start-next before giving up.",
    )
    queue_page_size: int = Field(default=20)

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"


# Global settings instance
settings = Settings()


def get_settings() -> Settings:
    """Get application settings."""
    return settings
