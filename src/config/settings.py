"""
Application settings and configuration management.

This module handles all environment variables, API keys, and application
configuration using Pydantic settings management for type safety and validation.
"""

from functools import lru_cache
from pathlib import Path
from typing import Literal

from pydantic import Field, SecretStr, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """
    Application settings loaded from environment variables.
    
    All sensitive values are stored as SecretStr to prevent accidental logging.
    Settings are validated on load and cached for performance.
    """
    
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=True,
        extra="ignore",
    )
    
    # API Keys
    anthropic_api_key: SecretStr = Field(..., alias="ANTHROPIC_API_KEY")

    # Application Configuration
    app_env: Literal["development", "staging", "production"] = Field(
        default="development", 
        alias="APP_ENV"
    )
    debug: bool = Field(default=False, alias="DEBUG")
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = Field(
        default="INFO", 
        alias="LOG_LEVEL"
    )
    log_json: bool = Field(default=False, alias="LOG_JSON")

    # Model Configuration
    claude_model: str = Field(
        default="claude-sonnet-4-20250514",
        alias="CLAUDE_MODEL"
    )
    claude_max_tokens: int = Field(default=6000, ge=256, alias="CLAUDE_MAX_TOKENS")

    # Reasoning client (per call)
    max_concurrent_requests: int = Field(default=5, ge=1, alias="MAX_CONCURRENT_REQUESTS")
    request_timeout_seconds: int = Field(default=60, ge=1, alias="REQUEST_TIMEOUT_SECONDS")
    max_retries: int = Field(default=3, ge=0, alias="MAX_RETRIES")

    # Orchestrator (per stage / per run)
    stage_max_attempts: int = Field(default=2, ge=1, alias="STAGE_MAX_ATTEMPTS")
    stage_retry_wait_seconds: float = Field(default=1.0, ge=0, alias="STAGE_RETRY_WAIT_SECONDS")
    stage_timeout_seconds: float = Field(default=90.0, gt=0, alias="STAGE_TIMEOUT_SECONDS")
    pipeline_timeout_seconds: float = Field(default=240.0, gt=0, alias="PIPELINE_TIMEOUT_SECONDS")

    # Input limits
    max_image_bytes: int = Field(default=22 * 1024 * 1024, ge=1, alias="MAX_IMAGE_BYTES")

    # Calibration
    luxury_value_threshold: int = Field(
        default=500_000,
        ge=0,
        alias="LUXURY_VALUE_THRESHOLD",
        description="High value estimate (minor units) above which risk is escalated",
    )

    # Output Settings
    output_dir: Path = Field(default=Path("outputs/reports"), alias="OUTPUT_DIR")
    report_format: Literal["json", "markdown", "html"] = Field(
        default="markdown",
        alias="REPORT_FORMAT"
    )

    @field_validator("anthropic_api_key", mode="before")
    @classmethod
    def validate_anthropic_key(cls, v: str) -> str:
        """Validate Anthropic API key format."""
        if not v or not v.startswith("sk-"):
            raise ValueError("Invalid Anthropic API key format")
        return v

    @model_validator(mode="after")
    def validate_timeouts(self) -> "Settings":
        """The overall budget must leave room for at least one stage."""
        if self.pipeline_timeout_seconds < self.stage_timeout_seconds:
            raise ValueError(
                "PIPELINE_TIMEOUT_SECONDS must be >= STAGE_TIMEOUT_SECONDS"
            )
        return self


@lru_cache
def get_settings() -> Settings:
    """Get cached application settings."""
    return Settings()
