"""
Configuration module for the portrait backdrop service.

Uses pydantic-settings for environment-based configuration with sensible defaults.
The password and session secret have no default and must be provided.
"""

from typing import Tuple

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """
    Application settings loaded from environment variables.

    All settings can be overridden via environment variables.
    Example: TEMP_STORAGE_MAX_MB=100
    """

    model_config = SettingsConfigDict(env_prefix="", extra="ignore")

    # Server
    HOST: str = Field(default="0.0.0.0", description="Interface to bind")
    PORT: int = Field(default=8443, description="Port to listen on")
    CERTS_PATH: str = Field(
        default="./certs",
        description="Directory holding server.crt and server.key"
    )
    DEV_MODE: bool = Field(
        default=False,
        description="Serve plain HTTP and allow non-secure session cookies"
    )

    # Authentication
    UPLOAD_PASSWORD: str = Field(..., description="Password required to log in")
    SESSION_SECRET: str = Field(..., description="Secret used to sign session cookies")
    SESSION_MAX_AGE_S: int = Field(
        default=24 * 60 * 60,
        description="Session cookie lifetime in seconds"
    )

    # Staging cache
    PREVIEW_DEBOUNCE_MS: int = Field(
        default=300,
        description="Client-side debounce between preview requests"
    )
    TEMP_STORAGE_MAX_MB: int = Field(
        default=50,
        description="Total capacity of the staging cache in megabytes"
    )
    TEMP_STORAGE_TTL_MS: int = Field(
        default=10 * 60 * 1000,  # 10 minutes
        description="Time-to-live of a staged upload in milliseconds"
    )
    TEMP_STORAGE_SWEEP_S: float = Field(
        default=60.0,
        description="Interval of the background expiry sweep in seconds"
    )

    # Output and logs
    OUTPUT_PATH: str = Field(default="./output", description="Where saved images are written")
    LOG_PATH: str = Field(default="./logs", description="Directory for daily event logs")
    LOG_RETENTION_DAYS: int = Field(
        default=30,
        description="Days of event logs to keep (0 keeps all)"
    )

    # Composition parameters
    DEFAULT_BLUR: int = Field(default=40)
    MIN_BLUR: int = Field(default=10)
    MAX_BLUR: int = Field(default=100)
    DEFAULT_SCALE: int = Field(default=85)
    MIN_SCALE: int = Field(default=60)
    MAX_SCALE: int = Field(default=100)

    # Upload constraints
    MAX_UPLOAD_MB: int = Field(
        default=25,
        description="Maximum upload file size in megabytes"
    )

    # Output canvases
    FULL_WIDTH: int = Field(default=3840)
    FULL_HEIGHT: int = Field(default=2160)
    PREVIEW_WIDTH: int = Field(default=960)
    PREVIEW_HEIGHT: int = Field(default=540)
    JPEG_QUALITY: int = Field(default=95, description="Quality of encoded output")
    COMPOSE_WORKERS: int = Field(
        default=2,
        description="Threads dedicated to image composition"
    )

    # Service metadata
    SERVICE_NAME: str = Field(
        default="portrait-backdrop",
        description="Service name for logging and health checks"
    )
    SERVICE_VERSION: str = Field(
        default="1.0.0",
        description="Service version"
    )

    @property
    def max_upload_bytes(self) -> int:
        return self.MAX_UPLOAD_MB * 1024 * 1024

    @property
    def temp_storage_max_bytes(self) -> int:
        return self.TEMP_STORAGE_MAX_MB * 1024 * 1024

    @property
    def full_size(self) -> Tuple[int, int]:
        return (self.FULL_WIDTH, self.FULL_HEIGHT)

    @property
    def preview_size(self) -> Tuple[int, int]:
        return (self.PREVIEW_WIDTH, self.PREVIEW_HEIGHT)

    def defaults(self) -> dict:
        """Default composition settings as sent to clients."""
        return {"blur": self.DEFAULT_BLUR, "scale": self.DEFAULT_SCALE}


def get_settings() -> Settings:
    """
    Build settings from the environment.

    Raises:
        pydantic.ValidationError: If UPLOAD_PASSWORD or SESSION_SECRET is missing
    """
    return Settings()
