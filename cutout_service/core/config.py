"""
Application Configuration

Centralized settings management using Pydantic Settings.
Supports environment variables and .env files.
"""

from pydantic_settings import BaseSettings
from typing import Optional

from cutout_service.modules.cutout.models import PollPolicy, StorageCredentials


class Settings(BaseSettings):
    """Application settings with environment variable support."""

    # ==========================================================================
    # App Settings
    # ==========================================================================
    APP_NAME: str = "Asset Cutout Service"
    APP_VERSION: str = "1.0.0"
    ENVIRONMENT: str = "development"  # development, staging, PROD
    DEBUG: bool = True

    # Include upstream status/body in 5xx responses (never enable for untrusted callers)
    EXPOSE_ERROR_DETAILS: bool = False

    # ==========================================================================
    # Object Storage (S3 or any S3-compatible endpoint)
    # ==========================================================================
    AWS_ACCESS_KEY_ID: Optional[str] = None
    AWS_SECRET_ACCESS_KEY: Optional[str] = None
    AWS_REGION: str = "us-east-1"

    # Custom endpoint for R2/MinIO; public URLs then need S3_PUBLIC_BASE_URL
    S3_ENDPOINT_URL: Optional[str] = None
    S3_PUBLIC_BASE_URL: Optional[str] = None

    # Multipart transfer: memory use is part size x queue size
    UPLOAD_PART_SIZE_BYTES: int = 10 * 1024 * 1024
    UPLOAD_QUEUE_SIZE: int = 4
    FETCH_TIMEOUT_SECONDS: float = 30.0
    DEFAULT_PRESIGN_SECONDS: int = 3600

    # ==========================================================================
    # Remote Job Service (Photoshop remove-background)
    # ==========================================================================
    CUTOUT_API_URL: str = "https://image.adobe.io/v2/remove-background"
    CUTOUT_STATUS_URL_TEMPLATE: str = "https://image.adobe.io/v2/status/{job_id}"
    CUTOUT_API_TIMEOUT_SECONDS: float = 60.0

    # ==========================================================================
    # Polling
    # ==========================================================================
    POLL_DELAY_SECONDS: float = 5.0
    POLL_MAX_ATTEMPTS: Optional[int] = 60
    POLL_MAX_DURATION_SECONDS: Optional[float] = None

    # ==========================================================================
    # Logging Settings
    # ==========================================================================
    LOG_LEVEL: str = "INFO"
    LOG_FORMAT_JSON: bool = True  # JSON for production, console for development

    # ==========================================================================
    # CORS Settings
    # ==========================================================================
    CORS_ORIGINS: str = "http://localhost:3000,http://localhost:5173,http://localhost:8000"

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"
        case_sensitive = True

    def storage_credentials(self) -> StorageCredentials:
        """Explicit credentials handed to the object store."""
        return StorageCredentials(
            access_key_id=self.AWS_ACCESS_KEY_ID,
            secret_access_key=self.AWS_SECRET_ACCESS_KEY,
            region=self.AWS_REGION,
            endpoint_url=self.S3_ENDPOINT_URL,
            public_base_url=self.S3_PUBLIC_BASE_URL,
        )

    def poll_policy(self) -> PollPolicy:
        """Default polling policy for job status checks."""
        return PollPolicy(
            delay_seconds=self.POLL_DELAY_SECONDS,
            max_attempts=self.POLL_MAX_ATTEMPTS,
            max_duration_seconds=self.POLL_MAX_DURATION_SECONDS,
        )


# Global settings instance
settings = Settings()
