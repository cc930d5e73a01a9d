"""
Configuration settings for the Social Assistance Allocation Service
"""
from typing import List, Optional
from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import Field


class Settings(BaseSettings):
    """Application settings loaded from environment variables"""

    # MongoDB Configuration
    mongodb_url: str = Field(default="mongodb://localhost:27017")
    mongodb_db_name: str = Field(default="assistance_db")

    # Application Configuration
    app_name: str = Field(default="Social Assistance Allocation Service")
    app_version: str = Field(default="1.0.0")
    debug: bool = Field(default=False)
    log_level: str = Field(default="INFO")

    # API Configuration
    api_prefix: str = Field(default="/api/v1")
    cors_origins: str = Field(default="http://localhost:3000,http://localhost:8080")
    default_page_limit: int = Field(default=10, ge=1)
    max_page_limit: int = Field(default=100, ge=1)

    # Allocation Configuration
    allocation_max_retries: int = Field(default=5, ge=1)  # attempts per reservation
    allocation_retry_backoff_ms: int = Field(default=20, ge=0)
    reservation_stale_after_seconds: int = Field(default=300, ge=1)

    # Notification Configuration
    notification_webhook_url: Optional[str] = Field(default=None)
    notification_timeout_seconds: float = Field(default=5.0, gt=0)

    def get_cors_origins_list(self) -> List[str]:
        """Get CORS origins as a list"""
        if ',' in self.cors_origins:
            return [origin.strip() for origin in self.cors_origins.split(',')]
        return [self.cors_origins.strip()]

    @property
    def allocation_retry_backoff(self) -> float:
        """Backoff between reservation attempts, in seconds"""
        return self.allocation_retry_backoff_ms / 1000.0

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore"
    )


# Create global settings instance
settings = Settings()
