"""
Configuration module for the Campus Virtual API.
"""
from pydantic_settings import BaseSettings
from functools import lru_cache
from typing import List, Optional
from dotenv import load_dotenv

load_dotenv()


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Database
    database_url: str = "sqlite:///./campus.db"

    # API
    api_host: str = "0.0.0.0"
    api_port: int = 8000
    debug: bool = False
    log_level: str = "INFO"

    # Sessions
    session_secret: str = "change-me-in-production"
    session_algorithm: str = "HS256"
    session_cookie_name: str = "campus_session"
    session_max_age_minutes: int = 60 * 24 * 7
    session_cookie_secure: bool = False

    # Policy
    message_edit_window_minutes: int = 15
    max_failed_logins: int = 5
    lockout_window_minutes: int = 30
    lockout_minutes: int = 15

    # Two-factor auth
    totp_issuer: str = "Campus Virtual"

    # Object storage (S3, or MinIO through storage_endpoint_url)
    storage_bucket: str = "campus-virtual"
    storage_endpoint_url: Optional[str] = None
    storage_region: str = "us-east-1"
    storage_access_key_id: Optional[str] = None
    storage_secret_access_key: Optional[str] = None
    storage_public_base_url: Optional[str] = None
    storage_url_expiration_seconds: int = 7 * 24 * 3600
    max_upload_bytes: int = 10 * 1024 * 1024

    # Teacher allow-list seed; runtime additions live in the site_config table
    teacher_emails: List[str] = []

    # Maintenance
    maintenance_retry_after_seconds: int = 300

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"


@lru_cache()
def get_settings() -> Settings:
    """Get cached application settings."""
    return Settings()


settings = get_settings()
