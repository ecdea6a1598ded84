# FILE: regalpaket/config.py
"""
Configuration management for the Regalpaket service
Loads from environment variables with validation
"""
import os
from typing import List, Optional
from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment"""
    
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
        populate_by_name=True
    )
    
    # Backend server
    backend_host: str = Field(default="0.0.0.0", alias="BACKEND_HOST")
    backend_port: int = Field(default=3001, alias="BACKEND_PORT")
    environment: str = Field(default="development", alias="ENVIRONMENT")
    log_level: str = Field(default="INFO", alias="LOG_LEVEL")
    
    # Library storage
    library_path: str = Field(default="./library", alias="LIBRARY_PATH")
    package_extension: str = Field(default=".regal", alias="PACKAGE_EXTENSION")
    
    # Container writes
    lock_timeout_seconds: float = Field(
        default=10.0,
        alias="LOCK_TIMEOUT_SECONDS",
        description="Maximum wait for the per-container write lock before failing with Busy"
    )
    archive_compress_level: int = Field(
        default=5,
        alias="ARCHIVE_COMPRESS_LEVEL",
        description="Deflate level (0-9) used when writing container entries"
    )
    stale_temp_max_age_seconds: int = Field(
        default=3600,
        alias="STALE_TEMP_MAX_AGE_SECONDS",
        description="Temp files older than this are removed from the library at start-up"
    )
    
    # Request size caps
    upload_limit_mb: int = Field(
        default=200,
        alias="UPLOAD_LIMIT_MB",
        description="Largest package upload (original plus rendered pages)"
    )
    annotation_limit_kb: int = Field(
        default=1024,
        alias="ANNOTATION_LIMIT_KB",
        description="Largest single-page annotation save"
    )
    
    # CORS
    cors_origins: List[str] = Field(default=["http://localhost:5173"], alias="CORS_ORIGINS")
    
    # Validators
    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v):
        v = v.upper()
        if v not in ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]:
            raise ValueError("log_level must be one of DEBUG, INFO, WARNING, ERROR, CRITICAL")
        return v
    
    @field_validator("package_extension")
    @classmethod
    def validate_package_extension(cls, v):
        if not v.startswith(".") or len(v) < 2:
            raise ValueError("package_extension must start with '.'")
        return v.lower()
    
    @field_validator("lock_timeout_seconds")
    @classmethod
    def validate_lock_timeout(cls, v):
        if v <= 0:
            raise ValueError("lock_timeout_seconds must be positive")
        return v
    
    @field_validator("upload_limit_mb", "annotation_limit_kb")
    @classmethod
    def validate_size_limit(cls, v):
        if v <= 0:
            raise ValueError("size limits must be positive")
        return v
    
    @field_validator("archive_compress_level")
    @classmethod
    def validate_compress_level(cls, v):
        if not 0 <= v <= 9:
            raise ValueError("archive_compress_level must be between 0 and 9")
        return v
    
    def __init__(self, **kwargs):
        super().__init__(**kwargs)
        # Ensure the library exists
        os.makedirs(self.library_path, exist_ok=True)


_settings: Optional[Settings] = None


def get_settings() -> Settings:
    """Get or create singleton settings instance"""
    global _settings
    if _settings is None:
        _settings = Settings()
    return _settings


def reload_settings():
    """Reload settings (useful for testing)"""
    global _settings
    _settings = None
    return get_settings()
