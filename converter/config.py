"""
Configuration settings for the Universal Converter API.

This module handles environment variables, application settings,
and configuration validation using Pydantic Settings. A single
Settings object is built at startup and handed to every service.
"""

from functools import lru_cache
from pathlib import Path

from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """
    Application settings with environment variable support.

    All settings can be overridden using environment variables
    with the same name (case-insensitive).
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Application settings
    APP_NAME: str = "Universal Converter API"
    VERSION: str = "0.1.0"
    ENVIRONMENT: str = "development"
    DEBUG: bool = True

    # Server settings
    HOST: str = "0.0.0.0"
    PORT: int = 5000

    # CORS settings
    CORS_ORIGIN: str = "http://localhost:5173"
    ALLOWED_HOSTS: list[str] = ["*"]

    # Logging settings
    LOG_LEVEL: str = "INFO"

    # File upload settings
    MAX_FILE_SIZE: int = 500 * 1024 * 1024  # 500MB
    MAX_FILES: int = 20
    MAX_DOCUMENT_FILES: int = 10
    MAX_MEDIA_FILES: int = 1
    UPLOAD_CHUNK_SIZE: int = 1024 * 1024

    # Working directories
    UPLOADS_DIR: str = "uploads"
    DOWNLOADS_DIR: str = "downloads"
    TEMP_DIR: str = "temp"

    # Quality defaults
    DEFAULT_VIDEO_QUALITY: str = "high"
    DEFAULT_AUDIO_QUALITY: str = "high"
    DEFAULT_VIDEO_RESOLUTION: str = "720p"
    DEFAULT_IMAGE_QUALITY: int = 90

    # Supported formats; every image input must be decodable by Pillow (HEIC/HEIF via pillow-heif)
    SUPPORTED_IMAGE_FORMATS: list[str] = [
        ".jpg", ".jpeg", ".png", ".webp", ".gif", ".bmp", ".tiff", ".tif",
        ".ico", ".avif", ".heic", ".heif",
    ]
    SUPPORTED_IMAGE_OUTPUT_FORMATS: list[str] = [
        "jpeg", "jpg", "png", "webp", "avif", "tiff", "tif", "bmp", "gif",
    ]
    SUPPORTED_DOCUMENT_FORMATS: list[str] = [
        ".pdf", ".docx", ".pptx", ".xlsx", ".odt", ".txt",
    ]
    SUPPORTED_MEDIA_FORMATS: list[str] = ["mp3", "mp4"]

    # External tools settings
    FFMPEG_PATH: str = "ffmpeg"
    YTDLP_PATH: str = "yt-dlp"
    SOFFICE_PATH: str = "soffice"

    # Timeouts (seconds)
    MEDIA_CONVERSION_TIMEOUT: int = 1800
    DOWNLOAD_TIMEOUT: int = 3600
    DOCUMENT_CONVERSION_TIMEOUT: int = 30
    DOCUMENT_SLOW_CONVERSION_TIMEOUT: int = 45
    IMAGE_CONVERSION_TIMEOUT: int = 120
    METADATA_TIMEOUT: int = 60
    TOOL_CHECK_TIMEOUT: int = 10

    @field_validator("ENVIRONMENT")
    @classmethod
    def validate_environment(cls, v: str) -> str:
        """Validate environment setting."""
        allowed_envs = ["development", "staging", "production", "test"]
        if v not in allowed_envs:
            raise ValueError(f"ENVIRONMENT must be one of {allowed_envs}")
        return v

    @field_validator("LOG_LEVEL")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        """Validate log level setting."""
        allowed_levels = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
        if v.upper() not in allowed_levels:
            raise ValueError(f"LOG_LEVEL must be one of {allowed_levels}")
        return v.upper()

    @field_validator("MAX_FILE_SIZE", "MAX_FILES", "MAX_DOCUMENT_FILES", "MAX_MEDIA_FILES")
    @classmethod
    def validate_positive_limit(cls, v: int) -> int:
        """Upload limits must be positive."""
        if v <= 0:
            raise ValueError("upload limits must be positive")
        return v

    @field_validator("DEFAULT_IMAGE_QUALITY")
    @classmethod
    def validate_image_quality(cls, v: int) -> int:
        if not 0 <= v <= 100:
            raise ValueError("DEFAULT_IMAGE_QUALITY must be between 0 and 100")
        return v

    @field_validator("SUPPORTED_IMAGE_FORMATS", "SUPPORTED_DOCUMENT_FORMATS")
    @classmethod
    def normalize_extensions(cls, v: list[str]) -> list[str]:
        """Ensure extensions are lowercase and start with a dot."""
        if not v:
            raise ValueError("At least one extension must be allowed")
        return [(ext if ext.startswith(".") else f".{ext}").lower() for ext in v]

    @property
    def is_development(self) -> bool:
        return self.ENVIRONMENT == "development"

    @property
    def uploads_path(self) -> Path:
        return Path(self.UPLOADS_DIR)

    @property
    def downloads_path(self) -> Path:
        return Path(self.DOWNLOADS_DIR)

    @property
    def temp_path(self) -> Path:
        return Path(self.TEMP_DIR)

    @property
    def working_directories(self) -> dict[str, Path]:
        """Working directories keyed by role."""
        return {
            "uploads": self.uploads_path,
            "downloads": self.downloads_path,
            "temp": self.temp_path,
        }


@lru_cache
def get_settings() -> Settings:
    """
    Get application settings.

    Returns:
        Settings: Application settings instance built once per process
    """
    return Settings()


# Note: Environment-specific configurations should be set via environment variables
# Example .env for production:
#   ENVIRONMENT=production
#   DEBUG=false
#   LOG_LEVEL=WARNING
#   CORS_ORIGIN=https://your-domain.com
#   UPLOADS_DIR=/var/lib/converter/uploads
#   DOWNLOADS_DIR=/var/lib/converter/downloads
#   TEMP_DIR=/var/lib/converter/temp
