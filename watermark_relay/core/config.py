"""Application configuration and settings management."""

from functools import lru_cache
from pathlib import Path
from typing import Literal

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Strongly typed application configuration."""

    model_config = SettingsConfigDict(
        env_file=(".env", ".env.local"),
        env_file_encoding="utf-8",
        extra="ignore",
    )

    APP_NAME: str = "Watermark Relay"
    APP_VERSION: str = "0.1.0"
    ENVIRONMENT: Literal["development", "staging", "production"] = "development"

    LOG_LEVEL: str = "INFO"
    LOG_JSON: bool = False

    WORK_DIR: Path = Path.cwd()

    # Source asset constraints
    MAX_UPLOAD_BYTES: int = 100 * 1024 * 1024

    # Segmind inference service
    SEGMIND_API_KEY: str | None = None
    SEGMIND_V2_ENDPOINT: str = "https://api.segmind.com/v2/video-watermark-remover"
    SEGMIND_V1_ENDPOINT: str = "https://api.segmind.com/v1/video-watermark-remover"
    SEGMIND_INPUT_FIELD: str = "input"  # older deployments expected "input_video"
    INFERENCE_TIMEOUT_SECONDS: float | None = 600.0

    # Public file hosting
    UPLOAD_TIMEOUT_SECONDS: float = 30.0
    CLOUDINARY_CLOUD_NAME: str | None = None
    CLOUDINARY_UPLOAD_PRESET: str | None = None
    ZERO_X_ZERO_URL: str = "https://0x0.st"
    TMPFILES_URL: str = "https://tmpfiles.org/api/v1/upload"
    FILE_IO_URL: str = "https://file.io"

    # S3 Storage Settings
    S3_ENDPOINT: str | None = None
    S3_ACCESS_KEY_ID: str | None = None
    S3_SECRET_ACCESS_KEY: str | None = None
    S3_BUCKET: str | None = None
    S3_REGION: str | None = None
    S3_FORCE_PATH_STYLE: bool = False
    S3_PRESIGN_TTL_SECONDS: int = 3600
    S3_KEY_PREFIX: str = "uploads"

    @property
    def cloudinary_configured(self) -> bool:
        return bool(self.CLOUDINARY_CLOUD_NAME and self.CLOUDINARY_UPLOAD_PRESET)


@lru_cache
def get_settings() -> Settings:
    """Return a cached settings instance."""

    return Settings()
