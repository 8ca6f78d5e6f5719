"""Configuration management for the image relay."""

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        case_sensitive=True,
    )

    ENV: str = "local"
    SERVICE_NAME: str = "image-convert-api"
    SERVICE_VERSION: str = "0.1.0"
    LOG_LEVEL: str = "INFO"

    # Server
    HOST: str = "0.0.0.0"
    PORT: int = 3000
    CORS_ORIGIN: str = "*"  # Comma-separated origins, "*" = any

    # Upload Constraints
    MAX_FILE_SIZE: int = 1024 * 1024 * 1024  # bytes

    # Conversion
    DEFAULT_FORMAT: str = "avif"
    TRANSFORM_SPOOL_MB: int = 32  # Spill transformer buffers to disk past this size
    MAX_IMAGE_PIXELS: int = 100_000_000  # Decompression bomb limit
    LOAD_TRUNCATED_IMAGES: bool = True  # Decode incomplete uploads instead of failing

    # Sink Configuration
    STORAGE_BACKEND: str = ""  # "gcs", "local" or empty to disable uploads
    GCP_PROJECT_ID: str = ""
    GCS_BUCKET_NAME: str = ""
    SINK_FOLDER: str = "converted"
    LOCAL_SINK_PATH: str = "./data"
    LOCAL_SINK_BASE_URL: str = ""  # Empty = file:// URIs

    @property
    def cors_origins(self) -> list[str]:
        """Parse CORS_ORIGIN into a list."""
        return [origin.strip() for origin in self.CORS_ORIGIN.split(",") if origin.strip()]

    @property
    def transform_spool_bytes(self) -> int:
        """Convert TRANSFORM_SPOOL_MB to bytes."""
        return self.TRANSFORM_SPOOL_MB * 1024 * 1024


# Singleton settings instance
settings = Settings()
