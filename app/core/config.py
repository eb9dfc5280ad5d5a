"""Application configuration using Pydantic Settings.

This module provides type-safe environment variable management
with validation and computed properties for database URIs.
"""

from functools import lru_cache
from typing import TYPE_CHECKING, List, Optional

from pydantic import computed_field
from pydantic_settings import BaseSettings, SettingsConfigDict

if TYPE_CHECKING:
    from app.client.submission import PipelineConfig


class Settings(BaseSettings):
    """Application settings loaded from environment variables.

    Attributes:
        APP_ENV: Application environment (development, staging, production).
        DEBUG: Enable debug mode.
        API_PREFIX: Prefix for all API routes.
        DATABASE_URL: Full async database URL. Overrides the POSTGRES_* parts.
        POSTGRES_USER: PostgreSQL username.
        POSTGRES_PASSWORD: PostgreSQL password.
        POSTGRES_DB: PostgreSQL database name.
        POSTGRES_HOST: PostgreSQL host address.
        POSTGRES_PORT: PostgreSQL port number.
        DB_AUTO_CREATE: Create missing tables on startup (local development).
        CORS_ORIGINS: Comma-separated list of allowed CORS origins.
        JWT_SECRET_KEY: Secret used to sign access tokens.
        JWT_ALGORITHM: JWT signing algorithm.
        JWT_EXPIRATION_HOURS: Access token lifetime.
        UPLOAD_DIR: Directory where uploaded images are stored.
        UPLOAD_URL_PREFIX: Public URL prefix for stored images.
        MAX_UPLOAD_SIZE_BYTES: Largest accepted upload.
        ALLOWED_IMAGE_TYPES: Comma-separated MIME allow-list.
        STORED_IMAGE_MAX_WIDTH: Stored images are fitted inside this width.
        STORED_IMAGE_MAX_HEIGHT: Stored images are fitted inside this height.
        STORED_IMAGE_QUALITY: JPEG quality of stored images.
        USE_MOCK_EXTRACTION: Replace real EXIF parsing with the mock strategy.
        GEOCODER_URL: Root of the Nominatim server used for address lookup.
        GEOCODER_USER_AGENT: User-Agent sent to the geocoder (Nominatim
            rejects anonymous clients).
        GEOCODER_TIMEOUT: Geocoder request timeout in seconds.
        RATE_LIMIT_ENABLED: Toggle request rate limiting.
        RATE_LIMIT_AUTH: Limit applied to register/login.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=True,
        extra="ignore",
    )

    # Application
    APP_ENV: str = "development"
    DEBUG: bool = False
    API_PREFIX: str = "/api"

    # Database
    DATABASE_URL: Optional[str] = None
    POSTGRES_USER: str = "postgres"
    POSTGRES_PASSWORD: str = "postgres"
    POSTGRES_DB: str = "pin_a_tree"
    POSTGRES_HOST: str = "localhost"
    POSTGRES_PORT: int = 5432
    DB_AUTO_CREATE: bool = False

    # CORS
    CORS_ORIGINS: str = "http://localhost:5173,http://localhost:5174"

    # Auth
    JWT_SECRET_KEY: str = "change-me-in-production"
    JWT_ALGORITHM: str = "HS256"
    JWT_EXPIRATION_HOURS: int = 24 * 7

    # Uploads
    UPLOAD_DIR: str = "./uploads"
    UPLOAD_URL_PREFIX: str = "/uploads"
    MAX_UPLOAD_SIZE_BYTES: int = 10 * 1024 * 1024
    ALLOWED_IMAGE_TYPES: str = "image/jpeg,image/jpg,image/png,image/webp"
    STORED_IMAGE_MAX_WIDTH: int = 800
    STORED_IMAGE_MAX_HEIGHT: int = 600
    STORED_IMAGE_QUALITY: int = 80

    # Metadata extraction
    USE_MOCK_EXTRACTION: bool = False

    # Geocoding
    GEOCODER_URL: str = "https://nominatim.openstreetmap.org"
    GEOCODER_USER_AGENT: str = "pin-a-tree/0.1"
    GEOCODER_TIMEOUT: float = 10.0

    # Rate limiting
    RATE_LIMIT_ENABLED: bool = True
    RATE_LIMIT_AUTH: str = "20/minute"

    @computed_field  # type: ignore[misc]
    @property
    def SQLALCHEMY_DATABASE_URI(self) -> str:
        """Construct the async database URI.

        Returns:
            Async database connection string for SQLAlchemy.
        """
        if self.DATABASE_URL:
            return self.DATABASE_URL
        return (
            f"postgresql+asyncpg://{self.POSTGRES_USER}:{self.POSTGRES_PASSWORD}"
            f"@{self.POSTGRES_HOST}:{self.POSTGRES_PORT}/{self.POSTGRES_DB}"
        )

    @property
    def cors_origins_list(self) -> List[str]:
        """Parse CORS origins from comma-separated string.

        Returns:
            List of allowed origin URLs.
        """
        return [origin.strip() for origin in self.CORS_ORIGINS.split(",")]

    @property
    def allowed_image_types(self) -> List[str]:
        """Parse the MIME allow-list."""
        return [
            mime.strip().lower()
            for mime in self.ALLOWED_IMAGE_TYPES.split(",")
            if mime.strip()
        ]

    def pipeline_config(self) -> "PipelineConfig":
        """Build the extraction/upload pipeline configuration.

        Returns:
            PipelineConfig mirroring these settings.
        """
        from app.client.submission import PipelineConfig

        return PipelineConfig(
            max_upload_bytes=self.MAX_UPLOAD_SIZE_BYTES,
            allowed_types=tuple(self.allowed_image_types),
            use_mock_extraction=self.USE_MOCK_EXTRACTION,
        )


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance.

    Returns:
        Singleton Settings instance.
    """
    return Settings()


settings = get_settings()
