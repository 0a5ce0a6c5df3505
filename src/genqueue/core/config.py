"""Application configuration using Pydantic BaseSettings."""

import logging

import structlog
from pydantic import Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    # Database Configuration
    database_url: str = Field(alias="DATABASE_URL")
    db_pool_size: int = Field(default=20, alias="DB_POOL_SIZE")

    # Application Environment
    app_env: str = Field(default="development", alias="APP_ENV")
    log_level: str = Field(default="INFO", alias="LOG_LEVEL")

    # CORS Configuration
    cors_origins: str = Field(default="http://localhost:3000", alias="CORS_ORIGINS")

    # Server Configuration
    host: str = Field(default="0.0.0.0", alias="HOST")
    port: int = Field(default=8000, alias="PORT")

    # Replicate Image Generation
    replicate_api_token: str = Field(default="", alias="REPLICATE_API_TOKEN")
    replicate_model_version: str = Field(
        default="google/nano-banana-pro", alias="REPLICATE_MODEL_VERSION"
    )
    replicate_face_swap_model: str = Field(
        default="codeplugtech/face-swap", alias="REPLICATE_FACE_SWAP_MODEL"
    )
    image_output_format: str = Field(default="png", alias="IMAGE_OUTPUT_FORMAT")

    # Fixed output policy applied to every generation
    generation_aspect_ratio: str = Field(default="3:4", alias="GENERATION_ASPECT_RATIO")
    generation_image_size: str = Field(default="2K", alias="GENERATION_IMAGE_SIZE")

    # Image storage root (generated images land in <PUBLIC_DIR>/images)
    public_dir: str = Field(default="public", alias="PUBLIC_DIR")

    @property
    def cors_origins_list(self) -> list[str]:
        """Parse CORS origins from comma-separated string."""
        return [origin.strip() for origin in self.cors_origins.split(",")]

    @model_validator(mode="after")
    def validate_required_config(self) -> "Settings":
        """Validate required configuration on startup.

        Fails fast with a clear error message if the generation service
        cannot be reached. Validation is skipped in test environments.
        """
        if self.app_env in ("test", "testing"):
            return self

        if not self.replicate_api_token:
            raise ValueError(
                "CRITICAL: Missing required environment variable:\n\n"
                "  - REPLICATE_API_TOKEN: Get your API token from "
                "https://replicate.com/account/api-tokens\n\n"
                "The queue worker cannot generate images without it."
            )

        return self


def configure_logging(settings: Settings) -> None:
    """Configure structlog based on application environment.

    - Production: JSON output for log aggregation
    - Development: Console output for human readability
    """
    level = logging.getLevelName(settings.log_level.upper())
    if not isinstance(level, int):
        level = logging.INFO

    if settings.app_env == "production":
        renderer_processors = [
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.processors.JSONRenderer(),
        ]
    else:
        renderer_processors = [structlog.dev.ConsoleRenderer()]

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            *renderer_processors,
        ],
        wrapper_class=structlog.make_filtering_bound_logger(level),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(),
        cache_logger_on_first_use=True,
    )
