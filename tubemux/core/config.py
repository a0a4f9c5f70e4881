"""Application configuration using pydantic-settings."""
import os
import tempfile
from typing import Literal

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Environment
    ENV: Literal["development", "production", "test"] = "development"
    DEBUG: bool = False
    PORT: int = Field(default=8000, ge=1, le=65535)

    # API Configuration
    API_V1_PREFIX: str = "/api/v1"

    # CORS Configuration
    CORS_ORIGINS: str = Field(
        default="http://localhost:3000",
        description="Comma-separated list of allowed CORS origins",
    )

    # Logging
    LOG_LEVEL: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = "INFO"

    # Security
    BLOCK_PRIVATE_NETWORKS: bool = Field(
        default=True,
        description="Block URLs pointing to private networks (SSRF protection)",
    )
    ALLOWED_URL_SCHEMES: str = Field(
        default="http,https",
        description="Comma-separated list of allowed URL schemes",
    )

    @field_validator("CORS_ORIGINS", "TARGET_FORMATS", "EXCLUDED_SOURCES")
    @classmethod
    def strip_list(cls, v: str) -> str:
        """Ensure comma-separated values are properly formatted."""
        return v.strip()

    @property
    def cors_origins_list(self) -> list[str]:
        """Get CORS origins as a list."""
        return [origin.strip() for origin in self.CORS_ORIGINS.split(",") if origin.strip()]

    @property
    def allowed_schemes_list(self) -> list[str]:
        """Get allowed URL schemes as a list."""
        return [scheme.strip().lower() for scheme in self.ALLOWED_URL_SCHEMES.split(",") if scheme.strip()]

    @property
    def target_formats_list(self) -> list[str]:
        """Get default target containers as a list."""
        return [fmt.strip().lower() for fmt in self.TARGET_FORMATS.split(",") if fmt.strip()]

    @property
    def excluded_sources_list(self) -> list[tuple[str, str, str]]:
        """Get excluded ``(track, container, codec)`` triples."""
        triples: list[tuple[str, str, str]] = []
        for entry in self.EXCLUDED_SOURCES.split(","):
            parts = [p.strip() for p in entry.split(":")]
            if len(parts) == 3 and all(parts):
                triples.append((parts[0], parts[1], parts[2]))
        return triples

    @property
    def is_development(self) -> bool:
        """Check if running in development mode."""
        return self.ENV == "development"

    @property
    def is_production(self) -> bool:
        """Check if running in production mode."""
        return self.ENV == "production"

    # Muxer (ffmpeg)
    FFMPEG_BINARY: str = Field(
        default="ffmpeg",
        description="Executable used to mux the audio and video tracks",
    )
    DIAGNOSTIC_CHUNK_SIZE: int = Field(
        default=4096,
        ge=256,
        le=1048576,
        description="Max bytes read from the muxer's stderr per chunk",
    )

    # Local relay endpoints
    RELAY_SOCKET_DIR: str = Field(
        default_factory=lambda: os.path.join(tempfile.gettempdir(), "pipe"),
        description="Directory holding the per-track relay sockets",
    )
    RELAY_CHUNK_SIZE: int = Field(
        default=65536,
        ge=1024,
        le=16777216,
        description="Bytes forwarded per write from the remote source to the muxer",
    )
    RELAY_CONNECT_TIMEOUT: float | None = Field(
        default=30.0,
        description="Seconds allowed to connect to a remote source (None waits forever)",
    )
    RELAY_USER_AGENT: str | None = Field(
        default=None,
        description="Custom user agent for remote source requests",
    )
    RELAY_PROXY: str | None = Field(
        default=None,
        description="HTTP/HTTPS/SOCKS proxy URL for remote source requests",
    )

    # Jobs
    OUTPUT_DIR: str = Field(
        default_factory=lambda: os.path.join(os.getcwd(), "downloads"),
        description="Directory where muxed files are written",
    )
    TARGET_FORMATS: str = Field(
        default="mp4,webm",
        description="Comma-separated list of containers produced per video",
    )
    EXCLUDED_SOURCES: str = Field(
        default="audio:webm:vorbis",
        description="Comma-separated track:container:codec sources never selected",
    )
    JOB_RETENTION_SECONDS: int = Field(
        default=1800,
        ge=0,
        description="How long finished jobs stay queryable",
    )

    # Catalog extraction (yt-dlp)
    CATALOG_SOCKET_TIMEOUT: int = Field(
        default=30,
        ge=1,
        le=300,
        description="yt-dlp socket timeout in seconds while extracting the catalog",
    )
    CATALOG_COOKIES_FROM_BROWSER: str | None = Field(
        default=None,
        description="Browser to extract cookies from (chrome, firefox, edge, etc.)",
    )
    CATALOG_CACHE_TTL_SECONDS: int = Field(
        default=600,
        ge=0,
        le=3600,
        description="TTL for in-memory catalog cache (0 disables)"
    )
    CATALOG_CACHE_MAXSIZE: int = Field(
        default=128,
        ge=0,
        le=2048,
        description="Max number of cached catalogs (0 disables)"
    )


# Global settings instance
settings = Settings()
