"""Pydantic models for catalog data and API contracts."""
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator

TrackType = Literal["audio", "video"]


class SourceDescriptor(BaseModel):
    """A single-track remote source offered by the catalog."""

    model_config = ConfigDict(frozen=True)

    track_type: TrackType = Field(
        ...,
        description="Elementary stream carried by this source",
    )
    container: str = Field(
        ...,
        description="Container family of the source (e.g., 'mp4', 'webm')",
        min_length=1,
    )
    codec: str | None = Field(
        default=None,
        description="Codec string as reported by the catalog (e.g., 'opus', 'avc1.640028')",
    )
    bitrate: int = Field(
        default=0,
        description="Average bitrate in bits per second",
        ge=0,
    )
    url: str = Field(
        ...,
        description="Direct HTTP(S) URL of the stream",
    )
    format_id: str | None = Field(
        default=None,
        description="Catalog format identifier (e.g., itag for YouTube)",
    )


class VideoMetadata(BaseModel):
    """Descriptive metadata used for output naming and container tags."""

    video_id: str = Field(..., description="Video identifier", min_length=1)
    title: str = Field(default="Unknown Title", description="Video title")
    author: str | None = Field(default=None, description="Uploader / channel name")
    description: str = Field(default="", description="Full free-text description")
    genre: str | None = Field(default=None, description="Primary category")
    date_published: str | None = Field(
        default=None,
        description="Publish date as YYYY-MM-DD",
    )
    webpage_url: str | None = Field(default=None, description="Canonical watch page")
    author_links: list[str] = Field(
        default_factory=list,
        description="Links to the uploader's channel pages",
    )


class VideoCatalog(BaseModel):
    """Model representing video metadata and its single-track sources."""

    metadata: VideoMetadata
    sources: list[SourceDescriptor] = Field(
        default_factory=list,
        description="All single-track sources available for the video",
    )

    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "metadata": {
                    "video_id": "dQw4w9WgXcQ",
                    "title": "Example Video Title",
                    "author": "Example Channel",
                },
                "sources": [
                    {
                        "track_type": "audio",
                        "container": "webm",
                        "codec": "opus",
                        "bitrate": 128000,
                        "url": "https://example.com/audio",
                        "format_id": "251",
                    }
                ],
            }
        }
    )


class CatalogRequest(BaseModel):
    """Request model for fetching a video's source catalog."""

    url: str = Field(
        ...,
        description="Video URL or bare 11-character video id",
        min_length=1,
        max_length=2048,
        examples=["https://www.youtube.com/watch?v=dQw4w9WgXcQ", "dQw4w9WgXcQ"],
    )

    @field_validator("url")
    @classmethod
    def validate_url(cls, v: str) -> str:
        """Basic URL validation."""
        v = v.strip()
        if not v:
            raise ValueError("URL cannot be empty")
        return v


class DownloadRequest(CatalogRequest):
    """Request model for starting mux jobs for a video."""

    target_formats: list[Literal["mp4", "webm"]] | None = Field(
        default=None,
        description="Containers to produce (defaults to the configured targets)",
        min_length=1,
    )


class DownloadResponse(BaseModel):
    """Jobs started for a video, keyed by target container."""

    video: VideoMetadata
    jobs: dict[str, str] = Field(
        default_factory=dict,
        description="Mapping of container name to job id",
    )


class ProgressInfo(BaseModel):
    """Latest progress sample of a running job."""

    progress: float | None = Field(
        default=None,
        description="Fraction of the total duration muxed (None while unknown)",
    )
    frame: int | None = None
    fps: float | None = None
    q: float | None = None
    time: float | None = Field(default=None, description="Muxed media time in seconds")
    bitrate: float | None = Field(default=None, description="Bytes per second")
    speed: float | None = None
    size: float | None = Field(default=None, description="Output size in bytes")
    is_final: bool = False


class JobStatusResponse(BaseModel):
    """Status of a single mux job."""

    job_id: str
    container: str
    output_path: str
    status: Literal["running", "completed", "failed"]
    progress: ProgressInfo | None = None
    error: str | None = None


class ErrorResponse(BaseModel):
    """Standard error response model."""

    code: Literal[
        "INVALID_URL",
        "UNSUPPORTED_PLATFORM",
        "NOT_FOUND",
        "CATALOG_FAILED",
        "NO_MATCHING_SOURCE",
        "REMOTE_FETCH_FAILED",
        "PROCESS_LAUNCH_FAILED",
        "JOB_NOT_FOUND",
        "INTERNAL_ERROR",
    ] = Field(
        ...,
        description="Stable error code for programmatic handling",
    )
    message: str = Field(
        ...,
        description="Human-readable error message",
        min_length=1,
    )

    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "code": "INVALID_URL",
                "message": "The provided URL is invalid or blocked",
            }
        }
    )


class HealthResponse(BaseModel):
    """Health check response model."""

    status: Literal["healthy", "unhealthy"] = Field(
        default="healthy",
        description="Health status of the service",
    )
    version: str = Field(
        default="0.1.0",
        description="API version",
    )
