"""Domain-specific exceptions for the services layer."""


class VideoDownloaderError(Exception):
    """Base exception for video downloader errors."""

    def __init__(self, message: str, code: str) -> None:
        """Initialize the error.

        Args:
            message: Human-readable error message
            code: Stable error code for API responses
        """
        self.message = message
        self.code = code
        super().__init__(message)


class InvalidUrlError(VideoDownloaderError):
    """Raised when the provided URL is invalid or blocked."""

    def __init__(self, message: str = "The provided URL is invalid or blocked") -> None:
        super().__init__(message, "INVALID_URL")


class UnsupportedPlatformError(VideoDownloaderError):
    """Raised when the platform is not supported by yt-dlp."""

    def __init__(self, message: str = "This platform is not supported") -> None:
        super().__init__(message, "UNSUPPORTED_PLATFORM")


class VideoNotFoundError(VideoDownloaderError):
    """Raised when the video is not found or unavailable."""

    def __init__(self, message: str = "Video not found or unavailable") -> None:
        super().__init__(message, "NOT_FOUND")


class CatalogFetchError(VideoDownloaderError):
    """Raised when the format catalog cannot be fetched."""

    def __init__(self, message: str = "Failed to fetch the format catalog") -> None:
        super().__init__(message, "CATALOG_FAILED")


class NoMatchingSourceError(VideoDownloaderError):
    """Raised when no source survives selection for a required track."""

    def __init__(self, message: str = "No matching source for the requested container") -> None:
        super().__init__(message, "NO_MATCHING_SOURCE")


class RemoteFetchError(VideoDownloaderError):
    """Raised when a remote source URL cannot be streamed."""

    def __init__(self, message: str = "Failed to fetch a remote source") -> None:
        super().__init__(message, "REMOTE_FETCH_FAILED")


class ProcessLaunchError(VideoDownloaderError):
    """Raised when the mux process cannot be started."""

    def __init__(self, message: str = "Failed to start the mux process") -> None:
        super().__init__(message, "PROCESS_LAUNCH_FAILED")


class JobNotFoundError(VideoDownloaderError):
    """Raised when a job id is unknown or has expired."""

    def __init__(self, message: str = "Download job not found") -> None:
        super().__init__(message, "JOB_NOT_FOUND")
