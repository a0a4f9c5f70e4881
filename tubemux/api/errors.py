"""Global exception handlers for API errors."""
from fastapi import Request, status
from fastapi.responses import JSONResponse

from tubemux.core.logging import get_logger
from tubemux.models.video import ErrorResponse
from tubemux.services.errors import VideoDownloaderError

logger = get_logger(__name__)

# Map error codes to HTTP status codes
STATUS_CODE_MAP = {
    "INVALID_URL": status.HTTP_400_BAD_REQUEST,
    "UNSUPPORTED_PLATFORM": status.HTTP_422_UNPROCESSABLE_ENTITY,
    "NOT_FOUND": status.HTTP_404_NOT_FOUND,
    "CATALOG_FAILED": status.HTTP_502_BAD_GATEWAY,
    "NO_MATCHING_SOURCE": status.HTTP_404_NOT_FOUND,
    "REMOTE_FETCH_FAILED": status.HTTP_502_BAD_GATEWAY,
    "PROCESS_LAUNCH_FAILED": status.HTTP_500_INTERNAL_SERVER_ERROR,
    "JOB_NOT_FOUND": status.HTTP_404_NOT_FOUND,
    "INTERNAL_ERROR": status.HTTP_500_INTERNAL_SERVER_ERROR,
}


async def video_downloader_error_handler(
    request: Request, exc: VideoDownloaderError
) -> JSONResponse:
    """Handle all VideoDownloaderError exceptions.

    Args:
        request: FastAPI request
        exc: Domain exception

    Returns:
        JSON response with error details
    """
    status_code = STATUS_CODE_MAP.get(exc.code, status.HTTP_500_INTERNAL_SERVER_ERROR)

    # Log error (excluding INVALID_URL which is expected user error)
    if exc.code not in ["INVALID_URL"]:
        logger.warning(f"Domain error: {exc.code} - {exc.message}")

    error_response = ErrorResponse(code=exc.code, message=exc.message)

    return JSONResponse(
        status_code=status_code,
        content=error_response.model_dump(),
    )


async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Handle unexpected exceptions.

    Args:
        request: FastAPI request
        exc: Unexpected exception

    Returns:
        JSON response with generic error
    """
    logger.error(f"Unexpected error: {exc}", exc_info=True)

    error_response = ErrorResponse(
        code="INTERNAL_ERROR",
        message="An unexpected error occurred. Please try again later.",
    )

    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content=error_response.model_dump(),
    )
