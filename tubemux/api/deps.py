"""Shared dependencies for API routes."""
from tubemux.services.downloader import Downloader

_downloader: Downloader | None = None


def get_downloader() -> Downloader:
    """Return the process-wide downloader, creating it on first use."""
    global _downloader
    if _downloader is None:
        _downloader = Downloader()
    return _downloader


async def shutdown_downloader() -> None:
    """Close the shared downloader's HTTP client."""
    global _downloader
    if _downloader is not None:
        await _downloader.aclose()
        _downloader = None
