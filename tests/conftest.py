"""Test configuration and fixtures."""
import shutil
import sys
import tempfile
from typing import Generator

import pytest
from fastapi.testclient import TestClient

from tubemux.main import create_app
from tubemux.models.video import SourceDescriptor, VideoCatalog, VideoMetadata
from tubemux.services.catalog import CatalogService


@pytest.fixture
def client() -> Generator[TestClient, None, None]:
    """Create a test client for the FastAPI app.

    Yields:
        TestClient instance
    """
    app = create_app()
    with TestClient(app) as test_client:
        yield test_client


@pytest.fixture(autouse=True)
def _clear_catalog_cache() -> Generator[None, None, None]:
    CatalogService.clear_cache()
    yield
    CatalogService.clear_cache()


@pytest.fixture
def socket_dir() -> Generator[str, None, None]:
    """Short-lived directory for relay sockets.

    Kept directly under the system temp dir because Unix socket paths are
    limited to about 100 characters.
    """
    if sys.platform == "win32":
        pytest.skip("Unix domain sockets are not used on Windows")
    path = tempfile.mkdtemp(prefix="tm", dir="/tmp")
    yield path
    shutil.rmtree(path, ignore_errors=True)


@pytest.fixture
def metadata() -> VideoMetadata:
    return VideoMetadata(
        video_id="dQw4w9WgXcQ",
        title="Test Video",
        author="Test Channel",
        description="A description",
        genre="Music",
        date_published="2009-10-25",
    )


@pytest.fixture
def webm_catalog(metadata: VideoMetadata) -> VideoCatalog:
    """One opus audio and one vp9 video source, both WebM."""
    return VideoCatalog(
        metadata=metadata,
        sources=[
            SourceDescriptor(
                track_type="audio",
                container="webm",
                codec="opus",
                bitrate=128000,
                url="https://media.example.com/audio.webm",
            ),
            SourceDescriptor(
                track_type="video",
                container="webm",
                codec="vp9",
                bitrate=2000000,
                url="https://media.example.com/video.webm",
            ),
        ],
    )
