"""Tests for API endpoints."""
import asyncio
import json
import math
from unittest.mock import MagicMock, patch

import pytest
from fastapi.testclient import TestClient

from tubemux.api.deps import get_downloader
from tubemux.api.v1.endpoints.videos import _event_payload
from tubemux.models.video import VideoCatalog
from tubemux.services import download_tasks
from tubemux.services.downloader import JobHandle
from tubemux.services.errors import VideoNotFoundError
from tubemux.services.muxer import JobResult
from tubemux.services.progress import ProgressSample, ProgressUpdate


class FakeDownloader:
    """Creates handles without relaying or muxing anything."""

    def __init__(
        self, catalog: VideoCatalog, finish: bool = False, finish_after: float | None = None
    ) -> None:
        self.catalog = catalog
        self.finish = finish
        self.finish_after = finish_after
        self.calls: list[tuple[str, list[str]]] = []

    async def download(self, url, options):
        self.calls.append((url, list(options.target_formats)))
        handles = {}
        for container in options.target_formats:
            handle = JobHandle(container, f"/downloads/Test Video [dQw4w9WgXcQ].{container}")
            handle.publish(_update(progress=0.5, time=5.0))
            if self.finish:
                handle.finish(JobResult.completed(handle.output_path))
            elif self.finish_after is not None:
                asyncio.get_running_loop().call_later(
                    self.finish_after, handle.finish, JobResult.completed(handle.output_path)
                )
            handles[container] = handle
        return self.catalog.metadata, handles


def _update(progress: float, time: float) -> ProgressUpdate:
    sample = ProgressSample(frame=5, fps=25.0, time=time, speed=1.0, size=100_000.0)
    return ProgressUpdate(progress=progress, sample=sample, raw_text="frame=5", raw_fields={"frame": "5"})


@pytest.fixture
def use_downloader(client: TestClient):
    def _install(fake: FakeDownloader) -> FakeDownloader:
        client.app.dependency_overrides[get_downloader] = lambda: fake
        return fake

    yield _install
    client.app.dependency_overrides.clear()


class TestHealthEndpoint:
    """Tests for health check endpoint."""

    def test_health_check(self, client: TestClient) -> None:
        """Test health check endpoint."""
        response = client.get("/health")
        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "healthy"
        assert "version" in data


class TestCatalogEndpoint:
    """Tests for the source catalog endpoint."""

    @patch("tubemux.api.v1.endpoints.videos.CatalogService.fetch_catalog")
    def test_fetch_catalog_success(
        self, mock_fetch: MagicMock, client: TestClient, webm_catalog: VideoCatalog
    ) -> None:
        mock_fetch.return_value = webm_catalog

        response = client.post("/api/v1/videos/catalog", json={"url": "  dQw4w9WgXcQ  "})

        assert response.status_code == 200
        data = response.json()
        assert data["metadata"]["title"] == "Test Video"
        assert len(data["sources"]) == 2
        assert data["sources"][0]["codec"] == "opus"
        mock_fetch.assert_called_once_with("dQw4w9WgXcQ")

    def test_fetch_catalog_empty_url(self, client: TestClient) -> None:
        response = client.post("/api/v1/videos/catalog", json={"url": ""})
        assert response.status_code == 422

    @patch("tubemux.api.v1.endpoints.videos.CatalogService.fetch_catalog")
    def test_fetch_catalog_service_error(self, mock_fetch: MagicMock, client: TestClient) -> None:
        mock_fetch.side_effect = VideoNotFoundError()

        response = client.post(
            "/api/v1/videos/catalog",
            json={"url": "https://www.youtube.com/watch?v=invalid0000"},
        )

        assert response.status_code == 404
        data = response.json()
        assert data["code"] == "NOT_FOUND"
        assert "message" in data


class TestDownloadEndpoint:
    """Tests for starting jobs and reading their status."""

    def test_download_starts_jobs(
        self, client: TestClient, use_downloader, webm_catalog: VideoCatalog
    ) -> None:
        fake = use_downloader(FakeDownloader(webm_catalog))

        response = client.post(
            "/api/v1/videos/download",
            json={"url": "dQw4w9WgXcQ", "target_formats": ["webm"]},
        )

        assert response.status_code == 202
        data = response.json()
        assert data["video"]["video_id"] == "dQw4w9WgXcQ"
        assert list(data["jobs"]) == ["webm"]
        assert fake.calls == [("dQw4w9WgXcQ", ["webm"])]

        job_id = data["jobs"]["webm"]
        status = client.get(f"/api/v1/videos/jobs/{job_id}").json()
        assert status["status"] == "running"
        assert status["container"] == "webm"
        assert status["progress"]["progress"] == 0.5
        assert status["progress"]["q"] is None
        assert status["error"] is None

    def test_completed_job_status(
        self, client: TestClient, use_downloader, webm_catalog: VideoCatalog
    ) -> None:
        use_downloader(FakeDownloader(webm_catalog, finish=True))

        data = client.post(
            "/api/v1/videos/download",
            json={"url": "dQw4w9WgXcQ", "target_formats": ["mp4", "webm"]},
        ).json()

        assert sorted(data["jobs"]) == ["mp4", "webm"]
        for job_id in data["jobs"].values():
            status = client.get(f"/api/v1/videos/jobs/{job_id}").json()
            assert status["status"] == "completed"
            assert download_tasks.get_job(job_id) is not None

    def test_download_unknown_format_rejected(
        self, client: TestClient, use_downloader, webm_catalog: VideoCatalog
    ) -> None:
        use_downloader(FakeDownloader(webm_catalog))

        response = client.post(
            "/api/v1/videos/download",
            json={"url": "dQw4w9WgXcQ", "target_formats": ["avi"]},
        )

        assert response.status_code == 422

    def test_unknown_job(self, client: TestClient) -> None:
        response = client.get("/api/v1/videos/jobs/doesnotexist")
        assert response.status_code == 404
        assert response.json()["code"] == "JOB_NOT_FOUND"

    def test_unknown_job_events(self, client: TestClient) -> None:
        response = client.get("/api/v1/videos/jobs/doesnotexist/events")
        assert response.status_code == 404

    def test_events_stream_follows_running_job(
        self, client: TestClient, use_downloader, webm_catalog: VideoCatalog
    ) -> None:
        use_downloader(FakeDownloader(webm_catalog, finish_after=0.1))
        job_id = client.post(
            "/api/v1/videos/download",
            json={"url": "dQw4w9WgXcQ", "target_formats": ["webm"]},
        ).json()["jobs"]["webm"]

        response = client.get(f"/api/v1/videos/jobs/{job_id}/events")

        assert response.status_code == 200
        assert response.headers["content-type"].startswith("text/event-stream")
        body = response.text
        assert body.index("event: update") < body.index("event: done")
        assert '"progress": 0.5' in body

    def test_events_stream_can_be_reopened(
        self, client: TestClient, use_downloader, webm_catalog: VideoCatalog
    ) -> None:
        use_downloader(FakeDownloader(webm_catalog, finish=True))
        job_id = client.post(
            "/api/v1/videos/download",
            json={"url": "dQw4w9WgXcQ", "target_formats": ["webm"]},
        ).json()["jobs"]["webm"]

        first = client.get(f"/api/v1/videos/jobs/{job_id}/events").text
        second = client.get(f"/api/v1/videos/jobs/{job_id}/events").text

        for body in (first, second):
            assert body.count("event: update") == 1
            assert body.count("event: done") == 1


class TestEventPayload:
    """Tests for server-sent event serialization."""

    def test_update_event(self) -> None:
        payload = _event_payload(_update(progress=0.5, time=5.0))
        assert payload["event"] == "update"
        data = json.loads(payload["data"])
        assert data["progress"] == 0.5
        assert data["info"]["time"] == 5.0
        assert data["raw"] == {"frame": "5"}

    def test_unknown_progress_is_null(self) -> None:
        payload = _event_payload(_update(progress=math.nan, time=5.0))
        assert json.loads(payload["data"])["progress"] is None

    def test_done_event(self) -> None:
        payload = _event_payload(JobResult.completed("/downloads/out.webm"))
        assert payload["event"] == "done"
        assert json.loads(payload["data"])["output_path"] == "/downloads/out.webm"

    def test_failed_event(self) -> None:
        payload = _event_payload(JobResult.failed("/downloads/out.webm", "ffmpeg exited with code 1", 1))
        assert payload["event"] == "failed"
        data = json.loads(payload["data"])
        assert data["reason"] == "ffmpeg exited with code 1"
        assert data["return_code"] == 1
