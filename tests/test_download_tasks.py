"""Tests for the in-memory job registry."""
import time
from typing import Generator

import pytest

from tubemux.services import download_tasks
from tubemux.services.downloader import JobHandle
from tubemux.services.muxer import JobResult


@pytest.fixture(autouse=True)
def _empty_registry() -> Generator[None, None, None]:
    download_tasks._jobs.clear()
    yield
    download_tasks._jobs.clear()


def _finished(age: float) -> JobHandle:
    handle = JobHandle("webm", "/out/x.webm")
    handle.finish(JobResult.completed("/out/x.webm"))
    handle.finished_at = time.time() - age
    return handle


class TestRegistry:
    """Tests for registering, looking up and forgetting jobs."""

    def test_register_and_get(self) -> None:
        handle = JobHandle("mp4", "/out/x.mp4")
        job_id = download_tasks.register_job(handle)
        assert job_id == handle.job_id
        assert download_tasks.get_job(job_id) is handle

    def test_remove_job(self) -> None:
        handle = JobHandle("mp4", "/out/x.mp4")
        download_tasks.register_job(handle)

        assert download_tasks.remove_job(handle.job_id) is handle
        assert download_tasks.get_job(handle.job_id) is None
        assert download_tasks.remove_job(handle.job_id) is None

    def test_cleanup_stale_keeps_running_and_recent_jobs(self) -> None:
        running = JobHandle("mp4", "/out/x.mp4")
        recent = _finished(age=10)
        stale = _finished(age=3600)
        for handle in (running, recent, stale):
            download_tasks.register_job(handle)

        download_tasks.cleanup_stale(max_age=1800)

        assert download_tasks.get_job(running.job_id) is running
        assert download_tasks.get_job(recent.job_id) is recent
        assert download_tasks.get_job(stale.job_id) is None
