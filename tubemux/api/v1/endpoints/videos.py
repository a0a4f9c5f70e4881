"""Video-related API endpoints."""
import asyncio
import json
import math
from typing import Any, AsyncIterator

from fastapi import APIRouter, Depends, status
from sse_starlette.sse import EventSourceResponse

from tubemux.api.deps import get_downloader
from tubemux.core.config import settings
from tubemux.core.logging import get_logger
from tubemux.models.video import (
    CatalogRequest,
    DownloadRequest,
    DownloadResponse,
    JobStatusResponse,
    ProgressInfo,
    VideoCatalog,
)
from tubemux.services import download_tasks
from tubemux.services.catalog import CatalogService
from tubemux.services.downloader import Downloader, JobHandle
from tubemux.services.errors import JobNotFoundError
from tubemux.services.muxer import JobResult
from tubemux.services.options import DownloadOptions
from tubemux.services.progress import ProgressUpdate

logger = get_logger(__name__)

router = APIRouter()


def _finite(value: float | None) -> float | None:
    """Map NaN to None so it serializes as JSON null."""
    if value is None or math.isnan(value):
        return None
    return value


def _progress_info(update: ProgressUpdate) -> ProgressInfo:
    sample = update.sample
    return ProgressInfo(
        progress=_finite(update.progress),
        frame=sample.frame,
        fps=_finite(sample.fps),
        q=_finite(sample.q),
        time=_finite(sample.time),
        bitrate=_finite(sample.bitrate),
        speed=_finite(sample.speed),
        size=_finite(sample.size),
        is_final=sample.is_final,
    )


def _job_status(handle: JobHandle) -> JobStatusResponse:
    if handle.result is None:
        state = "running"
    else:
        state = handle.result.status
    return JobStatusResponse(
        job_id=handle.job_id,
        container=handle.container,
        output_path=handle.output_path,
        status=state,
        progress=_progress_info(handle.latest) if handle.latest else None,
        error=handle.result.reason if handle.result else None,
    )


def _lookup_job(job_id: str) -> JobHandle:
    handle = download_tasks.get_job(job_id)
    if handle is None:
        raise JobNotFoundError(f"Download job '{job_id}' not found")
    return handle


@router.post(
    "/catalog",
    response_model=VideoCatalog,
    status_code=status.HTTP_200_OK,
    summary="Fetch source catalog",
    description="Retrieve metadata and single-track sources for a video URL",
    responses={
        200: {"description": "Successfully retrieved the catalog", "model": VideoCatalog},
        400: {"description": "Invalid URL"},
        404: {"description": "Video not found"},
        422: {"description": "Unsupported platform"},
        502: {"description": "yt-dlp failed to process the video"},
    },
)
async def fetch_catalog(request: CatalogRequest) -> VideoCatalog:
    """Fetch the source catalog for a video URL.

    Args:
        request: Request containing the video URL

    Returns:
        Video metadata and single-track sources
    """
    # Run blocking yt-dlp call in a thread to avoid blocking the event loop
    return await asyncio.to_thread(CatalogService.fetch_catalog, request.url)


@router.post(
    "/download",
    response_model=DownloadResponse,
    status_code=status.HTTP_202_ACCEPTED,
    summary="Start mux jobs",
    description="Relay the best audio and video sources into ffmpeg, one job per container",
    responses={
        202: {"description": "Jobs started", "model": DownloadResponse},
        400: {"description": "Invalid URL"},
        404: {"description": "Video not found"},
        502: {"description": "Catalog fetch failed"},
    },
)
async def start_download(
    request: DownloadRequest,
    downloader: Downloader = Depends(get_downloader),
) -> DownloadResponse:
    """Start one mux job per target container.

    Containers without an eligible audio/video pair are omitted.
    """
    download_tasks.cleanup_stale(settings.JOB_RETENTION_SECONDS)

    options = DownloadOptions()
    if request.target_formats:
        options.target_formats = list(request.target_formats)

    metadata, handles = await downloader.download(request.url, options)
    jobs = {container: download_tasks.register_job(h) for container, h in handles.items()}
    logger.info(f"Started {len(jobs)} job(s) for {metadata.video_id}: {sorted(jobs)}")
    return DownloadResponse(video=metadata, jobs=jobs)


@router.get(
    "/jobs/{job_id}",
    response_model=JobStatusResponse,
    summary="Job status",
    description="Latest progress and terminal state of a mux job",
    responses={404: {"description": "Job not found"}},
)
async def get_job_status(job_id: str) -> JobStatusResponse:
    return _job_status(_lookup_job(job_id))


def _event_payload(event: ProgressUpdate | JobResult) -> dict[str, Any]:
    if isinstance(event, JobResult):
        return {
            "event": "done" if event.ok else "failed",
            "data": json.dumps({
                "output_path": event.output_path,
                "reason": event.reason,
                "return_code": event.return_code,
            }),
        }
    return {
        "event": "update",
        "data": json.dumps({
            "progress": _finite(event.progress),
            "info": _progress_info(event).model_dump(),
            "raw": event.raw_fields,
        }),
    }


@router.get(
    "/jobs/{job_id}/events",
    summary="Job progress stream",
    description="Server-sent events: 'update' per progress line, then 'done' or 'failed'",
    responses={404: {"description": "Job not found"}},
)
async def stream_job_events(job_id: str) -> EventSourceResponse:
    handle = _lookup_job(job_id)

    async def _events() -> AsyncIterator[dict[str, Any]]:
        async for event in handle.events():
            yield _event_payload(event)

    return EventSourceResponse(_events())
