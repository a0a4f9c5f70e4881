"""Download orchestration: one relay-and-mux job per target container.

For every requested container the :class:`Downloader` picks one audio and
one video source, opens a relay endpoint for each, and starts ffmpeg with
the two endpoints as inputs.  Each job is observed through a
:class:`JobHandle`, which yields :class:`ProgressUpdate` events in the order
ffmpeg reported them and finally a single :class:`JobResult`.
"""

import asyncio
import os
import time
import uuid
from typing import AsyncIterator, Awaitable, Callable

import httpx
from yt_dlp.utils import sanitize_filename

from tubemux.core.config import settings
from tubemux.core.logging import get_logger
from tubemux.models.video import VideoCatalog, VideoMetadata
from tubemux.services.catalog import CatalogService
from tubemux.services.errors import VideoDownloaderError
from tubemux.services.muxer import (
    TRACK_ORDER,
    JobResult,
    MuxController,
    MuxJobSpec,
    ProcessLauncher,
    describe_progress,
    spawn_process,
)
from tubemux.services.options import DownloadOptions, VideoContext
from tubemux.services.progress import ProgressUpdate
from tubemux.services.relay import RelayEndpoint, create_http_client, open_endpoint
from tubemux.services.selector import SourceSelection, select_all

logger = get_logger(__name__)

EndpointFactory = Callable[[str, httpx.AsyncClient], Awaitable[RelayEndpoint]]
JobEvent = ProgressUpdate | JobResult


def sanitize_output_filename(filename: str) -> str:
    """Make *filename* safe for the local filesystem."""
    return sanitize_filename(filename).rstrip(".") or "download"


class JobHandle:
    """Caller-side view of one mux job.

    Every event is kept in an append-only log, so any number of readers can
    iterate :meth:`events` from the start, at any time, each at its own
    pace.  :attr:`latest` and :attr:`result` can be polled at any time.
    """

    def __init__(self, container: str, output_path: str) -> None:
        self.job_id = uuid.uuid4().hex[:12]
        self.container = container
        self.output_path = output_path
        self.latest: ProgressUpdate | None = None
        self.result: JobResult | None = None
        self.created_at = time.time()
        self.finished_at: float | None = None
        self._log: list[JobEvent] = []
        # Replaced after every append; readers wait on the current one
        self._appended = asyncio.Event()
        self._finished = asyncio.Event()
        self._task: asyncio.Task | None = None

    @property
    def done(self) -> bool:
        return self.result is not None

    def _append(self, event: JobEvent) -> None:
        self._log.append(event)
        appended, self._appended = self._appended, asyncio.Event()
        appended.set()

    def publish(self, update: ProgressUpdate) -> None:
        if self.result is not None:
            return
        self.latest = update
        self._append(update)

    def finish(self, result: JobResult) -> None:
        if self.result is not None:
            return
        self.result = result
        self.finished_at = time.time()
        self._append(result)
        self._finished.set()

    async def events(self) -> AsyncIterator[JobEvent]:
        """Yield updates in arrival order, then the terminal result.

        Events logged before the call are replayed first.
        """
        cursor = 0
        while True:
            while cursor < len(self._log):
                event = self._log[cursor]
                cursor += 1
                yield event
                if isinstance(event, JobResult):
                    return
            await self._appended.wait()

    async def wait(self) -> JobResult:
        await self._finished.wait()
        return self.result


class Downloader:
    """Starts and tracks relay-and-mux jobs."""

    def __init__(
        self,
        client: httpx.AsyncClient | None = None,
        endpoint_factory: EndpointFactory = open_endpoint,
        launcher: ProcessLauncher = spawn_process,
        binary: str | None = None,
        catalog_fetcher: Callable[[str], VideoCatalog] = CatalogService.fetch_catalog,
    ) -> None:
        self._owns_client = client is None
        self._client = client or create_http_client()
        self._endpoint_factory = endpoint_factory
        self._launcher = launcher
        self._binary = binary or settings.FFMPEG_BINARY
        self._catalog_fetcher = catalog_fetcher

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    async def download(
        self, url: str, options: DownloadOptions | None = None
    ) -> tuple[VideoMetadata, dict[str, JobHandle]]:
        """Fetch the catalog for *url* and start one job per target container.

        Catalog errors propagate before any job is started.
        """
        # Run blocking yt-dlp call in a thread to avoid blocking the event loop
        catalog = await asyncio.to_thread(self._catalog_fetcher, url)
        handles = await self.start_jobs(catalog, options)
        return catalog.metadata, handles

    async def start_jobs(
        self, catalog: VideoCatalog, options: DownloadOptions | None = None
    ) -> dict[str, JobHandle]:
        """Start jobs for every target container with a complete selection."""
        options = options or DownloadOptions()
        selections = select_all(catalog.sources, options.target_formats, options.criteria)
        handles: dict[str, JobHandle] = {}
        for container, selection in selections.items():
            context = VideoContext.build(catalog.metadata, container, selection)
            handles[container] = await self.start_job(selection, context, options)
        return handles

    async def start_job(
        self,
        selection: SourceSelection,
        context: VideoContext,
        options: DownloadOptions,
    ) -> JobHandle:
        """Open relays, launch ffmpeg, and return the job's handle.

        Option values are resolved before any relay is opened.  Any failure
        while preparing or launching the job is reported through the
        handle's result, with the job's relays already closed.
        """
        handle = JobHandle(selection.container, "")
        try:
            directory, filename = options.resolve_output(context)
            handle.output_path = os.path.join(directory, sanitize_output_filename(filename))
            extra_args = options.resolve_extra_args(context)
            metadata = options.resolve_metadata(context)
        except Exception as e:
            logger.error(
                f"Invalid options for {selection.container} job {handle.job_id}: {e!r}",
                exc_info=True,
            )
            handle.finish(JobResult.failed(handle.output_path, f"Invalid download options: {e!r}"))
            return handle

        output_path = handle.output_path
        logger.info(f"Starting {selection.container} job {handle.job_id} -> {output_path}")

        endpoints: list[RelayEndpoint] = []
        try:
            for track in TRACK_ORDER:
                source = selection.get(track)
                endpoints.append(await self._endpoint_factory(source.url, self._client))
            spec = MuxJobSpec(
                track_inputs={
                    track: endpoint.input_url for track, endpoint in zip(TRACK_ORDER, endpoints)
                },
                output_path=output_path,
                extra_args=extra_args,
                metadata=metadata,
            )
            os.makedirs(directory or ".", exist_ok=True)
            controller = MuxController(
                spec, endpoints, binary=self._binary, launcher=self._launcher
            )
            await controller.launch()
        except VideoDownloaderError as e:
            self._close_all(endpoints)
            handle.finish(JobResult.failed(output_path, e.message))
            return handle
        except Exception as e:
            logger.error(f"Failed to prepare job {handle.job_id}: {e}", exc_info=True)
            self._close_all(endpoints)
            handle.finish(JobResult.failed(output_path, f"Failed to prepare job: {e}"))
            return handle

        handle._task = asyncio.create_task(self._run(handle, controller))
        return handle

    async def _run(self, handle: JobHandle, controller: MuxController) -> None:
        def _emit(update: ProgressUpdate) -> None:
            logger.debug(f"Job {handle.job_id}: {describe_progress(update)}")
            handle.publish(update)

        try:
            result = await controller.run(_emit)
        except Exception as e:
            logger.error(f"Job {handle.job_id} crashed: {e}", exc_info=True)
            controller.close_endpoints()
            result = JobResult.failed(handle.output_path, f"Unexpected error: {e}")
        handle.finish(result)

    @staticmethod
    def _close_all(endpoints: list[RelayEndpoint]) -> None:
        for endpoint in endpoints:
            endpoint.close()
