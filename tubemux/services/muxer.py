"""ffmpeg invocation for muxing relayed audio and video into one file."""

import asyncio
import codecs
import math
from collections import deque
from dataclasses import dataclass, field
from typing import Awaitable, Callable, Mapping, Protocol, Sequence

from tubemux.core.config import settings
from tubemux.core.logging import get_logger
from tubemux.services.errors import ProcessLaunchError
from tubemux.services.progress import ProgressParser, ProgressUpdate

logger = get_logger(__name__)

TRACK_ORDER = ("audio", "video")

# Keep the last few diagnostic chunks for failure reports
_STDERR_TAIL_CHUNKS = 20


@dataclass(frozen=True)
class MuxJobSpec:
    """Everything needed to build one ffmpeg command line."""

    track_inputs: Mapping[str, str]
    # Must be a seekable file: the container index is written at the end
    output_path: str
    codec_policy: str = "copy"
    extra_args: tuple[str, ...] = ()
    metadata: tuple[tuple[str, str], ...] = ()


@dataclass
class JobResult:
    """Terminal state of a mux job."""

    status: str
    output_path: str = ""
    reason: str | None = None
    return_code: int | None = None

    @property
    def ok(self) -> bool:
        return self.status == "completed"

    @classmethod
    def completed(cls, output_path: str, return_code: int | None = 0) -> "JobResult":
        return cls(status="completed", output_path=output_path, return_code=return_code)

    @classmethod
    def failed(
        cls, output_path: str, reason: str, return_code: int | None = None
    ) -> "JobResult":
        return cls(status="failed", output_path=output_path, reason=reason, return_code=return_code)


def format_metadata_pair(key: str, value: str) -> str:
    return f'"{key}"="{value}"'


def build_mux_command(spec: MuxJobSpec, binary: str | None = None) -> list[str]:
    """Build the ffmpeg argument list for *spec*.

    Order matters to ffmpeg: inputs, codec policy, extra arguments,
    metadata pairs, then the output path.
    """
    cmd: list[str] = [binary or settings.FFMPEG_BINARY]
    for track in TRACK_ORDER:
        cmd.extend(["-i", spec.track_inputs[track]])
    cmd.extend(["-c", spec.codec_policy])
    cmd.extend(spec.extra_args)
    for key, value in spec.metadata:
        cmd.extend(["-metadata", format_metadata_pair(key, value)])
    cmd.append(spec.output_path)
    return cmd


class MuxProcess(Protocol):
    """The subset of :class:`asyncio.subprocess.Process` the controller uses."""

    stderr: asyncio.StreamReader | None
    returncode: int | None

    async def wait(self) -> int: ...

    def kill(self) -> None: ...


class Closeable(Protocol):
    error: Exception | None

    def close(self) -> None: ...


ProcessLauncher = Callable[[Sequence[str]], Awaitable[MuxProcess]]


async def spawn_process(cmd: Sequence[str]) -> MuxProcess:
    """Start *cmd* with stderr piped and stdin/stdout discarded."""
    return await asyncio.create_subprocess_exec(
        *cmd,
        stdin=asyncio.subprocess.DEVNULL,
        stdout=asyncio.subprocess.DEVNULL,
        stderr=asyncio.subprocess.PIPE,
    )


@dataclass
class MuxController:
    """Runs one ffmpeg process and reports its progress.

    The controller owns the job's relay endpoints and closes them once the
    process has exited.
    """

    spec: MuxJobSpec
    endpoints: Sequence[Closeable] = ()
    binary: str | None = None
    launcher: ProcessLauncher = spawn_process
    chunk_size: int = field(default_factory=lambda: settings.DIAGNOSTIC_CHUNK_SIZE)
    parser: ProgressParser = field(default_factory=ProgressParser)
    process: MuxProcess | None = None
    _stderr_tail: deque = field(
        default_factory=lambda: deque(maxlen=_STDERR_TAIL_CHUNKS), init=False, repr=False
    )

    @property
    def command(self) -> list[str]:
        return build_mux_command(self.spec, self.binary)

    async def launch(self) -> MuxProcess:
        """Start ffmpeg.

        Raises:
            ProcessLaunchError: If the executable cannot be started
        """
        cmd = self.command
        logger.info(f"Launching muxer for {self.spec.output_path}")
        logger.debug(f"Mux command: {cmd}")
        try:
            self.process = await self.launcher(cmd)
        except OSError as e:
            logger.error(f"Failed to start muxer {cmd[0]!r}: {e}")
            self.close_endpoints()
            raise ProcessLaunchError(f"Failed to start {cmd[0]}: {e}")
        return self.process

    async def run(self, emit: Callable[[ProgressUpdate], None]) -> JobResult:
        """Pump stderr through the parser until exit, then clean up.

        Updates are passed to *emit* in the order their chunks arrived.  If
        pumping fails, the process is killed and reaped before the error
        propagates.
        """
        if self.process is None:
            await self.launch()
        process = self.process
        try:
            if process.stderr is not None:
                await self._pump_diagnostics(process.stderr, emit)
            return_code = await process.wait()
        except BaseException:
            await self._kill()
            raise
        finally:
            self.close_endpoints()
        return self._result(return_code)

    async def _kill(self) -> None:
        process = self.process
        if process is None or process.returncode is not None:
            return
        logger.warning(f"Killing muxer for {self.spec.output_path}")
        try:
            process.kill()
        except ProcessLookupError:
            pass
        await process.wait()

    async def _pump_diagnostics(
        self,
        stderr: asyncio.StreamReader,
        emit: Callable[[ProgressUpdate], None],
    ) -> None:
        decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
        while True:
            data = await stderr.read(self.chunk_size)
            if not data:
                break
            text = decoder.decode(data)
            if not text:
                continue
            self._stderr_tail.append(text)
            update = self.parser.feed(text)
            if update is not None:
                emit(update)

    def close_endpoints(self) -> None:
        for endpoint in self.endpoints:
            endpoint.close()

    def _result(self, return_code: int) -> JobResult:
        output_path = self.spec.output_path
        fetch_errors = [e.error for e in self.endpoints if e.error is not None]
        if return_code != 0:
            tail = "".join(self._stderr_tail).strip().splitlines()
            detail = tail[-1] if tail else "no diagnostic output"
            logger.error(f"Muxer exited with {return_code} for {output_path}: {detail}")
            return JobResult.failed(
                output_path, f"ffmpeg exited with code {return_code}: {detail}", return_code
            )
        if fetch_errors:
            logger.error(f"Remote fetch failed for {output_path}: {fetch_errors[0]}")
            return JobResult.failed(output_path, str(fetch_errors[0]), return_code)
        logger.info(f"Mux complete: {output_path}")
        return JobResult.completed(output_path, return_code)


def describe_progress(update: ProgressUpdate) -> str:
    """Short human-readable summary used in debug logs."""
    if math.isnan(update.progress):
        return f"{update.sample.time:.2f}s muxed"
    return f"{update.progress * 100:.1f}%"
