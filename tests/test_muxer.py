"""Tests for ffmpeg command construction and process control."""
import math

import pytest

from mux_fakes import FailingLauncher, FakeEndpoint, FakeLauncher, FakeProcess
from tubemux.services.errors import ProcessLaunchError, RemoteFetchError
from tubemux.services.muxer import JobResult, MuxController, MuxJobSpec, build_mux_command
from tubemux.services.progress import ProgressUpdate


def _spec(**overrides) -> MuxJobSpec:
    values = dict(
        track_inputs={"video": "unix:/tmp/pipe/v", "audio": "unix:/tmp/pipe/a"},
        output_path="/downloads/Test Video [dQw4w9WgXcQ].mp4",
        extra_args=("-movflags", "faststart"),
        metadata=(("title", "Test Video"), ("artist", "Test Channel")),
    )
    values.update(overrides)
    return MuxJobSpec(**values)


class TestBuildMuxCommand:
    """Tests for argument order."""

    def test_full_argument_order(self) -> None:
        cmd = build_mux_command(_spec(), binary="ffmpeg")
        assert cmd == [
            "ffmpeg",
            "-i", "unix:/tmp/pipe/a",
            "-i", "unix:/tmp/pipe/v",
            "-c", "copy",
            "-movflags", "faststart",
            "-metadata", '"title"="Test Video"',
            "-metadata", '"artist"="Test Channel"',
            "/downloads/Test Video [dQw4w9WgXcQ].mp4",
        ]

    def test_audio_input_always_first(self) -> None:
        cmd = build_mux_command(_spec(), binary="ffmpeg")
        assert cmd.index("unix:/tmp/pipe/a") < cmd.index("unix:/tmp/pipe/v")

    def test_without_extras_or_metadata(self) -> None:
        cmd = build_mux_command(_spec(extra_args=(), metadata=()), binary="/usr/bin/ffmpeg")
        assert cmd == [
            "/usr/bin/ffmpeg",
            "-i", "unix:/tmp/pipe/a",
            "-i", "unix:/tmp/pipe/v",
            "-c", "copy",
            "/downloads/Test Video [dQw4w9WgXcQ].mp4",
        ]

    def test_output_path_is_last(self) -> None:
        cmd = build_mux_command(_spec(), binary="ffmpeg")
        assert cmd[-1] == _spec().output_path


class TestMuxController:
    """Tests for launching ffmpeg and reporting its progress."""

    @pytest.mark.asyncio
    async def test_missing_binary_raises_launch_error(self) -> None:
        endpoints = [FakeEndpoint("a"), FakeEndpoint("v")]
        controller = MuxController(
            _spec(), endpoints, binary="/nonexistent/tubemux-ffmpeg-binary"
        )
        with pytest.raises(ProcessLaunchError):
            await controller.launch()
        assert all(e.closed for e in endpoints)

    @pytest.mark.asyncio
    async def test_launcher_oserror_raises_launch_error(self) -> None:
        controller = MuxController(_spec(), launcher=FailingLauncher())
        with pytest.raises(ProcessLaunchError, match="ffmpeg"):
            await controller.launch()

    @pytest.mark.asyncio
    async def test_updates_in_order_then_endpoints_closed(self) -> None:
        chunks = [
            "Input #0, matroska,webm, from 'unix:/tmp/pipe/a':\n  Duration: 00:00:20.00, start: 0.0",
            "frame=    1 fps=0.0 q=-1.0 size=       1kB time=00:00:05.00 bitrate= 1.6kbits/s speed=10x",
            "frame=    2 fps=0.0 q=-1.0 size=       2kB time=00:00:10.00 bitrate= 1.6kbits/s speed=10x",
            "frame=    3 fps=0.0 q=-1.0 Lsize=      3kB time=00:00:20.00 bitrate= 1.2kbits/s speed=10x",
        ]
        endpoints = [FakeEndpoint("a"), FakeEndpoint("v")]
        launcher = FakeLauncher(FakeProcess(chunks))
        controller = MuxController(_spec(), endpoints, binary="ffmpeg", launcher=launcher)

        updates: list[ProgressUpdate] = []

        def emit(update: ProgressUpdate) -> None:
            assert not any(e.closed for e in endpoints)
            updates.append(update)

        result = await controller.run(emit)

        assert launcher.commands == [build_mux_command(_spec(), binary="ffmpeg")]
        assert [u.sample.frame for u in updates] == [1, 2, 3]
        assert [u.progress for u in updates] == [0.25, 0.5, 1.0]
        assert updates[-1].sample.is_final
        assert all(e.closed for e in endpoints)
        assert result == JobResult.completed(_spec().output_path, 0)

    @pytest.mark.asyncio
    async def test_utf8_split_across_chunks(self) -> None:
        title = "Café"
        raw = f"Output #0, webm, to '{title}.webm':".encode()
        split = raw.index("é".encode()) + 1
        process = FakeProcess()
        process.stderr._chunks.extend([raw[:split], raw[split:]])
        controller = MuxController(_spec(), launcher=FakeLauncher(process))

        await controller.run(lambda update: None)

        assert "".join(controller._stderr_tail) == raw.decode()

    @pytest.mark.asyncio
    async def test_progress_nan_without_duration(self) -> None:
        chunks = ["frame=    1 fps=0.0 q=-1.0 size=1kB time=00:00:05.00 bitrate=1kbits/s speed=1x"]
        controller = MuxController(_spec(), launcher=FakeLauncher(FakeProcess(chunks)))
        updates: list[ProgressUpdate] = []

        await controller.run(updates.append)

        assert len(updates) == 1
        assert math.isnan(updates[0].progress)

    @pytest.mark.asyncio
    async def test_nonzero_exit_is_failure(self) -> None:
        chunks = ["unix:/tmp/pipe/a: Invalid data found when processing input\n"]
        endpoints = [FakeEndpoint("a"), FakeEndpoint("v")]
        controller = MuxController(
            _spec(), endpoints, launcher=FakeLauncher(FakeProcess(chunks, returncode=1))
        )

        result = await controller.run(lambda update: None)

        assert not result.ok
        assert result.return_code == 1
        assert "Invalid data found" in result.reason
        assert all(e.closed for e in endpoints)

    @pytest.mark.asyncio
    async def test_fetch_error_is_failure(self) -> None:
        endpoints = [
            FakeEndpoint("a", error=RemoteFetchError("HTTP error 403 while fetching remote source")),
            FakeEndpoint("v"),
        ]
        controller = MuxController(_spec(), endpoints, launcher=FakeLauncher(FakeProcess()))

        result = await controller.run(lambda update: None)

        assert result.status == "failed"
        assert "403" in result.reason

    @pytest.mark.asyncio
    async def test_pump_error_kills_and_reaps_process(self) -> None:
        process = FakeProcess(["Duration: 00:00:20.00"], error=ConnectionResetError("stderr closed"))
        endpoints = [FakeEndpoint("a"), FakeEndpoint("v")]
        controller = MuxController(_spec(), endpoints, launcher=FakeLauncher(process))

        with pytest.raises(ConnectionResetError):
            await controller.run(lambda update: None)

        assert process.killed
        assert process.wait_calls == 1
        assert process.returncode == -9
        assert all(e.closed for e in endpoints)

    @pytest.mark.asyncio
    async def test_clean_exit_does_not_kill(self) -> None:
        process = FakeProcess()
        controller = MuxController(_spec(), launcher=FakeLauncher(process))

        await controller.run(lambda update: None)

        assert not process.killed
        assert process.wait_calls == 1
