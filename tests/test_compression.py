from __future__ import annotations

import asyncio
import os
from pathlib import Path

import pytest

from src.pipeline import compression
from src.pipeline.compression import CompressionError, CompressionProfile, VideoCompressor, build_command, progress_from_line
from src.pipeline.types import SourceMedia


def test_build_command_targets_small_profile(tmp_path: Path) -> None:
    cmd = build_command("ffmpeg", tmp_path / "in.mov", tmp_path / "out.mp4", CompressionProfile())

    assert cmd[0] == "ffmpeg"
    assert cmd[cmd.index("-progress") + 1] == "pipe:1"
    assert cmd[cmd.index("-vf") + 1] == "scale=-2:480"
    assert cmd[cmd.index("-r") + 1] == "20"
    assert cmd[cmd.index("-crf") + 1] == "32"
    assert cmd[cmd.index("-c:a") + 1] == "aac"
    assert cmd[-1] == str(tmp_path / "out.mp4")


@pytest.mark.parametrize(
    "line, duration, expected",
    [
        ("out_time_us=5000000", 10.0, 50),
        ("out_time_ms=2500000\n", 10.0, 25),
        ("out_time_us=20000000", 10.0, 100),
        ("progress=end", None, 100),
        ("progress=continue", 10.0, None),
        ("frame=42", 10.0, None),
        ("out_time_us=N/A", 10.0, None),
        ("out_time_us=0", 10.0, None),
        ("out_time_us=5000000", None, None),
    ],
)
def test_progress_from_line(line: str, duration, expected) -> None:
    assert progress_from_line(line, duration) == expected


def test_compress_without_ffmpeg_raises(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(compression, "FFMPEG_PATH", None)
    source = tmp_path / "big.mp4"
    source.write_bytes(b"data")

    with pytest.raises(CompressionError):
        asyncio.run(
            VideoCompressor(work_dir=tmp_path).compress(
                SourceMedia(path=source, media_type="video/mp4", size_bytes=4), lambda percent: None
            )
        )


def test_compress_missing_source_raises(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(compression, "FFMPEG_PATH", "/usr/bin/ffmpeg")

    with pytest.raises(CompressionError):
        asyncio.run(
            VideoCompressor(work_dir=tmp_path).compress(
                SourceMedia(path=tmp_path / "missing.mp4", media_type="video/mp4", size_bytes=4),
                lambda percent: None,
            )
        )


def _fake_ffmpeg(tmp_path: Path, body: str) -> str:
    script = tmp_path / "fake-ffmpeg"
    script.write_text("#!/bin/sh\nfor last; do :; done\n" + body)
    script.chmod(0o755)
    return str(script)


@pytest.fixture()
def source_media(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> SourceMedia:
    monkeypatch.setattr(compression, "probe_duration", lambda path: 2.0)
    source = tmp_path / "big.mov"
    source.write_bytes(b"original")
    return SourceMedia(path=source, media_type="video/quicktime", size_bytes=8)


def test_compress_reports_progress_and_returns_derived_media(
    tmp_path: Path, monkeypatch: pytest.MonkeyPatch, source_media: SourceMedia
) -> None:
    script = _fake_ffmpeg(
        tmp_path,
        "echo out_time_us=500000\n"
        "echo out_time_us=1000000\n"
        "echo out_time_us=1000000\n"
        "echo out_time_us=1500000\n"
        "echo progress=end\n"
        'printf smaller > "$last"\n',
    )
    monkeypatch.setattr(compression, "FFMPEG_PATH", script)
    reported = []

    result = asyncio.run(VideoCompressor(work_dir=tmp_path / "work").compress(source_media, reported.append))

    assert reported == [25, 50, 75, 100]
    assert result.derived is True
    assert result.media_type == "video/mp4"
    assert result.size_bytes == len(b"smaller")
    assert result.path.read_bytes() == b"smaller"
    assert result.path.name.startswith("compressed_")


def test_compress_failure_removes_partial_output(
    tmp_path: Path, monkeypatch: pytest.MonkeyPatch, source_media: SourceMedia
) -> None:
    script = _fake_ffmpeg(tmp_path, 'echo out_time_us=500000\nprintf partial > "$last"\necho "encoder exploded" >&2\nexit 3\n')
    monkeypatch.setattr(compression, "FFMPEG_PATH", script)
    work_dir = tmp_path / "work"

    with pytest.raises(CompressionError, match="exited with 3: encoder exploded"):
        asyncio.run(VideoCompressor(work_dir=work_dir).compress(source_media, lambda percent: None))
    assert list(work_dir.glob("compressed_*")) == []


def test_cancelled_compression_kills_ffmpeg_and_cleans_up(
    tmp_path: Path, monkeypatch: pytest.MonkeyPatch, source_media: SourceMedia
) -> None:
    pid_file = tmp_path / "ffmpeg.pid"
    script = _fake_ffmpeg(tmp_path, f'echo $$ > "{pid_file}"\necho out_time_us=500000\nexec sleep 30\n')
    monkeypatch.setattr(compression, "FFMPEG_PATH", script)
    work_dir = tmp_path / "work"

    async def scenario() -> None:
        first_progress = asyncio.Event()

        def on_progress(percent: int) -> None:
            first_progress.set()

        task = asyncio.ensure_future(VideoCompressor(work_dir=work_dir).compress(source_media, on_progress))
        await asyncio.wait_for(first_progress.wait(), timeout=10)
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task

    asyncio.run(scenario())

    assert list(work_dir.glob("compressed_*")) == []
    with pytest.raises(ProcessLookupError):
        os.kill(int(pid_file.read_text()), 0)
