"""ffmpeg-backed video compression for oversized uploads."""
from __future__ import annotations

import asyncio
import logging
import shutil
import tempfile
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, List, Optional

from .frames import probe_duration
from .types import SourceMedia

FFMPEG_PATH = shutil.which("ffmpeg")

ProgressCallback = Callable[[int], None]


class CompressionError(RuntimeError):
    """Raised when a video cannot be re-encoded."""


@dataclass
class CompressionProfile:
    """Target profile tuned for model input rather than viewing quality."""

    height: int = 480
    frame_rate: int = 20
    video_codec: str = "libx264"
    crf: int = 32
    preset: str = "ultrafast"
    audio_codec: str = "aac"
    audio_bitrate: str = "64k"


def build_command(ffmpeg: str, source: Path, target: Path, profile: CompressionProfile) -> List[str]:
    return [
        ffmpeg,
        "-y",
        "-hide_banner",
        "-loglevel",
        "error",
        "-nostats",
        "-progress",
        "pipe:1",
        "-i",
        str(source),
        "-vf",
        f"scale=-2:{profile.height}",
        "-r",
        str(profile.frame_rate),
        "-c:v",
        profile.video_codec,
        "-crf",
        str(profile.crf),
        "-preset",
        profile.preset,
        "-c:a",
        profile.audio_codec,
        "-b:a",
        profile.audio_bitrate,
        str(target),
    ]


def progress_from_line(line: str, duration: Optional[float]) -> Optional[int]:
    """Map an ffmpeg ``-progress`` line onto 0-100, or ``None`` if not a time line."""
    key, _, value = line.strip().partition("=")
    if key == "progress" and value == "end":
        return 100
    if key not in ("out_time_us", "out_time_ms") or not duration or duration <= 0:
        return None
    try:
        elapsed = int(value) / 1_000_000
    except ValueError:
        return None
    if elapsed <= 0:
        return None
    return max(0, min(100, round(elapsed / duration * 100)))


class VideoCompressor:
    """Re-encodes a video to a small fixed profile, reporting 0-100 progress."""

    def __init__(
        self,
        profile: CompressionProfile | None = None,
        work_dir: Path | None = None,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self._profile = profile or CompressionProfile()
        self._work_dir = work_dir
        self._logger = logger or logging.getLogger(__name__)

    async def compress(self, source: SourceMedia, on_progress: ProgressCallback) -> SourceMedia:
        if not FFMPEG_PATH:
            raise CompressionError("Compression engine failed to initialize: ffmpeg not found in PATH")
        if not source.path.exists():
            raise CompressionError(f"Media path does not exist: {source.path}")

        duration = await asyncio.to_thread(probe_duration, source.path)
        if self._work_dir is not None:
            self._work_dir.mkdir(parents=True, exist_ok=True)
        handle = tempfile.NamedTemporaryFile(
            prefix="compressed_", suffix=".mp4", dir=self._work_dir, delete=False
        )
        handle.close()
        target = Path(handle.name)

        cmd = build_command(FFMPEG_PATH, source.path, target, self._profile)
        self._logger.debug("Compressing %s (duration=%s)", source.path.name, duration)
        process = None
        stderr_task = None
        try:
            process = await asyncio.create_subprocess_exec(
                *cmd,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
            assert process.stdout is not None and process.stderr is not None
            stderr_task = asyncio.ensure_future(process.stderr.read())
            last_reported = -1
            async for raw in process.stdout:
                percent = progress_from_line(raw.decode(errors="replace"), duration)
                if percent is not None and percent > last_reported:
                    last_reported = percent
                    on_progress(percent)
            stderr = await stderr_task
            return_code = await process.wait()
            if return_code != 0:
                raise CompressionError(f"ffmpeg exited with {return_code}: {stderr.decode(errors='replace').strip()}")
            size = target.stat().st_size
            if size <= 0:
                raise CompressionError("ffmpeg produced an empty file")
        except BaseException:
            if stderr_task is not None and not stderr_task.done():
                stderr_task.cancel()
            if process is not None and process.returncode is None:
                process.kill()
                await process.wait()
            target.unlink(missing_ok=True)
            raise

        if last_reported < 100:
            on_progress(100)
        self._logger.info(
            "Compressed %s from %d to %d bytes", source.path.name, source.size_bytes, size
        )
        return SourceMedia(path=target, media_type="video/mp4", size_bytes=size, derived=True)


__all__ = [
    "CompressionError",
    "CompressionProfile",
    "VideoCompressor",
    "build_command",
    "progress_from_line",
]
