"""Key-frame extraction for timeline segments."""
from __future__ import annotations

import asyncio
import logging
import shutil
import subprocess
import threading
from dataclasses import dataclass
from pathlib import Path
from typing import List, Optional, Sequence

import cv2
import numpy as np

from .timestamps import format_timestamp

FFMPEG_PATH = shutil.which("ffmpeg")

SEEK_EPSILON_SEC = 0.1


class FrameExtractionError(RuntimeError):
    """Raised internally when a frame cannot be decoded."""


@dataclass
class FrameExtractorConfig:
    backend: str = "auto"  # auto | opencv | ffmpeg
    timeout_sec: float = 4.0
    jpeg_quality: int = 85
    max_concurrency: int = 4


def probe_duration(path: Path) -> Optional[float]:
    """Return the clip duration in seconds, or ``None`` when unknown."""
    capture = cv2.VideoCapture(str(path))
    try:
        if not capture.isOpened():
            return None
        fps = capture.get(cv2.CAP_PROP_FPS) or 0.0
        frame_count = capture.get(cv2.CAP_PROP_FRAME_COUNT) or 0.0
        if fps <= 0 or frame_count <= 0:
            return None
        return float(frame_count) / float(fps)
    finally:
        capture.release()


def clamp_offset(seconds: float, duration: Optional[float]) -> float:
    offset = max(0.0, float(seconds))
    if duration is None or duration <= 0:
        return offset
    return max(0.0, min(offset, duration - SEEK_EPSILON_SEC))


class FrameExtractor:
    """Seeks into a video and returns a JPEG snapshot, or ``None``.

    Extraction runs off the event loop and is bounded by a hard timeout. Every
    failure mode (unreadable source, seek past the end, decode error, timeout)
    resolves to ``None`` so a missing frame never fails the analysis.
    """

    def __init__(self, config: FrameExtractorConfig | None = None, logger: Optional[logging.Logger] = None) -> None:
        self._config = config or FrameExtractorConfig()
        self._logger = logger or logging.getLogger(__name__)

    async def extract(self, source: Path | str, seconds: float) -> Optional[bytes]:
        path = Path(source)
        cancelled = threading.Event()
        worker = asyncio.ensure_future(asyncio.to_thread(self._extract_sync, path, seconds, cancelled))
        try:
            return await asyncio.wait_for(asyncio.shield(worker), timeout=self._config.timeout_sec)
        except asyncio.TimeoutError:
            self._logger.warning("Frame extraction timed out for %s at %s", path.name, format_timestamp(seconds))
        except FrameExtractionError as error:
            self._logger.debug("Frame unavailable for %s at %s: %s", path.name, format_timestamp(seconds), error)
        except Exception as error:
            self._logger.warning("Frame extraction failed for %s at %s: %s", path.name, format_timestamp(seconds), error)
        finally:
            if not worker.done():
                # the worker releases the decoder; return only once it has
                cancelled.set()
                await asyncio.wait({worker})
                if not worker.cancelled() and worker.exception() is not None:
                    self._logger.debug("Abandoned frame worker for %s stopped: %s", path.name, worker.exception())
        return None

    async def extract_many(self, source: Path | str, offsets: Sequence[float]) -> List[Optional[bytes]]:
        """Extract several frames concurrently; results follow ``offsets`` order."""
        limit = asyncio.Semaphore(max(1, self._config.max_concurrency))

        async def _bounded(offset: float) -> Optional[bytes]:
            async with limit:
                return await self.extract(source, offset)

        return list(await asyncio.gather(*(_bounded(offset) for offset in offsets)))

    # ------------------------------------------------------------------
    def _select_backend(self) -> str:
        backend = self._config.backend.lower()
        if backend in ("auto", "opencv"):
            return backend
        if backend == "ffmpeg":
            if not FFMPEG_PATH:
                raise FrameExtractionError("ffmpeg backend requested but ffmpeg is not available in PATH")
            return "ffmpeg"
        raise FrameExtractionError(f"Unsupported frame backend '{self._config.backend}'")

    def _extract_sync(self, path: Path, seconds: float, cancelled: Optional[threading.Event] = None) -> bytes:
        cancelled = cancelled or threading.Event()
        if not path.exists():
            raise FrameExtractionError(f"Media path does not exist: {path}")
        backend = self._select_backend()
        if backend == "ffmpeg":
            return self._extract_via_ffmpeg(path, seconds, cancelled)
        try:
            return self._extract_via_opencv(path, seconds, cancelled)
        except FrameExtractionError as error:
            if backend == "auto" and FFMPEG_PATH and not cancelled.is_set():
                self._logger.debug("OpenCV extraction failed for %s: %s; falling back to ffmpeg", path.name, error)
                return self._extract_via_ffmpeg(path, seconds, cancelled)
            raise

    def _open_capture(self, path: Path) -> "cv2.VideoCapture":
        timeout_ms = max(1, int(self._config.timeout_sec * 1000))
        return cv2.VideoCapture(
            str(path),
            cv2.CAP_ANY,
            [cv2.CAP_PROP_OPEN_TIMEOUT_MSEC, timeout_ms, cv2.CAP_PROP_READ_TIMEOUT_MSEC, timeout_ms],
        )

    @staticmethod
    def _check_cancelled(cancelled: threading.Event) -> None:
        if cancelled.is_set():
            raise FrameExtractionError("extraction abandoned after timeout")

    def _extract_via_opencv(self, path: Path, seconds: float, cancelled: threading.Event) -> bytes:
        capture = self._open_capture(path)
        try:
            if not capture.isOpened():
                raise FrameExtractionError("OpenCV could not open the source")
            self._check_cancelled(cancelled)
            fps = capture.get(cv2.CAP_PROP_FPS) or 0.0
            frame_count = capture.get(cv2.CAP_PROP_FRAME_COUNT) or 0.0
            duration = frame_count / fps if fps > 0 and frame_count > 0 else None
            offset = clamp_offset(seconds, duration)
            if fps > 0:
                capture.set(cv2.CAP_PROP_POS_FRAMES, int(offset * fps))
            else:
                capture.set(cv2.CAP_PROP_POS_MSEC, offset * 1000.0)
            self._check_cancelled(cancelled)
            ok, frame = capture.read()
            if not ok or frame is None:
                raise FrameExtractionError(f"Unable to decode frame at {offset:.2f}s")
            return self._encode_jpeg(frame)
        finally:
            capture.release()

    def _extract_via_ffmpeg(self, path: Path, seconds: float, cancelled: threading.Event) -> bytes:
        if not FFMPEG_PATH:
            raise FrameExtractionError("ffmpeg executable not found in PATH")
        offset = clamp_offset(seconds, probe_duration(path))
        self._check_cancelled(cancelled)
        cmd = [
            FFMPEG_PATH,
            "-hide_banner",
            "-loglevel",
            "error",
            "-ss",
            f"{offset:.3f}",
            "-i",
            str(path),
            "-frames:v",
            "1",
            "-f",
            "image2pipe",
            "-vcodec",
            "png",
            "pipe:1",
        ]
        try:
            completed = subprocess.run(
                cmd,
                check=True,
                timeout=self._config.timeout_sec,
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
            )
        except subprocess.CalledProcessError as error:
            raise FrameExtractionError(f"ffmpeg failed at {offset:.2f}s: {error.stderr.decode().strip()}") from error
        except subprocess.TimeoutExpired as error:
            raise FrameExtractionError(f"ffmpeg timed out at {offset:.2f}s") from error

        buffer = np.frombuffer(completed.stdout, dtype=np.uint8)
        if buffer.size == 0:
            raise FrameExtractionError(f"ffmpeg produced no frame at {offset:.2f}s")
        frame = cv2.imdecode(buffer, cv2.IMREAD_COLOR)
        if frame is None:
            raise FrameExtractionError(f"Unable to decode frame at {offset:.2f}s")
        return self._encode_jpeg(frame)

    def _encode_jpeg(self, frame: np.ndarray) -> bytes:
        quality = max(1, min(100, int(self._config.jpeg_quality)))
        ok, encoded = cv2.imencode(".jpg", frame, [int(cv2.IMWRITE_JPEG_QUALITY), quality])
        if not ok:
            raise FrameExtractionError("JPEG encoding failed")
        return encoded.tobytes()


__all__ = [
    "FrameExtractor",
    "FrameExtractorConfig",
    "FrameExtractionError",
    "clamp_offset",
    "probe_duration",
]
