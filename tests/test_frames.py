from __future__ import annotations

import asyncio
import threading
import time
from pathlib import Path

import cv2
import numpy as np
import pytest

from src.pipeline import frames
from src.pipeline.cache import FrameCache
from src.pipeline.frames import FrameExtractor, FrameExtractorConfig, clamp_offset, probe_duration
from src.pipeline.types import FrameState, TimelineSegment

FPS = 10
SECONDS = 2


@pytest.fixture()
def synthetic_video(tmp_path: Path) -> Path:
    path = tmp_path / "synthetic.avi"
    writer = cv2.VideoWriter(str(path), cv2.VideoWriter_fourcc(*"MJPG"), FPS, (64, 48))
    assert writer.isOpened()
    for index in range(FPS * SECONDS):
        frame = np.full((48, 64, 3), (index * 12) % 256, dtype=np.uint8)
        writer.write(frame)
    writer.release()
    return path


def _extractor(**overrides) -> FrameExtractor:
    config = FrameExtractorConfig(backend="opencv", timeout_sec=10.0)
    for key, value in overrides.items():
        setattr(config, key, value)
    return FrameExtractor(config)


def test_clamp_offset() -> None:
    assert clamp_offset(5, 10.0) == 5
    assert clamp_offset(30, 10.0) == pytest.approx(9.9)
    assert clamp_offset(-3, 10.0) == 0
    assert clamp_offset(12, None) == 12
    assert clamp_offset(1, 0.05) == 0


def test_probe_duration(synthetic_video: Path, tmp_path: Path) -> None:
    assert probe_duration(synthetic_video) == pytest.approx(SECONDS, abs=0.2)
    assert probe_duration(tmp_path / "missing.avi") is None


def test_extract_returns_jpeg(synthetic_video: Path) -> None:
    image = asyncio.run(_extractor().extract(synthetic_video, 1.0))

    assert image is not None
    assert image[:2] == b"\xff\xd8"
    decoded = cv2.imdecode(np.frombuffer(image, dtype=np.uint8), cv2.IMREAD_COLOR)
    assert decoded.shape[:2] == (48, 64)


def test_offset_past_end_is_clamped(synthetic_video: Path) -> None:
    image = asyncio.run(_extractor().extract(synthetic_video, 3600))
    assert image is not None
    assert image[:2] == b"\xff\xd8"


def test_failures_resolve_to_none(synthetic_video: Path, tmp_path: Path) -> None:
    assert asyncio.run(_extractor().extract(tmp_path / "missing.avi", 1.0)) is None

    garbage = tmp_path / "garbage.mp4"
    garbage.write_bytes(b"not a video")
    assert asyncio.run(_extractor().extract(garbage, 0.0)) is None

    assert asyncio.run(_extractor(backend="quicktime").extract(synthetic_video, 0.0)) is None


def test_timeout_resolves_to_none(synthetic_video: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    extractor = _extractor(timeout_sec=0.05)

    finished = []

    def slow_extract(path, seconds, cancelled):
        time.sleep(0.3)
        finished.append(cancelled.is_set())
        return b"late"

    monkeypatch.setattr(extractor, "_extract_sync", slow_extract)
    assert asyncio.run(extractor.extract(synthetic_video, 0.0)) is None
    # the call returns only after the worker stopped, and the worker was told to stop
    assert finished == [True]


def test_extract_many_preserves_order(synthetic_video: Path) -> None:
    offsets = [1.5, 0.0, 99.0, 0.5]
    images = asyncio.run(_extractor(max_concurrency=2).extract_many(synthetic_video, offsets))

    assert len(images) == len(offsets)
    assert all(image is not None and image[:2] == b"\xff\xd8" for image in images)
    first_frame = asyncio.run(_extractor().extract(synthetic_video, 0.0))
    assert images[1] == first_frame


class SlowOpeningCapture:
    """Stands in for cv2.VideoCapture, counting decoders that are still open."""

    lock = threading.Lock()
    open_count = 0
    peak = 0

    def __init__(self, *args) -> None:
        with SlowOpeningCapture.lock:
            SlowOpeningCapture.open_count += 1
            SlowOpeningCapture.peak = max(SlowOpeningCapture.peak, SlowOpeningCapture.open_count)
        self._released = False

    def isOpened(self) -> bool:  # noqa: N802 - OpenCV API naming
        time.sleep(0.2)
        return True

    def get(self, prop) -> float:
        return 10.0 if prop == cv2.CAP_PROP_FPS else 20.0

    def set(self, prop, value) -> bool:
        return True

    def read(self):
        return True, np.zeros((48, 64, 3), dtype=np.uint8)

    def release(self) -> None:
        if not self._released:
            self._released = True
            with SlowOpeningCapture.lock:
                SlowOpeningCapture.open_count -= 1


def test_timed_out_decoders_are_released_within_concurrency_bound(
    synthetic_video: Path, monkeypatch: pytest.MonkeyPatch
) -> None:
    monkeypatch.setattr(SlowOpeningCapture, "open_count", 0)
    monkeypatch.setattr(SlowOpeningCapture, "peak", 0)
    monkeypatch.setattr(frames.cv2, "VideoCapture", SlowOpeningCapture)
    extractor = _extractor(timeout_sec=0.05)
    segments = [TimelineSegment(raw_block_text="", timestamp_token=f"00:0{index}") for index in range(8)]

    async def scenario():
        cache = FrameCache(extractor, max_concurrency=2)
        cache.invalidate(1)
        return await cache.ensure_all(synthetic_video, segments)

    entries = asyncio.run(scenario())

    assert [entry.state for entry in entries] == [FrameState.UNAVAILABLE] * 8
    assert SlowOpeningCapture.open_count == 0
    assert SlowOpeningCapture.peak <= 2
