"""Per-asset session state for the Reelscope service."""
from __future__ import annotations

import asyncio
import logging
from pathlib import Path
from typing import Dict, List, Optional

from src.pipeline.cache import FrameCache
from src.pipeline.frames import FrameExtractor
from src.pipeline.parser import parse_analysis
from src.pipeline.processing import AnalysisClient, Compressor, PipelineObserver, ProcessingPipeline
from src.pipeline.types import FrameEntry, ParsedAnalysis, ProcessingState, SourceMedia, VideoAsset

from .remix import RemixResult


class UploadRejected(ValueError):
    """Raised when an uploaded file cannot become an asset."""

    def __init__(self, message: str, status_code: int = 400) -> None:
        super().__init__(message)
        self.status_code = status_code


def validate_upload(media_type: Optional[str], size_bytes: int, max_bytes: int) -> None:
    if not media_type or not media_type.lower().startswith("video/"):
        raise UploadRejected(f"Unsupported media type '{media_type}'; expected video/*", status_code=415)
    if size_bytes <= 0:
        raise UploadRejected("Uploaded file is empty", status_code=400)
    if max_bytes > 0 and size_bytes > max_bytes:
        raise UploadRejected(
            f"Uploaded file is {size_bytes} bytes; the limit is {max_bytes} bytes",
            status_code=413,
        )


class LoggingObserver(PipelineObserver):
    def __init__(self, asset_id: str, logger: logging.Logger) -> None:
        self._asset_id = asset_id
        self._logger = logger

    def on_state(self, state: ProcessingState) -> None:
        self._logger.info("Asset %s entered %s", self._asset_id, state.value)

    def on_status(self, message: str) -> None:
        self._logger.debug("Asset %s: %s", self._asset_id, message)


class AssetSession:
    """One asset with its pipeline, frame cache and background work.

    The pipeline task and the progress ticker live here so that replacing or
    clearing the asset can cancel them before the stored file is released.
    """

    def __init__(
        self,
        asset: VideoAsset,
        compressor: Compressor,
        analyzer: AnalysisClient,
        extractor: FrameExtractor,
        compression_threshold_bytes: int,
        frame_concurrency: int = 4,
        tick_interval_sec: float = 0.1,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self._logger = logger or logging.getLogger("reelscope.service.sessions")
        self.asset = asset
        self.pipeline = ProcessingPipeline(
            self.source_media(),
            compressor,
            analyzer,
            observer=LoggingObserver(asset.asset_id, self._logger),
            compression_threshold_bytes=compression_threshold_bytes,
            logger=logging.getLogger("reelscope.pipeline"),
        )
        self.frames = FrameCache(extractor, max_concurrency=frame_concurrency, logger=self._logger)
        self.frames.invalidate(asset.generation)
        self.task: Optional[asyncio.Task] = None
        self.run_id: Optional[str] = None
        self.remix: Optional[RemixResult] = None
        self._tick_interval = max(0.01, tick_interval_sec)

    @property
    def asset_id(self) -> str:
        return self.asset.asset_id

    @property
    def state(self) -> ProcessingState:
        return self.pipeline.state

    @property
    def document(self) -> Optional[str]:
        return self.pipeline.document

    def source_media(self) -> SourceMedia:
        return SourceMedia(path=self.asset.path, media_type=self.asset.media_type, size_bytes=self.asset.size_bytes)

    def parsed(self) -> Optional[ParsedAnalysis]:
        document = self.document
        return parse_analysis(document) if document else None

    async def run(self, retry: bool = False) -> Optional[str]:
        """Run the pipeline while a ticker advances the cosmetic progress."""
        ticker = asyncio.ensure_future(self._tick())
        try:
            if retry:
                return await self.pipeline.retry()
            return await self.pipeline.start()
        finally:
            ticker.cancel()

    async def _tick(self) -> None:
        while True:
            await asyncio.sleep(self._tick_interval)
            if self.pipeline.state in (ProcessingState.ENCODING, ProcessingState.ANALYZING):
                self.pipeline.tick()

    async def cancel(self) -> None:
        task = self.task
        self.task = None
        if task is None or task.done():
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass

    async def replace(self, path: Path, filename: str, media_type: str, size_bytes: int) -> VideoAsset:
        """Swap in a new binary: cancel work, release the old file, invalidate frames."""
        await self.cancel()
        previous = self.asset
        previous.release()
        self.asset = VideoAsset(
            asset_id=previous.asset_id,
            filename=filename,
            media_type=media_type,
            path=path,
            size_bytes=size_bytes,
            generation=previous.generation + 1,
        )
        self.frames.invalidate(self.asset.generation)
        self.pipeline.reset(self.source_media())
        self.run_id = None
        self.remix = None
        return self.asset

    async def close(self) -> None:
        await self.cancel()
        self.asset.release()
        self.frames.invalidate(self.asset.generation + 1)
        self.remix = None

    async def extract_frames(self) -> List[FrameEntry]:
        parsed = self.parsed()
        if parsed is None:
            return []
        return await self.frames.ensure_all(self.asset.path, parsed.timeline_segments)

    def frame_states(self) -> List[FrameEntry]:
        parsed = self.parsed()
        if parsed is None:
            return []
        return self.frames.states(parsed.timeline_segments)


class SessionRegistry:
    """Holds the live sessions, one per asset id."""

    def __init__(self) -> None:
        self._sessions: Dict[str, AssetSession] = {}

    def add(self, session: AssetSession) -> None:
        self._sessions[session.asset_id] = session

    def get(self, asset_id: str) -> Optional[AssetSession]:
        return self._sessions.get(asset_id)

    def pop(self, asset_id: str) -> Optional[AssetSession]:
        return self._sessions.pop(asset_id, None)

    def __len__(self) -> int:
        return len(self._sessions)

    async def close_all(self) -> None:
        for asset_id in list(self._sessions):
            session = self._sessions.pop(asset_id)
            await session.close()


__all__ = [
    "AssetSession",
    "LoggingObserver",
    "SessionRegistry",
    "UploadRejected",
    "validate_upload",
]
