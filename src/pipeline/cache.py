"""In-memory key-frame cache for a single asset."""
from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, List, Optional, Sequence

from .frames import FrameExtractor
from .types import FrameEntry, FrameState, TimelineSegment


@dataclass(frozen=True)
class SegmentKey:
    """Identity of a segment's visual slot."""

    generation: int
    index: int
    timestamp_token: str


class FrameCache:
    """Tracks loading/ready/unavailable frames for the segments of one asset.

    Entries are keyed on the asset generation, so replacing or clearing the
    asset makes every older entry unreachable and any extraction still in
    flight for an older generation is discarded when it completes.
    """

    def __init__(
        self,
        extractor: FrameExtractor,
        max_concurrency: int = 4,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self._extractor = extractor
        self._limit = asyncio.Semaphore(max(1, max_concurrency))
        self._logger = logger or logging.getLogger(__name__)
        self._entries: Dict[SegmentKey, FrameEntry] = {}
        self._pending: Dict[SegmentKey, asyncio.Future] = {}
        self._generation = 0

    @property
    def generation(self) -> int:
        return self._generation

    def invalidate(self, generation: int) -> None:
        """Drop every entry and start accepting results for ``generation`` only."""
        self._generation = generation
        self._entries.clear()
        self._pending.clear()

    def get(self, index: int, segment: TimelineSegment) -> Optional[FrameEntry]:
        return self._entries.get(SegmentKey(self._generation, index, segment.timestamp_token))

    def states(self, segments: Sequence[TimelineSegment]) -> List[FrameEntry]:
        snapshot: List[FrameEntry] = []
        for index, segment in enumerate(segments):
            entry = self.get(index, segment)
            if entry is None:
                entry = FrameEntry(
                    state=FrameState.LOADING,
                    timestamp_token=segment.timestamp_token,
                    seconds=segment.seconds,
                )
            snapshot.append(entry)
        return snapshot

    async def ensure(self, source: Path, index: int, segment: TimelineSegment) -> FrameEntry:
        """Return the cached frame for a segment, extracting it when needed."""
        key = SegmentKey(self._generation, index, segment.timestamp_token)
        entry = self._entries.get(key)
        if entry is not None and entry.state != FrameState.LOADING:
            return entry

        pending = self._pending.get(key)
        if pending is None:
            self._entries[key] = FrameEntry(
                state=FrameState.LOADING,
                timestamp_token=segment.timestamp_token,
                seconds=segment.seconds,
            )
            pending = asyncio.ensure_future(self._bounded_extract(source, segment.seconds))
            self._pending[key] = pending
        image = await asyncio.shield(pending)

        if key.generation != self._generation:
            self._logger.debug("Discarding stale frame for segment %s (generation %s)", index, key.generation)
            return FrameEntry(
                state=FrameState.UNAVAILABLE,
                timestamp_token=segment.timestamp_token,
                seconds=segment.seconds,
                metadata={"stale": True},
            )

        self._pending.pop(key, None)
        resolved = FrameEntry(
            state=FrameState.READY if image else FrameState.UNAVAILABLE,
            image=image,
            timestamp_token=segment.timestamp_token,
            seconds=segment.seconds,
        )
        self._entries[key] = resolved
        return resolved

    async def _bounded_extract(self, source: Path, seconds: float) -> Optional[bytes]:
        async with self._limit:
            return await self._extractor.extract(source, seconds)

    async def ensure_all(self, source: Path, segments: Sequence[TimelineSegment]) -> List[FrameEntry]:
        """Extract frames for every segment concurrently, in document order."""
        return list(
            await asyncio.gather(*(self.ensure(source, index, segment) for index, segment in enumerate(segments)))
        )


__all__ = ["FrameCache", "SegmentKey"]
