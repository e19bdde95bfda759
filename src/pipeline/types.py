"""Typed primitives for the Reelscope analysis pipeline."""
from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Optional, Tuple

from .timestamps import parse_timestamp

UNKNOWN_SPEAKER = "Unknown Speaker"
NEUTRAL_SENTIMENT = "Neutral"
NO_DIALOGUE = "No dialogue detected."
DEFAULT_TIMESTAMP = "00:00"
DEFAULT_SEGMENT_TITLE = "Event Segment"
OBSERVATION_TITLE = "Observation"


class ProcessingState(str, Enum):
    """Lifecycle states of a single asset pipeline."""

    IDLE = "idle"
    COMPRESSING = "compressing"
    ENCODING = "encoding"
    ANALYZING = "analyzing"
    COMPLETE = "complete"
    ERROR = "error"

    @property
    def active(self) -> bool:
        return self in (ProcessingState.COMPRESSING, ProcessingState.ENCODING, ProcessingState.ANALYZING)


class FrameState(str, Enum):
    LOADING = "loading"
    READY = "ready"
    UNAVAILABLE = "unavailable"


@dataclass
class VideoAsset:
    """A user-selected video blob plus its locally resolvable preview reference."""

    asset_id: str
    filename: str
    media_type: str
    path: Path
    size_bytes: int
    generation: int = 1
    released: bool = False

    @property
    def preview_ref(self) -> str:
        return f"/assets/{self.asset_id}/preview"

    def release(self) -> None:
        """Delete the stored binary. Safe to call more than once."""
        if self.released:
            return
        try:
            self.path.unlink(missing_ok=True)
        except OSError:
            pass
        self.released = True


@dataclass
class SourceMedia:
    """Binary payload handed between pipeline stages."""

    path: Path
    media_type: str
    size_bytes: int
    derived: bool = False


@dataclass(frozen=True)
class TransportPayload:
    """Base64 transport encoding of a video payload."""

    data: str
    media_type: str
    source_bytes: int


@dataclass(frozen=True)
class TimelineSegment:
    """One chronological unit of the analysis output."""

    raw_block_text: str
    timestamp_token: str = DEFAULT_TIMESTAMP
    title: str = DEFAULT_SEGMENT_TITLE
    speaker: str = UNKNOWN_SPEAKER
    sentiment: str = NEUTRAL_SENTIMENT
    dialogue: str = NO_DIALOGUE
    visual_context_text: str = ""

    @property
    def seconds(self) -> int:
        return parse_timestamp(self.timestamp_token)


@dataclass(frozen=True)
class Insight:
    title: str
    content: str


@dataclass(frozen=True)
class ParsedAnalysis:
    """Structured view derived from a raw analysis document."""

    executive_summary: str
    timeline_segments: Tuple[TimelineSegment, ...] = ()
    insights: Tuple[Insight, ...] = ()
    raw_takeaways: str = ""


@dataclass
class FrameEntry:
    """Frame cache slot for a single segment."""

    state: FrameState = FrameState.LOADING
    image: Optional[bytes] = None
    timestamp_token: str = DEFAULT_TIMESTAMP
    seconds: int = 0
    metadata: dict = field(default_factory=dict)
