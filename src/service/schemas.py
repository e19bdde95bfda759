"""Pydantic models for the Reelscope HTTP API."""
from __future__ import annotations

from typing import List, Optional

from pydantic import BaseModel, Field

from src.pipeline.types import FrameState, ProcessingState


class AssetResponse(BaseModel):
    """Descriptor of an uploaded video asset."""

    asset_id: str = Field(..., description="Stable identifier for the asset")
    filename: str = Field(..., description="Original file name supplied by the client")
    media_type: str = Field(..., description="Declared video media type, e.g. video/mp4")
    size_bytes: int = Field(..., ge=0, description="Size of the stored binary")
    generation: int = Field(..., ge=1, description="Bumped every time the binary is replaced")
    preview_url: str = Field(..., description="Locally resolvable URL for playback")
    state: ProcessingState
    needs_compression: bool = Field(..., description="True when the pipeline will compress before encoding")


class AnalyzeResponse(BaseModel):
    asset_id: str
    run_id: str
    state: ProcessingState


class StatusResponse(BaseModel):
    asset_id: str
    state: ProcessingState
    progress: float = Field(..., ge=0, le=100, description="Cosmetic progress percentage")
    message: str = Field("", description="User-facing status line")
    error: Optional[str] = None
    error_detail: Optional[str] = None
    run_id: Optional[str] = None
    compressed: bool = False


class InsightModel(BaseModel):
    title: str
    content: str


class SegmentModel(BaseModel):
    index: int
    timestamp: str = Field(..., description="Timestamp token as written by the model")
    seconds: int = Field(..., ge=0)
    title: str
    speaker: str
    sentiment: str
    dialogue: str
    visual_context: str
    frame_state: FrameState = FrameState.LOADING
    frame_url: Optional[str] = None


class AnalysisResponse(BaseModel):
    """Structured analysis, or the raw text when the document could not be parsed."""

    asset_id: str
    run_id: Optional[str] = None
    structured: bool = Field(..., description="False means render raw_text instead")
    raw_text: str
    executive_summary: Optional[str] = None
    segments: List[SegmentModel] = Field(default_factory=list)
    insights: List[InsightModel] = Field(default_factory=list)
    raw_takeaways: Optional[str] = None


class FrameResult(BaseModel):
    index: int
    timestamp: str
    seconds: int
    state: FrameState
    frame_url: Optional[str] = None


class FramesResponse(BaseModel):
    asset_id: str
    generation: int
    frames: List[FrameResult] = Field(default_factory=list)


class RemixResponse(BaseModel):
    asset_id: str
    script: str
    audio_url: str
    sample_rate: int
    duration_sec: float
