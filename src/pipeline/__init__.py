"""Analysis pipeline components for Reelscope."""

from .cache import FrameCache, SegmentKey
from .compression import CompressionError, CompressionProfile, VideoCompressor
from .encoding import encode_source
from .frames import FrameExtractionError, FrameExtractor, FrameExtractorConfig
from .parser import TEMPLATE_LABELS, ResponseParser, TemplateLabels, parse_analysis
from .processing import (
    InvalidTransition,
    PipelineBusy,
    PipelineError,
    PipelineObserver,
    ProcessingPipeline,
    ProgressModel,
)
from .timestamps import format_timestamp, parse_timestamp
from .types import (
    FrameEntry,
    FrameState,
    Insight,
    ParsedAnalysis,
    ProcessingState,
    SourceMedia,
    TimelineSegment,
    TransportPayload,
    VideoAsset,
)

__all__ = [
    "FrameCache",
    "SegmentKey",
    "CompressionError",
    "CompressionProfile",
    "VideoCompressor",
    "encode_source",
    "FrameExtractionError",
    "FrameExtractor",
    "FrameExtractorConfig",
    "TEMPLATE_LABELS",
    "ResponseParser",
    "TemplateLabels",
    "parse_analysis",
    "InvalidTransition",
    "PipelineBusy",
    "PipelineError",
    "PipelineObserver",
    "ProcessingPipeline",
    "ProgressModel",
    "format_timestamp",
    "parse_timestamp",
    "FrameEntry",
    "FrameState",
    "Insight",
    "ParsedAnalysis",
    "ProcessingState",
    "SourceMedia",
    "TimelineSegment",
    "TransportPayload",
    "VideoAsset",
]
