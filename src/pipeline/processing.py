"""Processing pipeline: compress -> encode -> analyze, as a state machine."""
from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass, field
from typing import Callable, Dict, FrozenSet, List, Optional, Protocol

from .encoding import encode_source
from .types import ProcessingState, SourceMedia, TransportPayload

COMPRESSION_THRESHOLD_BYTES = 19 * 1024 * 1024
COMPRESSION_FAILED_MESSAGE = "Video compression failed. Please try a smaller file."
EMPTY_RESPONSE_MESSAGE = "No text response received from the model."
CANCELLED_MESSAGE = "Analysis cancelled."

STATUS_COMPRESS_START = "Optimizing media stream..."
STATUS_ENCODING = "Encoding media stream..."
STATUS_INITIALIZING = "Initializing model..."
STATUS_ANALYZING = "Analyzing visual context..."
STATUS_COMPLETE = "Analysis complete."

TRANSITIONS: Dict[ProcessingState, FrozenSet[ProcessingState]] = {
    ProcessingState.IDLE: frozenset({ProcessingState.COMPRESSING, ProcessingState.ENCODING}),
    ProcessingState.COMPRESSING: frozenset({ProcessingState.ENCODING, ProcessingState.ERROR}),
    ProcessingState.ENCODING: frozenset({ProcessingState.ANALYZING, ProcessingState.ERROR}),
    ProcessingState.ANALYZING: frozenset({ProcessingState.COMPLETE, ProcessingState.ERROR}),
    ProcessingState.ERROR: frozenset({ProcessingState.COMPRESSING, ProcessingState.ENCODING}),
    ProcessingState.COMPLETE: frozenset(),
}


class PipelineError(RuntimeError):
    """Base error for pipeline misuse."""


class InvalidTransition(PipelineError):
    """Raised when a state change is not allowed from the current state."""


class PipelineBusy(PipelineError):
    """Raised when a pipeline is started while another run is active."""


class StageFailure(RuntimeError):
    """A pipeline stage failed; ``detail`` keeps the underlying cause."""

    def __init__(self, message: str, detail: Optional[str] = None) -> None:
        super().__init__(message)
        self.detail = detail


class PipelineObserver:
    """Receives state, progress and status updates. Override what you need."""

    def on_state(self, state: ProcessingState) -> None:
        pass

    def on_progress(self, percent: float) -> None:
        pass

    def on_status(self, message: str) -> None:
        pass


class Compressor(Protocol):
    async def compress(self, source: SourceMedia, on_progress: Callable[[int], None]) -> SourceMedia:
        ...


class AnalysisClient(Protocol):
    async def analyze(self, payload: TransportPayload, on_status: Callable[[str], None]) -> str:
        ...


def analysis_status_message(stage: str) -> str:
    """Map an analysis service stage name onto user-facing status text."""
    if stage == "initializing":
        return STATUS_INITIALIZING
    return STATUS_ANALYZING


@dataclass
class ProgressModel:
    """Cosmetic progress percentage, deterministic for a given tick sequence.

    Encoding ramps linearly toward ``encoding_cap``; analyzing eases toward
    ``analyzing_cap`` with an increment proportional to the remaining
    distance; compressing mirrors the compression engine.
    """

    encoding_step: float = 2.0
    encoding_cap: float = 35.0
    analyzing_cap: float = 95.0
    analyzing_min_step: float = 0.1
    analyzing_divisor: float = 100.0
    value: float = 0.0
    state: ProcessingState = ProcessingState.IDLE

    def enter(self, state: ProcessingState) -> float:
        self.state = state
        if state == ProcessingState.COMPLETE:
            self.value = 100.0
        elif state in (ProcessingState.IDLE, ProcessingState.ERROR, ProcessingState.COMPRESSING, ProcessingState.ENCODING):
            self.value = 0.0
        return self.value

    def report(self, percent: float) -> float:
        if self.state == ProcessingState.COMPRESSING:
            self.value = float(max(0, min(100, percent)))
        return self.value

    def tick(self) -> float:
        if self.state == ProcessingState.ENCODING:
            self.value = min(self.encoding_cap, self.value + self.encoding_step)
        elif self.state == ProcessingState.ANALYZING:
            if self.value < self.analyzing_cap:
                increment = max(self.analyzing_min_step, (self.analyzing_cap - self.value) / self.analyzing_divisor)
                self.value = min(self.analyzing_cap, self.value + increment)
        return self.value


@dataclass
class RunRecord:
    """Outcome bookkeeping for the latest pipeline run."""

    compressed: bool = False
    source_bytes: int = 0
    payload_bytes: int = 0
    started_at: Optional[float] = None
    finished_at: Optional[float] = None
    visited: List[ProcessingState] = field(default_factory=list)


class ProcessingPipeline:
    """Drives one asset through compression, encoding and analysis.

    Runs always begin from the original source: a compressed derivative lives
    only for the duration of the run and is deleted once encoded.
    """

    def __init__(
        self,
        source: SourceMedia,
        compressor: Compressor,
        analyzer: AnalysisClient,
        observer: Optional[PipelineObserver] = None,
        compression_threshold_bytes: int = COMPRESSION_THRESHOLD_BYTES,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self._source = source
        self._compressor = compressor
        self._analyzer = analyzer
        self._observer = observer or PipelineObserver()
        self._threshold = compression_threshold_bytes
        self._logger = logger or logging.getLogger(__name__)
        self._state = ProcessingState.IDLE
        self.progress = ProgressModel()
        self.status_message = ""
        self.error: Optional[str] = None
        self.error_detail: Optional[str] = None
        self.document: Optional[str] = None
        self.record = RunRecord()
        self.history: List[ProcessingState] = [ProcessingState.IDLE]

    # ------------------------------------------------------------------
    @property
    def state(self) -> ProcessingState:
        return self._state

    @property
    def source(self) -> SourceMedia:
        return self._source

    def needs_compression(self, source: Optional[SourceMedia] = None) -> bool:
        return (source or self._source).size_bytes > self._threshold

    async def start(self) -> Optional[str]:
        """Run the pipeline from ``idle``. Returns the document, or ``None`` on error."""
        self._ensure_not_busy()
        if self._state != ProcessingState.IDLE:
            raise InvalidTransition(f"Cannot start from {self._state.value}; use retry or reset")
        return await self._run()

    async def retry(self) -> Optional[str]:
        """Re-run from the original source after a failure."""
        self._ensure_not_busy()
        if self._state != ProcessingState.ERROR:
            raise InvalidTransition(f"Retry is only possible from error, not {self._state.value}")
        return await self._run()

    def reset(self, source: Optional[SourceMedia] = None) -> None:
        """Return to ``idle``, optionally for a newly selected source."""
        self._ensure_not_busy()
        if source is not None:
            self._source = source
        self._state = ProcessingState.IDLE
        self.error = None
        self.error_detail = None
        self.document = None
        self.status_message = ""
        self.record = RunRecord()
        self.history.append(ProcessingState.IDLE)
        self._emit_progress(self.progress.enter(ProcessingState.IDLE))
        self._observer.on_state(self._state)

    def tick(self) -> float:
        """Advance the cosmetic progress by one ticker interval."""
        before = self.progress.value
        value = self.progress.tick()
        if value != before:
            self._emit_progress(value)
        return value

    # ------------------------------------------------------------------
    def _ensure_not_busy(self) -> None:
        if self._state.active:
            raise PipelineBusy(f"Pipeline is already {self._state.value}")

    def _transition(self, target: ProcessingState) -> None:
        allowed = TRANSITIONS.get(self._state, frozenset())
        if target not in allowed:
            raise InvalidTransition(f"{self._state.value} -> {target.value} is not allowed")
        self._logger.debug("Pipeline %s -> %s", self._state.value, target.value)
        self._state = target
        self.history.append(target)
        self.record.visited.append(target)
        self._observer.on_state(target)
        self._emit_progress(self.progress.enter(target))

    def _set_status(self, message: str) -> None:
        self.status_message = message
        self._observer.on_status(message)

    def _emit_progress(self, value: float) -> None:
        self._observer.on_progress(value)

    def _on_compress_progress(self, percent: int) -> None:
        self._emit_progress(self.progress.report(percent))
        self._set_status(f"Compressing data... {int(percent)}%")

    def _on_analysis_status(self, stage: str) -> None:
        self._set_status(analysis_status_message(stage))

    def _fail(self, message: str, detail: Optional[str] = None) -> None:
        self.error = message
        self.error_detail = detail
        self.record.finished_at = time.time()
        self._transition(ProcessingState.ERROR)
        self._set_status(message)

    async def _run(self) -> Optional[str]:
        source = self._source
        working = source
        self.error = None
        self.error_detail = None
        self.document = None
        self.record = RunRecord(source_bytes=source.size_bytes, started_at=time.time())
        try:
            if self.needs_compression(source):
                self._transition(ProcessingState.COMPRESSING)
                self._set_status(STATUS_COMPRESS_START)
                try:
                    working = await self._compressor.compress(source, self._on_compress_progress)
                except asyncio.CancelledError:
                    raise
                except Exception as error:
                    self._logger.warning("Compression failed for %s: %s", source.path.name, error)
                    raise StageFailure(COMPRESSION_FAILED_MESSAGE, detail=str(error)) from error
                self.record.compressed = True

            self._transition(ProcessingState.ENCODING)
            self._set_status(STATUS_ENCODING)
            try:
                payload = await encode_source(working)
            finally:
                if working.derived:
                    working.path.unlink(missing_ok=True)
            self.record.payload_bytes = payload.source_bytes

            self._transition(ProcessingState.ANALYZING)
            self._set_status(STATUS_INITIALIZING)
            document = await self._analyzer.analyze(payload, self._on_analysis_status)
            if not document or not document.strip():
                raise StageFailure(EMPTY_RESPONSE_MESSAGE)

            self.document = document
            self.record.finished_at = time.time()
            self._transition(ProcessingState.COMPLETE)
            self._set_status(STATUS_COMPLETE)
            return document
        except asyncio.CancelledError:
            if self._state.active:
                self._fail(CANCELLED_MESSAGE)
            raise
        except InvalidTransition:
            raise
        except StageFailure as failure:
            self._logger.warning("Pipeline failed in %s: %s", self._state.value, failure)
            self._fail(str(failure), failure.detail)
        except Exception as error:
            message = str(error) or error.__class__.__name__
            self._logger.warning("Pipeline failed in %s: %s", self._state.value, message)
            self._fail(message, detail=repr(error))
        return None


__all__ = [
    "COMPRESSION_THRESHOLD_BYTES",
    "COMPRESSION_FAILED_MESSAGE",
    "TRANSITIONS",
    "AnalysisClient",
    "Compressor",
    "InvalidTransition",
    "PipelineBusy",
    "PipelineError",
    "PipelineObserver",
    "ProcessingPipeline",
    "ProgressModel",
    "RunRecord",
    "StageFailure",
    "analysis_status_message",
]
