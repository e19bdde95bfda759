"""FastAPI service that runs video assets through the Reelscope pipeline."""
from __future__ import annotations

import asyncio
import json
import logging
import re
import time
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Dict, Optional, Tuple
from uuid import uuid4

from fastapi import FastAPI, File, HTTPException, Query, UploadFile
from fastapi.responses import FileResponse, Response

from . import __version__
from .config import (
    COMPRESSION_THRESHOLD_BYTES,
    FRAME_BACKEND,
    FRAME_CONCURRENCY,
    FRAME_TIMEOUT_MS,
    HOST,
    LOG_DIR,
    MAX_LOG_BYTES,
    MAX_LOG_FILES,
    MAX_UPLOAD_BYTES,
    PORT,
    PROGRESS_TICK_MS,
    REPORT_FORMAT,
    UPLOAD_DIR,
    ensure_dirs,
)
from .db import get_run, init_db, insert_run, list_runs, update_run
from .export import PDF_FILENAME, TEXT_FILENAME, export_pdf, export_text
from .gemini import AnalysisError, GeminiClient
from .remix import SAMPLE_RATE, RemixService
from .rotation import enforce_log_rotation
from .schemas import (
    AnalysisResponse,
    AnalyzeResponse,
    AssetResponse,
    FrameResult,
    FramesResponse,
    InsightModel,
    RemixResponse,
    SegmentModel,
    StatusResponse,
)
from .sessions import AssetSession, SessionRegistry, UploadRejected, validate_upload
from src.pipeline import FrameExtractor, FrameExtractorConfig, VideoCompressor
from src.pipeline.processing import AnalysisClient, Compressor, PipelineError
from src.pipeline.types import FrameEntry, FrameState, ProcessingState, VideoAsset

REPORT_SCHEMA_VERSION = "1.0"
UPLOAD_CHUNK_BYTES = 1024 * 1024
_SAFE_SUFFIX = re.compile(r"^\.[a-z0-9]{1,8}$")

ensure_dirs()
init_db()

logger = logging.getLogger("reelscope.service")

_gemini = GeminiClient()
analysis_client: AnalysisClient = _gemini
remix_service: RemixService = RemixService(_gemini)
compressor: Compressor = VideoCompressor(work_dir=UPLOAD_DIR / "tmp", logger=logging.getLogger("reelscope.pipeline"))
frame_extractor = FrameExtractor(
    FrameExtractorConfig(
        backend=FRAME_BACKEND,
        timeout_sec=max(0.1, FRAME_TIMEOUT_MS / 1000),
        max_concurrency=FRAME_CONCURRENCY,
    ),
    logger=logging.getLogger("reelscope.pipeline"),
)

_sessions = SessionRegistry()


@asynccontextmanager
async def _lifespan(_: FastAPI):
    yield
    await _sessions.close_all()


app = FastAPI(title="Reelscope Analysis Service", version=__version__, lifespan=_lifespan)


def _utcnow() -> str:
    return datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")


def _upload_suffix(filename: Optional[str]) -> str:
    suffix = Path(filename or "").suffix.lower()
    return suffix if _SAFE_SUFFIX.match(suffix) else ".mp4"


async def _store_upload(file: UploadFile, asset_id: str, generation: int) -> Tuple[Path, int]:
    """Stream an upload to disk and validate it; the file is removed on rejection."""
    target = UPLOAD_DIR / f"{asset_id}_{generation}{_upload_suffix(file.filename)}"
    size = 0
    try:
        with target.open("wb") as handle:
            while True:
                chunk = await file.read(UPLOAD_CHUNK_BYTES)
                if not chunk:
                    break
                size += len(chunk)
                if MAX_UPLOAD_BYTES > 0 and size > MAX_UPLOAD_BYTES:
                    break
                handle.write(chunk)
        validate_upload(file.content_type, size, MAX_UPLOAD_BYTES)
    except UploadRejected as error:
        target.unlink(missing_ok=True)
        logger.warning("Rejected upload %s: %s", file.filename, error)
        raise HTTPException(status_code=error.status_code, detail=str(error)) from error
    except BaseException:
        target.unlink(missing_ok=True)
        raise
    finally:
        await file.close()
    return target, size


def _session_or_404(asset_id: str) -> AssetSession:
    session = _sessions.get(asset_id)
    if session is None:
        raise HTTPException(status_code=404, detail="Unknown asset id")
    return session


def _asset_response(session: AssetSession) -> AssetResponse:
    asset = session.asset
    return AssetResponse(
        asset_id=asset.asset_id,
        filename=asset.filename,
        media_type=asset.media_type,
        size_bytes=asset.size_bytes,
        generation=asset.generation,
        preview_url=asset.preview_ref,
        state=session.state,
        needs_compression=session.pipeline.needs_compression(),
    )


def _frame_url(asset_id: str, index: int) -> str:
    return f"/assets/{asset_id}/segments/{index}/frame"


def _analysis_response(session: AssetSession) -> AnalysisResponse:
    document = session.document or ""
    parsed = session.parsed()
    if parsed is None:
        return AnalysisResponse(asset_id=session.asset_id, run_id=session.run_id, structured=False, raw_text=document)

    entries = session.frame_states()
    segments = []
    for index, segment in enumerate(parsed.timeline_segments):
        entry = entries[index]
        segments.append(
            SegmentModel(
                index=index,
                timestamp=segment.timestamp_token,
                seconds=segment.seconds,
                title=segment.title,
                speaker=segment.speaker,
                sentiment=segment.sentiment,
                dialogue=segment.dialogue,
                visual_context=segment.visual_context_text,
                frame_state=entry.state,
                frame_url=_frame_url(session.asset_id, index) if entry.state == FrameState.READY else None,
            )
        )
    return AnalysisResponse(
        asset_id=session.asset_id,
        run_id=session.run_id,
        structured=True,
        raw_text=document,
        executive_summary=parsed.executive_summary,
        segments=segments,
        insights=[InsightModel(title=insight.title, content=insight.content) for insight in parsed.insights],
        raw_takeaways=parsed.raw_takeaways,
    )


def _frame_result(asset_id: str, index: int, entry: FrameEntry) -> FrameResult:
    return FrameResult(
        index=index,
        timestamp=entry.timestamp_token,
        seconds=entry.seconds,
        state=entry.state,
        frame_url=_frame_url(asset_id, index) if entry.state == FrameState.READY else None,
    )


def _write_reports(run_id: str, session: AssetSession, report_format: str) -> Dict[str, str]:
    normalized_format = (report_format or "both").lower()
    if normalized_format not in {"md", "json", "both"}:
        normalized_format = "both"

    md_path = LOG_DIR / f"{run_id}.md"
    json_path = LOG_DIR / f"{run_id}.json"
    paths: Dict[str, str] = {}

    if normalized_format in {"md", "both"}:
        try:
            md_path.write_text(session.document or "", encoding="utf-8")
            paths["md_path"] = str(md_path)
        except OSError as error:
            logger.warning("Failed to write markdown report for %s: %s", run_id, error)

    if normalized_format in {"json", "both"}:
        record = session.pipeline.record
        report = {
            "run_id": run_id,
            "asset_id": session.asset_id,
            "filename": session.asset.filename,
            "schema_version": REPORT_SCHEMA_VERSION,
            "service_version": __version__,
            "created_at": _utcnow(),
            "compressed": record.compressed,
            "source_bytes": record.source_bytes,
            "payload_bytes": record.payload_bytes,
            "analysis": _analysis_response(session).model_dump(mode="json"),
        }
        try:
            json_path.write_text(json.dumps(report, ensure_ascii=False, indent=2), encoding="utf-8")
            paths["json_path"] = str(json_path)
        except (OSError, TypeError, ValueError) as error:
            logger.warning("Failed to write JSON report for %s: %s", run_id, error)

    removed = enforce_log_rotation(LOG_DIR, MAX_LOG_FILES, MAX_LOG_BYTES)
    if removed:
        logger.debug("Report rotation removed %d files", removed)
    return {key: value for key, value in paths.items() if Path(value).exists()}


async def _execute_run(session: AssetSession, run_id: str, retry: bool) -> None:
    started = time.perf_counter()
    pipeline = session.pipeline
    try:
        document = await session.run(retry=retry)
    except asyncio.CancelledError:
        update_run(run_id, status="cancelled", finished_at=_utcnow(), error=pipeline.error)
        logger.info("Run %s cancelled after %.2fs", run_id, time.perf_counter() - started)
        raise
    except PipelineError as error:
        update_run(run_id, status=ProcessingState.ERROR.value, finished_at=_utcnow(), error=str(error))
        logger.error("Run %s rejected: %s", run_id, error)
        return

    record = pipeline.record
    outcome = {
        "finished_at": _utcnow(),
        "compressed": int(record.compressed),
        "source_bytes": record.source_bytes,
        "payload_bytes": record.payload_bytes,
    }
    if document is None:
        update_run(run_id, status=ProcessingState.ERROR.value, error=pipeline.error, **outcome)
        logger.info(
            "Run %s failed after %.2fs: %s", run_id, time.perf_counter() - started, pipeline.error
        )
        return

    parsed = session.parsed()
    paths = _write_reports(run_id, session, REPORT_FORMAT)
    update_run(
        run_id,
        status=ProcessingState.COMPLETE.value,
        segments=len(parsed.timeline_segments) if parsed else 0,
        insights=len(parsed.insights) if parsed else 0,
        structured=int(parsed is not None),
        md_path=paths.get("md_path"),
        json_path=paths.get("json_path"),
        **outcome,
    )
    logger.info(
        "Run %s completed in %.2fs (segments=%s, compressed=%s, structured=%s)",
        run_id,
        time.perf_counter() - started,
        len(parsed.timeline_segments) if parsed else "-",
        record.compressed,
        parsed is not None,
    )


async def _launch(session: AssetSession, retry: bool, wait: bool) -> AnalyzeResponse:
    if session.state.active or (session.task is not None and not session.task.done()):
        raise HTTPException(status_code=409, detail=f"Asset is already {session.state.value}")
    if retry and session.state != ProcessingState.ERROR:
        raise HTTPException(status_code=409, detail="Retry is only possible after an error")
    if not retry and session.state != ProcessingState.IDLE:
        raise HTTPException(
            status_code=409,
            detail=f"Asset is {session.state.value}; replace the video or retry after an error",
        )

    run_id = uuid4().hex
    insert_run(
        {
            "id": run_id,
            "asset_id": session.asset_id,
            "filename": session.asset.filename,
            "created_at": _utcnow(),
            "status": "running",
            "source_bytes": session.asset.size_bytes,
        }
    )
    session.run_id = run_id
    session.remix = None
    task = asyncio.ensure_future(_execute_run(session, run_id, retry))
    session.task = task
    if wait:
        try:
            await asyncio.shield(task)
        except asyncio.CancelledError:
            # the run was cancelled by a replace or clear; report where it stopped
            if not task.cancelled():
                raise
    return AnalyzeResponse(asset_id=session.asset_id, run_id=run_id, state=session.state)


@app.get("/health")
def health():
    return {
        "status": "ok",
        "service": "reelscope",
        "version": __version__,
        "gemini_configured": bool(_gemini.config.api_key),
        "assets": len(_sessions),
    }


@app.post("/assets", response_model=AssetResponse)
async def create_asset(file: UploadFile = File(...)) -> AssetResponse:
    """Store an uploaded video and open a session for it."""

    asset_id = uuid4().hex
    filename = file.filename or "video"
    media_type = file.content_type or ""
    path, size = await _store_upload(file, asset_id, 1)
    asset = VideoAsset(asset_id=asset_id, filename=filename, media_type=media_type, path=path, size_bytes=size)
    session = AssetSession(
        asset,
        compressor,
        analysis_client,
        frame_extractor,
        compression_threshold_bytes=COMPRESSION_THRESHOLD_BYTES,
        frame_concurrency=FRAME_CONCURRENCY,
        tick_interval_sec=PROGRESS_TICK_MS / 1000,
    )
    _sessions.add(session)
    logger.info("Asset %s created from %s (%d bytes)", asset_id, filename, size)
    return _asset_response(session)


@app.put("/assets/{asset_id}/video", response_model=AssetResponse)
async def replace_video(asset_id: str, file: UploadFile = File(...)) -> AssetResponse:
    """Select a new file for an existing asset; prior work is discarded."""

    session = _session_or_404(asset_id)
    filename = file.filename or "video"
    media_type = file.content_type or ""
    path, size = await _store_upload(file, asset_id, session.asset.generation + 1)
    await session.replace(path, filename, media_type, size)
    logger.info("Asset %s replaced with %s (generation %d)", asset_id, filename, session.asset.generation)
    return _asset_response(session)


@app.get("/assets/{asset_id}", response_model=AssetResponse)
async def asset_detail(asset_id: str) -> AssetResponse:
    return _asset_response(_session_or_404(asset_id))


@app.get("/assets/{asset_id}/preview")
async def asset_preview(asset_id: str):
    session = _session_or_404(asset_id)
    asset = session.asset
    if asset.released or not asset.path.exists():
        raise HTTPException(status_code=404, detail="Preview is no longer available")
    return FileResponse(asset.path, media_type=asset.media_type, filename=asset.filename)


@app.delete("/assets/{asset_id}")
async def clear_asset(asset_id: str):
    session = _sessions.pop(asset_id)
    if session is None:
        raise HTTPException(status_code=404, detail="Unknown asset id")
    await session.close()
    logger.info("Asset %s cleared", asset_id)
    return {"asset_id": asset_id, "status": "cleared"}


@app.post("/assets/{asset_id}/analyze", response_model=AnalyzeResponse)
async def analyze(asset_id: str, wait: bool = Query(False)) -> AnalyzeResponse:
    """Start the pipeline; with ``wait`` the response is sent once it settles."""

    return await _launch(_session_or_404(asset_id), retry=False, wait=wait)


@app.post("/assets/{asset_id}/retry", response_model=AnalyzeResponse)
async def retry(asset_id: str, wait: bool = Query(False)) -> AnalyzeResponse:
    return await _launch(_session_or_404(asset_id), retry=True, wait=wait)


@app.get("/assets/{asset_id}/status", response_model=StatusResponse)
async def status(asset_id: str) -> StatusResponse:
    session = _session_or_404(asset_id)
    pipeline = session.pipeline
    return StatusResponse(
        asset_id=asset_id,
        state=pipeline.state,
        progress=round(pipeline.progress.value, 2),
        message=pipeline.status_message,
        error=pipeline.error,
        error_detail=pipeline.error_detail,
        run_id=session.run_id,
        compressed=pipeline.record.compressed,
    )


@app.get("/assets/{asset_id}/analysis", response_model=AnalysisResponse)
async def analysis(asset_id: str) -> AnalysisResponse:
    session = _session_or_404(asset_id)
    if session.state != ProcessingState.COMPLETE or not session.document:
        raise HTTPException(status_code=409, detail=f"Analysis is not available while {session.state.value}")
    return _analysis_response(session)


@app.post("/assets/{asset_id}/frames", response_model=FramesResponse)
async def extract_frames(asset_id: str) -> FramesResponse:
    """Extract a key-frame for every segment; results follow document order."""

    session = _session_or_404(asset_id)
    if session.state != ProcessingState.COMPLETE:
        raise HTTPException(status_code=409, detail="Frames require a completed analysis")
    generation = session.asset.generation
    entries = await session.extract_frames()
    return FramesResponse(
        asset_id=asset_id,
        generation=generation,
        frames=[_frame_result(asset_id, index, entry) for index, entry in enumerate(entries)],
    )


@app.get("/assets/{asset_id}/segments/{index}/frame")
async def segment_frame(asset_id: str, index: int):
    session = _session_or_404(asset_id)
    parsed = session.parsed()
    if parsed is None or not 0 <= index < len(parsed.timeline_segments):
        raise HTTPException(status_code=404, detail="Unknown segment")
    entry = await session.frames.ensure(session.asset.path, index, parsed.timeline_segments[index])
    if entry.state != FrameState.READY or not entry.image:
        raise HTTPException(status_code=404, detail="Frame unavailable")
    return Response(content=entry.image, media_type="image/jpeg")


def _document_or_409(session: AssetSession) -> str:
    if session.state != ProcessingState.COMPLETE or not session.document:
        raise HTTPException(status_code=409, detail="Nothing to export yet")
    return session.document


@app.get("/assets/{asset_id}/export.txt")
async def export_txt(asset_id: str):
    document = _document_or_409(_session_or_404(asset_id))
    return Response(
        content=export_text(document),
        media_type="text/plain; charset=utf-8",
        headers={"Content-Disposition": f'attachment; filename="{TEXT_FILENAME}"'},
    )


@app.get("/assets/{asset_id}/export.pdf")
async def export_pdf_document(asset_id: str):
    document = _document_or_409(_session_or_404(asset_id))
    content = await asyncio.to_thread(export_pdf, document)
    return Response(
        content=content,
        media_type="application/pdf",
        headers={"Content-Disposition": f'attachment; filename="{PDF_FILENAME}"'},
    )


@app.post("/assets/{asset_id}/remix", response_model=RemixResponse)
async def remix(asset_id: str) -> RemixResponse:
    """Generate (once per analysis) a spoken review of the document."""

    session = _session_or_404(asset_id)
    document = _document_or_409(session)
    if session.remix is None:
        generation, run_id = session.asset.generation, session.run_id
        try:
            generated = await remix_service.generate_async(document)
        except AnalysisError as error:
            logger.warning("Remix failed for %s: %s", asset_id, error)
            raise HTTPException(status_code=502, detail=f"Could not generate audio remix: {error}") from error
        # the asset may have been replaced or re-analyzed while the remix ran
        if session.asset.generation != generation or session.run_id != run_id:
            logger.info("Discarding remix for %s: generation %d is no longer current", asset_id, generation)
            raise HTTPException(status_code=409, detail="Asset changed while the remix was generated")
        session.remix = generated
    result = session.remix
    return RemixResponse(
        asset_id=asset_id,
        script=result.script,
        audio_url=f"/assets/{asset_id}/remix.wav",
        sample_rate=SAMPLE_RATE,
        duration_sec=result.duration_sec,
    )


@app.get("/assets/{asset_id}/remix.wav")
async def remix_audio(asset_id: str):
    session = _session_or_404(asset_id)
    if session.remix is None:
        raise HTTPException(status_code=404, detail="No remix generated yet")
    return Response(content=session.remix.audio, media_type="audio/wav")


@app.get("/runs")
def runs(
    limit: int = Query(50, ge=1, le=500),
    offset: int = Query(0, ge=0),
    asset_id: Optional[str] = Query(None),
):
    return list_runs(limit=limit, offset=offset, asset_id=asset_id)


@app.get("/runs/{run_id}")
def run_detail(run_id: str):
    record = get_run(run_id)
    if record is None:
        raise HTTPException(status_code=404, detail="Unknown run id")
    return record


if __name__ == "__main__":
    import uvicorn

    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
    uvicorn.run(app, host=HOST, port=PORT)
