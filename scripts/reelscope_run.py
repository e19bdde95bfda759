#!/usr/bin/env python3
"""Command-line client for the Reelscope analysis service."""
from __future__ import annotations

import argparse
import json
import mimetypes
import os
import sys
import time
from pathlib import Path
from typing import Dict, List, Optional

import requests

SERVICE_URL_ENV = "REELSCOPE_SERVICE_URL"
SERVICE_URL_DEFAULT = "http://127.0.0.1:8765"
STATUS_POLL_SECONDS = 1
RETRY_ATTEMPTS = 3
GLOBAL_TIMEOUT_SECONDS = 15 * 60
HTTP_TIMEOUT_DEFAULT = int(os.getenv("REELSCOPE_HTTP_TIMEOUT", "60"))
TERMINAL_STATES = {"complete", "error"}


def guess_media_type(path: Path) -> str:
    media_type, _ = mimetypes.guess_type(path.name)
    return media_type or "video/mp4"


def progress_bar(percent: float, width: int = 30) -> str:
    percent = max(0.0, min(100.0, float(percent)))
    filled = int(round(width * percent / 100))
    return "[" + "#" * filled + "-" * (width - filled) + f"] {percent:5.1f}%"


def format_status_line(payload: Dict[str, object]) -> str:
    state = payload.get("state", "?")
    message = payload.get("message") or ""
    return f"{state:<11} {progress_bar(float(payload.get('progress') or 0))} {message}".rstrip()


def post_with_retry(url: str, timeout_sec: int, **kwargs) -> requests.Response:
    """POST with backoff on connection errors and 5xx; 4xx responses raise immediately."""
    for attempt in range(RETRY_ATTEMPTS):
        try:
            response = requests.post(url, timeout=(timeout_sec, timeout_sec), **kwargs)
        except requests.RequestException as error:
            reason = str(error)
        else:
            if response.status_code < 500:
                response.raise_for_status()
                return response
            reason = f"HTTP {response.status_code}"
        wait_time = 2 ** attempt
        print(f"[WARN] POST failed ({reason}); retrying in {wait_time}s", file=sys.stderr)
        time.sleep(wait_time)
    raise RuntimeError(f"Failed to POST {url} after retries")


def upload_video(base_url: str, path: Path, timeout_sec: int) -> dict:
    with path.open("rb") as handle:
        files = {"file": (path.name, handle, guess_media_type(path))}
        response = requests.post(f"{base_url}/assets", files=files, timeout=(timeout_sec, timeout_sec))
    response.raise_for_status()
    return response.json()


def poll_status(base_url: str, asset_id: str, timeout_sec: int, quiet: bool = False) -> dict:
    status_url = f"{base_url}/assets/{asset_id}/status"
    deadline = time.time() + GLOBAL_TIMEOUT_SECONDS
    last_line = ""
    while time.time() < deadline:
        response = requests.get(status_url, timeout=(timeout_sec, timeout_sec))
        if response.status_code == 404:
            raise RuntimeError("Service returned 404 for asset status")
        response.raise_for_status()
        payload = response.json()
        line = format_status_line(payload)
        if not quiet and line != last_line:
            print("\r" + line.ljust(len(last_line)), end="", flush=True)
            last_line = line
        if payload.get("state") in TERMINAL_STATES:
            if not quiet:
                print()
            return payload
        time.sleep(STATUS_POLL_SECONDS)
    raise TimeoutError("Timed out waiting for analysis to finish")


def fetch_analysis(base_url: str, asset_id: str, timeout_sec: int) -> dict:
    response = requests.get(f"{base_url}/assets/{asset_id}/analysis", timeout=(timeout_sec, timeout_sec))
    response.raise_for_status()
    return response.json()


def render_analysis(analysis: Dict[str, object], frames: Optional[List[dict]] = None) -> str:
    """Plain-text rendering of the structured result, or the raw document."""
    if not analysis.get("structured"):
        return str(analysis.get("raw_text") or "")

    frame_states = {frame["index"]: frame["state"] for frame in frames or []}
    lines: List[str] = ["EXECUTIVE SUMMARY", str(analysis.get("executive_summary") or ""), ""]
    lines.append("TIMELINE")
    for segment in analysis.get("segments") or []:
        state = frame_states.get(segment["index"], segment.get("frame_state", "loading"))
        lines.append(f"[{segment['timestamp']}] {segment['title']}  (frame: {state})")
        lines.append(f"    Speaker:   {segment['speaker']}")
        lines.append(f"    Sentiment: {segment['sentiment']}")
        lines.append(f"    Dialogue:  {segment['dialogue']}")
        if segment.get("visual_context"):
            lines.append(f"    Visual:    {segment['visual_context']}")
    insights = analysis.get("insights") or []
    if insights:
        lines.append("")
        lines.append("TAKEAWAYS")
        for insight in insights:
            lines.append(f" * {insight['title']}: {insight['content']}")
    return "\n".join(lines)


def download(base_url: str, route: str, target: Path, timeout_sec: int) -> Path:
    response = requests.get(f"{base_url}{route}", timeout=(timeout_sec, timeout_sec))
    response.raise_for_status()
    target.parent.mkdir(parents=True, exist_ok=True)
    target.write_bytes(response.content)
    return target


def list_remote_runs(base_url: str, limit: int, timeout_sec: int) -> None:
    response = requests.get(f"{base_url}/runs", params={"limit": limit}, timeout=(timeout_sec, timeout_sec))
    response.raise_for_status()
    runs = response.json()
    if not runs:
        print("No runs recorded yet.")
        return
    for run in runs:
        print(
            f"{run.get('id')} asset={run.get('asset_id')} file={run.get('filename') or '-'} "
            f"status={run.get('status')} segments={run.get('segments')} compressed={bool(run.get('compressed'))} "
            f"created={run.get('created_at')} finished={run.get('finished_at') or '-'}"
        )


def show_remote_run(base_url: str, run_id: str, timeout_sec: int) -> None:
    response = requests.get(f"{base_url}/runs/{run_id}", timeout=(timeout_sec, timeout_sec))
    if response.status_code == 404:
        print(f"Run {run_id} not found.")
        return
    response.raise_for_status()
    print(json.dumps(response.json(), indent=2, ensure_ascii=False))


def run(
    service_url: str,
    video: Path,
    http_timeout: int,
    with_frames: bool,
    export_dir: Optional[Path],
    remix: bool,
    retries: int,
) -> int:
    if not video.exists():
        raise FileNotFoundError(f"Video not found: {video}")

    asset = upload_video(service_url, video, http_timeout)
    asset_id = asset["asset_id"]
    print(f"Uploaded {video.name} as {asset_id} ({asset['size_bytes']} bytes, compression={asset['needs_compression']})")

    post_with_retry(f"{service_url}/assets/{asset_id}/analyze", http_timeout)
    final = poll_status(service_url, asset_id, http_timeout)
    attempt = 0
    while final.get("state") == "error" and attempt < retries:
        attempt += 1
        print(f"[WARN] Analysis failed: {final.get('error')}; retry {attempt}/{retries}", file=sys.stderr)
        post_with_retry(f"{service_url}/assets/{asset_id}/retry", http_timeout)
        final = poll_status(service_url, asset_id, http_timeout)

    if final.get("state") != "complete":
        print(f"[ERROR] Analysis failed: {final.get('error')}", file=sys.stderr)
        return 1

    analysis = fetch_analysis(service_url, asset_id, http_timeout)
    frames: Optional[List[dict]] = None
    if with_frames and analysis.get("structured"):
        response = post_with_retry(f"{service_url}/assets/{asset_id}/frames", http_timeout)
        frames = response.json().get("frames", [])
    print(render_analysis(analysis, frames))

    if export_dir is not None:
        stem = video.stem
        if frames:
            for frame in frames:
                if frame.get("frame_url"):
                    download(service_url, frame["frame_url"], export_dir / f"{stem}_{frame['index']:03d}.jpg", http_timeout)
        for route, suffix in (("export.txt", ".txt"), ("export.pdf", ".pdf")):
            target = download(service_url, f"/assets/{asset_id}/{route}", export_dir / f"{stem}{suffix}", http_timeout)
            print(f"Saved {target}")
    if remix:
        response = post_with_retry(f"{service_url}/assets/{asset_id}/remix", http_timeout)
        print("\nREMIX SCRIPT\n" + response.json().get("script", ""))
        if export_dir is not None:
            target = download(service_url, f"/assets/{asset_id}/remix.wav", export_dir / f"{video.stem}_remix.wav", http_timeout)
            print(f"Saved {target}")
    return 0


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Analyze a video with the Reelscope service")
    parser.add_argument("video", nargs="?", type=Path, help="Path to the video file to analyze")
    parser.add_argument(
        "--service-url",
        default=None,
        help="Base URL for the analysis service (default: env REELSCOPE_SERVICE_URL or http://127.0.0.1:8765)",
    )
    parser.add_argument(
        "--http-timeout",
        type=int,
        default=HTTP_TIMEOUT_DEFAULT,
        help="HTTP timeout in seconds for service requests",
    )
    parser.add_argument("--frames", action="store_true", help="Extract a key-frame for every segment")
    parser.add_argument(
        "--export-dir",
        type=Path,
        default=None,
        help="Download the text/PDF exports (and frames, remix audio) into this directory",
    )
    parser.add_argument("--remix", action="store_true", help="Request the spoken audio remix")
    parser.add_argument("--retries", type=int, default=0, help="Retry the pipeline this many times after an error")
    parser.add_argument("--list-runs", action="store_true", help="List recent runs and exit")
    parser.add_argument("--runs-limit", type=int, default=20, help="Number of runs shown by --list-runs")
    parser.add_argument("--run-id", default=None, help="Show a single run record and exit")
    return parser.parse_args(argv)


def main(argv: Optional[List[str]] = None) -> int:
    args = parse_args(argv)
    service_url = args.service_url or os.environ.get(SERVICE_URL_ENV, SERVICE_URL_DEFAULT)
    service_url = service_url.rstrip("/")

    if args.list_runs:
        list_remote_runs(service_url, max(1, args.runs_limit), args.http_timeout)
        if args.run_id:
            show_remote_run(service_url, args.run_id, args.http_timeout)
        return 0

    if args.run_id:
        show_remote_run(service_url, args.run_id, args.http_timeout)
        return 0

    if args.video is None:
        print("[ERROR] A video path is required", file=sys.stderr)
        return 2

    try:
        return run(
            service_url=service_url,
            video=args.video,
            http_timeout=args.http_timeout,
            with_frames=args.frames,
            export_dir=args.export_dir,
            remix=args.remix,
            retries=max(0, args.retries),
        )
    except FileNotFoundError as error:
        print(f"[ERROR] {error}", file=sys.stderr)
        return 2
    except Exception as error:  # pragma: no cover - integration level logging
        print(f"[ERROR] {error}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    sys.exit(main())
