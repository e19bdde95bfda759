"""Runtime configuration for the Reelscope service."""
from __future__ import annotations

import os
from pathlib import Path
from typing import Tuple

_BASE_DIR = Path(os.environ.get("REELSCOPE_BASE_DIR", ".")).resolve()

DATA_DIR = Path(os.environ.get("REELSCOPE_DATA_DIR", _BASE_DIR / "data")).resolve()
UPLOAD_DIR = Path(os.environ.get("REELSCOPE_UPLOAD_DIR", _BASE_DIR / "uploads")).resolve()
LOG_DIR = Path(os.environ.get("REELSCOPE_LOG_DIR", _BASE_DIR / "logs")).resolve()

MAX_LOG_FILES = int(os.environ.get("REELSCOPE_MAX_LOG_FILES", "500"))
MAX_LOG_BYTES = int(os.environ.get("REELSCOPE_MAX_LOG_BYTES", str(200 * 1024 * 1024)))
REPORT_FORMAT = os.environ.get("REELSCOPE_REPORT_FORMAT", "both").lower()

COMPRESSION_THRESHOLD_BYTES = int(float(os.environ.get("REELSCOPE_COMPRESSION_THRESHOLD_MB", "19")) * 1024 * 1024)
MAX_UPLOAD_BYTES = int(float(os.environ.get("REELSCOPE_MAX_UPLOAD_MB", "512")) * 1024 * 1024)

FRAME_TIMEOUT_MS = int(os.environ.get("REELSCOPE_FRAME_TIMEOUT_MS", "4000"))
FRAME_BACKEND = os.environ.get("REELSCOPE_FRAME_BACKEND", "auto").lower()
FRAME_CONCURRENCY = int(os.environ.get("REELSCOPE_FRAME_CONCURRENCY", "4"))
PROGRESS_TICK_MS = int(os.environ.get("REELSCOPE_PROGRESS_TICK_MS", "100"))

HOST = os.environ.get("REELSCOPE_HOST", "127.0.0.1")
PORT = int(os.environ.get("REELSCOPE_PORT", "8765"))

GEMINI_API_KEY = os.environ.get("GEMINI_API_KEY", "")
GEMINI_MODEL = os.environ.get("REELSCOPE_GEMINI_MODEL", "gemini-2.0-flash")
GEMINI_TTS_MODEL = os.environ.get("REELSCOPE_GEMINI_TTS_MODEL", "gemini-2.5-flash-preview-tts")
GEMINI_TIMEOUT_SEC = float(os.environ.get("REELSCOPE_GEMINI_TIMEOUT_SEC", "300"))
ANALYZE_MAX_RETRIES = int(os.environ.get("REELSCOPE_ANALYZE_MAX_RETRIES", "0"))
ANALYZE_RETRY_DELAY_MS = int(os.environ.get("REELSCOPE_ANALYZE_RETRY_DELAY_MS", "500"))


def ensure_dirs() -> Tuple[Path, Path]:
    DATA_DIR.mkdir(parents=True, exist_ok=True)
    UPLOAD_DIR.mkdir(parents=True, exist_ok=True)
    LOG_DIR.mkdir(parents=True, exist_ok=True)
    return DATA_DIR, LOG_DIR


__all__ = [
    "DATA_DIR",
    "UPLOAD_DIR",
    "LOG_DIR",
    "MAX_LOG_FILES",
    "MAX_LOG_BYTES",
    "REPORT_FORMAT",
    "COMPRESSION_THRESHOLD_BYTES",
    "MAX_UPLOAD_BYTES",
    "FRAME_TIMEOUT_MS",
    "FRAME_BACKEND",
    "FRAME_CONCURRENCY",
    "PROGRESS_TICK_MS",
    "HOST",
    "PORT",
    "GEMINI_API_KEY",
    "GEMINI_MODEL",
    "GEMINI_TTS_MODEL",
    "GEMINI_TIMEOUT_SEC",
    "ANALYZE_MAX_RETRIES",
    "ANALYZE_RETRY_DELAY_MS",
    "ensure_dirs",
]
