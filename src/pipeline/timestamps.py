"""Timestamp token helpers."""
from __future__ import annotations

from typing import Optional


def parse_timestamp(token: Optional[str]) -> int:
    """Convert ``MM:SS`` or ``HH:MM:SS`` (optionally bracketed) into seconds.

    Anything that does not look like a timestamp yields ``0``; a missing
    timestamp must never break rendering.
    """
    if not token or not isinstance(token, str):
        return 0
    clean = token.replace("[", "").replace("]", "").strip()
    if not clean:
        return 0
    parts = clean.split(":")
    if len(parts) not in (2, 3):
        return 0
    values = []
    for part in parts:
        part = part.strip()
        if not part.isdecimal():
            return 0
        values.append(int(part))
    if len(values) == 2:
        minutes, seconds = values
        return minutes * 60 + seconds
    hours, minutes, seconds = values
    return hours * 3600 + minutes * 60 + seconds


def format_timestamp(seconds: float) -> str:
    total = max(0, int(seconds))
    hours, remainder = divmod(total, 3600)
    minutes, secs = divmod(remainder, 60)
    if hours:
        return f"{hours:02d}:{minutes:02d}:{secs:02d}"
    return f"{minutes:02d}:{secs:02d}"


__all__ = ["parse_timestamp", "format_timestamp"]
