"""Report rotation helpers for Reelscope."""
from __future__ import annotations

from pathlib import Path
from typing import List, Tuple

REPORT_SUFFIXES = frozenset({".md", ".json"})


def _collect_reports(report_dir: Path) -> List[Tuple[Path, float, int]]:
    reports: List[Tuple[Path, float, int]] = []
    if not report_dir.exists():
        return reports
    for entry in report_dir.iterdir():
        if not entry.is_file() or entry.suffix.lower() not in REPORT_SUFFIXES:
            continue
        try:
            stat = entry.stat()
        except OSError:
            continue
        reports.append((entry, stat.st_mtime, stat.st_size))
    # oldest first; name breaks ties so .json and .md of one run stay adjacent
    reports.sort(key=lambda item: (item[1], item[0].name))
    return reports


def _remove(path: Path) -> bool:
    try:
        path.unlink()
    except FileNotFoundError:
        return True
    except OSError:
        return False
    return True


def enforce_log_rotation(report_dir: Path, max_files: int, max_bytes: int) -> int:
    """Delete the oldest reports until both limits hold. Returns the number removed."""
    if max_files <= 0 and max_bytes <= 0:
        return 0

    reports = _collect_reports(report_dir)
    total_bytes = sum(size for _, _, size in reports)
    removed = 0

    while reports:
        over_count = max_files > 0 and len(reports) > max_files
        over_size = max_bytes > 0 and total_bytes > max_bytes
        if not (over_count or over_size):
            break
        path, _, size = reports.pop(0)
        if not _remove(path):
            break
        total_bytes -= size
        removed += 1
    return removed


__all__ = ["REPORT_SUFFIXES", "enforce_log_rotation"]
