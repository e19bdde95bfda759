from __future__ import annotations

import os
from pathlib import Path

from src.service.rotation import enforce_log_rotation


def _report(directory: Path, name: str, size: int, mtime: float) -> Path:
    path = directory / name
    path.write_bytes(b"x" * size)
    os.utime(path, (mtime, mtime))
    return path


def test_oldest_reports_removed_past_count_limit(tmp_path: Path) -> None:
    oldest = _report(tmp_path, "a.md", 10, 1_000)
    middle = _report(tmp_path, "b.json", 10, 2_000)
    newest = _report(tmp_path, "c.md", 10, 3_000)
    unrelated = _report(tmp_path, "notes.txt", 10, 500)

    removed = enforce_log_rotation(tmp_path, max_files=2, max_bytes=0)

    assert removed == 1
    assert not oldest.exists()
    assert middle.exists() and newest.exists()
    assert unrelated.exists()


def test_size_limit_applies_independently(tmp_path: Path) -> None:
    first = _report(tmp_path, "run1.json", 600, 1_000)
    second = _report(tmp_path, "run2.json", 600, 2_000)

    removed = enforce_log_rotation(tmp_path, max_files=0, max_bytes=1_000)

    assert removed == 1
    assert not first.exists()
    assert second.exists()


def test_disabled_limits_and_missing_directory(tmp_path: Path) -> None:
    _report(tmp_path, "run.md", 10, 1_000)

    assert enforce_log_rotation(tmp_path, max_files=0, max_bytes=0) == 0
    assert enforce_log_rotation(tmp_path / "absent", max_files=1, max_bytes=1) == 0
