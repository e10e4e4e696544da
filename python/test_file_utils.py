"""ファイルスキャンと進捗表示のテスト"""
import pytest

from s3_mover.utils.file_utils import FileScanner
from s3_mover.utils.progress import ProgressTracker


def test_walk_dir_sorted_relative_paths(tmp_path):
    (tmp_path / "b").mkdir()
    (tmp_path / ".cache").mkdir()
    for name in ("z.txt", "a.TXT", "b/c.txt", "b/d.bin", ".cache/e.txt", "f.tmp"):
        (tmp_path / name).write_bytes(b"x")

    scanner = FileScanner(exclude_patterns=[".cache", "*.tmp"])

    assert scanner.walk_dir(str(tmp_path)) == ["a.TXT", "b/c.txt", "b/d.bin", "z.txt"]
    assert scanner.walk_dir(str(tmp_path), ".txt") == ["a.TXT", "b/c.txt", "z.txt"]
    assert scanner.walk_dir(str(tmp_path), ".bin,.txt") == ["a.TXT", "b/c.txt", "b/d.bin", "z.txt"]


def test_walk_dir_requires_directory(tmp_path):
    with pytest.raises(ValueError):
        FileScanner().walk_dir(str(tmp_path / "missing"))


def test_progress_tracker_prints_percentage(capsys):
    tracker = ProgressTracker("sync")
    tracker(1, 4)
    tracker(3, 4)
    tracker.complete()

    out = capsys.readouterr().out
    assert "sync: 25.0% (1/4)" in out
    assert "sync: 75.0% (3/4)" in out
    assert "Complete! (3/4)" in out


def test_progress_tracker_disabled(capsys):
    tracker = ProgressTracker("quiet", enabled=False)
    tracker(1, 1)
    tracker.complete()
    assert capsys.readouterr().out == ""
