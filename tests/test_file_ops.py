"""Tests for core.file_ops - export and cache sizing helpers."""
import os
import shutil
import pytest
from unittest.mock import patch

from core.file_ops import export_files, format_bytes, get_dir_size, remove_tree
from core.models import ExportMode
from tests.conftest import write_jpeg


@pytest.fixture()
def source(tmp_path):
    src = tmp_path / "src"
    src.mkdir()
    for name in ("a.jpg", "b.jpg", "c.jpg"):
        write_jpeg(src / name)
    (src / "readme.txt").write_text("not a photo")
    return src


class TestExportFiles:
    def test_copy_skips_rejected(self, source, tmp_path):
        dest = tmp_path / "out"
        result = export_files(str(source), str(dest), ExportMode.COPY, {"b.jpg"})

        assert (result.total, result.copied, result.skipped, result.failed) == (3, 2, 1, 0)
        assert sorted(os.listdir(dest)) == ["a.jpg", "c.jpg"]
        # Copy leaves the sources in place.
        assert (source / "a.jpg").exists()

    def test_move_removes_sources(self, source, tmp_path):
        dest = tmp_path / "out"
        result = export_files(str(source), str(dest), "move", ["b.jpg"])

        assert result.copied == 2
        assert sorted(os.listdir(dest)) == ["a.jpg", "c.jpg"]
        assert not (source / "a.jpg").exists()
        assert (source / "b.jpg").exists()

    def test_rejected_name_not_in_folder_not_counted(self, source, tmp_path):
        result = export_files(str(source), str(tmp_path / "out"), "copy", {"zzz.jpg"})
        assert result.skipped == 0
        assert result.copied == 3

    def test_creates_nested_destination(self, source, tmp_path):
        dest = tmp_path / "a" / "b" / "c"
        export_files(str(source), str(dest), "copy", set())
        assert len(os.listdir(dest)) == 3

    def test_destination_creation_failure_is_fatal(self, source, tmp_path):
        blocker = tmp_path / "file"
        blocker.write_text("x")
        with pytest.raises(OSError):
            export_files(str(source), str(blocker / "out"), "copy", set())

    def test_missing_source_raises(self, tmp_path):
        with pytest.raises(OSError):
            export_files(str(tmp_path / "nope"), str(tmp_path / "out"), "copy", set())

    def test_per_file_failure_counted(self, source, tmp_path):
        real_copy = shutil.copy2

        def flaky_copy(src, dst, *args, **kwargs):
            if src.endswith("a.jpg"):
                raise PermissionError("denied")
            return real_copy(src, dst, *args, **kwargs)

        with patch("core.file_ops.shutil.copy2", side_effect=flaky_copy):
            result = export_files(str(source), str(tmp_path / "out"), "copy", set())
        assert (result.total, result.copied, result.failed) == (3, 2, 1)

    def test_invalid_mode(self, source, tmp_path):
        with pytest.raises(ValueError):
            export_files(str(source), str(tmp_path / "out"), "teleport", set())


class TestSizing:
    @pytest.mark.parametrize("n,expected", [
        (0, "0 B"),
        (1023, "1023 B"),
        (1024, "1.00 KB"),
        (1536, "1.50 KB"),
        (5 * 1024 * 1024, "5.00 MB"),
        (3 * 1024 ** 3, "3.00 GB"),
    ])
    def test_format_bytes(self, n, expected):
        assert format_bytes(n) == expected

    def test_get_dir_size(self, tmp_path):
        (tmp_path / "x").mkdir()
        (tmp_path / "a.bin").write_bytes(b"1" * 100)
        (tmp_path / "x" / "b.bin").write_bytes(b"1" * 50)
        assert get_dir_size(str(tmp_path)) == 150

    def test_get_dir_size_missing(self, tmp_path):
        assert get_dir_size(str(tmp_path / "nope")) == 0

    def test_remove_tree(self, tmp_path):
        d = tmp_path / "cache"
        d.mkdir()
        (d / "a.bin").write_bytes(b"1" * 10)
        assert remove_tree(str(d)) == 10
        assert not d.exists()
        assert remove_tree(str(d)) == 0
