"""Source-tree scanning: ordering, skipped nodes, and empty results."""

from __future__ import annotations

import os
from pathlib import Path

import pytest

from zencore.errors import NoFilesFound
from zencore.scanner import scan_source


class TestOrdering:
    def test_entries_sorted_by_relative_path(self, sample_tree: Path) -> None:
        scan = scan_source(str(sample_tree))
        paths = [e.relative_path for e in scan.entries]
        assert paths == sorted(paths)
        assert paths == [
            "binary.bin",
            "empty.txt",
            "hello.txt",
            "subdir/data.bin",
            "subdir/deeper/note.md",
        ]

    @pytest.mark.parametrize("threads", [1, 2, 8, 0], ids=["1", "2", "8", "auto"])
    def test_order_independent_of_thread_count(self, sample_tree: Path, threads: int) -> None:
        baseline = scan_source(str(sample_tree), thread_count=1).entries
        assert scan_source(str(sample_tree), thread_count=threads).entries == baseline

    def test_many_subtrees(self, tmp_path: Path) -> None:
        root = tmp_path / "wide"
        for i in range(30):
            d = root / f"d{i:02d}"
            d.mkdir(parents=True)
            (d / "f.txt").write_text(str(i))
        scan = scan_source(str(root), thread_count=4)
        assert [e.relative_path for e in scan.entries] == [f"d{i:02d}/f.txt" for i in range(30)]

    def test_sizes_and_mtimes_recorded(self, sample_tree: Path) -> None:
        scan = scan_source(str(sample_tree))
        by_path = {e.relative_path: e for e in scan.entries}
        assert by_path["binary.bin"].size_bytes == 20 * 1024
        assert by_path["empty.txt"].size_bytes == 0
        assert by_path["hello.txt"].modified_time == os.stat(sample_tree / "hello.txt").st_mtime
        assert scan.total_bytes == sum(e.size_bytes for e in scan.entries)

    def test_full_path_points_at_file(self, sample_tree: Path) -> None:
        scan = scan_source(str(sample_tree))
        for entry in scan.entries:
            assert os.path.isfile(scan.full_path(entry))


class TestSkipped:
    def test_dangling_symlink_is_warning(self, music_tree: Path) -> None:
        scan = scan_source(str(music_tree))
        assert [e.relative_path for e in scan.entries] == ["a.mp3", "b.mp3"]
        assert len(scan.warnings) == 1
        assert scan.warnings[0].path == "c.mp3"
        assert "symlink" in scan.warnings[0].reason

    def test_warnings_are_logged(self, music_tree: Path, caplog: pytest.LogCaptureFixture) -> None:
        with caplog.at_level("WARNING", logger="zencore.scanner"):
            scan_source(str(music_tree))
        assert any("c.mp3" in r.getMessage() for r in caplog.records)

    def test_symlink_to_file_followed(self, tmp_path: Path) -> None:
        root = tmp_path / "src"
        root.mkdir()
        (root / "real.txt").write_text("data")
        os.symlink(root / "real.txt", root / "link.txt")
        scan = scan_source(str(root))
        assert [e.relative_path for e in scan.entries] == ["link.txt", "real.txt"]

    def test_symlinked_directory_not_followed(self, tmp_path: Path) -> None:
        outside = tmp_path / "outside"
        outside.mkdir()
        (outside / "secret.txt").write_text("x")
        root = tmp_path / "src"
        (root / "sub").mkdir(parents=True)
        (root / "keep.txt").write_text("k")
        os.symlink(outside, root / "top-link")
        os.symlink(outside, root / "sub" / "nested-link")
        scan = scan_source(str(root))
        assert [e.relative_path for e in scan.entries] == ["keep.txt"]
        assert sorted(w.path for w in scan.warnings) == ["sub/nested-link", "top-link"]

    @pytest.mark.skipif(
        not hasattr(os, "geteuid") or os.geteuid() == 0,
        reason="permission bits are not enforced for root",
    )
    def test_unreadable_file_is_warning(self, tmp_path: Path) -> None:
        root = tmp_path / "src"
        root.mkdir()
        (root / "ok.txt").write_text("ok")
        locked = root / "locked.txt"
        locked.write_text("nope")
        locked.chmod(0)
        try:
            scan = scan_source(str(root))
        finally:
            locked.chmod(0o644)
        assert [e.relative_path for e in scan.entries] == ["ok.txt"]
        assert [w.path for w in scan.warnings] == ["locked.txt"]

    def test_empty_directories_contribute_nothing(self, sample_tree: Path) -> None:
        scan = scan_source(str(sample_tree))
        assert not any(e.relative_path.startswith("empty_dir") for e in scan.entries)
        assert scan.warnings == []


class TestNoFiles:
    def test_missing_directory(self, tmp_path: Path) -> None:
        with pytest.raises(NoFilesFound):
            scan_source(str(tmp_path / "nope"))

    def test_regular_file_as_root(self, tmp_path: Path) -> None:
        f = tmp_path / "file.txt"
        f.write_text("x")
        with pytest.raises(NoFilesFound):
            scan_source(str(f))

    def test_only_empty_directories(self, tmp_path: Path) -> None:
        (tmp_path / "a" / "b").mkdir(parents=True)
        with pytest.raises(NoFilesFound):
            scan_source(str(tmp_path / "a"))

    def test_only_unreadable_nodes(self, tmp_path: Path) -> None:
        root = tmp_path / "src"
        root.mkdir()
        os.symlink(root / "gone", root / "dangling")
        with pytest.raises(NoFilesFound):
            scan_source(str(root))
