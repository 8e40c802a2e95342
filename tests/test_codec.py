"""Codec round trips over a scanned tree."""

from __future__ import annotations

import io
from pathlib import Path

import pytest

from conftest import read_tree
from zencore.codec import GzipCodec, StoreCodec, ZstdCodec, make_codec
from zencore.errors import CompressionError, InvalidParameter
from zencore.models import CompressionAlgorithm
from zencore.scanner import scan_source


def _extract(codec, blob: bytes) -> dict[str, bytes]:
    return {entry.relative_path: data.read() for entry, data in codec.decompress(io.BytesIO(blob))}


@pytest.mark.parametrize("algorithm", list(CompressionAlgorithm), ids=lambda a: a.label)
class TestRoundTrip:
    def test_every_file_restored(self, algorithm: CompressionAlgorithm, sample_tree: Path) -> None:
        codec = make_codec(algorithm)
        scan = scan_source(str(sample_tree))
        sink = io.BytesIO()
        codec.compress(scan, sink)
        assert _extract(codec, sink.getvalue()) == read_tree(sample_tree)

    def test_stored_order_matches_scan(self, algorithm: CompressionAlgorithm, sample_tree: Path) -> None:
        codec = make_codec(algorithm)
        scan = scan_source(str(sample_tree))
        sink = io.BytesIO()
        codec.compress(scan, sink)
        stored = [entry for entry, _ in codec.decompress(io.BytesIO(sink.getvalue()))]
        assert [e.relative_path for e in stored] == [e.relative_path for e in scan.entries]
        assert [e.size_bytes for e in stored] == [e.size_bytes for e in scan.entries]

    def test_progress_counts_every_byte(self, algorithm: CompressionAlgorithm, sample_tree: Path) -> None:
        scan = scan_source(str(sample_tree))
        seen: list[int] = []
        make_codec(algorithm).compress(scan, io.BytesIO(), progress=seen.append)
        assert sum(seen) == scan.total_bytes

    def test_sink_left_open(self, algorithm: CompressionAlgorithm, sample_tree: Path) -> None:
        sink = io.BytesIO()
        make_codec(algorithm).compress(scan_source(str(sample_tree)), sink)
        assert not sink.closed

    def test_unicode_names(self, algorithm: CompressionAlgorithm, unicode_tree: Path) -> None:
        codec = make_codec(algorithm)
        sink = io.BytesIO()
        codec.compress(scan_source(str(unicode_tree)), sink)
        assert _extract(codec, sink.getvalue()) == read_tree(unicode_tree)


class TestLevels:
    @pytest.mark.parametrize(
        "algorithm, expected",
        [
            (CompressionAlgorithm.STORE, 0),
            (CompressionAlgorithm.GZIP, 6),
            (CompressionAlgorithm.ZSTD, 3),
        ],
        ids=["none", "gz", "zst"],
    )
    def test_default_level(self, algorithm: CompressionAlgorithm, expected: int) -> None:
        assert make_codec(algorithm).level == expected

    @pytest.mark.parametrize(
        "algorithm, level",
        [
            (CompressionAlgorithm.STORE, 1),
            (CompressionAlgorithm.GZIP, 0),
            (CompressionAlgorithm.GZIP, 10),
            (CompressionAlgorithm.ZSTD, 23),
            (CompressionAlgorithm.ZSTD, -5),
        ],
        ids=["none-1", "gz-0", "gz-10", "zst-23", "zst-negative"],
    )
    def test_out_of_range_rejected(self, algorithm: CompressionAlgorithm, level: int) -> None:
        with pytest.raises(InvalidParameter, match="out of range"):
            make_codec(algorithm, level)

    def test_higher_level_not_larger(self, tmp_path: Path) -> None:
        root = tmp_path / "text"
        root.mkdir()
        (root / "lorem.txt").write_text("lorem ipsum dolor sit amet " * 5000)
        scan = scan_source(str(root))
        sizes = []
        for level in (1, 19):
            sink = io.BytesIO()
            ZstdCodec(level).compress(scan, sink)
            sizes.append(len(sink.getvalue()))
        assert sizes[1] <= sizes[0]


class TestFactory:
    @pytest.mark.parametrize(
        "algorithm, cls",
        [
            (CompressionAlgorithm.STORE, StoreCodec),
            (CompressionAlgorithm.GZIP, GzipCodec),
            (CompressionAlgorithm.ZSTD, ZstdCodec),
        ],
    )
    def test_make_codec_type(self, algorithm: CompressionAlgorithm, cls: type) -> None:
        assert type(make_codec(algorithm)) is cls

    def test_multithreaded_zstd_round_trip(self, sample_tree: Path) -> None:
        codec = make_codec(CompressionAlgorithm.ZSTD, 3, threads=4)
        sink = io.BytesIO()
        codec.compress(scan_source(str(sample_tree)), sink)
        assert _extract(codec, sink.getvalue()) == read_tree(sample_tree)


class TestFailures:
    def test_file_shrunk_after_scan(self, sample_tree: Path) -> None:
        scan = scan_source(str(sample_tree))
        (sample_tree / "binary.bin").write_bytes(b"short")
        with pytest.raises(CompressionError):
            make_codec(CompressionAlgorithm.ZSTD).compress(scan, io.BytesIO())

    def test_file_removed_after_scan(self, sample_tree: Path) -> None:
        scan = scan_source(str(sample_tree))
        (sample_tree / "hello.txt").unlink()
        with pytest.raises(CompressionError):
            make_codec(CompressionAlgorithm.GZIP).compress(scan, io.BytesIO())

    @pytest.mark.parametrize("algorithm", [CompressionAlgorithm.GZIP, CompressionAlgorithm.ZSTD],
                             ids=["gz", "zst"])
    def test_garbage_input(self, algorithm: CompressionAlgorithm) -> None:
        with pytest.raises(CompressionError):
            _extract(make_codec(algorithm), b"definitely not a compressed tar stream" * 20)
