"""Compression codecs for the archive body.

Every codec stores the same logical payload: a streaming POSIX tar (PAX
format) with one member per scanned entry, in scan order.  Codecs differ only
in the byte-stream transform layered around that tar stream:

* ``none`` – bytes pass through unchanged.
* ``gz``   – single-threaded DEFLATE via :mod:`gzip`.
* ``zst``  – Zstandard via :mod:`zstandard`, with multi-threaded block
  compression when more than one worker is available.

Both directions are streaming: files are read in ``tarfile``-sized buffers and
the container is consumed in a single forward pass, so neither the source
tree nor the archive has to fit in memory.
"""

from __future__ import annotations

import gzip
import logging
import tarfile
import zlib
from collections.abc import Callable, Iterator
from typing import BinaryIO

import zstandard

from zencore.errors import CompressionError
from zencore.models import CompressionAlgorithm, SourceEntry
from zencore.scanner import ScanResult

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[int], None]

_TAR_FORMAT = tarfile.PAX_FORMAT
_FILE_MODE = 0o644

# Errors any layer of the read/write stack may surface for a broken stream.
_STREAM_ERRORS: tuple[type[BaseException], ...] = (
    OSError,
    EOFError,
    tarfile.TarError,
    zlib.error,
    zstandard.ZstdError,
)


class _ProgressFileObj:
    """Wraps a readable file object and calls *callback* on every ``read``
    with the number of bytes actually consumed.

    This enables real-time byte-level progress during ``tar.addfile``,
    which reads the source file in internal buffer-sized chunks.
    """

    def __init__(self, path: str, callback: ProgressCallback | None) -> None:
        self._f: BinaryIO = open(path, "rb")
        self._cb = callback

    def read(self, size: int = -1) -> bytes:
        data = self._f.read(size)
        if data and self._cb is not None:
            self._cb(len(data))
        return data

    def close(self) -> None:
        self._f.close()


class _NonClosing:
    """Write/read proxy whose ``close`` leaves the wrapped stream open."""

    def __init__(self, raw: BinaryIO) -> None:
        self._raw = raw

    def write(self, data: bytes) -> int:
        return self._raw.write(data)

    def read(self, size: int = -1) -> bytes:
        return self._raw.read(size)

    def flush(self) -> None:
        if hasattr(self._raw, "flush"):
            self._raw.flush()

    def close(self) -> None:
        self.flush()


# ── Codec contract ───────────────────────────────────────────────────────────


class Codec:
    """Base codec: tar framing plus an overridable byte-stream transform."""

    algorithm: CompressionAlgorithm = CompressionAlgorithm.STORE

    def __init__(self, level: int | None = None, threads: int = 1) -> None:
        self.level = self.algorithm.resolve_level(level)
        self.threads = max(1, threads)

    def __repr__(self) -> str:
        return f"{type(self).__name__}(level={self.level}, threads={self.threads})"

    # Subclasses override these two.
    def _writer(self, sink: BinaryIO) -> BinaryIO:
        return _NonClosing(sink)  # type: ignore[return-value]

    def _reader(self, source: BinaryIO) -> BinaryIO:
        return _NonClosing(source)  # type: ignore[return-value]

    def compress(
        self,
        scan: ScanResult,
        sink: BinaryIO,
        *,
        progress: ProgressCallback | None = None,
    ) -> None:
        """Stream every entry of *scan* into *sink*.

        Member metadata (size, mtime) comes from the scan snapshot, not from
        a fresh ``stat``, so the container always matches the recorded entry
        table.  A file that shrank since scanning aborts the job.

        Raises
        ------
        CompressionError
            On any read, write or codec failure.
        """
        stream = self._writer(sink)
        try:
            with tarfile.open(fileobj=stream, mode="w|", format=_TAR_FORMAT) as tar:
                for entry in scan.entries:
                    info = tarfile.TarInfo(entry.relative_path)
                    info.size = entry.size_bytes
                    info.mtime = entry.modified_time
                    info.mode = _FILE_MODE
                    wrapper = _ProgressFileObj(scan.full_path(entry), progress)
                    try:
                        tar.addfile(info, fileobj=wrapper)
                    finally:
                        wrapper.close()
            stream.close()
        except _STREAM_ERRORS as exc:
            raise CompressionError(
                f"{self.algorithm.label} compression failed: {exc}"
            ) from exc
        logger.debug("Compressed %d entries with %r", len(scan.entries), self)

    def decompress(self, source: BinaryIO) -> Iterator[tuple[SourceEntry, BinaryIO]]:
        """Yield ``(entry, reader)`` pairs in stored order, in one forward pass.

        Each *reader* is only valid until the next pair is requested.
        """
        stream = self._reader(source)
        try:
            with tarfile.open(fileobj=stream, mode="r|") as tar:
                for member in tar:
                    if not member.isfile():
                        continue
                    entry = SourceEntry(member.name, member.size, float(member.mtime))
                    data = tar.extractfile(member)
                    assert data is not None
                    yield entry, data
        except _STREAM_ERRORS as exc:
            raise CompressionError(
                f"{self.algorithm.label} decompression failed: {exc}"
            ) from exc


class StoreCodec(Codec):
    algorithm = CompressionAlgorithm.STORE


class GzipCodec(Codec):
    algorithm = CompressionAlgorithm.GZIP

    def _writer(self, sink: BinaryIO) -> BinaryIO:
        # mtime=0 keeps the gzip header independent of wall-clock time.
        return gzip.GzipFile(fileobj=sink, mode="wb", compresslevel=self.level, mtime=0)  # type: ignore[return-value]

    def _reader(self, source: BinaryIO) -> BinaryIO:
        return gzip.GzipFile(fileobj=source, mode="rb")  # type: ignore[return-value]


class ZstdCodec(Codec):
    algorithm = CompressionAlgorithm.ZSTD

    def _writer(self, sink: BinaryIO) -> BinaryIO:
        compressor = zstandard.ZstdCompressor(
            level=self.level,
            threads=self.threads if self.threads > 1 else 0,
            write_checksum=True,
        )
        return compressor.stream_writer(sink, closefd=False)  # type: ignore[return-value]

    def _reader(self, source: BinaryIO) -> BinaryIO:
        return zstandard.ZstdDecompressor().stream_reader(source, closefd=False)  # type: ignore[return-value]


_CODECS: dict[CompressionAlgorithm, type[Codec]] = {
    CompressionAlgorithm.STORE: StoreCodec,
    CompressionAlgorithm.GZIP: GzipCodec,
    CompressionAlgorithm.ZSTD: ZstdCodec,
}


def make_codec(
    algorithm: CompressionAlgorithm, level: int | None = None, threads: int = 1
) -> Codec:
    """Instantiate the codec for *algorithm*, validating *level*."""
    return _CODECS[algorithm](level, threads)
