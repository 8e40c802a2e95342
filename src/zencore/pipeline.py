"""Backup orchestration plus the list / show / verify queries.

A backup reports its stages in this order::

    Scanning → Naming → Compressing → (Encrypting) → Writing → Hashing
             → Committing → Done

with ``Failed`` reachable from any of them.  Scanning, naming, hashing and
committing each finish before the next begins.  Compressing, encrypting and
writing are one streamed pass: the tar stream is compressed, sealed chunk by
chunk and written to disk as it is produced, and the ``Compressing`` progress
events cover that whole pass.  ``Encrypting`` then marks sealing of the final
frame and ``Writing`` marks the flush and fsync of the temporary file.  Work
inside a stage may be parallel (scan subtrees, zstd blocks, AEAD chunk
batches, BLAKE3).  Bytes stream into a hidden temporary file in the
destination directory; only the commit renames it to its final name, and only
a successful state-store write makes the job count.  Any failure, including
``KeyboardInterrupt``, removes whatever was written.
"""

from __future__ import annotations

import logging
import os
import tempfile
from collections.abc import Callable, Iterator
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from enum import Enum
from typing import Any, BinaryIO

from zencore.cipher import (DEFAULT_CHUNK_SIZE, DEFAULT_KDF_PARAMS,
                            MAX_CHUNK_SIZE, ChunkOpener, ChunkSealer,
                            CipherEngine, KdfParams, new_base_nonce, new_salt)
from zencore.codec import make_codec
from zencore.config import DEFAULT_DATE_FORMAT
from zencore.container import ContainerHeader, read_header, write_header
from zencore.errors import ArchiveNotFound, InvalidParameter
from zencore.hashing import digests_match, hash_file
from zencore.models import (ArchiveJob, ArchiveRecord, HashAlgorithm,
                            ScanWarning, SourceEntry, resolve_thread_count)
from zencore.naming import archive_file_name, default_base_name, resolve_name
from zencore.scanner import scan_source
from zencore.state import StateStore

logger = logging.getLogger(__name__)


class PipelineStage(Enum):
    SCANNING = "scanning"
    NAMING = "naming"
    COMPRESSING = "compressing"
    ENCRYPTING = "encrypting"
    WRITING = "writing"
    HASHING = "hashing"
    COMMITTING = "committing"
    DONE = "done"
    FAILED = "failed"


# (stage, bytes done, bytes total)
ProgressCallback = Callable[[PipelineStage, int, int], None]


@dataclass
class BackupResult:
    record: ArchiveRecord
    warnings: list[ScanWarning] = field(default_factory=list)


class VerifyStatus(Enum):
    MATCH = "match"
    MISMATCH = "mismatch"
    NOT_FOUND = "not_found"


@dataclass(frozen=True)
class VerifyReport:
    """Outcome of :meth:`ArchivePipeline.verify`; a mismatch is data, not an error."""

    status: VerifyStatus
    target: str
    name: str | None = None
    file_path: str | None = None
    hash_algorithm: HashAlgorithm | None = None
    expected: str | None = None
    actual: str | None = None
    detail: str = ""

    @property
    def ok(self) -> bool:
        return self.status is VerifyStatus.MATCH


# ── Pipeline ─────────────────────────────────────────────────────────────────

class ArchivePipeline:
    """Runs backup jobs against one :class:`StateStore`.

    Parameters
    ----------
    store : StateStore
        Loaded store; every successful backup is committed to it.
    kdf_params : KdfParams
        Argon2id costs for new encrypted archives.
    chunk_size : int
        Plaintext bytes per AEAD chunk.
    date_format : str
        ``strftime`` pattern for jobs without a requested name.
    thread_count : int
        Worker budget for :meth:`verify` hashing; ``0`` means one per CPU.
    progress : ProgressCallback | None
        Called on stage entry and as bytes flow through the codec.
    """

    def __init__(
        self,
        store: StateStore,
        *,
        kdf_params: KdfParams = DEFAULT_KDF_PARAMS,
        chunk_size: int = DEFAULT_CHUNK_SIZE,
        date_format: str = DEFAULT_DATE_FORMAT,
        thread_count: int = 0,
        progress: ProgressCallback | None = None,
    ) -> None:
        self.store = store
        self.kdf_params = kdf_params
        self.chunk_size = chunk_size
        self.date_format = date_format
        self.thread_count = thread_count
        self.progress = progress
        self.stage: PipelineStage | None = None

    def _enter(self, stage: PipelineStage, done: int = 0, total: int = 0) -> None:
        self.stage = stage
        logger.debug("Stage → %s", stage.value)
        if self.progress is not None:
            self.progress(stage, done, total)

    def _fresh_key_material(self) -> tuple[bytes, bytes]:
        """Random salt and base nonce not used by any recorded archive."""
        used_salts = {r.salt for r in self.store.records() if r.salt is not None}
        used_nonces = {r.nonce for r in self.store.records() if r.nonce is not None}
        while True:
            salt, nonce = new_salt(), new_base_nonce()
            if salt not in used_salts and nonce not in used_nonces:
                return salt, nonce

    def _check_job(self, job: ArchiveJob, password: str | None) -> None:
        job.validate()
        if job.encrypt and not password:
            raise InvalidParameter("Encryption requested but no password given.")
        if not job.encrypt and password:
            raise InvalidParameter("Password given for an unencrypted job.")
        if job.encrypt:
            self.kdf_params.validate()
            if not 1 <= self.chunk_size <= MAX_CHUNK_SIZE:
                raise InvalidParameter(f"Chunk size out of range: {self.chunk_size}")

    def backup(self, job: ArchiveJob, password: str | None = None) -> BackupResult:
        """Produce, hash and record one archive for *job*.

        Either a complete, hashed, recorded archive exists afterwards, or
        nothing new exists on disk or in the store.

        Raises
        ------
        InvalidParameter
            Bad job, before any I/O.
        NoFilesFound, CompressionError, CryptoError, NameCollisionExhausted
            The job failed; prior archives and records are untouched.
        """
        self.stage = None
        try:
            self._check_job(job, password)
        except BaseException:
            self._enter(PipelineStage.FAILED)
            raise

        threads = resolve_thread_count(job.thread_count)
        codec = make_codec(job.compression_algorithm, job.compression_level, threads)
        tmp_path: str | None = None
        final_path: str | None = None
        sealer: ChunkSealer | None = None

        try:
            self._enter(PipelineStage.SCANNING)
            scan = scan_source(job.source_root, threads)
            total = scan.total_bytes

            self._enter(PipelineStage.NAMING)
            destination = os.path.abspath(job.destination_dir)
            os.makedirs(destination, exist_ok=True)
            base = job.requested_name or default_base_name(self.date_format)
            name = resolve_name(base, self.store.names(), destination)

            header = ContainerHeader(codec.algorithm, codec.level, job.hash_algorithm)
            engine: CipherEngine | None = None
            if job.encrypt:
                assert job.cipher_suite is not None and password is not None
                salt, base_nonce = self._fresh_key_material()
                engine = CipherEngine.from_password(
                    job.cipher_suite, password, salt, self.kdf_params
                )
                header = ContainerHeader(
                    codec.algorithm, codec.level, job.hash_algorithm,
                    job.cipher_suite, salt, base_nonce, self.kdf_params, self.chunk_size,
                )

            fd, tmp_path = tempfile.mkstemp(dir=destination, prefix=f".{name}.", suffix=".partial")
            with os.fdopen(fd, "wb") as out:
                self._enter(PipelineStage.COMPRESSING, 0, total)
                header_bytes = write_header(out, header)
                done = 0

                def _on_bytes(n: int) -> None:
                    nonlocal done
                    done += n
                    if self.progress is not None:
                        self.progress(PipelineStage.COMPRESSING, done, total)

                if engine is not None:
                    assert header.base_nonce is not None
                    sealer = ChunkSealer(
                        engine, header.base_nonce, header_bytes, out,
                        chunk_size=self.chunk_size, workers=threads,
                    )
                    codec.compress(scan, sealer, progress=_on_bytes)  # type: ignore[arg-type]
                    self._enter(PipelineStage.ENCRYPTING, total, total)
                    sealer.close()
                    logger.debug("Sealed %d chunk(s)", sealer.chunks_written)
                else:
                    codec.compress(scan, out, progress=_on_bytes)

                self._enter(PipelineStage.WRITING, total, total)
                out.flush()
                os.fsync(out.fileno())

            size = os.path.getsize(tmp_path)
            self._enter(PipelineStage.HASHING, 0, size)
            digest = hash_file(tmp_path, job.hash_algorithm, threads)

            self._enter(PipelineStage.COMMITTING, size, size)
            # Re-resolve in case a foreign file appeared while we were writing.
            name = resolve_name(name, self.store.names(), destination)
            final_path = os.path.join(destination, archive_file_name(name))
            record = ArchiveRecord(
                name=name,
                file_path=final_path,
                created_at=datetime.now(timezone.utc).isoformat(),
                size_bytes=size,
                entry_count=len(scan.entries),
                entries=tuple(scan.entries),
                hash_algorithm=job.hash_algorithm,
                hash_value=digest,
                compression_algorithm=codec.algorithm,
                compression_level=codec.level,
                encrypted=job.encrypt,
                cipher_suite=job.cipher_suite,
                salt=header.salt,
                nonce=header.base_nonce,
                kdf_params=header.kdf.to_dict() if header.kdf else None,
            )
            os.replace(tmp_path, final_path)
            tmp_path = None
            self.store.add(record)
            final_path = None

            self._enter(PipelineStage.DONE, size, size)
            logger.info("Created archive %s (%d entries, %d bytes)", name, record.entry_count, size)
            return BackupResult(record, list(scan.warnings))
        except BaseException:
            self._enter(PipelineStage.FAILED)
            if sealer is not None:
                sealer.abort()
            for leftover in (tmp_path, final_path):
                if leftover is not None and os.path.exists(leftover):
                    os.remove(leftover)
            raise

    # ── Queries ──────────────────────────────────────────────────────────

    def list_archives(self) -> list[dict[str, Any]]:
        """Summaries of every recorded archive, oldest first."""
        return [r.summary() for r in self.store.records()]

    def show(self, name: str) -> tuple[SourceEntry, ...]:
        """Entry table captured at backup time; no archive I/O.

        Raises
        ------
        ArchiveNotFound
            If *name* is not recorded.
        """
        return self.store.get(name).entries

    def verify(self, path_or_name: str) -> VerifyReport:
        """Recompute the recorded digest over the archive's current bytes."""
        try:
            record = self.store.get(path_or_name)
        except ArchiveNotFound:
            try:
                record = self.store.find_by_path(path_or_name)
            except ArchiveNotFound:
                return VerifyReport(
                    VerifyStatus.NOT_FOUND, path_or_name, detail="no matching record"
                )

        base = VerifyReport(
            VerifyStatus.NOT_FOUND,
            path_or_name,
            name=record.name,
            file_path=record.file_path,
            hash_algorithm=record.hash_algorithm,
            expected=record.hash_value,
        )
        if not os.path.isfile(record.file_path):
            return replace(base, detail="archive file is missing")

        actual = hash_file(record.file_path, record.hash_algorithm, self.thread_count)
        if digests_match(record.hash_value, actual):
            return replace(base, status=VerifyStatus.MATCH, actual=actual)
        logger.warning("Integrity mismatch for %s", record.name)
        return replace(
            base, status=VerifyStatus.MISMATCH, actual=actual, detail="digest differs"
        )


# ── Reading containers ───────────────────────────────────────────────────────

def read_archive(
    path: str, password: str | None = None
) -> Iterator[tuple[SourceEntry, BinaryIO]]:
    """Single forward pass over the container at *path*.

    Yields ``(entry, reader)`` pairs in stored order; each reader is valid
    until the next pair is requested.  Encrypted bodies are authenticated
    chunk by chunk, and the whole ciphertext is checked to its final frame
    once the last entry has been consumed.

    Raises
    ------
    ContainerFormatError
        Not a zencore container.
    InvalidParameter
        Encrypted container without a password.
    AuthenticationFailure
        Wrong password, tampering or truncation.
    CompressionError
        Corrupt codec stream.
    """
    with open(path, "rb") as f:
        header, header_bytes = read_header(f)
        codec = make_codec(header.compression, header.level)
        if not header.encrypted:
            yield from codec.decompress(f)
            return

        if not password:
            raise InvalidParameter("Archive is encrypted; a password is required.")
        assert header.cipher is not None and header.salt is not None
        assert header.base_nonce is not None and header.kdf is not None
        assert header.chunk_size is not None
        engine = CipherEngine.from_password(header.cipher, password, header.salt, header.kdf)
        opener = ChunkOpener(
            engine, header.base_nonce, header_bytes, f, chunk_size=header.chunk_size
        )
        yield from codec.decompress(opener)  # type: ignore[arg-type]
        opener.drain()


def list_archive(path: str, password: str | None = None) -> list[SourceEntry]:
    """Entry table read back from the container itself."""
    return [entry for entry, _ in read_archive(path, password)]
